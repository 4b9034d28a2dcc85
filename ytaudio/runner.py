"""
Async subprocess execution with bounded output capture.

Tools like yt-dlp -v and ffmpeg are noisy; only the trailing window of each
stream is kept so a long download cannot grow memory without bound.
"""

import asyncio
import logging
import os
import signal
from typing import Optional

from .exceptions import LaunchError, ProcessError, ProcessTimeoutError
from .models import ProcessResult, ToolInvocation

logger = logging.getLogger(__name__)

DEFAULT_TAIL_BYTES = 4096
_READ_CHUNK = 8192


class TailBuffer:
    """Keeps the last `limit` bytes written to it."""

    def __init__(self, limit: int = DEFAULT_TAIL_BYTES):
        self.limit = limit
        self._buf = bytearray()

    def write(self, chunk: bytes) -> None:
        self._buf += chunk
        overflow = len(self._buf) - self.limit
        if overflow > 0:
            del self._buf[:overflow]

    def text(self) -> str:
        return self._buf.decode("utf-8", errors="replace")


async def _drain(stream: Optional[asyncio.StreamReader], buf: TailBuffer) -> None:
    if stream is None:
        return
    while True:
        chunk = await stream.read(_READ_CHUNK)
        if not chunk:
            break
        buf.write(chunk)


def _kill_group(proc: asyncio.subprocess.Process) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


async def run(
    invocation: ToolInvocation,
    timeout: Optional[float] = None,
    tail_bytes: int = DEFAULT_TAIL_BYTES,
) -> ProcessResult:
    """
    Execute `invocation` and wait for it to exit.

    Returns:
        ProcessResult for exit code 0.

    Raises:
        LaunchError: the executable is missing or cannot be started.
        ProcessError: the process exited nonzero.
        ProcessTimeoutError: the process outlived `timeout` and was killed.
    """
    command = invocation.command
    logger.info(f"⚙️ Running {command} ({len(invocation.args)} args)")

    try:
        proc = await asyncio.create_subprocess_exec(
            *invocation.argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            # own process group so helpers the tool spawns (ffmpeg) die with it
            start_new_session=True,
        )
    except OSError as e:
        # FileNotFoundError, PermissionError, exec format errors
        logger.error(f"❌ Could not launch {command}: {e}")
        raise LaunchError(command, e) from e

    stdout = TailBuffer(tail_bytes)
    stderr = TailBuffer(tail_bytes)

    async def _communicate() -> int:
        await asyncio.gather(_drain(proc.stdout, stdout), _drain(proc.stderr, stderr))
        return await proc.wait()

    try:
        exit_code = await asyncio.wait_for(_communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.error(f"⏱️ {command} exceeded {timeout}s deadline, killing pid {proc.pid}")
        _kill_group(proc)
        await proc.wait()
        raise ProcessTimeoutError(command, timeout, stdout.text(), stderr.text())
    except asyncio.CancelledError:
        # Request cancelled while the tool was running; do not leave it behind
        if proc.returncode is None:
            _kill_group(proc)
            await proc.wait()
        raise

    if exit_code != 0:
        logger.warning(f"⚠️ {command} exited {exit_code}")
        raise ProcessError(command, exit_code, stdout.text(), stderr.text())

    logger.info(f"✅ {command} finished")
    return ProcessResult(exit_code=exit_code, stdout=stdout.text(), stderr=stderr.text())
