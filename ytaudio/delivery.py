"""
Hand an artifact back to the caller: stream it, or upload it and return a signed URL.

Both paths delete the local artifact and the request's credential file once
they are done with them. There is no rollback: an upload that fails after
the local file is gone loses the artifact, and the caller gets an UploadError.
"""

import asyncio
import logging
from pathlib import Path
from typing import Callable

from fastapi.responses import FileResponse

from .exceptions import UploadError
from .models import AudioFormat, UploadResult
from .uploader import ArtifactUploader

logger = logging.getLogger(__name__)


class CleanupFileResponse(FileResponse):
    """
    FileResponse that runs `cleanup` once the response is over.

    The callback sits in a `finally` around the whole ASGI send, so it runs on
    normal completion, on send errors and when a client disconnect cancels
    the response.
    """

    def __init__(self, path: Path, cleanup: Callable[[], None], **kwargs):
        super().__init__(path=path, **kwargs)
        self._cleanup = cleanup

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            self._cleanup()


def stream_artifact(path: Path, audio_format: AudioFormat, cleanup: Callable[[], None]) -> CleanupFileResponse:
    """Stream `path` as an attachment, then call `cleanup`."""
    logger.info(f"📤 Streaming {path.name} ({path.stat().st_size / 1024 / 1024:.2f} MB)")
    return CleanupFileResponse(
        path=path,
        cleanup=cleanup,
        media_type=audio_format.media_type,
        filename=path.name,
        content_disposition_type="attachment",
        headers={
            "Cache-Control": "no-cache, no-store, must-revalidate",
        },
    )


async def upload_artifact(
    uploader: ArtifactUploader,
    path: Path,
    cleanup: Callable[[], None],
) -> UploadResult:
    """
    Upload `path` under its base filename and return the signed URL.

    `cleanup` runs as soon as the upload call returns, whether it succeeded
    or not.

    Raises:
        UploadError: the object storage call failed.
    """
    object_name = path.name
    loop = asyncio.get_running_loop()
    try:
        return await loop.run_in_executor(None, uploader.upload, path, object_name)
    except Exception as e:
        logger.error(f"❌ Upload of {object_name} to {uploader.bucket} failed: {e}")
        raise UploadError(object_name, e) from e
    finally:
        cleanup()
