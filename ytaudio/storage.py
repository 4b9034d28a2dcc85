"""
Scratch directory management with automatic cleanup

Every request gets its own job directory under the scratch root, so tool
output and credential files of concurrent requests never share a directory.
"""

import os
import shutil
import asyncio
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
import logging

logger = logging.getLogger(__name__)

COOKIES_FILENAME = "cookies.txt"


@dataclass
class Job:
    """Request-scoped scratch state"""
    job_id: str
    job_dir: Path
    credential_path: Optional[Path] = None
    created_at: float = field(default_factory=time.time)

    @property
    def output_template(self) -> str:
        """yt-dlp -o template that keeps output inside the job directory"""
        return str(self.job_dir / "%(id)s.%(ext)s")


class ScratchStorage:
    """Manages per-request scratch directories with automatic cleanup"""

    def __init__(self, scratch_dir: Path, file_ttl: int = 1800, cleanup_interval: int = 300):
        self.scratch_dir = Path(scratch_dir)
        self.file_ttl = file_ttl
        self.cleanup_interval = cleanup_interval
        self._cleanup_task: Optional[asyncio.Task] = None
        self._init_storage()

    def _init_storage(self):
        """Initialize scratch directory"""
        self.scratch_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Scratch storage initialized at {self.scratch_dir} (TTL: {self.file_ttl}s)")

    def new_job(self) -> Job:
        """Create a uniquely named job directory"""
        job_id = uuid.uuid4().hex
        job_dir = self.scratch_dir / job_id
        job_dir.mkdir(parents=True, exist_ok=False)
        return Job(job_id=job_id, job_dir=job_dir)

    def get_job_dir(self, job_id: str) -> Path:
        return self.scratch_dir / job_id

    def write_credentials(self, job: Job, content: str) -> Optional[Path]:
        """
        Materialize cookie-jar content as an owner-only file in the job directory.

        Returns the path, or None if it could not be written (the download then
        proceeds unauthenticated). The content itself is never logged.
        """
        path = job.job_dir / COOKIES_FILENAME
        try:
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
        except OSError as e:
            logger.warning(f"⚠️ Failed to write cookies file for job {job.job_id}: {e.strerror}")
            return None
        job.credential_path = path
        return path

    def delete_file(self, path: Optional[Path]):
        """Delete a single file, ignoring files that are already gone"""
        if path is None:
            return
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Failed to delete {path}: {e}")

    def delete_job_files(self, job_id: str):
        """Delete all files for a job"""
        job_dir = self.get_job_dir(job_id)
        if job_dir.exists():
            try:
                shutil.rmtree(job_dir)
                logger.info(f"Deleted job files: {job_id}")
            except OSError as e:
                logger.error(f"Failed to delete job files {job_id}: {e}")

    def release(self, job: Job, *paths: Optional[Path]):
        """Delete the given files, the job's credentials and then the job directory"""
        for path in paths:
            self.delete_file(path)
        self.delete_file(job.credential_path)
        self.delete_job_files(job.job_id)

    def is_writable(self) -> bool:
        return self.scratch_dir.is_dir() and os.access(self.scratch_dir, os.W_OK)

    def cleanup_old_files(self):
        """Remove job directories older than TTL (left behind by crashed requests)"""
        if not self.scratch_dir.exists():
            return

        removed_count = 0
        removed_bytes = 0

        for job_dir in self.scratch_dir.iterdir():
            if not job_dir.is_dir():
                continue

            try:
                age = time.time() - job_dir.stat().st_mtime
            except FileNotFoundError:
                continue  # released concurrently
            if age <= self.file_ttl:
                continue

            try:
                size = sum(f.stat().st_size for f in job_dir.rglob("*") if f.is_file())
                shutil.rmtree(job_dir)
                removed_count += 1
                removed_bytes += size
                logger.info(f"Cleaned up expired job: {job_dir.name} ({size / 1024 / 1024:.2f} MB)")
            except OSError as e:
                logger.error(f"Failed to cleanup {job_dir.name}: {e}")

        if removed_count > 0:
            logger.info(f"Cleanup complete: {removed_count} jobs, {removed_bytes / 1024 / 1024:.2f} MB freed")

    def get_disk_usage(self) -> float:
        """Get disk usage percentage"""
        try:
            stat = shutil.disk_usage(self.scratch_dir)
            return (stat.used / stat.total) * 100
        except OSError as e:
            logger.error(f"Failed to get disk usage: {e}")
            return 0.0

    async def start_cleanup_scheduler(self):
        """Start background cleanup task"""
        if self._cleanup_task is not None:
            logger.warning("Cleanup scheduler already running")
            return

        async def cleanup_loop():
            logger.info(f"Starting cleanup scheduler (interval: {self.cleanup_interval}s)")
            while True:
                try:
                    await asyncio.sleep(self.cleanup_interval)
                    self.cleanup_old_files()
                except asyncio.CancelledError:
                    logger.info("Cleanup scheduler cancelled")
                    break
                except Exception as e:
                    logger.error(f"Cleanup scheduler error: {e}")

        self._cleanup_task = asyncio.create_task(cleanup_loop())

    async def stop_cleanup_scheduler(self):
        """Stop background cleanup task"""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None
            logger.info("Cleanup scheduler stopped")
