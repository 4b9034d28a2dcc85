"""
Object storage upload behind a small interface.

The GCS client library is only imported when a bucket is configured, so the
service runs without Google credentials when upload mode is off.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from .config import Settings
from .models import UploadResult

logger = logging.getLogger(__name__)

SIGNED_URL_TTL = timedelta(minutes=15)


class ArtifactUploader(ABC):
    """Uploads a local artifact and returns a time-limited read URL."""

    bucket: str

    @abstractmethod
    def upload(self, path: Path, object_name: str) -> UploadResult:
        """Blocking upload; callers run it off the event loop."""


class GCSUploader(ArtifactUploader):
    """Google Cloud Storage uploader issuing v4 signed URLs."""

    def __init__(self, bucket: str, client=None, ttl: timedelta = SIGNED_URL_TTL):
        if client is None:
            from google.cloud import storage as gcs_storage
            client = gcs_storage.Client()
        self.bucket = bucket
        self.ttl = ttl
        self._client = client

    def upload(self, path: Path, object_name: str) -> UploadResult:
        """
        Upload `path` and sign a GET URL for it.

        `upload_from_filename` sends files up to 8 MB as one multipart request
        and switches to a resumable upload session above that.
        """
        blob = self._client.bucket(self.bucket).blob(object_name)
        blob.upload_from_filename(str(path))

        issued_at = datetime.now(timezone.utc)
        url = blob.generate_signed_url(
            version="v4",
            method="GET",
            expiration=self.ttl,
        )
        logger.info(f"☁️ Uploaded gs://{self.bucket}/{object_name}")
        return UploadResult(
            bucket=self.bucket,
            object=object_name,
            url=url,
            expires_at=issued_at + self.ttl,
        )


def build_uploader(settings: Settings) -> Optional[ArtifactUploader]:
    """Return the configured uploader, or None when no bucket is set."""
    if not settings.upload_enabled:
        logger.info("ℹ️ BUCKET not set — upload mode disabled")
        return None
    logger.info(f"☁️ Upload mode enabled (bucket: {settings.bucket})")
    return GCSUploader(settings.bucket)
