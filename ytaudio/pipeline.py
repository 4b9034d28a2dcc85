"""
Request → yt-dlp → artifact pipeline.

Each extraction runs in its own scratch job directory:
  1. create job dir (and cookie file, when cookies are configured)
  2. build the yt-dlp invocation and run it under a deadline
  3. locate the produced artifact inside the job dir
The caller owns delivery; on any failure here the job dir is removed before
the error propagates.
"""

import logging
import re
import shutil
from pathlib import Path
from typing import Tuple

from . import runner
from .arguments import (
    build_ffmpeg_invocation,
    build_legacy_download_invocation,
    build_version_invocation,
    build_ytdlp_invocation,
)
from .config import Settings
from .exceptions import NoArtifactError, ValidationError
from .locator import find_latest_artifact
from .models import AudioFormat, DoctorResponse, ExtractionRequest, LegacyExtractResponse
from .storage import Job, ScratchStorage

logger = logging.getLogger(__name__)

YOUTUBE_WATCH_URL = "https://www.youtube.com/watch?v={video_id}"
VIDEO_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
LEGACY_URL_PREFIX = "/downloads"


def _first_line(text: str) -> str:
    return (text.splitlines() or [""])[0].strip()


class ExtractionPipeline:
    """Wires argument building, subprocess execution and artifact lookup together."""

    def __init__(self, settings: Settings, storage: ScratchStorage):
        self.settings = settings
        self.storage = storage

    def _open_job(self) -> Job:
        job = self.storage.new_job()
        if self.settings.cookies is not None:
            self.storage.write_credentials(job, self.settings.cookies.get_secret_value())
        return job

    async def extract(self, request: ExtractionRequest) -> Tuple[Job, Path]:
        """
        Run yt-dlp for `request` and return the job together with its artifact.

        The caller must release the job once the artifact has been delivered.
        """
        job = self._open_job()
        logger.info(f"📥 Extract request: {request.url} (job_id={job.job_id}, format={request.format.value})")

        try:
            invocation = build_ytdlp_invocation(
                url=request.url,
                audio_format=request.format,
                output_template=job.output_template,
                settings=self.settings,
                credential_path=job.credential_path,
            )
            result = await runner.run(invocation, timeout=self.settings.subprocess_timeout)
            if request.debug:
                logger.info(result.stderr or result.stdout)

            artifact = find_latest_artifact(job.job_dir, request.format.extension)
        except BaseException:
            self.storage.release(job)
            raise

        logger.info(f"✅ Artifact ready: {artifact.name} (job_id={job.job_id})")
        return job, artifact

    async def doctor(self) -> DoctorResponse:
        """Report tool versions and scratch writability."""
        ytdlp = await runner.run(
            build_version_invocation(self.settings.ytdlp_bin, "--version"),
            timeout=self.settings.subprocess_timeout,
        )
        ffmpeg = await runner.run(
            build_version_invocation(self.settings.ffmpeg_bin, "-version"),
            timeout=self.settings.subprocess_timeout,
        )
        return DoctorResponse(
            ytdlp_version=_first_line(ytdlp.stdout or ytdlp.stderr),
            ffmpeg_version=_first_line(ffmpeg.stdout),
            writable_tmp=self.storage.is_writable(),
            disk_usage_percent=self.storage.get_disk_usage(),
        )

    async def extract_legacy(self, video_id: str) -> LegacyExtractResponse:
        """
        Download a YouTube video's audio and transcode it to mp3 in the static directory.

        The mp3 is kept and served from /downloads; only the intermediate
        download and the job directory are removed.
        """
        if not VIDEO_ID_PATTERN.match(video_id or ""):
            raise ValidationError("Invalid videoId")

        static_dir = self.settings.static_dir
        static_dir.mkdir(parents=True, exist_ok=True)
        destination = static_dir / f"{video_id}{AudioFormat.MP3.extension}"

        job = self._open_job()
        logger.info(f"📥 Legacy extract request: {video_id} (job_id={job.job_id})")
        try:
            download = build_legacy_download_invocation(
                url=YOUTUBE_WATCH_URL.format(video_id=video_id),
                output_template=str(job.job_dir / "source.%(ext)s"),
                settings=self.settings,
                credential_path=job.credential_path,
            )
            await runner.run(download, timeout=self.settings.subprocess_timeout)

            source = self._find_source(job)
            partial = job.job_dir / destination.name
            await runner.run(
                build_ffmpeg_invocation(source, partial, self.settings),
                timeout=self.settings.subprocess_timeout,
            )
            shutil.move(str(partial), str(destination))
        finally:
            self.storage.release(job)

        logger.info(f"✅ Legacy artifact ready: {destination}")
        return LegacyExtractResponse(
            audioUrl=f"{LEGACY_URL_PREFIX}/{destination.name}",
            videoId=video_id,
        )

    def _find_source(self, job: Job) -> Path:
        candidates = sorted(
            (p for p in job.job_dir.glob("source.*") if p.is_file()),
            key=lambda p: p.stat().st_size,
            reverse=True,
        )
        if not candidates:
            raise NoArtifactError(str(job.job_dir), "source.*")
        return candidates[0]
