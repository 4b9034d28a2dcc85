"""
Service configuration loaded once from the environment at startup.

Environment variables:
  PORT                        — HTTP listen port (default 8080)
  BUCKET                      — GCS bucket for upload mode; unset disables ?upload=true
  YTDLP_COOKIES               — Netscape cookies.txt contents for authenticated downloads
  YTDLP_COOKIES_B64           — Same, base64-encoded (used when YTDLP_COOKIES is empty)
                                Encode your cookies file with: base64 -w 0 cookies.txt
  YTDLP_USER_AGENT            — User-Agent override passed to yt-dlp
  YTDLP_PROFILE               — "basic" or "hardened" (spoofed headers + retry/backoff)
  YTDLP_EXTRACTOR_ARGS        — yt-dlp --extractor-args hint (empty string disables)
  YTDLP_BIN / FFMPEG_BIN      — Executables to invoke
  SCRATCH_DIR                 — Root of per-request scratch directories
  STATIC_DIR                  — Directory served at /downloads by the legacy endpoint
  SUBPROCESS_TIMEOUT_SECONDS  — Deadline for any single tool invocation
  FILE_TTL_SECONDS            — Age after which orphaned scratch directories are swept
  CLEANUP_INTERVAL_SECONDS    — Sweep interval
  ALLOWED_ORIGINS             — Comma-separated CORS origins
"""

import base64
import binascii
import logging
import os
from enum import Enum
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, SecretStr

logger = logging.getLogger(__name__)

DEFAULT_EXTRACTOR_ARGS = "youtube:player_client=android"


class DownloadProfile(str, Enum):
    """yt-dlp invocation profiles"""
    BASIC = "basic"
    HARDENED = "hardened"


class Settings(BaseModel, frozen=True):
    """Immutable process-wide configuration."""

    port: int = 8080
    bucket: Optional[str] = None
    cookies: Optional[SecretStr] = None
    user_agent: Optional[str] = None
    profile: DownloadProfile = DownloadProfile.BASIC
    extractor_args: Optional[str] = DEFAULT_EXTRACTOR_ARGS
    ytdlp_bin: str = "yt-dlp"
    ffmpeg_bin: str = "ffmpeg"
    scratch_dir: Path = Path("/tmp/ytaudio")
    static_dir: Path = Path("downloads")
    subprocess_timeout: float = Field(600.0, gt=0)
    file_ttl: int = 1800
    cleanup_interval: int = 300
    allowed_origins: List[str] = ["*"]

    @property
    def upload_enabled(self) -> bool:
        return bool(self.bucket)

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables."""
        return cls(
            port=int(os.getenv("PORT", "8080")),
            bucket=os.getenv("BUCKET", "").strip() or None,
            cookies=_load_cookies(),
            user_agent=os.getenv("YTDLP_USER_AGENT", "").strip() or None,
            profile=DownloadProfile(os.getenv("YTDLP_PROFILE", "basic").strip().lower()),
            extractor_args=os.getenv("YTDLP_EXTRACTOR_ARGS", DEFAULT_EXTRACTOR_ARGS).strip() or None,
            ytdlp_bin=os.getenv("YTDLP_BIN", "yt-dlp"),
            ffmpeg_bin=os.getenv("FFMPEG_BIN", "ffmpeg"),
            scratch_dir=Path(os.getenv("SCRATCH_DIR", "/tmp/ytaudio")),
            static_dir=Path(os.getenv("STATIC_DIR", "downloads")),
            subprocess_timeout=float(os.getenv("SUBPROCESS_TIMEOUT_SECONDS", "600")),
            file_ttl=int(os.getenv("FILE_TTL_SECONDS", "1800")),
            cleanup_interval=int(os.getenv("CLEANUP_INTERVAL_SECONDS", "300")),
            allowed_origins=[o.strip() for o in os.getenv("ALLOWED_ORIGINS", "*").split(",") if o.strip()],
        )


def _load_cookies() -> Optional[SecretStr]:
    """Read the cookie jar from YTDLP_COOKIES, falling back to YTDLP_COOKIES_B64."""
    raw = os.getenv("YTDLP_COOKIES", "")
    if raw.strip():
        return SecretStr(raw)

    cookies_b64 = os.getenv("YTDLP_COOKIES_B64", "").strip()
    if not cookies_b64:
        return None
    try:
        return SecretStr(base64.b64decode(cookies_b64, validate=True).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError) as e:
        # Never echo the value itself
        logger.error(f"❌ Ignoring YTDLP_COOKIES_B64: not valid base64 text ({type(e).__name__})")
        return None
