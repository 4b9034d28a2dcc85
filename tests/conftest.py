"""
Shared fixtures and helpers for the extraction service tests.

The external tools are replaced by small /bin/sh scripts generated per test,
so no network access, yt-dlp or ffmpeg is needed.
"""

import os
import pathlib
import sys
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

# ─── Path + environment (must happen before any ytaudio import) ──────────────

_ROOT = pathlib.Path(__file__).parent.parent
sys.path.insert(0, str(_ROOT))

# ytaudio.main builds a module-level app from the environment on import;
# keep its directories out of the working tree and upload mode off.
_SESSION_DIR = pathlib.Path(tempfile.mkdtemp(prefix="ytaudio-tests-"))
os.environ["SCRATCH_DIR"] = str(_SESSION_DIR / "scratch")
os.environ["STATIC_DIR"] = str(_SESSION_DIR / "static")
for _var in ("BUCKET", "YTDLP_COOKIES", "YTDLP_COOKIES_B64"):
    os.environ.pop(_var, None)

from ytaudio.config import Settings  # noqa: E402
from ytaudio.models import UploadResult  # noqa: E402
from ytaudio.uploader import ArtifactUploader  # noqa: E402

# ─── Constants ───────────────────────────────────────────────────────────────

TEST_VIDEO_URL = "https://example.com/v/abc"
FAKE_YTDLP_VERSION = "2099.01.01"
FAKE_FFMPEG_VERSION = "ffmpeg version 6.1-fake Copyright (c) 2000-2099"

# Writes <dir of -o>/abc.<--audio-format>, or source.webm for the legacy
# template. Records its argv (one per line) and a copy of the cookie file.
FAKE_YTDLP = r"""#!/bin/sh
if [ "$1" = "--version" ]; then echo "@VERSION@"; exit 0; fi
out=""; fmt="mp3"; cookies=""; prev=""
for arg in "$@"; do
  case "$prev" in
    -o) out="$arg" ;;
    --audio-format) fmt="$arg" ;;
    --cookies) cookies="$arg" ;;
  esac
  prev="$arg"
done
printf '%s\n' "$@" > "@RECORD@"
if [ -n "$cookies" ] && [ -f "$cookies" ]; then cp "$cookies" "@RECORD@.cookies"; fi
dir=$(dirname "$out")
if [ "$(basename "$out")" = "source.%(ext)s" ]; then
  printf 'fake-webm-audio' > "$dir/source.webm"
else
  printf 'ID3-fake-audio-payload' > "$dir/abc.$fmt"
fi
echo "[ExtractAudio] done" >&2
exit 0
"""

# Leaves a partial file behind and fails like a blocked download
FAILING_YTDLP = r"""#!/bin/sh
out=""; cookies=""; prev=""
for arg in "$@"; do
  if [ "$prev" = "-o" ]; then out="$arg"; fi
  if [ "$prev" = "--cookies" ]; then cookies="$arg"; fi
  prev="$arg"
done
if [ -n "$cookies" ] && [ -f "$cookies" ]; then echo "cookie jar present" >&2; fi
if [ -n "$out" ]; then printf 'partial' > "$(dirname "$out")/abc.webm.part"; fi
echo "ERROR: [youtube] abc: Sign in to confirm you're not a bot" >&2
exit 1
"""

# Exits cleanly without writing anything
SILENT_YTDLP = r"""#!/bin/sh
exit 0
"""

# Copies the input (after -i) to the last argument
FAKE_FFMPEG = r"""#!/bin/sh
if [ "$1" = "-version" ]; then echo "@VERSION@"; echo "built with fake"; exit 0; fi
src=""; prev=""; last=""
for arg in "$@"; do
  if [ "$prev" = "-i" ]; then src="$arg"; fi
  prev="$arg"; last="$arg"
done
cp "$src" "$last"
"""


def write_script(path: pathlib.Path, body: str) -> pathlib.Path:
    """Write an executable shell script."""
    path.write_text(body)
    path.chmod(0o755)
    return path


# ─── Fakes ───────────────────────────────────────────────────────────────────

class FakeUploader(ArtifactUploader):
    """In-memory ArtifactUploader; records what it was given."""

    def __init__(self, bucket: str = "test-bucket", fail: bool = False):
        self.bucket = bucket
        self.fail = fail
        self.uploads = []

    def upload(self, path, object_name):
        if self.fail:
            raise ConnectionError("storage backend unavailable")
        self.uploads.append((object_name, path.read_bytes()))
        return UploadResult(
            bucket=self.bucket,
            object=object_name,
            url=f"https://storage.example.com/{self.bucket}/{object_name}?X-Goog-Signature=abc",
            expires_at=datetime.now(timezone.utc) + timedelta(minutes=15),
        )


# ─── Per-test fixtures ────────────────────────────────────────────────────────

@pytest.fixture
def record_file(tmp_path):
    """Where the fake yt-dlp records its argv."""
    return tmp_path / "ytdlp-args.txt"


@pytest.fixture
def fake_ytdlp(tmp_path, record_file):
    body = FAKE_YTDLP.replace("@VERSION@", FAKE_YTDLP_VERSION).replace("@RECORD@", str(record_file))
    return write_script(tmp_path / "yt-dlp", body)


@pytest.fixture
def failing_ytdlp(tmp_path):
    return write_script(tmp_path / "yt-dlp-failing", FAILING_YTDLP)


@pytest.fixture
def silent_ytdlp(tmp_path):
    return write_script(tmp_path / "yt-dlp-silent", SILENT_YTDLP)


@pytest.fixture
def fake_ffmpeg(tmp_path):
    return write_script(tmp_path / "ffmpeg", FAKE_FFMPEG.replace("@VERSION@", FAKE_FFMPEG_VERSION))


@pytest.fixture
def settings(tmp_path, fake_ytdlp, fake_ffmpeg):
    """Settings pointing at the fake tools and per-test directories."""
    return Settings(
        scratch_dir=tmp_path / "scratch",
        static_dir=tmp_path / "static",
        ytdlp_bin=str(fake_ytdlp),
        ffmpeg_bin=str(fake_ffmpeg),
        subprocess_timeout=30,
    )


def scratch_entries(settings: Settings):
    """Everything left in the scratch root."""
    return sorted(p.name for p in settings.scratch_dir.iterdir())
