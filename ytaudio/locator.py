"""
Find the file an external tool produced.

yt-dlp names its output from the -o template (`%(id)s.%(ext)s`), so the exact
filename is not known up front. The locator picks the newest file with the
expected extension. On a directory shared by concurrent requests that choice
can belong to another request; callers pass a per-request job directory so
the newest match is also the only one.
"""

import logging
from pathlib import Path
from typing import List, Union

from .exceptions import NoArtifactError

logger = logging.getLogger(__name__)


def _normalize_extension(extension: str) -> str:
    extension = extension.lower()
    return extension if extension.startswith(".") else f".{extension}"


def list_artifacts(directory: Union[str, Path], extension: str) -> List[Path]:
    """Regular files in `directory` whose suffix matches `extension` (case-insensitive)."""
    directory = Path(directory)
    suffix = _normalize_extension(extension)
    if not directory.is_dir():
        return []
    return [p for p in directory.iterdir() if p.is_file() and p.suffix.lower() == suffix]


def find_latest_artifact(directory: Union[str, Path], extension: str) -> Path:
    """
    Return the most recently modified file in `directory` with `extension`.

    Raises:
        NoArtifactError: nothing in `directory` matches.
    """
    candidates = list_artifacts(directory, extension)
    if not candidates:
        logger.error(f"❌ No *{_normalize_extension(extension)} file in {directory}")
        raise NoArtifactError(str(directory), f"*{_normalize_extension(extension)}")

    latest = max(candidates, key=lambda p: p.stat().st_mtime)
    if len(candidates) > 1:
        logger.warning(f"⚠️ {len(candidates)} candidate artifacts in {directory}, picked newest: {latest.name}")
    return latest
