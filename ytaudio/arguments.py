"""
Command-line construction for the external tools.

Everything here is pure: given the same inputs the same ToolInvocation comes
back, and nothing touches the filesystem or the network.

yt-dlp argument layout (positional URL always last):
  -v --no-cache-dir --rm-cache-dir --restrict-filenames --force-ipv4
  --geo-bypass --no-playlist -x --audio-format FMT -o TEMPLATE
  [--extractor-args HINT] -f bestaudio/best [--user-agent UA]
  [hardened: --add-header ... --retries ... --fragment-retries ...
             --retry-sleep ... --extractor-retries ...]
  [--cookies PATH] URL
"""

from pathlib import Path
from typing import List, Optional, Union

from .config import DownloadProfile, Settings
from .models import AudioFormat, ToolInvocation

AUDIO_FORMAT_SELECTOR = "bestaudio/best"

# Browser fingerprint used by the hardened profile when no override is configured
DEFAULT_BROWSER_USER_AGENT = (
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) '
    'AppleWebKit/537.36 (KHTML, like Gecko) '
    'Chrome/120.0.0.0 Safari/537.36'
)

HARDENED_HEADERS = {
    'Accept-Language': 'en-US,en;q=0.9',
    'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
    'DNT': '1',
}

HARDENED_RETRIES = 10
HARDENED_FRAGMENT_RETRIES = 10
HARDENED_RETRY_SLEEP = "fragment:exp=1:20"
HARDENED_EXTRACTOR_RETRIES = 3


def _base_flags() -> List[str]:
    return [
        '-v',
        '--no-cache-dir',
        '--rm-cache-dir',
        '--restrict-filenames',
        '--force-ipv4',
        '--geo-bypass',
        '--no-playlist',
    ]


def _profile_flags(settings: Settings) -> List[str]:
    """Header spoofing and retry/backoff flags for the configured profile."""
    args: List[str] = []
    user_agent = settings.user_agent
    if user_agent is None and settings.profile is DownloadProfile.HARDENED:
        user_agent = DEFAULT_BROWSER_USER_AGENT
    if user_agent:
        args += ['--user-agent', user_agent]

    if settings.profile is DownloadProfile.HARDENED:
        for name, value in HARDENED_HEADERS.items():
            args += ['--add-header', f'{name}:{value}']
        args += [
            '--retries', str(HARDENED_RETRIES),
            '--fragment-retries', str(HARDENED_FRAGMENT_RETRIES),
            '--retry-sleep', HARDENED_RETRY_SLEEP,
            '--extractor-retries', str(HARDENED_EXTRACTOR_RETRIES),
        ]
    return args


def build_ytdlp_invocation(
    url: str,
    audio_format: AudioFormat,
    output_template: Union[str, Path],
    settings: Settings,
    credential_path: Optional[Path] = None,
) -> ToolInvocation:
    """Build the yt-dlp command that extracts `url` as `audio_format` audio."""
    args = _base_flags()
    args += ['-x', '--audio-format', audio_format.value]
    args += ['-o', str(output_template)]
    if settings.extractor_args:
        args += ['--extractor-args', settings.extractor_args]
    args += ['-f', AUDIO_FORMAT_SELECTOR]
    args += _profile_flags(settings)
    if credential_path:
        args += ['--cookies', str(credential_path)]
    args.append(url)

    return ToolInvocation(command=settings.ytdlp_bin, args=args, credential_path=credential_path)


def build_legacy_download_invocation(
    url: str,
    output_template: Union[str, Path],
    settings: Settings,
    credential_path: Optional[Path] = None,
) -> ToolInvocation:
    """yt-dlp command that fetches the best audio stream as-is, without post-processing."""
    args = ['--no-playlist', '--restrict-filenames', '-f', 'bestaudio', '-o', str(output_template)]
    args += _profile_flags(settings)
    if credential_path:
        args += ['--cookies', str(credential_path)]
    args.append(url)

    return ToolInvocation(command=settings.ytdlp_bin, args=args, credential_path=credential_path)


def build_ffmpeg_invocation(source: Path, destination: Path, settings: Settings) -> ToolInvocation:
    """ffmpeg command that transcodes `source` to mp3 at `destination`, dropping video."""
    return ToolInvocation(
        command=settings.ffmpeg_bin,
        args=[
            '-hide_banner', '-nostdin', '-y',
            '-i', str(source),
            '-vn',
            '-codec:a', 'libmp3lame',
            '-q:a', '2',
            str(destination),
        ],
    )


def build_version_invocation(command: str, flag: str) -> ToolInvocation:
    return ToolInvocation(command=command, args=[flag])
