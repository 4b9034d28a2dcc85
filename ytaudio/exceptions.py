"""Custom exceptions for the extraction service."""

from typing import Optional

from .models import ErrorCode

# Max characters of tool output exposed in a debug error body
MAX_DETAIL_CHARS = 5000


class ExtractionError(Exception):
    """Base class for every failure the HTTP layer turns into a JSON error."""

    status_code: int = 500
    code: ErrorCode = ErrorCode.SERVER_ERROR

    def __init__(self, message: str, detail: Optional[str] = None):
        self.message = message
        self.detail = detail
        super().__init__(message)

    def truncated_detail(self, limit: int = MAX_DETAIL_CHARS) -> Optional[str]:
        if not self.detail:
            return None
        return self.detail[-limit:]


class ValidationError(ExtractionError):
    """Raised when a request parameter is missing or malformed."""

    status_code = 400
    code = ErrorCode.VALIDATION_ERROR


class LaunchError(ExtractionError):
    """Raised when an external tool cannot be started."""

    code = ErrorCode.LAUNCH_ERROR

    def __init__(self, command: str, cause: Optional[BaseException] = None):
        self.command = command
        self.cause = cause
        reason = f": {cause}" if cause else ""
        super().__init__(f"Failed to launch {command}{reason}")


class ProcessError(ExtractionError):
    """Raised when an external tool exits with a nonzero status."""

    code = ErrorCode.PROCESS_ERROR

    def __init__(self, command: str, exit_code: int, stdout: str = "", stderr: str = ""):
        self.command = command
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(f"{command} exited {exit_code}", detail=stderr or stdout)


class ProcessTimeoutError(ExtractionError):
    """Raised when an external tool outlives its deadline and is killed."""

    status_code = 504
    code = ErrorCode.PROCESS_TIMEOUT

    def __init__(self, command: str, timeout: float, stdout: str = "", stderr: str = ""):
        self.command = command
        self.timeout = timeout
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(f"{command} timed out after {timeout:.0f}s", detail=stderr or stdout)


class NoArtifactError(ExtractionError):
    """Raised when a finished tool left no output file with the expected extension."""

    code = ErrorCode.NO_ARTIFACT

    def __init__(self, directory: str, pattern: str):
        self.directory = directory
        self.pattern = pattern
        super().__init__(f"No output file produced by yt-dlp (expected {pattern})")


class UploadError(ExtractionError):
    """Raised when object storage rejects an upload. The local artifact is already gone."""

    code = ErrorCode.UPLOAD_ERROR

    def __init__(self, object_name: str, cause: Optional[BaseException] = None):
        self.object_name = object_name
        self.cause = cause
        reason = f": {cause}" if cause else ""
        super().__init__(f"Upload of '{object_name}' failed{reason}")
