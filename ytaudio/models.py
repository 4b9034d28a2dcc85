"""
Pydantic models for request/response schemas
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List
from pathlib import Path
from datetime import datetime
from enum import Enum


class ErrorCode(str, Enum):
    """Error code classifications"""
    VALIDATION_ERROR = "VALIDATION_ERROR"
    LAUNCH_ERROR = "LAUNCH_ERROR"
    PROCESS_ERROR = "PROCESS_ERROR"
    PROCESS_TIMEOUT = "PROCESS_TIMEOUT"
    NO_ARTIFACT = "NO_ARTIFACT"
    UPLOAD_ERROR = "UPLOAD_ERROR"
    SERVER_ERROR = "SERVER_ERROR"


class AudioFormat(str, Enum):
    """Audio formats yt-dlp is asked to extract"""
    MP3 = "mp3"
    WAV = "wav"

    @property
    def media_type(self) -> str:
        return "audio/mpeg" if self is AudioFormat.MP3 else "audio/wav"

    @property
    def extension(self) -> str:
        return f".{self.value}"


class ExtractionRequest(BaseModel):
    """Parsed query of GET /extract"""
    url: str = Field(..., description="Remote video URL")
    format: AudioFormat = Field(AudioFormat.MP3, description="Output audio format: mp3, wav")
    upload: bool = Field(False, description="Upload to object storage and return a signed URL")
    debug: bool = Field(False, description="Include truncated tool diagnostics in error bodies")


class ToolInvocation(BaseModel, frozen=True):
    """A concrete external tool command line"""
    command: str
    args: List[str]
    credential_path: Optional[Path] = None

    @property
    def argv(self) -> List[str]:
        return [self.command, *self.args]


class ProcessResult(BaseModel):
    """Captured outcome of a finished subprocess (streams are trailing windows)"""
    exit_code: int
    stdout: str = ""
    stderr: str = ""


class UploadResult(BaseModel):
    """Uploaded artifact location"""
    bucket: str
    object: str
    url: str
    expires_at: datetime


class UploadResponse(BaseModel):
    """Response body of GET /extract?upload=true"""
    bucket: str
    object: str
    url: str


class ErrorResponse(BaseModel):
    """Error body returned for every failed request"""
    error: str
    code: ErrorCode = ErrorCode.SERVER_ERROR
    detail: Optional[str] = None


class DoctorResponse(BaseModel):
    """Response schema for /doctor"""
    ytdlp_version: str
    ffmpeg_version: str
    writable_tmp: bool
    disk_usage_percent: Optional[float] = None


class LegacyExtractRequest(BaseModel):
    """Request schema for POST /extract-audio"""
    videoId: str = Field(..., description="YouTube video id")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"videoId": "dQw4w9WgXcQ"}
        }
    )


class LegacyExtractResponse(BaseModel):
    """Response schema for POST /extract-audio"""
    audioUrl: str
    videoId: str
