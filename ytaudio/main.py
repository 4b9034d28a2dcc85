"""
FastAPI audio extraction service
Turns a remote video URL into an mp3/wav file using yt-dlp + ffmpeg
"""

import logging
from contextlib import asynccontextmanager
from functools import partial
from typing import Optional
from urllib.parse import urlparse

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.staticfiles import StaticFiles
import yt_dlp

from .config import Settings
from .delivery import stream_artifact, upload_artifact
from .exceptions import ExtractionError, ValidationError
from .models import (
    AudioFormat,
    DoctorResponse,
    ErrorCode,
    ErrorResponse,
    ExtractionRequest,
    LegacyExtractRequest,
    LegacyExtractResponse,
    UploadResponse,
)
from .pipeline import LEGACY_URL_PREFIX, ExtractionPipeline
from .storage import ScratchStorage
from .uploader import ArtifactUploader, build_uploader

# Logging configuration
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# App metadata
VERSION = "1.0.0"

router = APIRouter()


# ============================================================================
# DEPENDENCIES
# ============================================================================


def get_pipeline(request: Request) -> ExtractionPipeline:
    return request.app.state.pipeline


def get_uploader(request: Request) -> Optional[ArtifactUploader]:
    return request.app.state.uploader


def parse_extraction_request(
    url: Optional[str],
    audio_format: Optional[str],
    upload: bool,
    debug: bool,
) -> ExtractionRequest:
    """Validate raw /extract query values."""
    if not url:
        raise ValidationError("Missing ?url")

    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError("url must be an absolute http(s) URL")

    try:
        fmt = AudioFormat((audio_format or AudioFormat.MP3.value).lower())
    except ValueError:
        raise ValidationError(
            f"Unsupported format '{audio_format}' (expected one of: "
            f"{', '.join(f.value for f in AudioFormat)})"
        )

    return ExtractionRequest(url=url, format=fmt, upload=upload, debug=debug)


# ============================================================================
# API ENDPOINTS
# ============================================================================


@router.get("/")
async def root():
    """Root endpoint with service info"""
    return {
        "service": "yt-dlp Audio Extraction Service",
        "version": VERSION,
        "status": "running",
        "endpoints": {
            "health": "/health",
            "doctor": "/doctor",
            "extract": "/extract?url=<video>&format=mp3",
            "extract_audio": "/extract-audio",
        },
        "docs": "/docs",
    }


@router.get("/health", response_class=PlainTextResponse)
async def health_check():
    """Liveness probe"""
    return "ok"


@router.get("/doctor", response_model=DoctorResponse)
async def doctor(pipeline: ExtractionPipeline = Depends(get_pipeline)):
    """
    Diagnostics: yt-dlp and ffmpeg versions, scratch directory writability

    A tool that fails to run turns into a 500 with its stderr tail.
    """
    try:
        return await pipeline.doctor()
    except ExtractionError as e:
        logger.error(f"❌ Doctor check failed: {e.message}")
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error=e.message,
                code=e.code,
                detail=e.truncated_detail(2000),
            ).model_dump(mode='json', exclude_none=True),
        )


@router.get(
    "/extract",
    responses={
        200: {"content": {"audio/mpeg": {}, "audio/wav": {}, "application/json": {}}},
        400: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
async def extract(
    request: Request,
    url: Optional[str] = None,
    audio_format: Optional[str] = Query(None, alias="format"),
    upload: bool = False,
    debug: bool = False,
    pipeline: ExtractionPipeline = Depends(get_pipeline),
    uploader: Optional[ArtifactUploader] = Depends(get_uploader),
):
    """
    Extract audio from a remote video

    **Flow:**
    1. Validate query parameters
    2. Run yt-dlp into a per-request scratch directory
    3. Stream the file back as an attachment, or upload it and return a
       15-minute signed URL when upload=true
    4. Delete the local file and cookie file
    """
    request.state.debug = debug
    extraction = parse_extraction_request(url, audio_format, upload, debug)

    if extraction.upload and uploader is None:
        raise ValidationError("Upload requested but no BUCKET is configured")

    job, artifact = await pipeline.extract(extraction)
    cleanup = partial(pipeline.storage.release, job, artifact)

    if extraction.upload:
        result = await upload_artifact(uploader, artifact, cleanup)
        logger.info(f"✅ Signed URL issued for {result.object} (expires: {result.expires_at.isoformat()})")
        return JSONResponse(
            content=UploadResponse(
                bucket=result.bucket,
                object=result.object,
                url=result.url,
            ).model_dump()
        )

    return stream_artifact(artifact, extraction.format, cleanup)


@router.post("/extract-audio", response_model=LegacyExtractResponse)
async def extract_audio(
    body: LegacyExtractRequest,
    pipeline: ExtractionPipeline = Depends(get_pipeline),
):
    """
    Legacy variant: transcode a YouTube video to mp3 and serve it from /downloads
    """
    try:
        return await pipeline.extract_legacy(body.videoId)
    except ValidationError:
        raise
    except ExtractionError as e:
        logger.error(f"❌ Audio extraction failed for {body.videoId}: {e.message}")
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="Audio extraction failed",
                code=e.code,
                detail=e.message,
            ).model_dump(mode='json'),
        )


# ============================================================================
# ERROR HANDLERS
# ============================================================================


async def extraction_error_handler(request: Request, exc: ExtractionError):
    """Serialize pipeline failures; tool output only when ?debug was set"""
    debug = getattr(request.state, "debug", False)
    if exc.status_code >= 500:
        logger.error(f"❌ {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=exc.message,
            code=exc.code,
            detail=exc.truncated_detail() if debug else None,
        ).model_dump(mode='json', exclude_none=True),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed query/body values become 400s in the service's error shape"""
    fields = ", ".join(".".join(str(p) for p in err["loc"][1:]) for err in exc.errors())
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            error=f"Invalid request parameter: {fields}" if fields else "Invalid request",
            code=ErrorCode.VALIDATION_ERROR,
        ).model_dump(mode='json', exclude_none=True),
    )


async def not_found_handler(request, exc):
    """Custom 404 handler"""
    return JSONResponse(
        status_code=404,
        content={"error": "Endpoint not found. Try /health, /doctor, or /extract?url=<video>&format=mp3"}
    )


async def server_error_handler(request, exc):
    """Custom 500 handler"""
    logger.exception("Internal server error")
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error="Internal server error",
            code=ErrorCode.SERVER_ERROR,
        ).model_dump(mode='json', exclude_none=True),
    )


# ============================================================================
# APP FACTORY
# ============================================================================


def create_app(
    settings: Optional[Settings] = None,
    uploader: Optional[ArtifactUploader] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Configuration; read from the environment when omitted.
        uploader: Upload backend; derived from settings.bucket when omitted.
    """
    settings = settings or Settings.from_env()
    storage = ScratchStorage(
        settings.scratch_dir,
        file_ttl=settings.file_ttl,
        cleanup_interval=settings.cleanup_interval,
    )
    if uploader is None:
        uploader = build_uploader(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifecycle manager for startup/shutdown tasks"""
        # Startup
        logger.info("🚀 Starting yt-dlp audio extraction service...")
        logger.info(f"Version: {VERSION}")
        logger.info(f"yt-dlp version: {yt_dlp.version.__version__}")
        logger.info(f"🍪 Cookies: {'configured' if settings.cookies else 'NOT configured (bot detection risk)'}")
        logger.info(f"🛡️ Download profile: {settings.profile.value}")
        logger.info(f"☁️ Upload mode: {'enabled' if uploader else 'disabled'}")

        await storage.start_cleanup_scheduler()

        yield

        # Shutdown
        logger.info("Shutting down audio extraction service...")
        await storage.stop_cleanup_scheduler()

    app = FastAPI(
        title="YT-DLP Audio Extraction Service",
        description="Extracts audio from remote videos with yt-dlp and ffmpeg",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.pipeline = ExtractionPipeline(settings, storage)
    app.state.uploader = uploader

    # CORS configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    app.include_router(router)

    settings.static_dir.mkdir(parents=True, exist_ok=True)
    app.mount(LEGACY_URL_PREFIX, StaticFiles(directory=settings.static_dir), name="downloads")

    app.add_exception_handler(ExtractionError, extraction_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(404, not_found_handler)
    app.add_exception_handler(500, server_error_handler)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=app.state.settings.port)
