"""
HTTP boundary: multipart upload in, processed video (or a JSON error) out.
"""

import asyncio
import logging
import re
from pathlib import Path

import uvicorn
from fastapi import FastAPI, File, Form, UploadFile
from fastapi.responses import JSONResponse, Response

from .assets import AssetManager
from .broll import BrollResolver, ClipFetcher
from .collaborators import OpenAI, OpenAIKeywordExtractor, PexelsClipFinder
from .config import Settings, load_settings, setup_logging
from .encoder import EncodeOrchestrator
from .errors import InvalidUpload
from .fonts import FontRegistry, default_font_registry
from .models import Failure
from .pipeline import PipelineRequest, RequestPipeline, describe_failure

logger = logging.getLogger("captionburn")

ALLOWED_CONTENT_TYPES = {
    "video/mp4",
    "video/webm",
    "video/avi",
    "video/mov",
    "video/quicktime",
    "video/x-msvideo",
    "video/mpeg",
    "video/mpg",
    "video/x-flv",
    "video/wmv",
    "video/3gpp",
    "application/octet-stream",
}

_UNSAFE_NAME_RE = re.compile(r"[^A-Za-z0-9._ -]")


def format_file_size(size: int) -> str:
    """Human-readable byte count."""
    value = float(size)
    for unit in ("Bytes", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{value:.0f} {unit}" if unit == "Bytes" else f"{value:.2f} {unit}"
        value /= 1024
    return f"{size} Bytes"


def download_name(filename: str | None) -> str:
    """Filename for Content-Disposition derived from the upload name."""
    name = Path((filename or "").replace("\\", "/")).name
    name = _UNSAFE_NAME_RE.sub("_", name).strip(" .")
    return f"processed-{name or 'video.mp4'}"


def error_response(status: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status)


async def read_upload(video: UploadFile, max_bytes: int) -> bytes:
    """Read an upload after checking its type and size; raises InvalidUpload."""
    if video.content_type and video.content_type not in ALLOWED_CONTENT_TYPES:
        raise InvalidUpload(
            "Unsupported file type. Please use MP4, WebM, AVI, MOV, or other supported video formats."
        )
    too_large = InvalidUpload(f"File too large. Maximum size is {format_file_size(max_bytes)}.")
    if video.size is not None and video.size > max_bytes:
        raise too_large
    data = await video.read(max_bytes + 1)
    if not data:
        raise InvalidUpload("Uploaded video is empty")
    if len(data) > max_bytes:
        raise too_large
    return data


def build_resolver(settings: Settings) -> BrollResolver | None:
    """B-roll collaborators from settings; None when their keys are missing."""
    if not settings.openai_api_key or not settings.pexels_api_key:
        logger.info("B-roll disabled (OPENAI_API_KEY and PEXELS_API_KEY are both required)")
        return None
    if OpenAI is None:
        logger.warning("B-roll disabled: openai package not installed")
        return None
    fetcher = ClipFetcher(
        attempts=settings.fetch_attempts,
        timeout=settings.fetch_timeout,
        backoff=settings.fetch_backoff,
        deadline=settings.fetch_deadline,
    )
    return BrollResolver(
        extract_keywords=OpenAIKeywordExtractor(
            OpenAI(api_key=settings.openai_api_key, timeout=settings.fetch_timeout),
            model=settings.keyword_model,
        ),
        find_clip=PexelsClipFinder(settings.pexels_api_key, timeout=settings.fetch_timeout),
        fetcher=fetcher,
        char_budget=settings.keyword_char_budget,
    )


def create_app(
    settings: Settings | None = None,
    *,
    fonts: FontRegistry | None = None,
    encoder: EncodeOrchestrator | None = None,
    resolver: BrollResolver | None = None,
) -> FastAPI:
    """Build the FastAPI app. Collaborators default to ones derived from ``settings``."""
    settings = settings or load_settings()
    setup_logging(level=settings.log_level)

    assets = AssetManager(settings.work_dir)
    fonts = fonts or default_font_registry(settings.fonts_dir, settings.default_font)
    encoder = encoder or EncodeOrchestrator(
        settings.ffmpeg_binary,
        timeout=settings.encode_timeout,
        max_concurrent=settings.max_concurrent_encodes,
    )
    if resolver is None:
        resolver = build_resolver(settings)

    app = FastAPI(title="captionburn")
    app.state.settings = settings

    @app.post("/api/process")
    async def process_video(
        video: UploadFile | None = File(None),
        srtContent: str | None = Form(None),
        fontName: str | None = Form(None),
        addBroll: str | None = Form(None),
    ):
        if video is None:
            return error_response(400, "No file uploaded")
        try:
            data = await read_upload(video, settings.max_upload_bytes)
        except InvalidUpload as e:
            return error_response(400, str(e))

        request = PipelineRequest(
            video=data,
            filename=video.filename or "video.mp4",
            srt_content=srtContent,
            font_name=fontName,
            add_broll=addBroll == "true",
        )
        pipeline = RequestPipeline(assets, fonts, encoder, resolver)
        loop = asyncio.get_running_loop()
        try:
            # The worker thread releases the request's assets even if the client disconnects.
            outcome = await loop.run_in_executor(None, pipeline.run, request)
        except Exception:
            logger.exception("[%s] unexpected pipeline error", request.request_id)
            return error_response(500, "Server error: video processing failed unexpectedly")

        if isinstance(outcome, Failure):
            return error_response(500, describe_failure(outcome))
        return Response(
            content=outcome.data,
            media_type="video/mp4",
            headers={"Content-Disposition": f'attachment; filename="{download_name(video.filename)}"'},
        )

    @app.get("/api/process")
    async def describe_endpoint():
        return {
            "message": "Video processing API endpoint",
            "methods": ["POST"],
            "description": "Upload a video to burn in subtitles and optionally insert stock B-roll",
        }

    @app.get("/health")
    async def health():
        return {"ok": True}

    return app


def serve(host: str = "0.0.0.0", port: int = 8000, settings: Settings | None = None) -> None:
    uvicorn.run(create_app(settings), host=host, port=port)


if __name__ == "__main__":
    serve()
