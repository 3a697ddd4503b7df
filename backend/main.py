"""
Brand Safety Inspector - Backend API
Copyright (c) 2026 beautifulplanet
Licensed under MIT License

FastAPI server for video upload, brand safety analysis and report export.

Video understanding provided by Memories.ai
https://memories.ai
"""

import os
import logging
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

import re
from fastapi import FastAPI, HTTPException, Request, UploadFile, File
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel, field_validator, model_validator, Field
from typing import Optional
import uvicorn

from analyzer import (
    BrandSafetyAnalyzer,
    AnalysisResult,
    DEDUP_WINDOW_SECONDS,
    TRANSCRIPT_POLL_INTERVAL,
    TRANSCRIPT_MAX_ATTEMPTS,
)
from memories_client import MemoriesClient, MEMORIES_API_BASE, DEFAULT_UNIQUE_ID
from report_export import export_report, export_filename, EXPORT_FORMATS, EXPORT_MEDIA_TYPES
from risk_categories import RISK_CATEGORIES, EVENT_SOURCES, RiskEvent, calculate_risk_score, find_category
from vision_analyzer import SIMILARITY_THRESHOLD

API_VERSION = "1.0.0"

# Security: Memories.ai video numbers are short alphanumeric ids
VIDEO_NO_PATTERN = re.compile(r'^[A-Za-z0-9_-]{1,64}$')

app = FastAPI(
    title="Brand Safety Inspector API",
    description="Detects brand-unsafe moments in videos and scores their overall risk",
    version=API_VERSION
)

# Security headers middleware
@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    """Attach security headers (X-Content-Type-Options, X-Frame-Options, etc.)."""
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response

# CORS for the dashboard frontend (set ALLOWED_ORIGINS in .env, comma separated)
_allowed_origins = os.environ.get("ALLOWED_ORIGINS", "").strip()
if _allowed_origins:
    ALLOWED_ORIGINS = [o.strip() for o in _allowed_origins.split(",") if o.strip()]
    logger.info(f"CORS: Locked to {len(ALLOWED_ORIGINS)} origin(s)")
else:
    ALLOWED_ORIGINS = ["http://localhost:3000", "http://127.0.0.1:3000"]
    logger.warning("CORS: No ALLOWED_ORIGINS set - allowing localhost:3000 only (dev mode).")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type"],
)


def _env_float(name: str, default: float) -> float:
    """Read a numeric setting, falling back to the default on bad input."""
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Invalid {name}={raw!r}, using default {default}")
        return default


def get_memories_api_key() -> str:
    """Read MEMORIES_API_KEY per request. Missing key is a configuration error."""
    api_key = os.environ.get("MEMORIES_API_KEY", "").strip()
    if not api_key:
        logger.error("MEMORIES_API_KEY not set")
        raise HTTPException(status_code=500, detail="API key not configured")
    return api_key


def create_client(api_key: str) -> MemoriesClient:
    return MemoriesClient(
        api_key=api_key,
        base_url=os.environ.get("MEMORIES_API_BASE", MEMORIES_API_BASE),
        unique_id=os.environ.get("MEMORIES_UNIQUE_ID", DEFAULT_UNIQUE_ID),
    )


def create_analyzer(client: MemoriesClient) -> BrandSafetyAnalyzer:
    return BrandSafetyAnalyzer(
        transcript_source=client,
        search_source=client,
        poll_interval=_env_float("TRANSCRIPT_POLL_INTERVAL", TRANSCRIPT_POLL_INTERVAL),
        max_poll_attempts=int(_env_float("TRANSCRIPT_MAX_ATTEMPTS", TRANSCRIPT_MAX_ATTEMPTS)),
        similarity_threshold=_env_float("RISK_SIMILARITY_THRESHOLD", SIMILARITY_THRESHOLD),
        dedup_window=_env_float("RISK_DEDUP_WINDOW_SECONDS", DEDUP_WINDOW_SECONDS),
    )


def _failure(action: str, error: Exception) -> HTTPException:
    logger.error(f"{action} error: {error}")
    return HTTPException(
        status_code=500,
        detail={"error": f"{action} failed", "details": str(error) or type(error).__name__},
    )


def _validate_video_no(v: str) -> str:
    if not v or not VIDEO_NO_PATTERN.match(v):
        raise ValueError('Invalid video number format (alphanumeric with hyphens/underscores, max 64 chars)')
    return v


# Request/Response models
class AnalyzeRequest(BaseModel):
    video_no: str

    @field_validator('video_no')
    @classmethod
    def validate_video_no_format(cls, v):
        return _validate_video_no(v)


class ExportEvent(BaseModel):
    id: str = ""
    category: str  # category id (a full category object is accepted too)
    start_time: float = Field(ge=0)
    end_time: float = Field(ge=0)
    confidence: float = Field(ge=0, le=1)
    evidence: str = Field("", max_length=1000)
    source: str = "visual"

    @field_validator('category', mode='before')
    @classmethod
    def category_id(cls, v):
        if isinstance(v, dict):
            v = v.get("id", "")
        if not isinstance(v, str) or find_category(v) is None:
            raise ValueError(f"Unknown risk category: {v!r}")
        return v

    @field_validator('source')
    @classmethod
    def known_source(cls, v):
        if v not in EVENT_SOURCES:
            raise ValueError(f"Unknown event source: {v!r}")
        return v

    @model_validator(mode='after')
    def end_after_start(self):
        if self.end_time < self.start_time:
            raise ValueError("end_time must not be before start_time")
        return self


class ExportRequest(BaseModel):
    video_no: str
    format: str
    events: list[ExportEvent] = Field(default_factory=list, max_length=5000)
    risk_score: Optional[int] = Field(None, ge=0, le=100)
    transcript_available: bool = True

    @field_validator('video_no')
    @classmethod
    def validate_video_no_format(cls, v):
        return _validate_video_no(v)

    def to_result(self) -> AnalysisResult:
        events = tuple(
            RiskEvent(
                id=e.id or f"{e.source}-{i}",
                video_id=self.video_no,
                category=find_category(e.category),
                start_time=e.start_time,
                end_time=e.end_time,
                confidence=e.confidence,
                evidence=e.evidence,
                source=e.source,
            )
            for i, e in enumerate(self.events)
        )
        risk_score = self.risk_score if self.risk_score is not None else calculate_risk_score(events)
        return AnalysisResult(
            video_id=self.video_no,
            events=events,
            risk_score=risk_score,
            transcript_available=self.transcript_available,
        )


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "version": API_VERSION}


@app.get("/categories")
async def get_categories():
    """Get all risk categories"""
    return [c.to_dict() for c in RISK_CATEGORIES]


@app.post("/upload")
async def upload_video(file: UploadFile = File(...)):
    """Upload a video to Memories.ai for indexing"""
    api_key = get_memories_api_key()
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="No file provided")

    try:
        async with create_client(api_key) as client:
            upload = await client.upload_video(
                file.filename or "video.mp4",
                content,
                file.content_type or "video/mp4",
            )
        logger.info(f"Uploaded {file.filename} as {upload.video_no}")
        return {"success": True, "data": {"video_no": upload.video_no, "upload_time": upload.upload_time}}
    except Exception as e:
        raise _failure("Upload", e)


@app.get("/status")
async def video_status(video_no: Optional[str] = None):
    """Check indexing status of uploaded videos"""
    api_key = get_memories_api_key()
    if video_no is not None and not VIDEO_NO_PATTERN.match(video_no):
        raise HTTPException(status_code=400, detail="Invalid video number format")

    try:
        async with create_client(api_key) as client:
            videos = await client.list_videos(video_no)
        return {
            "success": True,
            "data": {
                "videos": [
                    {
                        "video_no": v.video_no,
                        "status": v.status,
                        "duration": v.duration,
                        "upload_time": v.upload_time,
                    }
                    for v in videos
                ]
            },
        }
    except Exception as e:
        raise _failure("Status check", e)


@app.post("/analyze")
async def analyze_video(request: AnalyzeRequest):
    """
    Analyze an uploaded video for brand safety risks.

    This endpoint:
    1. Polls the video transcript (continues without it on timeout)
    2. Scans the transcript for profanity
    3. Runs visual searches for every risk category
    4. Deduplicates events and computes the risk score
    """
    api_key = get_memories_api_key()
    try:
        async with create_client(api_key) as client:
            result = await create_analyzer(client).analyze(request.video_no)
        return {"success": True, "data": result.to_dict()}
    except Exception as e:
        raise _failure("Analysis", e)


@app.post("/export")
async def export_analysis(request: ExportRequest):
    """Export analysis events as JSON, CSV or SRT subtitle markers"""
    fmt = request.format.lower()
    if fmt not in EXPORT_FORMATS:
        raise HTTPException(status_code=400, detail=f"Unsupported format. Use: {', '.join(EXPORT_FORMATS)}")

    try:
        report = export_report(request.to_result(), fmt)
    except Exception as e:
        raise _failure("Export", e)

    if fmt == "json":
        return {"success": True, "data": report}

    return Response(
        content=report,
        media_type=EXPORT_MEDIA_TYPES[fmt],
        headers={"Content-Disposition": f'attachment; filename="{export_filename(request.video_no, fmt)}"'},
    )


if __name__ == "__main__":
    logger.info("Brand Safety Inspector API")
    logger.info("Starting server at http://127.0.0.1:8000")
    logger.info("API docs: http://127.0.0.1:8000/docs")
    uvicorn.run(app, host="127.0.0.1", port=8000)
