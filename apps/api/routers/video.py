"""
Video analysis router: submit a YouTube URL or an uploaded file, poll status,
and request derived summaries/flashcards.
"""

import logging
import os
import shutil
import uuid
from pathlib import Path
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from pydantic import BaseModel, Field

from config import settings
from media.errors import InvalidVideoUrlError
from media.models import Flashcard, Topic
from media.video import canonical_watch_url, extract_video_id
from models.video_analysis import VideoAnalysis
from routers.rate_limit import rate_limit
from services import analysis_store
from services.analysis import (
    AnalysisNotFoundError,
    AnalysisNotReadyError,
    TopicNotFoundError,
    generate_analysis_flashcards,
    generate_summary,
    job_work_dir,
    save_analysis_flashcards,
    save_analysis_notes,
)
from services.analysis_queue import launch_analysis
from services.notes_store import NotesStoreUnavailableError

router = APIRouter()
logger = logging.getLogger(__name__)

UPLOAD_CHUNK_BYTES = 1024 * 1024
MIME_BY_EXTENSION = {
    ".mp4": "video/mp4",
    ".mov": "video/quicktime",
    ".m4v": "video/x-m4v",
    ".webm": "video/webm",
    ".avi": "video/x-msvideo",
    ".mkv": "video/x-matroska",
    ".mp3": "audio/mpeg",
    ".m4a": "audio/mp4",
    ".wav": "audio/wav",
}
ALLOWED_MIME_TYPES = set(MIME_BY_EXTENSION.values()) | {"audio/x-wav", "audio/webm"}
GENERIC_MIME_TYPES = {"", "application/octet-stream"}


class AnalyzeUrlRequest(BaseModel):
    url: str = Field(min_length=1, max_length=2000)
    owner_ref: str = Field(min_length=1, max_length=255)


class FlashcardResponse(BaseModel):
    front: str
    back: str


class TopicResponse(BaseModel):
    id: str
    title: str
    start_time: float
    end_time: float
    content: str
    summary: Optional[str] = None
    flashcards: Optional[List[FlashcardResponse]] = None


class AnalysisResponse(BaseModel):
    analysis_id: str
    owner_ref: str
    title: str
    source: str
    source_url: Optional[str] = None
    status: str
    progress: int
    transcript: str = ""
    transcript_source: Optional[str] = None
    duration_seconds: Optional[int] = None
    topics: List[TopicResponse] = []
    summary: Optional[str] = None
    flashcards: Optional[List[FlashcardResponse]] = None
    error: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    completed_at: Optional[str] = None


class AnalysisListItem(BaseModel):
    analysis_id: str
    title: str
    source: str
    status: str
    progress: int
    created_at: Optional[str] = None


class GenerateSummaryRequest(BaseModel):
    analysis_id: str
    scope: Literal["overall", "topic"] = "overall"
    topic_id: Optional[str] = None


class GenerateFlashcardsRequest(BaseModel):
    analysis_id: str
    topic_id: Optional[str] = None
    count: int = Field(default=5, ge=1, le=20)


class MaterializeRequest(BaseModel):
    analysis_id: str


def _serialize_topics(rows) -> List[TopicResponse]:
    topics: List[Topic] = analysis_store.topics_from_json(rows)
    return [TopicResponse(**topic.model_dump()) for topic in topics]


def _serialize_flashcards(rows) -> Optional[List[FlashcardResponse]]:
    if not isinstance(rows, list):
        return None
    return [FlashcardResponse(**Flashcard.model_validate(row).model_dump()) for row in rows if isinstance(row, dict)]


def _serialize_analysis(analysis: VideoAnalysis) -> AnalysisResponse:
    return AnalysisResponse(
        analysis_id=analysis.id,
        owner_ref=analysis.owner_ref,
        title=analysis.title,
        source=analysis.source,
        source_url=analysis.source_url or None,
        status=analysis.status,
        progress=int(analysis.progress or 0),
        transcript=analysis.transcript or "",
        transcript_source=analysis.transcript_source,
        duration_seconds=analysis.duration_seconds,
        topics=_serialize_topics(analysis.topics),
        summary=analysis.summary,
        flashcards=_serialize_flashcards(analysis.flashcards),
        error=analysis.error,
        created_at=analysis.created_at.isoformat() if analysis.created_at else None,
        updated_at=analysis.updated_at.isoformat() if analysis.updated_at else None,
        completed_at=analysis.completed_at.isoformat() if analysis.completed_at else None,
    )


def _sanitize_filename(filename: str) -> str:
    base = os.path.basename(filename or "upload.mp4")
    safe = "".join(ch if ch.isalnum() or ch in ("-", "_", ".") else "_" for ch in base)
    return safe or "upload.mp4"


def _effective_mime(content_type: str, suffix: str) -> str:
    mime = (content_type or "").split(";", 1)[0].strip().lower()
    if mime in GENERIC_MIME_TYPES:
        return MIME_BY_EXTENSION.get(suffix, mime)
    return mime


async def _start(analysis: VideoAnalysis) -> VideoAnalysis:
    """Dispatch a freshly created analysis; a dispatch failure fails the job and returns 503."""
    try:
        launch_analysis(analysis.id)
    except Exception as exc:
        logger.error("Could not dispatch analysis %s: %s", analysis.id, exc)
        await analysis_store.mark_failed(analysis.id, f"queue unavailable: {exc}")
        shutil.rmtree(job_work_dir(analysis.id), ignore_errors=True)
        raise HTTPException(
            status_code=503,
            detail="Analysis queue unavailable. Check Redis/worker availability and retry.",
        ) from exc
    return analysis


@router.post("/analyze-url", response_model=AnalysisResponse)
async def analyze_url(
    request: AnalyzeUrlRequest,
    _rate_limit: None = Depends(rate_limit("video_analyze")),
):
    """Start analysis of a YouTube video; returns the initial processing snapshot."""
    try:
        video_id = extract_video_id(request.url)
    except InvalidVideoUrlError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    analysis = await analysis_store.create_analysis(
        analysis_id=str(uuid.uuid4()),
        owner_ref=request.owner_ref.strip(),
        title=f"YouTube video {video_id}",
        source="youtube",
        source_url=canonical_watch_url(video_id),
    )
    snapshot = _serialize_analysis(analysis)
    await _start(analysis)
    return snapshot


@router.post("/analyze-file", response_model=AnalysisResponse)
async def analyze_file(
    file: UploadFile = File(...),
    owner_ref: str = Form(..., min_length=1, max_length=255),
    _rate_limit: None = Depends(rate_limit("video_analyze")),
):
    """Start analysis of an uploaded video/audio file; the file is kept only until processing ends."""
    original_filename = _sanitize_filename(file.filename or "upload.mp4")
    suffix = Path(original_filename).suffix.lower()
    mime = _effective_mime(file.content_type or "", suffix)
    if mime not in ALLOWED_MIME_TYPES:
        await file.close()
        raise HTTPException(
            status_code=415,
            detail="Unsupported file type. Upload a video or audio file (mp4, mov, m4v, webm, avi, mkv, mp3, m4a, wav).",
        )

    analysis_id = str(uuid.uuid4())
    work_dir = job_work_dir(analysis_id)
    work_dir.mkdir(parents=True, exist_ok=True)
    destination = work_dir / f"upload{suffix or '.mp4'}"

    max_bytes = int(settings.MAX_UPLOAD_BYTES)
    total_size = 0
    try:
        with destination.open("wb") as out:
            while True:
                chunk = await file.read(UPLOAD_CHUNK_BYTES)
                if not chunk:
                    break
                total_size += len(chunk)
                if total_size > max_bytes:
                    raise HTTPException(
                        status_code=413,
                        detail=f"File too large. Max upload size is {max_bytes // (1024 * 1024)}MB.",
                    )
                out.write(chunk)
        if total_size == 0:
            raise HTTPException(status_code=422, detail="Uploaded file is empty.")
    except BaseException:
        shutil.rmtree(work_dir, ignore_errors=True)
        raise
    finally:
        await file.close()

    analysis = await analysis_store.create_analysis(
        analysis_id=analysis_id,
        owner_ref=owner_ref.strip(),
        title=Path(original_filename).stem or "Uploaded video",
        source="upload",
        source_url="",
        staged_media_path=str(destination),
    )
    snapshot = _serialize_analysis(analysis)
    await _start(analysis)
    return snapshot


@router.get("/analysis/{analysis_id}", response_model=AnalysisResponse)
async def get_analysis_status(analysis_id: str):
    """Point-in-time snapshot of an analysis; safe to poll."""
    analysis = await analysis_store.get_analysis(analysis_id)
    if not analysis:
        raise HTTPException(status_code=404, detail="Analysis not found")
    return _serialize_analysis(analysis)


@router.get("/analyses", response_model=List[AnalysisListItem])
async def list_analyses(
    owner_ref: str = Query(..., min_length=1),
    limit: int = Query(default=20, ge=1, le=100),
):
    """List recent analyses for an owner."""
    analyses = await analysis_store.list_analyses(owner_ref, limit)
    return [
        AnalysisListItem(
            analysis_id=analysis.id,
            title=analysis.title,
            source=analysis.source,
            status=analysis.status,
            progress=int(analysis.progress or 0),
            created_at=analysis.created_at.isoformat() if analysis.created_at else None,
        )
        for analysis in analyses
    ]


def _artifact_http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, (AnalysisNotFoundError, TopicNotFoundError)):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, AnalysisNotReadyError):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=503, detail=str(exc))


@router.post("/generate-summary")
async def generate_summary_endpoint(request: GenerateSummaryRequest):
    """Summarize one topic or the whole video and store the result."""
    try:
        summary = await generate_summary(request.analysis_id, request.scope, request.topic_id)
    except (AnalysisNotFoundError, TopicNotFoundError, AnalysisNotReadyError) as exc:
        raise _artifact_http_error(exc) from exc
    return {"analysis_id": request.analysis_id, "scope": request.scope, "topic_id": request.topic_id, "summary": summary}


@router.post("/generate-flashcards")
async def generate_flashcards_endpoint(request: GenerateFlashcardsRequest):
    """Generate flashcards for a topic (or the whole video) and store them."""
    try:
        cards = await generate_analysis_flashcards(request.analysis_id, request.topic_id, request.count)
    except (AnalysisNotFoundError, TopicNotFoundError, AnalysisNotReadyError) as exc:
        raise _artifact_http_error(exc) from exc
    return {
        "analysis_id": request.analysis_id,
        "topic_id": request.topic_id,
        "flashcards": [card.model_dump() for card in cards],
        "count": len(cards),
    }


@router.post("/save-notes")
async def save_notes_endpoint(request: MaterializeRequest):
    """Materialize topics as notes in the notes service."""
    try:
        created = await save_analysis_notes(request.analysis_id)
    except (AnalysisNotFoundError, AnalysisNotReadyError, NotesStoreUnavailableError) as exc:
        raise _artifact_http_error(exc) from exc
    return {"success": True, "notes_created": created}


@router.post("/save-flashcards")
async def save_flashcards_endpoint(request: MaterializeRequest):
    """Materialize topic flashcards as a flashcard set in the notes service."""
    try:
        created = await save_analysis_flashcards(request.analysis_id)
    except (AnalysisNotFoundError, AnalysisNotReadyError, NotesStoreUnavailableError) as exc:
        raise _artifact_http_error(exc) from exc
    return {"success": True, "flashcards_created": created}
