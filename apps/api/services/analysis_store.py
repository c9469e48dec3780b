"""Persistence helpers for video analysis records."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.future import select

from database import async_session_maker
from media.models import Flashcard, Topic
from models.video_analysis import VideoAnalysis

logger = logging.getLogger(__name__)

STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_FAILED)
MAX_ERROR_CHARS = 1000


def topics_to_json(topics: List[Topic]) -> List[Dict[str, Any]]:
    return [topic.model_dump() for topic in topics]


def topics_from_json(rows: Any) -> List[Topic]:
    if not isinstance(rows, list):
        return []
    return [Topic.model_validate(row) for row in rows if isinstance(row, dict)]


def flashcards_to_json(cards: List[Flashcard]) -> List[Dict[str, str]]:
    return [card.model_dump() for card in cards]


async def create_analysis(
    *,
    analysis_id: str,
    owner_ref: str,
    title: str,
    source: str,
    source_url: str = "",
    staged_media_path: Optional[str] = None,
) -> VideoAnalysis:
    now = datetime.now(timezone.utc)
    async with async_session_maker() as db:
        analysis = VideoAnalysis(
            id=analysis_id,
            owner_ref=owner_ref,
            title=title,
            source=source,
            source_url=source_url,
            status=STATUS_PROCESSING,
            progress=0,
            transcript="",
            topics=[],
            staged_media_path=staged_media_path,
            created_at=now,
            updated_at=now,
        )
        db.add(analysis)
        await db.commit()
        await db.refresh(analysis)
        return analysis


async def get_analysis(analysis_id: str) -> Optional[VideoAnalysis]:
    async with async_session_maker() as db:
        result = await db.execute(select(VideoAnalysis).where(VideoAnalysis.id == analysis_id))
        return result.scalar_one_or_none()


async def update_analysis(
    analysis_id: str,
    *,
    progress: Optional[int] = None,
    title: Optional[str] = None,
    transcript: Optional[str] = None,
    transcript_source: Optional[str] = None,
    duration_seconds: Optional[int] = None,
    topics: Optional[List[Topic]] = None,
    summary: Optional[str] = None,
) -> bool:
    """
    Persist a stage result for a job that is still processing.
    Returns False when the job is missing or already terminal; progress is never lowered.
    """
    async with async_session_maker() as db:
        result = await db.execute(select(VideoAnalysis).where(VideoAnalysis.id == analysis_id))
        analysis = result.scalar_one_or_none()
        if not analysis:
            return False
        if analysis.status in TERMINAL_STATUSES:
            logger.warning("Ignoring update to terminal analysis %s (%s)", analysis_id, analysis.status)
            return False
        if progress is not None:
            analysis.progress = max(int(analysis.progress or 0), max(0, min(int(progress), 100)))
        if title:
            analysis.title = title[:255]
        if transcript is not None:
            analysis.transcript = transcript
        if transcript_source is not None:
            analysis.transcript_source = transcript_source
        if duration_seconds is not None:
            analysis.duration_seconds = duration_seconds
        if topics is not None:
            analysis.topics = topics_to_json(topics)
        if summary is not None:
            analysis.summary = summary
        analysis.updated_at = datetime.now(timezone.utc)
        await db.commit()
        return True


async def mark_completed(analysis_id: str) -> bool:
    """Move a processing job to completed; refuses when transcript or topics are empty."""
    async with async_session_maker() as db:
        result = await db.execute(select(VideoAnalysis).where(VideoAnalysis.id == analysis_id))
        analysis = result.scalar_one_or_none()
        if not analysis or analysis.status in TERMINAL_STATUSES:
            return False
        if not (analysis.transcript or "").strip():
            raise ValueError("cannot complete an analysis without a transcript")
        if not analysis.topics:
            raise ValueError("cannot complete an analysis without topics")
        now = datetime.now(timezone.utc)
        analysis.status = STATUS_COMPLETED
        analysis.progress = 100
        analysis.error = None
        analysis.staged_media_path = None
        analysis.updated_at = now
        analysis.completed_at = now
        await db.commit()
        return True


async def mark_failed(analysis_id: str, error_message: str) -> bool:
    """Move a processing job to failed; progress stays at its last value."""
    async with async_session_maker() as db:
        result = await db.execute(select(VideoAnalysis).where(VideoAnalysis.id == analysis_id))
        analysis = result.scalar_one_or_none()
        if not analysis or analysis.status in TERMINAL_STATUSES:
            return False
        now = datetime.now(timezone.utc)
        analysis.status = STATUS_FAILED
        analysis.error = (error_message or "Analysis failed")[:MAX_ERROR_CHARS]
        analysis.staged_media_path = None
        analysis.updated_at = now
        analysis.completed_at = now
        await db.commit()
        return True


async def save_artifacts(
    analysis_id: str,
    *,
    summary: Optional[str] = None,
    flashcards: Optional[List[Flashcard]] = None,
) -> bool:
    """Merge on-demand summaries/flashcards into a completed job without touching its status."""
    async with async_session_maker() as db:
        result = await db.execute(select(VideoAnalysis).where(VideoAnalysis.id == analysis_id))
        analysis = result.scalar_one_or_none()
        if not analysis or analysis.status != STATUS_COMPLETED:
            return False
        if summary is not None:
            analysis.summary = summary
        if flashcards is not None:
            analysis.flashcards = flashcards_to_json(flashcards)
        analysis.updated_at = datetime.now(timezone.utc)
        await db.commit()
        return True


async def list_analyses(owner_ref: str, limit: int = 20) -> List[VideoAnalysis]:
    async with async_session_maker() as db:
        result = await db.execute(
            select(VideoAnalysis)
            .where(VideoAnalysis.owner_ref == owner_ref)
            .order_by(VideoAnalysis.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())


async def update_topic(
    analysis_id: str,
    topic_id: str,
    *,
    summary: Optional[str] = None,
    flashcards: Optional[List[Flashcard]] = None,
) -> Optional[Topic]:
    """Merge a summary/flashcards into one topic of a completed job under a row lock."""
    async with async_session_maker() as db:
        result = await db.execute(
            select(VideoAnalysis).where(VideoAnalysis.id == analysis_id).with_for_update()
        )
        analysis = result.scalar_one_or_none()
        if not analysis or analysis.status != STATUS_COMPLETED:
            return None
        topics = topics_from_json(analysis.topics)
        target = next((topic for topic in topics if topic.id == topic_id), None)
        if target is None:
            return None
        if summary is not None:
            target.summary = summary
        if flashcards is not None:
            target.flashcards = list(flashcards)
        analysis.topics = topics_to_json(topics)
        analysis.updated_at = datetime.now(timezone.utc)
        await db.commit()
        return target
