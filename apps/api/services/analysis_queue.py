"""Analysis job dispatch (in-process asyncio tasks or Redis/RQ) and stall recovery."""

from __future__ import annotations

import asyncio
import logging
import shutil
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional, Set

from redis import Redis
from rq import Queue
from rq.job import Job
from sqlalchemy import select

from config import settings
from database import async_session_maker
from models.video_analysis import VideoAnalysis
from services.analysis import process_video_analysis

logger = logging.getLogger(__name__)

ANALYSIS_QUEUE_NAME = "analysis_jobs"
ANALYSIS_JOB_TIMEOUT_SECONDS = 1800
STALLED_ERROR_MESSAGE = "Analysis was interrupted before it finished. Submit the video again."

_running_tasks: Set[asyncio.Task] = set()


def get_redis_connection() -> Redis:
    """Build Redis connection used by RQ."""
    return Redis.from_url(settings.REDIS_URL)


def get_analysis_queue() -> Queue:
    """Return the configured analysis queue."""
    return Queue(
        name=ANALYSIS_QUEUE_NAME,
        connection=get_redis_connection(),
        default_timeout=ANALYSIS_JOB_TIMEOUT_SECONDS,
    )


def enqueue_analysis_job(analysis_id: str) -> Job:
    """Enqueue an analysis for an RQ worker; no automatic retry since stages are not idempotent."""
    queue = get_analysis_queue()
    return queue.enqueue(
        "services.analysis.process_analysis_job",
        analysis_id,
        job_id=f"analysis:{analysis_id}",
        job_timeout=ANALYSIS_JOB_TIMEOUT_SECONDS,
        result_ttl=86400,
        failure_ttl=86400,
    )


def start_inline_analysis(analysis_id: str) -> asyncio.Task:
    """Run the pipeline as a task in this process; the task set keeps it alive until done."""
    task = asyncio.create_task(process_video_analysis(analysis_id), name=f"analysis:{analysis_id}")
    _running_tasks.add(task)
    task.add_done_callback(_running_tasks.discard)
    return task


def launch_analysis(analysis_id: str) -> Optional[str]:
    """Dispatch according to ANALYSIS_QUEUE_MODE; returns the RQ job id when queued."""
    if (settings.ANALYSIS_QUEUE_MODE or "inline").strip().lower() == "rq":
        job = enqueue_analysis_job(analysis_id)
        logger.info("Queued analysis %s as %s", analysis_id, job.id)
        return job.id
    start_inline_analysis(analysis_id)
    return None


async def drain_inline_analyses(timeout: Optional[float] = None) -> None:
    """Wait for in-process analyses; used on shutdown."""
    if not _running_tasks:
        return
    await asyncio.wait(set(_running_tasks), timeout=timeout)


async def recover_stalled_analyses(max_age_minutes: Optional[int] = None) -> int:
    """Mark analyses stuck in processing as failed after restarts/worker interruptions."""
    minutes = settings.STALLED_ANALYSIS_MAX_AGE_MINUTES if max_age_minutes is None else max_age_minutes
    cutoff = datetime.now(timezone.utc) - timedelta(minutes=max(minutes, 1))
    async with async_session_maker() as db:
        result = await db.execute(
            select(VideoAnalysis).where(
                VideoAnalysis.status == "processing",
                VideoAnalysis.updated_at < cutoff,
            )
        )
        analyses = result.scalars().all()
        now = datetime.now(timezone.utc)
        for analysis in analyses:
            analysis.status = "failed"
            analysis.error = STALLED_ERROR_MESSAGE
            analysis.staged_media_path = None
            analysis.updated_at = now
            analysis.completed_at = now
        if analyses:
            await db.commit()

    for analysis in analyses:
        work_dir = Path(settings.ANALYSIS_WORK_DIR) / analysis.id
        if work_dir.exists():
            shutil.rmtree(work_dir, ignore_errors=True)
    return len(analyses)
