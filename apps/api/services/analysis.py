import asyncio
import logging
import shutil
from pathlib import Path
from typing import Awaitable, List, Optional, TypeVar

from config import settings
from media.errors import InvalidVideoUrlError, StageError
from media.models import Flashcard, Topic
from media.video import extract_video_id
from services import analysis_store
from services.notes_store import get_notes_store
from services.progress import (
    PROGRESS_ACQUIRING,
    PROGRESS_SEGMENTING,
    PROGRESS_SUMMARIZING,
    PROGRESS_TOPICS_SAVED,
    PROGRESS_TRANSCRIPT_SAVED,
)
from services.segmenter import segment_transcript
from services.study_material import generate_flashcards, summarize
from services.transcript import (
    TranscriptContext,
    acquire_transcript,
    build_upload_strategies,
    build_url_strategies,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AnalysisNotFoundError(LookupError):
    """Raised when an analysis id does not exist."""


class AnalysisNotReadyError(RuntimeError):
    """Raised when derived artifacts are requested before the analysis completed."""


class TopicNotFoundError(LookupError):
    """Raised when a topic id is not part of the analysis."""


def job_work_dir(analysis_id: str) -> Path:
    return Path(settings.ANALYSIS_WORK_DIR) / analysis_id


async def _run_stage(stage: str, step: Awaitable[T]) -> T:
    try:
        return await step
    except StageError:
        raise
    except Exception as e:
        raise StageError(stage, e) from e


async def process_video_analysis(analysis_id: str) -> None:
    """
    Background task driving one analysis through transcript, topics and summary.

    Every stage result is persisted before the next stage starts. The job's
    work directory (uploaded or downloaded media, extracted audio) is removed
    on every exit path.
    """
    analysis = await analysis_store.get_analysis(analysis_id)
    if not analysis:
        logger.error(f"Analysis record {analysis_id} not found; aborting background task")
        return
    if analysis.status != analysis_store.STATUS_PROCESSING:
        logger.warning(f"Analysis {analysis_id} is already {analysis.status}; skipping")
        return

    work_dir = job_work_dir(analysis_id)
    try:
        work_dir.mkdir(parents=True, exist_ok=True)
        logger.info(
            f"Starting analysis {analysis_id} source={analysis.source} url={analysis.source_url or 'n/a'}"
        )

        async def report_progress(value: int) -> None:
            await analysis_store.update_analysis(analysis_id, progress=value)

        # Transcript
        await analysis_store.update_analysis(analysis_id, progress=PROGRESS_ACQUIRING)
        if analysis.source == "youtube":
            try:
                video_id = extract_video_id(analysis.source_url)
            except InvalidVideoUrlError as e:
                raise StageError("validation", e) from e
            ctx = TranscriptContext(
                work_dir=str(work_dir),
                seed=video_id,
                video_id=video_id,
                report_progress=report_progress,
            )
            strategies = build_url_strategies()
        else:
            ctx = TranscriptContext(
                work_dir=str(work_dir),
                seed=analysis_id,
                media_path=analysis.staged_media_path,
                report_progress=report_progress,
            )
            strategies = build_upload_strategies()

        transcript = await _run_stage("transcription", acquire_transcript(strategies, ctx))
        await analysis_store.update_analysis(
            analysis_id,
            transcript=transcript.text,
            transcript_source=transcript.source,
            title=transcript.title,
            duration_seconds=transcript.duration_seconds,
            progress=PROGRESS_TRANSCRIPT_SAVED,
        )
        logger.info(
            f"Transcript for analysis {analysis_id} acquired via {transcript.source} ({len(transcript.text)} chars)"
        )

        # Topics
        await analysis_store.update_analysis(analysis_id, progress=PROGRESS_SEGMENTING)
        topics = await _run_stage(
            "segmentation",
            segment_transcript(transcript.text, transcript.duration_seconds),
        )
        await analysis_store.update_analysis(analysis_id, topics=topics, progress=PROGRESS_TOPICS_SAVED)
        logger.info(f"Segmented analysis {analysis_id} into {len(topics)} topics")

        # Overall summary
        await analysis_store.update_analysis(analysis_id, progress=PROGRESS_SUMMARIZING)
        summary = await _run_stage("summary", summarize(transcript.text, "overall"))
        await analysis_store.update_analysis(analysis_id, summary=summary)

        await _run_stage("completion", analysis_store.mark_completed(analysis_id))
        logger.info(f"Analysis {analysis_id} completed successfully")

    except StageError as e:
        logger.exception(f"Analysis {analysis_id} failed during {e.stage}")
        await analysis_store.mark_failed(analysis_id, str(e))
    except Exception as e:
        logger.exception(f"Analysis {analysis_id} failed: {e}")
        await analysis_store.mark_failed(analysis_id, f"analysis failed: {e}")

    finally:
        if work_dir.exists():
            try:
                shutil.rmtree(work_dir)
            except Exception as e:
                logger.error(f"Error cleaning up work dir {work_dir}: {e}")


def process_analysis_job(analysis_id: str) -> None:
    """RQ worker entrypoint for analysis jobs."""
    asyncio.run(process_video_analysis(analysis_id))


async def _completed_analysis(analysis_id: str):
    analysis = await analysis_store.get_analysis(analysis_id)
    if not analysis:
        raise AnalysisNotFoundError(f"Analysis {analysis_id} not found")
    if analysis.status != analysis_store.STATUS_COMPLETED:
        raise AnalysisNotReadyError(f"Analysis {analysis_id} is {analysis.status}, not completed")
    return analysis


def _find_topic(analysis, topic_id: str) -> Topic:
    for topic in analysis_store.topics_from_json(analysis.topics):
        if topic.id == topic_id:
            return topic
    raise TopicNotFoundError(f"Topic {topic_id} not found in analysis {analysis.id}")


async def generate_summary(analysis_id: str, scope: str = "overall", topic_id: Optional[str] = None) -> str:
    """Compute a topic or overall summary and merge it back onto the analysis."""
    analysis = await _completed_analysis(analysis_id)
    if scope == "topic":
        if not topic_id:
            raise TopicNotFoundError("topic_id is required for a topic summary")
        topic = _find_topic(analysis, topic_id)
        text = await summarize(topic.content, "topic")
        if await analysis_store.update_topic(analysis_id, topic_id, summary=text) is None:
            raise AnalysisNotReadyError(f"Could not store summary for topic {topic_id}")
        return text

    text = await summarize(analysis.transcript, "overall")
    await analysis_store.save_artifacts(analysis_id, summary=text)
    return text


async def generate_analysis_flashcards(
    analysis_id: str,
    topic_id: Optional[str] = None,
    count: int = 5,
) -> List[Flashcard]:
    """Flashcards for one topic, or for the whole transcript when no topic is given."""
    analysis = await _completed_analysis(analysis_id)
    if topic_id:
        topic = _find_topic(analysis, topic_id)
        cards = await generate_flashcards(topic.content, count)
        if await analysis_store.update_topic(analysis_id, topic_id, flashcards=cards) is None:
            raise AnalysisNotReadyError(f"Could not store flashcards for topic {topic_id}")
        return cards

    cards = await generate_flashcards(analysis.transcript, count)
    await analysis_store.save_artifacts(analysis_id, flashcards=cards)
    return cards


async def save_analysis_notes(analysis_id: str) -> int:
    """Write one note per topic to the external notes store."""
    analysis = await _completed_analysis(analysis_id)
    store = get_notes_store()
    notes = [
        {
            "title": topic.title,
            "content": topic.summary or topic.content,
            "source": f"video_analysis:{analysis.id}",
        }
        for topic in analysis_store.topics_from_json(analysis.topics)
    ]
    if analysis.summary:
        notes.insert(0, {
            "title": f"{analysis.title} - Overview",
            "content": analysis.summary,
            "source": f"video_analysis:{analysis.id}",
        })
    return await store.create_notes(analysis.owner_ref, notes)


async def save_analysis_flashcards(analysis_id: str, cards_per_topic: int = 5) -> int:
    """Generate any missing topic flashcards, then write all cards as one set."""
    analysis = await _completed_analysis(analysis_id)
    store = get_notes_store()
    cards: List[Flashcard] = []
    for topic in analysis_store.topics_from_json(analysis.topics):
        topic_cards = topic.flashcards
        if not topic_cards:
            topic_cards = await generate_flashcards(topic.content, cards_per_topic)
            await analysis_store.update_topic(analysis_id, topic.id, flashcards=topic_cards)
        cards.extend(topic_cards)
    if not cards:
        return 0
    return await store.create_flashcard_set(
        analysis.owner_ref,
        analysis.title,
        [card.model_dump() for card in cards],
    )
