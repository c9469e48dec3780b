"""Topic segmentation: language-model outline with a deterministic sentence-chunking backstop."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import List, Optional

from pydantic import ValidationError

from media.llm import complete, get_llm_client, parse_json_reply
from media.models import Topic, TopicOutline

logger = logging.getLogger(__name__)

MIN_TOPICS = 3
MAX_TOPICS = 5
SENTENCES_PER_TOPIC = 10
SECONDS_PER_TOPIC = 120
TITLE_MAX_CHARS = 60
LLM_TRANSCRIPT_CHAR_LIMIT = 12000

SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")

SEGMENT_SYSTEM_PROMPT = """
You split lecture and video transcripts into study topics.
Partition the transcript into 4 to 6 consecutive topics in the order they occur.
Estimate each topic's start and end time in seconds from the start of the video.
Return ONLY a JSON array, no prose and no wrapper object, where each item is:
{"title": "short descriptive title", "start_time": 0, "end_time": 120, "content": "the transcript text this topic covers"}
Start times must strictly increase and time ranges must not overlap.
"""


def split_sentences(text: str) -> List[str]:
    return [part.strip() for part in SENTENCE_SPLIT.split(text.strip()) if part.strip()]


def _title_from(text: str) -> str:
    sentences = split_sentences(text)
    first = sentences[0] if sentences else text.strip()
    first = first.rstrip(".!?").strip() or first
    if len(first) <= TITLE_MAX_CHARS:
        return first
    cut = first[:TITLE_MAX_CHARS].rsplit(" ", 1)[0] or first[:TITLE_MAX_CHARS]
    return f"{cut}..."


def _split_longest(units: List[str]) -> bool:
    """Split the longest unit in two, at a word boundary when it has several words; False when impossible."""
    candidates = [(len(unit.split()), idx) for idx, unit in enumerate(units) if len(unit.split()) > 1]
    if candidates:
        _, idx = max(candidates)
        words = units[idx].split()
        middle = len(words) // 2
        units[idx:idx + 1] = [" ".join(words[:middle]), " ".join(words[middle:])]
        return True
    candidates = [(len(unit), idx) for idx, unit in enumerate(units) if len(unit) > 1]
    if not candidates:
        return False
    _, idx = max(candidates)
    middle = len(units[idx]) // 2
    units[idx:idx + 1] = [units[idx][:middle], units[idx][middle:]]
    return True


def topic_count_for(sentence_count: int) -> int:
    return min(MAX_TOPICS, max(MIN_TOPICS, sentence_count // SENTENCES_PER_TOPIC))


def fallback_segments(transcript: str, duration_seconds: Optional[int] = None) -> List[Topic]:
    """
    Deterministic segmentation that never fails for non-empty input.

    Sentences are partitioned into 3-5 contiguous, near-equal groups. Very short
    transcripts are split at word (then character) boundaries to reach the
    minimum group count; a transcript shorter than three characters repeats its
    last slice.
    """
    text = (transcript or "").strip()
    if not text:
        raise ValueError("Cannot segment an empty transcript")

    units = split_sentences(text) or [text]
    count = topic_count_for(len(units))
    while len(units) < count and _split_longest(units):
        pass
    units.extend([units[-1]] * (count - len(units)))

    base, extra = divmod(len(units), count)
    span = SECONDS_PER_TOPIC
    if duration_seconds and duration_seconds > 0:
        span = max(duration_seconds / count, 1)

    topics: List[Topic] = []
    cursor = 0
    for index in range(count):
        size = base + (1 if index < extra else 0)
        content = " ".join(units[cursor:cursor + size])
        cursor += size
        topics.append(
            Topic(
                id=f"topic-{index + 1}",
                title=_title_from(content),
                start_time=round(index * span, 1),
                end_time=round((index + 1) * span, 1),
                content=content,
            )
        )
    return topics


def _segments_from_model(transcript: str) -> List[Topic]:
    client = get_llm_client()
    if client is None:
        raise RuntimeError("language model not configured")

    excerpt = transcript
    if len(excerpt) > LLM_TRANSCRIPT_CHAR_LIMIT:
        excerpt = excerpt[:LLM_TRANSCRIPT_CHAR_LIMIT] + "...(truncated)"

    reply = complete(client, SEGMENT_SYSTEM_PROMPT, f"Transcript:\n{excerpt}", max_tokens=3000)
    payload = parse_json_reply(reply)
    if not isinstance(payload, list):
        raise ValueError("model reply is not a JSON array")
    outline = TopicOutline(topics=payload)
    return [
        Topic(
            id=f"topic-{index + 1}",
            title=draft.title.strip(),
            start_time=draft.start_time,
            end_time=draft.end_time,
            content=draft.content.strip(),
        )
        for index, draft in enumerate(outline.topics)
    ]


async def segment_transcript(transcript: str, duration_seconds: Optional[int] = None) -> List[Topic]:
    """
    Split a transcript into ordered topics.
    Tries the language model once; any error or schema violation uses the deterministic path.
    """
    if not (transcript or "").strip():
        raise ValueError("Cannot segment an empty transcript")
    try:
        topics = await asyncio.to_thread(_segments_from_model, transcript)
        logger.info("Language model produced %d topics", len(topics))
        return topics
    except (ValidationError, ValueError) as e:
        logger.warning(f"Discarding language model topic outline: {e}")
    except Exception as e:
        logger.warning(f"Language model segmentation unavailable: {e}")
    return fallback_segments(transcript, duration_seconds)
