"""Summary and flashcard generation with templated fallbacks."""

from __future__ import annotations

import asyncio
import logging
from typing import List, Literal

from pydantic import ValidationError

from media.llm import complete, get_llm_client, parse_json_reply
from media.models import Flashcard
from services.segmenter import split_sentences

logger = logging.getLogger(__name__)

SummaryScope = Literal["topic", "overall"]

MIN_CONTENT_CHARS = 20
MAX_FLASHCARDS = 20
MAX_FALLBACK_FLASHCARDS = 10
LLM_CONTENT_CHAR_LIMIT = 12000

SUMMARY_PROMPTS = {
    "topic": (
        "You are a study assistant. Summarize this section of a video transcript in 2-4 "
        "sentences a student could review before an exam. Use only the provided content. "
        "Return plain prose with no heading."
    ),
    "overall": (
        "You are a study assistant. Write an overview of this entire video transcript in one "
        "or two short paragraphs: the main subject, the key ideas in order, and the takeaway. "
        "Use only the provided content. Return plain prose with no heading."
    ),
}

FLASHCARD_PROMPT = """
You are an expert study assistant creating educational flashcards.
Generate EXACTLY {count} flashcards from the provided content only.
Each flashcard tests one idea: a clear, specific question and an explanatory answer.
Return ONLY a JSON array with {count} items, no prose:
[{{"question": "What is...?", "answer": "Explanation..."}}]
"""


def _clip(text: str) -> str:
    if len(text) > LLM_CONTENT_CHAR_LIMIT:
        return text[:LLM_CONTENT_CHAR_LIMIT] + "...(truncated)"
    return text


def fallback_summary(text: str, scope: SummaryScope = "topic") -> str:
    sentences = split_sentences(text)
    lead = " ".join(sentences[:2]) if sentences else text.strip()
    if scope == "overall":
        return f"This video covers the following: {lead}" if lead else "This video has no transcript content to summarize."
    return f"Key points: {lead}" if lead else "No content available for this topic."


def fallback_flashcards(count: int) -> List[Flashcard]:
    return [
        Flashcard(front=f"Question {i + 1} about the content", back=f"Answer {i + 1} explaining the concept")
        for i in range(min(count, MAX_FALLBACK_FLASHCARDS))
    ]


def validate_flashcards(payload: object) -> List[Flashcard]:
    """Keep well-formed cards from a model reply; malformed items are dropped."""
    if not isinstance(payload, list):
        raise ValueError("flashcard reply is not a JSON array")
    cards: List[Flashcard] = []
    for item in payload:
        if not isinstance(item, dict):
            continue
        try:
            cards.append(Flashcard.model_validate(item))
        except ValidationError:
            continue
    return cards


def _summarize_with_model(text: str, scope: SummaryScope) -> str:
    client = get_llm_client()
    if client is None:
        raise RuntimeError("language model not configured")
    return complete(client, SUMMARY_PROMPTS[scope], f"Content:\n{_clip(text)}", max_tokens=600)


def _flashcards_with_model(text: str, count: int) -> List[Flashcard]:
    client = get_llm_client()
    if client is None:
        raise RuntimeError("language model not configured")
    reply = complete(
        client,
        FLASHCARD_PROMPT.format(count=count),
        f"Generate {count} flashcards from this content:\n{_clip(text)}",
        max_tokens=2000,
    )
    cards = validate_flashcards(parse_json_reply(reply))
    if not cards:
        raise ValueError("no valid flashcards in model reply")
    if len(cards) < count:
        logger.info("Generated %d flashcards, requested %d", len(cards), count)
    return cards[:count]


async def summarize(text: str, scope: SummaryScope = "topic") -> str:
    """Prose summary of a topic or a whole transcript; never raises for model failures."""
    if len((text or "").strip()) < MIN_CONTENT_CHARS:
        return fallback_summary(text or "", scope)
    try:
        return await asyncio.to_thread(_summarize_with_model, text, scope)
    except Exception as e:
        logger.warning(f"Using templated {scope} summary: {e}")
        return fallback_summary(text, scope)


async def generate_flashcards(text: str, count: int = 5) -> List[Flashcard]:
    """Question/answer cards for the given text; falls back to placeholder cards."""
    count = min(max(int(count), 1), MAX_FLASHCARDS)
    if len((text or "").strip()) < MIN_CONTENT_CHARS:
        return fallback_flashcards(count)
    try:
        return await asyncio.to_thread(_flashcards_with_model, text, count)
    except Exception as e:
        logger.warning(f"Using placeholder flashcards: {e}")
        return fallback_flashcards(count)
