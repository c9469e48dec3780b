"""Speech-to-text providers: synchronous (Whisper) and asynchronous upload/poll (AssemblyAI)."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional

import httpx
from openai import OpenAI

from config import configured_key, settings
from media.errors import TranscriptionError, TranscriptionTimeoutError

logger = logging.getLogger(__name__)


def _safe_text(value: Any) -> str:
    return str(value or "").strip()


def transcript_text_from_payload(payload: Any) -> str:
    """Pull plain text out of a provider response object or dict."""
    if isinstance(payload, str):
        return payload.strip()
    if isinstance(payload, dict):
        text = _safe_text(payload.get("text"))
        if text:
            return text
        segments = payload.get("segments")
        if isinstance(segments, list):
            chunks = [
                _safe_text(seg.get("text") if isinstance(seg, dict) else getattr(seg, "text", ""))
                for seg in segments
            ]
            return " ".join(chunk for chunk in chunks if chunk).strip()
        return ""
    text = _safe_text(getattr(payload, "text", ""))
    if text:
        return text
    segments = getattr(payload, "segments", []) or []
    return " ".join(_safe_text(getattr(seg, "text", "")) for seg in segments).strip()


class SpeechToTextProvider(ABC):
    name: str

    @abstractmethod
    async def transcribe(self, audio: bytes) -> str:
        """Return the transcript text for a WAV payload."""
        raise NotImplementedError


class WhisperProvider(SpeechToTextProvider):
    """Single blocking call to the OpenAI transcription endpoint."""

    name = "whisper"

    def __init__(self, api_key: str, model: str = "whisper-1", timeout: float = 60.0) -> None:
        self.model = model
        self.timeout = timeout
        self._client = OpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    def _transcribe_sync(self, audio: bytes) -> Any:
        return self._client.audio.transcriptions.create(
            model=self.model,
            file=("audio.wav", audio, "audio/wav"),
        )

    async def transcribe(self, audio: bytes) -> str:
        try:
            payload = await asyncio.to_thread(self._transcribe_sync, audio)
        except Exception as e:
            logger.error(f"Error transcribing audio: {e}")
            raise TranscriptionError(f"Whisper transcription failed: {e}", provider=self.name) from e
        text = transcript_text_from_payload(payload)
        if not text:
            raise TranscriptionError("Whisper returned an empty transcript", provider=self.name)
        return text


class AssemblyAIProvider(SpeechToTextProvider):
    """
    Upload audio, create a transcript job, then poll it.

    Polling runs at a fixed interval for at most ``max_attempts`` status
    requests. Running out of attempts raises TranscriptionTimeoutError, which
    is distinct from a provider-reported ``error`` status.
    """

    name = "assemblyai"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.assemblyai.com/v2",
        *,
        poll_interval: float = 3.0,
        max_attempts: int = 60,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.poll_interval = max(float(poll_interval), 0.0)
        self.max_attempts = max(int(max_attempts), 1)
        self.timeout = timeout
        self._transport = transport
        self._sleep = sleep

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={"authorization": self.api_key},
            timeout=self.timeout,
            transport=self._transport,
        )

    async def _submit(self, client: httpx.AsyncClient, audio: bytes) -> str:
        upload = await client.post("/upload", content=audio)
        upload.raise_for_status()
        upload_url = _safe_text(upload.json().get("upload_url"))
        if not upload_url:
            raise TranscriptionError("AssemblyAI upload returned no upload_url", provider=self.name)

        created = await client.post("/transcript", json={"audio_url": upload_url})
        created.raise_for_status()
        provider_job_id = _safe_text(created.json().get("id"))
        if not provider_job_id:
            raise TranscriptionError("AssemblyAI did not return a transcript id", provider=self.name)
        return provider_job_id

    async def _poll(self, client: httpx.AsyncClient, provider_job_id: str) -> str:
        for attempt in range(1, self.max_attempts + 1):
            response = await client.get(f"/transcript/{provider_job_id}")
            response.raise_for_status()
            payload = response.json()
            status = _safe_text(payload.get("status")).lower()

            if status == "completed":
                text = _safe_text(payload.get("text"))
                if not text:
                    raise TranscriptionError("AssemblyAI completed with an empty transcript", provider=self.name)
                logger.info("AssemblyAI transcript %s completed after %d polls", provider_job_id, attempt)
                return text
            if status == "error":
                reason = _safe_text(payload.get("error")) or "unknown provider error"
                raise TranscriptionError(f"AssemblyAI transcription failed: {reason}", provider=self.name)

            if attempt < self.max_attempts:
                await self._sleep(self.poll_interval)

        raise TranscriptionTimeoutError(
            f"AssemblyAI transcription timed out after {self.max_attempts} polling attempts",
            provider=self.name,
            attempts=self.max_attempts,
        )

    async def transcribe(self, audio: bytes) -> str:
        try:
            async with self._client() as client:
                provider_job_id = await self._submit(client, audio)
                logger.info("AssemblyAI transcript %s submitted", provider_job_id)
                return await self._poll(client, provider_job_id)
        except TranscriptionError:
            raise
        except httpx.HTTPError as e:
            raise TranscriptionError(f"AssemblyAI request failed: {e}", provider=self.name) from e


def build_speech_provider() -> Optional[SpeechToTextProvider]:
    """Pick the configured provider; None means speech-to-text is unavailable."""
    preference = (settings.SPEECH_PROVIDER or "auto").strip().lower()
    assembly_key = configured_key(settings.ASSEMBLYAI_API_KEY)
    openai_key = configured_key(settings.OPENAI_API_KEY)

    if preference in {"auto", "assemblyai"} and assembly_key:
        return AssemblyAIProvider(
            assembly_key,
            settings.ASSEMBLYAI_BASE_URL,
            poll_interval=settings.TRANSCRIPTION_POLL_INTERVAL_SECONDS,
            max_attempts=settings.TRANSCRIPTION_MAX_POLL_ATTEMPTS,
            timeout=settings.EXTERNAL_REQUEST_TIMEOUT_SECONDS,
        )
    if preference in {"auto", "whisper"} and openai_key:
        return WhisperProvider(
            openai_key,
            model=settings.WHISPER_MODEL,
            timeout=settings.EXTERNAL_REQUEST_TIMEOUT_SECONDS,
        )
    logger.warning("No speech-to-text provider configured (SPEECH_PROVIDER=%s)", preference)
    return None
