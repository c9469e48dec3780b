"""Exception taxonomy for the video analysis pipeline."""

from __future__ import annotations

from typing import Optional


class InvalidVideoUrlError(ValueError):
    """Raised when a submitted URL is not a recognizable YouTube video link."""


class AudioExtractionError(RuntimeError):
    """Raised when ffmpeg cannot produce a speech-ready audio stream."""


class MediaDownloadError(RuntimeError):
    """Raised when the source media cannot be downloaded."""


class TranscriptionError(RuntimeError):
    """Raised when a speech-to-text provider fails or reports an error."""

    def __init__(self, message: str, *, provider: Optional[str] = None) -> None:
        super().__init__(message)
        self.provider = provider


class TranscriptionTimeoutError(TranscriptionError):
    """Raised when a provider job does not finish within the polling budget."""

    def __init__(self, message: str, *, provider: Optional[str] = None, attempts: int = 0) -> None:
        super().__init__(message, provider=provider)
        self.attempts = attempts


class TranscriptUnavailableError(RuntimeError):
    """Raised by a transcript strategy that cannot produce text for this source."""


class StageError(RuntimeError):
    """Stage-fatal failure; the message is what the job record shows."""

    def __init__(self, stage: str, cause: BaseException) -> None:
        super().__init__(f"{stage} failed: {cause}")
        self.stage = stage
        self.cause = cause
