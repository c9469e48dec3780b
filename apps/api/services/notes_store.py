"""Client for the external notes/flashcards store that materialized analyses are written to."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from config import configured_key, settings

logger = logging.getLogger(__name__)


class NotesStoreUnavailableError(RuntimeError):
    """Raised when the notes service is not configured or rejects a write."""


class NotesStoreClient:
    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=self.timeout,
            transport=self._transport,
        )

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            async with self._client() as client:
                response = await client.post(path, json=payload)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise NotesStoreUnavailableError(f"Notes service request to {path} failed: {exc}") from exc
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    async def create_notes(self, owner_ref: str, notes: List[Dict[str, str]]) -> int:
        created = 0
        for note in notes:
            await self._post("/notes", {"owner_ref": owner_ref, **note})
            created += 1
        return created

    async def create_flashcard_set(self, owner_ref: str, title: str, cards: List[Dict[str, str]]) -> int:
        body = await self._post(
            "/flashcard-sets",
            {"owner_ref": owner_ref, "title": title, "flashcards": cards},
        )
        return int(body.get("count", len(cards)) or 0)


def get_notes_store() -> NotesStoreClient:
    base_url = (settings.NOTES_SERVICE_URL or "").strip()
    if not base_url:
        raise NotesStoreUnavailableError("NOTES_SERVICE_URL is not configured")
    return NotesStoreClient(
        base_url,
        token=configured_key(settings.NOTES_SERVICE_TOKEN),
        timeout=settings.EXTERNAL_REQUEST_TIMEOUT_SECONDS,
    )
