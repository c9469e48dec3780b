from unittest.mock import patch

import pytest
from httpx import ASGITransport, AsyncClient

from main import app


@pytest.mark.asyncio
async def test_liveness_and_readiness_without_provider_keys(offline_settings):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        live = await client.get("/health/live")
        ready = await client.get("/health/ready")

    assert live.json() == {"alive": True}
    assert ready.status_code == 200
    assert ready.json()["providers"] == {
        "transcript_api": "fallback",
        "speech_to_text": "fallback",
        "llm": "fallback",
        "notes_store": "missing",
    }


@pytest.mark.asyncio
async def test_health_reports_configured_providers(session_maker):
    with (
        patch("routers.health.settings.ASSEMBLYAI_API_KEY", "assembly-key"),
        patch("routers.health.settings.LLM_API_KEY", "sk-or-real"),
    ):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            resp = await client.get("/health")

    payload = resp.json()
    assert payload["api"] == "up"
    assert payload["redis"] == "not required"
    assert payload["providers"]["speech_to_text"] == "configured"
    assert payload["providers"]["llm"] == "configured"
    assert payload["providers"]["transcript_api"] == "fallback"
