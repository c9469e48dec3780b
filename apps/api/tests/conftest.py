import asyncio
from unittest.mock import patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from config import settings
from database import Base, get_db
from main import app
from routers import rate_limit
from services.analysis_queue import drain_inline_analyses


@pytest.fixture(autouse=True)
def reset_local_rate_limit_counters():
    """Keep in-memory rate-limit state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit._local_counters.clear()
    yield
    rate_limit._local_counters.clear()
    app.state.disable_rate_limits = previous


@pytest.fixture
def offline_settings(tmp_path):
    """No provider keys, inline execution, per-test work directory."""
    work_root = tmp_path / "work"
    with (
        patch.object(settings, "ANALYSIS_WORK_DIR", str(work_root)),
        patch.object(settings, "ANALYSIS_QUEUE_MODE", "inline"),
        patch.object(settings, "TRANSCRIPT_API_KEY", ""),
        patch.object(settings, "OPENAI_API_KEY", ""),
        patch.object(settings, "ASSEMBLYAI_API_KEY", ""),
        patch.object(settings, "LLM_API_KEY", ""),
        patch.object(settings, "NOTES_SERVICE_URL", ""),
    ):
        yield work_root


@pytest_asyncio.fixture
async def session_maker(tmp_path, offline_settings):
    db_path = tmp_path / "video_analysis.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    with (
        patch("services.analysis_store.async_session_maker", maker),
        patch("services.analysis_queue.async_session_maker", maker),
    ):
        yield maker
        await drain_inline_analyses(timeout=5)

    await engine.dispose()


@pytest_asyncio.fixture
async def analysis_client(session_maker):
    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.pop(get_db, None)


async def wait_for_terminal(client: AsyncClient, analysis_id: str, attempts: int = 100) -> dict:
    payload: dict = {}
    for _ in range(attempts):
        resp = await client.get(f"/video/analysis/{analysis_id}")
        assert resp.status_code == 200
        payload = resp.json()
        if payload["status"] in ("completed", "failed"):
            return payload
        await asyncio.sleep(0.05)
    return payload
