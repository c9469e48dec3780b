"""Per-client submission quotas: Redis counters with an in-process fallback."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Dict, Optional, Tuple

from fastapi import HTTPException, Request
import redis.asyncio as redis

from config import settings

logger = logging.getLogger(__name__)

KEY_PREFIX = "vsa:rate"

_local_counters: Dict[str, Tuple[int, float]] = {}
_local_lock = asyncio.Lock()


def _client_identifier(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


async def _consume_redis_quota(key: str, limit: int, window_seconds: int) -> bool:
    client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        current = await client.incr(key)
        if current == 1:
            await client.expire(key, window_seconds)
    finally:
        await client.aclose()
    return current <= limit


async def _consume_local_quota(key: str, limit: int, window_seconds: int) -> bool:
    now = time.time()
    async with _local_lock:
        expired = [k for k, (_, reset_at) in _local_counters.items() if now >= reset_at]
        for stale in expired:
            del _local_counters[stale]
        count, reset_at = _local_counters.get(key, (0, now + window_seconds))
        count += 1
        _local_counters[key] = (count, reset_at)
        return count <= limit


def rate_limit(
    scope: str,
    limit: Optional[int] = None,
    window_seconds: Optional[int] = None,
) -> Callable[[Request], None]:
    """
    FastAPI dependency limiting how many requests one client may make per window.
    Defaults come from SUBMISSION_RATE_LIMIT / SUBMISSION_RATE_WINDOW_SECONDS.
    """

    async def _dependency(request: Request):
        if getattr(request.app.state, "disable_rate_limits", False):
            return

        quota = int(limit if limit is not None else settings.SUBMISSION_RATE_LIMIT)
        window = int(window_seconds if window_seconds is not None else settings.SUBMISSION_RATE_WINDOW_SECONDS)
        if quota <= 0:
            return
        key = f"{KEY_PREFIX}:{scope}:{_client_identifier(request)}"

        try:
            allowed = await _consume_redis_quota(key, quota, window)
        except Exception as exc:
            logger.warning("Redis rate limiting unavailable, using local counters: %s", exc)
            allowed = await _consume_local_quota(key, quota, window)

        if not allowed:
            raise HTTPException(
                status_code=429,
                detail=f"Too many {scope} requests. Try again later.",
            )

    return _dependency
