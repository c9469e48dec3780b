from unittest.mock import AsyncMock, patch

import pytest

from routers import rate_limit


@pytest.mark.asyncio
async def test_redis_quota_closes_its_client_each_call():
    client = AsyncMock()
    client.incr.side_effect = [1, 2]
    with patch("routers.rate_limit.redis.from_url", return_value=client) as from_url:
        assert await rate_limit._consume_redis_quota("vsa:rate:test:1.2.3.4", 1, 60) is True
        assert await rate_limit._consume_redis_quota("vsa:rate:test:1.2.3.4", 1, 60) is False

    assert from_url.call_count == 2
    assert client.aclose.await_count == 2
    client.expire.assert_awaited_once_with("vsa:rate:test:1.2.3.4", 60)


@pytest.mark.asyncio
async def test_redis_client_is_closed_when_incr_fails():
    client = AsyncMock()
    client.incr.side_effect = ConnectionError("redis down")
    with patch("routers.rate_limit.redis.from_url", return_value=client):
        with pytest.raises(ConnectionError):
            await rate_limit._consume_redis_quota("vsa:rate:test:1.2.3.4", 1, 60)

    client.aclose.assert_awaited_once()


@pytest.mark.asyncio
async def test_local_quota_counts_per_key():
    assert await rate_limit._consume_local_quota("a", 1, 60) is True
    assert await rate_limit._consume_local_quota("a", 1, 60) is False
    assert await rate_limit._consume_local_quota("b", 1, 60) is True
