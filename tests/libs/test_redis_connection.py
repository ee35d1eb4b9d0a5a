"""
Tests for the Redis client manager.

Tests verify:
- fakeredis is used in the test environment
- The client is a shared singleton
- A missing URL outside tests is a configuration error
- Concurrent first use builds a single client
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest


@pytest.fixture(autouse=True)
async def reset_redis():
    """Reset Redis client before each test."""
    from libs.caching.redis_client import close_redis_client
    await close_redis_client()
    yield
    await close_redis_client()


@pytest.mark.asyncio
async def test_redis_connection():
    """Test that a client is returned and answers ping."""
    from libs.caching.redis_client import get_redis_client

    redis = await get_redis_client()

    assert redis is not None
    assert await redis.ping() is True


@pytest.mark.asyncio
async def test_redis_client_is_singleton():
    from libs.caching.redis_client import get_redis_client

    assert await get_redis_client() is await get_redis_client()


@pytest.mark.asyncio
async def test_missing_redis_url(monkeypatch):
    """Test that a real client requires CONVERSO_REDIS_URL."""
    from libs.caching.redis_client import get_redis_client

    monkeypatch.delenv("CONVERSO_REDIS_URL", raising=False)

    with pytest.raises(RuntimeError):
        await get_redis_client(use_fake=False)


@pytest.mark.asyncio
async def test_health_check():
    from libs.caching.redis_client import health_check

    assert await health_check() is True


@pytest.fixture
def fake_from_url(monkeypatch):
    """Replace redis.from_url with a factory of mock clients whose ping yields."""
    from libs.caching import redis_client as redis_module
    from libs.common.settings import get_settings

    monkeypatch.setenv("CONVERSO_REDIS_URL", "redis://localhost:6379/0")
    get_settings.cache_clear()
    created = []

    def from_url(url, **kwargs):
        client = MagicMock()
        client.aclose = AsyncMock()

        async def ping():
            await asyncio.sleep(0)
            return True

        client.ping = ping
        created.append(client)
        return client

    monkeypatch.setattr(redis_module.redis, "from_url", from_url)
    return created


@pytest.mark.asyncio
async def test_concurrent_first_use_builds_one_client(fake_from_url):
    from libs.caching.redis_client import get_redis_client

    clients = await asyncio.gather(*[get_redis_client(use_fake=False) for _ in range(5)])

    assert len(fake_from_url) == 1
    assert all(client is fake_from_url[0] for client in clients)


@pytest.mark.asyncio
async def test_failed_ping_closes_client(fake_from_url, monkeypatch):
    from libs.caching import redis_client as redis_module

    original = redis_module.redis.from_url

    def unreachable(url, **kwargs):
        client = original(url, **kwargs)
        client.ping = AsyncMock(side_effect=ConnectionError("refused"))
        return client

    monkeypatch.setattr(redis_module.redis, "from_url", unreachable)

    with pytest.raises(ConnectionError):
        await redis_module.get_redis_client(use_fake=False)

    fake_from_url[0].aclose.assert_awaited_once()
    assert redis_module._redis_client is None
