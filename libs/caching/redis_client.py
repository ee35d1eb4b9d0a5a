"""
Redis client manager for conversation storage.

Provides:
- Async Redis client with connection pooling
- Singleton pattern shared by every request
- fakeredis in the test environment
"""

import asyncio
from typing import Optional

import redis.asyncio as redis
import structlog

from libs.common.settings import get_settings

logger = structlog.get_logger(__name__)

# Global Redis client instance (singleton)
_redis_client: Optional[redis.Redis] = None
_redis_lock: Optional[asyncio.Lock] = None


def _get_lock() -> asyncio.Lock:
    global _redis_lock
    if _redis_lock is None:
        _redis_lock = asyncio.Lock()
    return _redis_lock


def _safe_url(redis_url: str) -> str:
    return redis_url.split("@")[-1] if "@" in redis_url else redis_url.split("//")[-1]


async def get_redis_client(use_fake: bool = None) -> redis.Redis:
    """
    Get or create the async Redis client.

    Unlike a cache, conversation storage is a required stage of the message
    pipeline, so connection problems are raised to the caller instead of
    being hidden behind a ``None`` client.

    Args:
        use_fake: If True, use fakeredis. If None, auto-detect from settings.

    Returns:
        Redis client instance

    Raises:
        RuntimeError: If no Redis URL is configured outside the test environment
        redis.ConnectionError: If the server cannot be reached
    """
    global _redis_client

    settings = get_settings()

    if use_fake is None:
        use_fake = settings.app_env == "test"

    if _redis_client is not None:
        return _redis_client

    async with _get_lock():
        # Double-check after waiting for a concurrent first request
        if _redis_client is None:
            _redis_client = await _create_client(settings, use_fake)
    return _redis_client


async def _create_client(settings, use_fake: bool) -> redis.Redis:
    if use_fake:
        from fakeredis import aioredis as fakeredis

        logger.info("Using fakeredis for conversation storage")
        return fakeredis.FakeRedis(decode_responses=True)

    if not settings.redis_url:
        raise RuntimeError("CONVERSO_REDIS_URL is not configured")

    client = redis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=20,
        socket_timeout=5,
        socket_connect_timeout=5,
        retry_on_timeout=True,
    )
    try:
        await client.ping()
    except Exception:
        await client.aclose()
        raise

    logger.info(
        "Redis client initialized successfully",
        url=_safe_url(settings.redis_url),
        max_connections=20,
    )
    return client


async def close_redis_client():
    """Close Redis client connection."""
    global _redis_client, _redis_lock

    _redis_lock = None

    if _redis_client is not None:
        try:
            await _redis_client.aclose()
            logger.info("Redis client closed")
        except Exception as e:
            logger.warning("Error closing Redis client", error=str(e))
        finally:
            _redis_client = None


async def health_check() -> bool:
    """
    Check Redis health.

    Returns:
        True if Redis is healthy, False otherwise
    """
    try:
        redis_client = await get_redis_client()
        return await redis_client.ping() is True
    except Exception as e:
        logger.error("Redis health check failed", error=str(e))
        return False
