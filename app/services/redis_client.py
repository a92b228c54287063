"""
Optional Redis connection manager.

Provides an async Redis client singleton that degrades gracefully when
REDIS_URL is not set or Redis is unreachable. Used for the shared
generation lock; without it locks are process-local.
"""

from typing import Optional

import redis.asyncio as aioredis

from app.config import get_settings
from app.utils.logger import get_logger

logger = get_logger("redis")

_redis_client: Optional[aioredis.Redis] = None


async def init_redis() -> None:
    """Connect to Redis if REDIS_URL is configured. Safe to call always."""
    global _redis_client

    url = get_settings().redis_url
    if not url:
        logger.info("redis.disabled")
        return

    try:
        _redis_client = aioredis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
        )
        await _redis_client.ping()
        logger.info("redis.connected")
    except (aioredis.RedisError, OSError) as exc:
        logger.warning("redis.connect_failed", extra={"error": str(exc)})
        _redis_client = None


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis_client
    if _redis_client is not None:
        try:
            await _redis_client.aclose()
            logger.info("redis.closed")
        except (aioredis.RedisError, OSError) as exc:
            logger.warning("redis.close_failed", extra={"error": str(exc)})
        _redis_client = None


def get_redis() -> Optional[aioredis.Redis]:
    """Return the Redis client or None if unavailable."""
    return _redis_client


async def is_redis_healthy() -> bool:
    """Health probe, returns False rather than raising."""
    if _redis_client is None:
        return False
    try:
        return await _redis_client.ping()
    except (aioredis.RedisError, OSError):
        return False
