"""
Redis client for the snapshot cache and cross-process show locks.
Separated from business logic for clean architecture.

Redis is optional: every caller treats a None client as "Redis disabled
or down" and degrades (cache bypass, in-process locking). The database
stays authoritative for seat state either way.
"""

import time
from typing import Optional

import redis.asyncio as redis

from seathold.core.config import get_settings
from seathold.core.logging import get_logger
from seathold.core.metrics import redis_connection_errors

logger = get_logger(__name__)
settings = get_settings()

# After a failed connect, wait this long before trying again
RECONNECT_BACKOFF_SECONDS = 30.0


class RedisClient:
    """Process-wide async Redis client with connection pooling."""

    _instance: Optional[redis.Redis] = None
    _last_failure: float = 0.0

    @classmethod
    async def get_client(cls) -> Optional[redis.Redis]:
        if not settings.REDIS_ENABLED:
            return None

        if cls._instance is None:
            if time.monotonic() - cls._last_failure < RECONNECT_BACKOFF_SECONDS:
                return None
            client = redis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30,
            )
            try:
                await client.ping()
            except Exception as e:
                redis_connection_errors.inc()
                cls._last_failure = time.monotonic()
                logger.error("redis_connection_failed", error=str(e))
                await client.aclose()
                return None
            cls._instance = client
            logger.info("redis_connected", url=settings.REDIS_URL)

        return cls._instance

    @classmethod
    async def close(cls) -> None:
        if cls._instance is not None:
            await cls._instance.aclose()
            cls._instance = None


async def get_redis() -> Optional[redis.Redis]:
    """Get the Redis client, or None if Redis is disabled or unreachable."""
    return await RedisClient.get_client()


async def close_redis() -> None:
    """Close Redis connection on shutdown."""
    await RedisClient.close()
