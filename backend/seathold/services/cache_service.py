"""
Redis caching for live seat-map snapshots.

CACHING STRATEGY
================

What we cache:
  - The seat snapshot served to live-stream subscribers (JSON-serialized)
  - Cache key pattern: "seats:snapshot:{show_id}"

Why:
  - Every open seat map re-reads the show every few seconds; with hundreds
    of viewers on a popular show that is hundreds of identical queries
  - One viewer's read fills the cache, the rest of the tick is served
    from Redis

Invalidation strategy:
  - Every ledger mutation (claim, release, confirm, sweep) deletes the key
    for that show right after commit
  - Very short TTL (SNAPSHOT_CACHE_TTL, 2s) as safety net, so an
    invalidation lost to a Redis hiccup is bounded to one tick

Why NOT cache the plain snapshot endpoint:
  - It is the polling fallback when the stream degrades and must read the
    database
  - The stream is a freshness optimisation only; claims are always
    re-validated by the ledger, so a stale frame can never sell a seat
"""

import json
import uuid
from typing import Optional

from seathold.core.config import get_settings
from seathold.core.logging import get_logger
from seathold.core.metrics import record_cache_operation
from seathold.infrastructure.redis_client import get_redis

logger = get_logger(__name__)
settings = get_settings()


def _make_snapshot_key(show_id: uuid.UUID) -> str:
    return f"seats:snapshot:{show_id}"


async def get_cached_snapshot(show_id: uuid.UUID) -> Optional[dict]:
    """Retrieve a cached seat snapshot payload."""
    client = await get_redis()
    if not client:
        return None

    key = _make_snapshot_key(show_id)
    try:
        data = await client.get(key)
        if data:
            record_cache_operation("get", hit=True)
            logger.debug("cache_hit", key=key)
            return json.loads(data)
        record_cache_operation("get", hit=False)
        logger.debug("cache_miss", key=key)
    except Exception as e:
        logger.error("cache_get_error", key=key, error=str(e))

    return None


async def set_cached_snapshot(show_id: uuid.UUID, payload: dict) -> None:
    """Cache a seat snapshot payload with a short TTL."""
    client = await get_redis()
    if not client:
        return

    key = _make_snapshot_key(show_id)
    try:
        await client.setex(key, settings.SNAPSHOT_CACHE_TTL, json.dumps(payload, default=str))
        logger.debug("cache_set", key=key, ttl=settings.SNAPSHOT_CACHE_TTL)
    except Exception as e:
        logger.error("cache_set_error", key=key, error=str(e))


async def invalidate_show_snapshot(show_id: uuid.UUID) -> None:
    """Drop the cached snapshot of one show after its seat maps changed."""
    client = await get_redis()
    if not client:
        return

    key = _make_snapshot_key(show_id)
    try:
        await client.delete(key)
        logger.debug("cache_invalidated", key=key)
    except Exception as e:
        logger.error("cache_invalidation_error", key=key, error=str(e))


async def get_cache_stats() -> dict:
    """Get Redis cache statistics for monitoring."""
    client = await get_redis()
    if not client:
        return {"status": "disabled"}

    try:
        info = await client.info("stats")
        hits = info.get("keyspace_hits", 0)
        misses = info.get("keyspace_misses", 0)
        return {
            "status": "connected",
            "hits": hits,
            "misses": misses,
            "hit_rate": round(hits / max(hits + misses, 1) * 100, 2),
        }
    except Exception as e:
        return {"status": "error", "error": str(e)}
