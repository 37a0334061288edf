"""
Cross-process per-show lock backed by Redis.
Implements ShowLock interface using redis-py's Lock (SET NX PX + token).

Fail-open:
  If Redis is disabled or unreachable, the lock degrades to the
  in-process LocalShowLock. This keeps bookings flowing during a Redis
  outage. Correctness still holds across processes because every ledger
  mutation is also a compare-and-swap on shows.version; two processes
  racing on the same show end up with one version conflict and a retry,
  never a double claim.

  Tradeoff: during a Redis outage, multi-process deployments see more
  retries under contention. Fallbacks are counted in
  redis_lock_fallbacks_total and should be rare and monitored.
"""

import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator

from redis.exceptions import LockError, RedisError

from seathold.core.exceptions import ShowLockTimeoutError
from seathold.core.logging import get_logger
from seathold.core.metrics import redis_connection_errors, redis_lock_fallbacks
from seathold.infrastructure.redis_client import get_redis
from seathold.services.interfaces.local_show_lock import LocalShowLock
from seathold.services.interfaces.show_lock import ShowLock

logger = get_logger(__name__)

# A crashed holder's lock frees itself after this long.
# Critical sections are one DB transaction, far below this.
LOCK_LEASE_SECONDS = 30


class RedisShowLock(ShowLock):
    """
    Redis lock per show: key "show:lock:{show_id}".

    Use when:
    - Several API workers or hosts serve the same shows
    - Sweeper runs in a different process than the API
    """

    def __init__(self, timeout: float = 10.0, lease_seconds: float = LOCK_LEASE_SECONDS):
        self.timeout = timeout
        self.lease_seconds = lease_seconds
        self._fallback = LocalShowLock(timeout=timeout)

    @staticmethod
    def lock_key(show_id: uuid.UUID) -> str:
        return f"show:lock:{show_id}"

    async def _acquire(self, show_id: uuid.UUID):
        """Returns an acquired redis Lock, or None when Redis is unavailable."""
        client = await get_redis()
        if client is None:
            return None

        lock = client.lock(
            self.lock_key(show_id),
            timeout=self.lease_seconds,
            blocking_timeout=self.timeout,
        )
        try:
            acquired = await lock.acquire()
        except RedisError as e:
            redis_connection_errors.inc()
            logger.error("show_lock_redis_error", show_id=str(show_id), error=str(e))
            return None

        if not acquired:
            raise ShowLockTimeoutError(show_id)
        return lock

    @asynccontextmanager
    async def hold(self, show_id: uuid.UUID) -> AsyncIterator[None]:
        lock = await self._acquire(show_id)

        if lock is None:
            redis_lock_fallbacks.inc()
            async with self._fallback.hold(show_id):
                yield
            return

        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                # Lease ran out while we were inside; the version check caught any overlap
                logger.warning("show_lock_lease_lost", show_id=str(show_id))
            except RedisError as e:
                redis_connection_errors.inc()
                logger.error("show_lock_release_failed", show_id=str(show_id), error=str(e))
