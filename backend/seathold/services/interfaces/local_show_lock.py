"""
In-process per-show lock.
"""

import asyncio
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

from seathold.core.exceptions import ShowLockTimeoutError
from seathold.services.interfaces.show_lock import ShowLock


class LocalShowLock(ShowLock):
    """
    One asyncio.Lock per show id, created on first use and dropped when
    the last holder/waiter leaves, so the table does not grow with every
    show ever touched.

    Use when:
    - A single API process serves all traffic
    - Tests and local development
    """

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout
        self._locks: Dict[uuid.UUID, asyncio.Lock] = {}
        self._users: Dict[uuid.UUID, int] = {}

    @asynccontextmanager
    async def hold(self, show_id: uuid.UUID) -> AsyncIterator[None]:
        lock = self._locks.get(show_id)
        if lock is None:
            lock = self._locks[show_id] = asyncio.Lock()
        self._users[show_id] = self._users.get(show_id, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self.timeout)
            except asyncio.TimeoutError:
                raise ShowLockTimeoutError(show_id) from None
            try:
                yield
            finally:
                lock.release()
        finally:
            self._users[show_id] -= 1
            if self._users[show_id] == 0:
                del self._users[show_id]
                del self._locks[show_id]

    def tracked_shows(self) -> int:
        """Number of shows with a live lock entry."""
        return len(self._locks)
