"""
Live seat availability for open seat maps.

Every subscriber gets a full snapshot of the show right away, then one
per interval. A ledger mutation wakes the show's subscribers early, so a
claimed or released seat shows up without waiting for the next tick.

Snapshots are whole (occupied + active holds), never deltas: a client
that misses one frame is corrected by the next.

Subscriptions are async generators. Closing the generator (client
disconnect, server shutdown) unregisters it in `finally`; a closed stream
leaves no timer or wakeup behind.
"""

import asyncio
import uuid
from typing import AsyncIterator, Dict, Optional, Set

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from seathold.core.config import get_settings
from seathold.core.logging import get_logger
from seathold.core.metrics import active_subscriptions
from seathold.db.session import AsyncSessionLocal
from seathold.services import seat_ledger
from seathold.services.cache_service import (
    get_cached_snapshot,
    invalidate_show_snapshot,
    set_cached_snapshot,
)

logger = get_logger(__name__)
settings = get_settings()


class AvailabilityNotifier:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal):
        self._session_factory = session_factory
        # show_id -> wakeup events of its open subscriptions
        self._wakeups: Dict[uuid.UUID, Set[asyncio.Event]] = {}

    def active_subscriptions(self, show_id: Optional[uuid.UUID] = None) -> int:
        if show_id is not None:
            return len(self._wakeups.get(show_id, ()))
        return sum(len(events) for events in self._wakeups.values())

    def notify_changed(self, show_id: uuid.UUID) -> None:
        """Wake every subscription of the show; each pushes a fresh snapshot."""
        for wakeup in self._wakeups.get(show_id, ()):
            wakeup.set()

    async def current_payload(self, show_id: uuid.UUID, use_cache: bool = True) -> dict:
        if use_cache:
            cached = await get_cached_snapshot(show_id)
            if cached is not None:
                return cached

        async with self._session_factory() as db:
            snapshot = await seat_ledger.snapshot(db, show_id)
        payload = snapshot.to_payload()

        if use_cache:
            await set_cached_snapshot(show_id, payload)
        return payload

    async def subscribe(self, show_id: uuid.UUID, interval: Optional[float] = None) -> AsyncIterator[dict]:
        """
        Yield snapshot payloads for the show until the consumer closes the generator.

        Raises:
            ShowNotFoundError: the show does not exist (or was deleted mid-stream)
        """
        interval = interval if interval is not None else settings.SEAT_STREAM_INTERVAL_SECONDS
        wakeup = asyncio.Event()
        self._register(show_id, wakeup)
        try:
            while True:
                wakeup.clear()
                yield await self.current_payload(show_id)
                try:
                    await asyncio.wait_for(wakeup.wait(), timeout=interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            self._unregister(show_id, wakeup)

    def _register(self, show_id: uuid.UUID, wakeup: asyncio.Event) -> None:
        self._wakeups.setdefault(show_id, set()).add(wakeup)
        active_subscriptions.inc()
        logger.info("seat_stream_opened", show_id=str(show_id), subscribers=self.active_subscriptions(show_id))

    def _unregister(self, show_id: uuid.UUID, wakeup: asyncio.Event) -> None:
        events = self._wakeups.get(show_id)
        if events is None or wakeup not in events:
            return
        events.discard(wakeup)
        if not events:
            del self._wakeups[show_id]
        active_subscriptions.dec()
        logger.info("seat_stream_closed", show_id=str(show_id), subscribers=self.active_subscriptions(show_id))


# Global instance
notifier = AvailabilityNotifier()


async def announce_seat_change(show_id: uuid.UUID) -> None:
    """Call after a ledger mutation committed: drop the cached frame, wake subscribers."""
    await invalidate_show_snapshot(show_id)
    notifier.notify_changed(show_id)
