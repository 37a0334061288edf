"""
Background worker that periodically expires lapsed holds.

Each run calls reservation_service.expire_sweep(), which cancels pending
reservations past their expiry and deletes expired hold rows, one show
at a time. Together with the deferred per-reservation checks this bounds
how long a lapsed hold can linger in storage to one sweep interval.
"""

import asyncio
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from seathold.core.config import get_settings
from seathold.core.logging import get_logger
from seathold.db.session import AsyncSessionLocal
from seathold.services.reservation_service import expire_sweep

logger = get_logger(__name__)
settings = get_settings()


class ExpiryWorker:
    """Runs expire_sweep() every `interval` seconds until stopped."""

    def __init__(
        self,
        interval: Optional[float] = None,
        session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
    ):
        self.interval = interval if interval is not None else settings.HOLD_SWEEP_INTERVAL_SECONDS
        self.session_factory = session_factory
        self.running = False
        self.task: Optional[asyncio.Task] = None

    async def start(self):
        if self.running:
            logger.warning("expiry_worker_already_running")
            return

        self.running = True
        self.task = asyncio.create_task(self._run())
        logger.info("expiry_worker_started", interval_seconds=self.interval)

    async def stop(self):
        if not self.running:
            return

        self.running = False
        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
            self.task = None
        logger.info("expiry_worker_stopped")

    async def run_once(self) -> int:
        return await expire_sweep(self.session_factory)

    async def _run(self):
        while self.running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("expiry_worker_error", error=str(e), error_type=type(e).__name__)
            await asyncio.sleep(self.interval)


# Global worker instance
expiry_worker = ExpiryWorker()
