"""
Deferred per-reservation expiry checks.

When a hold is created we schedule one check for the moment it lapses.
The check re-reads the reservation and cancels it only if it is still
pending, so a check that fires after a confirmation or release is a no-op.
Confirm and release cancel the pending check as well.

The checks are an optimisation: holds are already treated as absent once
expired (lazy expiry), and the periodic sweeper reclaims anything a lost
check leaves behind (e.g. after a restart).
"""

import asyncio
import uuid
from datetime import datetime
from typing import Awaitable, Callable, Dict

from seathold.core.logging import get_logger
from seathold.db.base import utcnow

logger = get_logger(__name__)

# Fire slightly after expires_at so the check sees the hold as lapsed
EXPIRY_GRACE_SECONDS = 0.05

ExpiryCheck = Callable[[uuid.UUID], Awaitable[object]]


class ExpiryScheduler:
    """Keeps one sleeping task per pending reservation."""

    def __init__(self, check: ExpiryCheck, grace_seconds: float = EXPIRY_GRACE_SECONDS):
        self._check = check
        self.grace_seconds = grace_seconds
        self._tasks: Dict[uuid.UUID, asyncio.Task] = {}

    def schedule(self, reservation_id: uuid.UUID, expires_at: datetime) -> None:
        self.cancel(reservation_id)
        task = asyncio.get_running_loop().create_task(self._run(reservation_id, expires_at))
        self._tasks[reservation_id] = task
        task.add_done_callback(lambda t: self._task_done_callback(reservation_id, t))
        logger.debug("expiry_check_scheduled", reservation_id=str(reservation_id), expires_at=expires_at.isoformat())

    def cancel(self, reservation_id: uuid.UUID) -> None:
        task = self._tasks.pop(reservation_id, None)
        # Never cancel the task that is making this call
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    def pending_count(self) -> int:
        return len(self._tasks)

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("expiry_checks_cancelled", count=len(tasks))

    async def _run(self, reservation_id: uuid.UUID, expires_at: datetime) -> None:
        delay = (expires_at - utcnow()).total_seconds() + self.grace_seconds
        if delay > 0:
            await asyncio.sleep(delay)
        await self._check(reservation_id)

    def _task_done_callback(self, reservation_id: uuid.UUID, task: asyncio.Task) -> None:
        if self._tasks.get(reservation_id) is task:
            del self._tasks[reservation_id]
        if task.cancelled():
            return
        exception = task.exception()
        if exception is not None:
            logger.error(
                "expiry_check_failed",
                reservation_id=str(reservation_id),
                error=str(exception),
                error_type=type(exception).__name__,
            )
