"""
Post-confirmation side effects: ticket issuance and notifications.

Both are owned by other systems. They are started fire-and-forget after
the confirmation has committed; a failing hook is logged and never rolls
the confirmation back.
"""

import asyncio
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Awaitable, Callable, Dict, List, Optional, Set

from seathold.core.logging import get_logger
from seathold.models.reservation import Reservation

logger = get_logger(__name__)


@dataclass(frozen=True)
class ConfirmedBooking:
    reservation_id: uuid.UUID
    show_id: uuid.UUID
    claimant_id: str
    seats: List[str]
    amount: Decimal
    payment_reference: Optional[str]

    @classmethod
    def from_reservation(cls, reservation: Reservation) -> "ConfirmedBooking":
        return cls(
            reservation_id=reservation.id,
            show_id=reservation.show_id,
            claimant_id=reservation.claimant_id,
            seats=list(reservation.seats),
            amount=Decimal(reservation.amount),
            payment_reference=reservation.payment_reference,
        )


FulfillmentHook = Callable[[ConfirmedBooking], Awaitable[None]]


class FulfillmentDispatcher:
    def __init__(self):
        self._hooks: Dict[str, FulfillmentHook] = {}
        self._tasks: Set[asyncio.Task] = set()

    def register(self, name: str, hook: FulfillmentHook) -> None:
        self._hooks[name] = hook

    def unregister(self, name: str) -> None:
        self._hooks.pop(name, None)

    def dispatch(self, booking: ConfirmedBooking) -> None:
        for name, hook in self._hooks.items():
            task = asyncio.get_running_loop().create_task(self._run(name, hook, booking))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run(self, name: str, hook: FulfillmentHook, booking: ConfirmedBooking) -> None:
        try:
            await hook(booking)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                "fulfillment_hook_failed",
                hook=name,
                reservation_id=str(booking.reservation_id),
                error=str(e),
                exc_info=True,
            )

    async def drain(self) -> None:
        """Wait for every dispatched hook to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


async def request_ticket_issuance(booking: ConfirmedBooking) -> None:
    logger.info(
        "ticket_issuance_requested",
        reservation_id=str(booking.reservation_id),
        show_id=str(booking.show_id),
        seats=booking.seats,
    )


async def send_confirmation_notice(booking: ConfirmedBooking) -> None:
    logger.info(
        "confirmation_notice_requested",
        reservation_id=str(booking.reservation_id),
        claimant_id=booking.claimant_id,
    )


dispatcher = FulfillmentDispatcher()
dispatcher.register("ticket_issuance", request_ticket_issuance)
dispatcher.register("confirmation_notice", send_confirmation_notice)
