"""
Hold manager: turns a seat selection into a pending reservation.

A hold is all-or-nothing. The seat check, the hold rows and the pending
reservation are written in one transaction inside the show's critical
section; a shopper never ends up with part of a selection, and never
with a reservation whose seats someone else holds.
"""

import time
import uuid
from datetime import timedelta
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from seathold.core.config import get_settings
from seathold.core.exceptions import LedgerContentionError, ShowLockTimeoutError
from seathold.core.logging import get_logger
from seathold.core.metrics import claim_latency, record_release, record_reservation_attempt
from seathold.db.base import utcnow
from seathold.models.reservation import CancelReason, Reservation, ReservationStatus
from seathold.models.show import Show
from seathold.services import seat_ledger
from seathold.services.notifier import announce_seat_change
from seathold.services.pricing import PriceSource, get_price_source
from seathold.services.reservation_service import (
    cancel_pending_reservation,
    expiry_scheduler,
    get_reservation,
    reload_reservation,
)
from seathold.services.results import HoldResult, HoldStatus, ReleaseResult, ReleaseStatus

logger = get_logger(__name__)
settings = get_settings()


async def create_reservation(
    db: AsyncSession,
    show_id: uuid.UUID,
    claimant_id: str,
    seat_ids: Sequence[str],
    ttl_seconds: Optional[float] = None,
    price_source: Optional[PriceSource] = None,
) -> HoldResult:
    """
    Hold the selected seats and create a pending reservation that expires
    after the hold TTL.

    Outcomes:
      CREATED           reservation holds every seat
      SEAT_UNAVAILABLE  at least one seat is occupied or held by someone
                        else; nothing was written
      INVALID_SHOW      unknown show, or a show that prices to zero
      INVALID_REQUEST   empty, repeated or oversized selection
    """
    requested = [seat_id.strip() for seat_id in seat_ids if seat_id.strip()]
    seats = seat_ledger.normalize_seat_ids(requested)
    if not seats or len(seats) != len(requested) or len(seats) > settings.MAX_SEATS_PER_RESERVATION:
        record_reservation_attempt(HoldStatus.INVALID_REQUEST.value)
        logger.warning(
            "reservation_invalid_request",
            show_id=str(show_id),
            claimant_id=claimant_id,
            requested=len(requested),
        )
        return HoldResult(
            HoldStatus.INVALID_REQUEST,
            reason=f"Select between 1 and {settings.MAX_SEATS_PER_RESERVATION} distinct seats",
        )

    ttl = ttl_seconds if ttl_seconds is not None else settings.HOLD_TTL_SECONDS
    pricing = price_source or get_price_source()
    reservation_id = uuid.uuid4()

    async def work() -> HoldResult:
        show = (await db.execute(select(Show).where(Show.id == show_id))).scalar_one_or_none()
        if show is None:
            return HoldResult(HoldStatus.INVALID_SHOW, reason="Show not found")

        amount = pricing.amount_for(show, seats)
        if amount <= 0:
            return HoldResult(HoldStatus.INVALID_SHOW, reason="Show has no valid price")

        now = utcnow()
        expires_at = now + timedelta(seconds=ttl)
        outcome = await seat_ledger.claim(
            db, show_id, seats, reservation_id, claimant_id, expires_at, now=now
        )
        if not outcome.success:
            return HoldResult(HoldStatus.SEAT_UNAVAILABLE, unavailable_seats=outcome.unavailable_seats)

        reservation = Reservation(
            id=reservation_id,
            show_id=show_id,
            claimant_id=claimant_id,
            seats=seats,
            amount=amount,
            status=ReservationStatus.PENDING.value,
            expires_at=expires_at,
        )
        db.add(reservation)
        await db.flush()
        return HoldResult(HoldStatus.CREATED, reservation=reservation)

    start = time.perf_counter()
    try:
        result = await seat_ledger.run_in_show_transaction(db, show_id, work, operation="claim")
    except (LedgerContentionError, ShowLockTimeoutError):
        # No clean read in time (lock wait or retries); to the shopper the seats are taken
        result = HoldResult(HoldStatus.SEAT_UNAVAILABLE, unavailable_seats=tuple(seats))
    claim_latency.observe(time.perf_counter() - start)
    record_reservation_attempt(result.status.value)

    if result.status is HoldStatus.CREATED:
        reservation = result.reservation
        expiry_scheduler.schedule(reservation.id, reservation.expires_at)
        await announce_seat_change(show_id)
        logger.info(
            "reservation_created",
            reservation_id=str(reservation.id),
            show_id=str(show_id),
            claimant_id=claimant_id,
            seats=seats,
            amount=str(reservation.amount),
            expires_at=reservation.expires_at.isoformat(),
        )
    elif result.status is HoldStatus.SEAT_UNAVAILABLE:
        logger.warning(
            "reservation_seat_unavailable",
            show_id=str(show_id),
            claimant_id=claimant_id,
            unavailable=list(result.unavailable_seats),
        )
    else:
        logger.warning(
            "reservation_invalid_show",
            show_id=str(show_id),
            claimant_id=claimant_id,
            reason=result.reason,
        )
    return result


async def release_reservation(
    db: AsyncSession,
    reservation_id: uuid.UUID,
    requester_id: str,
    is_admin: bool = False,
) -> ReleaseResult:
    """
    Give up a pending reservation and free its seats immediately.

    Only the claimant or an administrator may release. Releasing a
    confirmed or already cancelled reservation changes nothing.

    Raises:
        ReservationNotFoundError: unknown reservation id
    """
    reservation = await get_reservation(db, reservation_id)

    if reservation.claimant_id != requester_id and not is_admin:
        record_release(ReleaseStatus.NOT_AUTHORIZED.value)
        logger.warning(
            "release_not_authorized",
            reservation_id=str(reservation_id),
            requester_id=requester_id,
        )
        return ReleaseResult(ReleaseStatus.NOT_AUTHORIZED, reservation)

    show_id = reservation.show_id

    async def work() -> ReleaseResult:
        fresh = await reload_reservation(db, reservation_id)
        if fresh.is_terminal:
            return ReleaseResult(ReleaseStatus.ALREADY_TERMINAL, fresh)
        await cancel_pending_reservation(db, fresh, CancelReason.RELEASED)
        return ReleaseResult(ReleaseStatus.RELEASED, fresh)

    result = await seat_ledger.run_in_show_transaction(db, show_id, work, operation="release")
    record_release(result.status.value)

    if result.status is ReleaseStatus.RELEASED:
        expiry_scheduler.cancel(reservation_id)
        await announce_seat_change(show_id)
        logger.info(
            "reservation_released",
            reservation_id=str(reservation_id),
            show_id=str(show_id),
            requester_id=requester_id,
            by_admin=requester_id != result.reservation.claimant_id,
        )
    else:
        logger.info(
            "release_ignored_terminal",
            reservation_id=str(reservation_id),
            status=result.reservation.status,
        )
    return result
