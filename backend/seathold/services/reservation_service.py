"""
Reservation lifecycle: pending -> confirmed | cancelled.

State machine
=============

  pending --confirm (before expiry)--> confirmed
  pending --release-----------------> cancelled (released)
  pending --expiry (sweep/deferred/--> cancelled (expired)
            lazy check on confirm)

  confirmed and cancelled are terminal. Every transition is decided inside
  the show's critical section (seat_ledger.run_in_show_transaction) after
  re-reading the reservation, so two transitions of the same reservation
  never both win: a confirmation racing an expiry either confirms (and the
  expiry sees a terminal row) or observes the expiry and fails.

Payment after expiry
====================

  A confirmation carrying a payment reference for a reservation that is
  no longer pending is NOT confirmed: the seats may already be resold.
  The reservation keeps the reference, is flagged needs_reconciliation,
  an error is logged and reservation_payment_anomalies_total is bumped.
  GET /api/v1/admin/reconciliation lists the flagged rows.
"""

import uuid
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from seathold.core.exceptions import ReservationNotFoundError
from seathold.core.logging import get_logger
from seathold.core.metrics import payment_anomalies, record_confirmation, record_expiry
from seathold.db.base import utcnow
from seathold.db.session import AsyncSessionLocal
from seathold.models.reservation import CancelReason, Reservation, ReservationStatus
from seathold.services import seat_ledger
from seathold.services.expiry_scheduler import ExpiryScheduler
from seathold.services.fulfillment import ConfirmedBooking, dispatcher
from seathold.services.notifier import announce_seat_change
from seathold.services.results import ConfirmResult, ConfirmStatus

logger = get_logger(__name__)

SWEEP_BATCH_SIZE = 500


async def get_reservation(db: AsyncSession, reservation_id: uuid.UUID) -> Reservation:
    result = await db.execute(select(Reservation).where(Reservation.id == reservation_id))
    reservation = result.scalar_one_or_none()
    if reservation is None:
        raise ReservationNotFoundError(reservation_id)
    return reservation


async def reload_reservation(db: AsyncSession, reservation_id: uuid.UUID) -> Reservation:
    """Re-read inside a critical section, overwriting any state the session already holds."""
    result = await db.execute(
        select(Reservation)
        .where(Reservation.id == reservation_id)
        .execution_options(populate_existing=True)
    )
    reservation = result.scalar_one_or_none()
    if reservation is None:
        raise ReservationNotFoundError(reservation_id)
    return reservation


async def list_claimant_reservations(db: AsyncSession, claimant_id: str) -> list[Reservation]:
    """Get all reservations of a claimant, newest first."""
    result = await db.execute(
        select(Reservation)
        .where(Reservation.claimant_id == claimant_id)
        .order_by(Reservation.created_at.desc())
    )
    return list(result.scalars().all())


async def list_reconciliation_queue(db: AsyncSession) -> list[Reservation]:
    """Reservations whose payment arrived after they expired."""
    result = await db.execute(
        select(Reservation)
        .where(Reservation.needs_reconciliation.is_(True))
        .order_by(Reservation.updated_at.desc())
    )
    return list(result.scalars().all())


async def cancel_pending_reservation(
    db: AsyncSession,
    reservation: Reservation,
    reason: CancelReason,
    now: Optional[datetime] = None,
) -> int:
    """
    pending -> cancelled, releasing the reservation's holds.
    Must run inside the show's critical section. Returns holds removed.
    """
    now = now or utcnow()
    reservation.status = ReservationStatus.CANCELLED.value
    reservation.cancel_reason = reason.value
    reservation.cancelled_at = now
    return await seat_ledger.release(db, reservation.show_id, reservation.id)


def _is_lapsed(reservation: Reservation, now: datetime) -> bool:
    return reservation.expires_at is not None and reservation.expires_at <= now


def _flag_late_payment(reservation: Reservation, payment_reference: Optional[str]) -> bool:
    if not payment_reference:
        return False
    reservation.payment_reference = payment_reference
    reservation.needs_reconciliation = True
    return True


async def confirm_reservation(
    db: AsyncSession,
    reservation_id: uuid.UUID,
    payment_reference: Optional[str] = None,
) -> ConfirmResult:
    """
    Confirm a pending reservation after payment succeeded.

    Idempotent: confirming a confirmed reservation returns ALREADY_CONFIRMED
    and changes nothing. A pending reservation past its expiry is expired
    here (lazy check) and reported as RESERVATION_EXPIRED, even if no sweep
    has run yet.

    Raises:
        ReservationNotFoundError: unknown reservation id
        ShowNotFoundError / SeatLedgerIntegrityError: ledger inconsistency
    """
    reservation = await get_reservation(db, reservation_id)
    show_id = reservation.show_id
    late_payment = False

    async def work() -> ConfirmResult:
        nonlocal late_payment
        late_payment = False
        fresh = await reload_reservation(db, reservation_id)
        now = utcnow()

        if fresh.status == ReservationStatus.CONFIRMED.value:
            return ConfirmResult(ConfirmStatus.ALREADY_CONFIRMED, fresh)

        if fresh.status == ReservationStatus.CANCELLED.value:
            late_payment = _flag_late_payment(fresh, payment_reference)
            return ConfirmResult(ConfirmStatus.RESERVATION_EXPIRED, fresh)

        if _is_lapsed(fresh, now):
            await cancel_pending_reservation(db, fresh, CancelReason.EXPIRED, now)
            late_payment = _flag_late_payment(fresh, payment_reference)
            return ConfirmResult(ConfirmStatus.RESERVATION_EXPIRED, fresh, lapsed_now=True)

        await seat_ledger.confirm(db, show_id, fresh.id, fresh.claimant_id, fresh.seats, now=now)
        fresh.status = ReservationStatus.CONFIRMED.value
        fresh.expires_at = None
        fresh.confirmed_at = now
        if payment_reference:
            fresh.payment_reference = payment_reference
        return ConfirmResult(ConfirmStatus.CONFIRMED, fresh)

    result = await seat_ledger.run_in_show_transaction(db, show_id, work, operation="confirm")
    confirmed = result.reservation
    record_confirmation(result.status.value)

    if result.status is ConfirmStatus.CONFIRMED:
        expiry_scheduler.cancel(reservation_id)
        await announce_seat_change(show_id)
        dispatcher.dispatch(ConfirmedBooking.from_reservation(confirmed))
        logger.info(
            "reservation_confirmed",
            reservation_id=str(reservation_id),
            show_id=str(show_id),
            claimant_id=confirmed.claimant_id,
            seats=confirmed.seats,
            payment_reference=confirmed.payment_reference,
        )
    elif result.status is ConfirmStatus.ALREADY_CONFIRMED:
        if payment_reference and payment_reference != confirmed.payment_reference:
            logger.warning(
                "duplicate_confirmation_new_reference",
                reservation_id=str(reservation_id),
                payment_reference=payment_reference,
                recorded_reference=confirmed.payment_reference,
            )
        else:
            logger.info("duplicate_confirmation", reservation_id=str(reservation_id))
    else:
        if result.lapsed_now:
            expiry_scheduler.cancel(reservation_id)
            record_expiry("confirm")
            await announce_seat_change(show_id)
        logger.warning(
            "confirm_rejected_expired",
            reservation_id=str(reservation_id),
            show_id=str(show_id),
            cancel_reason=confirmed.cancel_reason,
        )

    if late_payment:
        payment_anomalies.inc()
        logger.error(
            "payment_after_expiry",
            reservation_id=str(reservation_id),
            show_id=str(show_id),
            claimant_id=confirmed.claimant_id,
            payment_reference=payment_reference,
        )

    return result


async def expire_reservation(
    db: AsyncSession,
    reservation_id: uuid.UUID,
    trigger: str = "deferred",
) -> bool:
    """
    Cancel the reservation if it is still pending and its hold has lapsed.
    Returns True if this call expired it; a no-op (False) otherwise.
    """
    try:
        reservation = await get_reservation(db, reservation_id)
    except ReservationNotFoundError:
        logger.warning("expiry_check_unknown_reservation", reservation_id=str(reservation_id))
        return False
    show_id = reservation.show_id

    async def work() -> bool:
        fresh = await reload_reservation(db, reservation_id)
        now = utcnow()
        if fresh.status != ReservationStatus.PENDING.value or not _is_lapsed(fresh, now):
            return False
        await cancel_pending_reservation(db, fresh, CancelReason.EXPIRED, now)
        return True

    expired = await seat_ledger.run_in_show_transaction(db, show_id, work, operation="expire")
    if expired:
        record_expiry(trigger)
        await announce_seat_change(show_id)
        logger.info(
            "reservation_expired",
            reservation_id=str(reservation_id),
            show_id=str(show_id),
            trigger=trigger,
        )
    return expired


async def _expire_show(
    session_factory: async_sessionmaker[AsyncSession],
    show_id: uuid.UUID,
    reservation_ids: List[uuid.UUID],
    now: datetime,
) -> List[uuid.UUID]:
    async with session_factory() as db:
        async def work() -> List[uuid.UUID]:
            expired = []
            for reservation_id in reservation_ids:
                fresh = await reload_reservation(db, reservation_id)
                # Re-check: confirmed or released since the scan
                if fresh.status != ReservationStatus.PENDING.value or not _is_lapsed(fresh, now):
                    continue
                await cancel_pending_reservation(db, fresh, CancelReason.EXPIRED, now)
                expired.append(reservation_id)
            await seat_ledger.sweep_expired(db, show_id, now)
            return expired

        return await seat_ledger.run_in_show_transaction(db, show_id, work, operation="sweep")


async def expire_sweep(
    session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
    now: Optional[datetime] = None,
    batch_size: int = SWEEP_BATCH_SIZE,
) -> int:
    """
    Cancel every pending reservation whose hold lapsed and reclaim expired
    holds, one show at a time. A failure on one show is logged and does
    not stop the others. Returns the number of reservations expired.
    """
    now = now or utcnow()

    async with session_factory() as db:
        rows = (
            await db.execute(
                select(Reservation.id, Reservation.show_id)
                .where(
                    Reservation.status == ReservationStatus.PENDING.value,
                    Reservation.expires_at <= now,
                )
                .order_by(Reservation.expires_at)
                .limit(batch_size)
            )
        ).all()
        orphan_shows = await seat_ledger.shows_with_expired_holds(db, now)

    by_show: Dict[uuid.UUID, List[uuid.UUID]] = defaultdict(list)
    for row in rows:
        by_show[row.show_id].append(row.id)
    for show_id in orphan_shows:
        by_show.setdefault(show_id, [])

    if not by_show:
        return 0

    total = 0
    for show_id, reservation_ids in by_show.items():
        try:
            expired = await _expire_show(session_factory, show_id, reservation_ids, now)
        except Exception as e:
            logger.error(
                "sweep_show_failed",
                show_id=str(show_id),
                error=str(e),
                error_type=type(e).__name__,
            )
            continue

        for reservation_id in expired:
            expiry_scheduler.cancel(reservation_id)
        total += len(expired)
        await announce_seat_change(show_id)

    record_expiry("sweep", total)
    logger.info("expiry_sweep_completed", expired=total, shows=len(by_show))
    return total


async def _run_deferred_check(reservation_id: uuid.UUID) -> None:
    async with AsyncSessionLocal() as db:
        await expire_reservation(db, reservation_id, trigger="deferred")


# Global instance
expiry_scheduler = ExpiryScheduler(check=_run_deferred_check)
