"""
Seat ledger: the authoritative per-show record of occupied and held seats.

CONCURRENCY STRATEGY: Per-show lock + Optimistic Version Check
==============================================================

Problem:
  Two shoppers select overlapping seats at the same moment.
  Both read "A2 is free", both insert a hold, both think they own A2.
  Result: the same seat is sold twice.

Solution:
  Every mutation of a show's seat maps runs through
  run_in_show_transaction(), which

  1. Takes the show's lock (ShowLock strategy: in-process or Redis), so
     same-show mutations never interleave their read-check-write
     sequence. Different shows use different locks.
  2. Starts a fresh transaction inside the lock, so no read predates it.
  3. Reads shows.version, checks seat state, writes holds/occupied rows.
  4. UPDATE shows SET version = version + 1
     WHERE id = :show_id AND version = :read_version
     If rows_affected == 0, another writer got in (a process that does
     not share our lock) -> rollback and retry.
  5. Commits before releasing the lock.

  The (show_id, seat_id) primary keys on seat_holds/occupied_seats are the
  final safety net: a concurrent insert of the same seat fails with an
  IntegrityError, which is retried like a version conflict and then
  observed as "seat unavailable".

Lazy expiry:
  A hold whose expires_at has passed is treated as absent by snapshot()
  and claim() even if no sweep has deleted it yet. Nothing depends on
  sweep timing for correctness; the sweep only reclaims rows.

Functions other than run_in_show_transaction() and snapshot() must be
called from inside run_in_show_transaction().
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Iterable, List, Optional, Sequence, Tuple, TypeVar

from sqlalchemy import delete, insert, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from seathold.core.config import get_settings
from seathold.core.exceptions import (
    BookingCoreError,
    LedgerConflictError,
    LedgerContentionError,
    ShowNotFoundError,
)
from seathold.core.logging import get_logger, ledger_context
from seathold.core.metrics import ledger_retries, record_ledger_operation
from seathold.db.base import utcnow
from seathold.models.show import OccupiedSeat, SeatHold, Show
from seathold.services.interfaces.show_lock import ShowLock
from seathold.services.strategy_factory import get_show_lock

logger = get_logger(__name__)
settings = get_settings()

MAX_RETRY_ATTEMPTS = settings.LEDGER_MAX_RETRY_ATTEMPTS

T = TypeVar("T")


class SeatLedgerIntegrityError(BookingCoreError):
    """A seat on a reservation being confirmed belongs to someone else."""

    def __init__(self, show_id: uuid.UUID, seat_ids: Sequence[str]):
        super().__init__(f"Seats {', '.join(seat_ids)} of show {show_id} are claimed by another reservation")
        self.show_id = show_id
        self.seat_ids = list(seat_ids)


@dataclass(frozen=True)
class HeldSeat:
    seat_id: str
    reservation_id: uuid.UUID
    claimant_id: str
    expires_at: datetime


@dataclass(frozen=True)
class SeatSnapshot:
    show_id: uuid.UUID
    occupied_seat_ids: List[str]
    active_holds: List[HeldSeat]
    taken_at: datetime = field(default_factory=utcnow)

    def to_payload(self) -> dict:
        """JSON-ready form; consumers replace their whole view with it."""
        return {
            "show_id": str(self.show_id),
            "occupied_seats": list(self.occupied_seat_ids),
            "held_seats": [
                {
                    "seat": hold.seat_id,
                    "reservation_id": str(hold.reservation_id),
                    "claimant_id": hold.claimant_id,
                    "expires_at": hold.expires_at.isoformat(),
                }
                for hold in self.active_holds
            ],
            "timestamp": self.taken_at.isoformat(),
        }


@dataclass(frozen=True)
class ClaimOutcome:
    success: bool
    unavailable_seats: Tuple[str, ...] = ()


def normalize_seat_ids(seat_ids: Iterable[str]) -> List[str]:
    """Strip, drop blanks and duplicates, keep selection order."""
    seen = {}
    for seat_id in seat_ids:
        cleaned = str(seat_id).strip()
        if cleaned:
            seen.setdefault(cleaned, None)
    return list(seen)


async def run_in_show_transaction(
    db: AsyncSession,
    show_id: uuid.UUID,
    work: Callable[[], Awaitable[T]],
    *,
    operation: str,
    lock: Optional[ShowLock] = None,
    max_attempts: Optional[int] = None,
) -> T:
    """
    Run `work` as one committed transaction inside the show's critical section.

    `work` is re-run from scratch after a version conflict or integrity
    error, so it must re-read everything it needs (a rollback expires
    every ORM instance in the session).

    Raises:
        LedgerContentionError: still conflicting after max_attempts
    """
    lock = lock or get_show_lock()
    attempts = max_attempts or MAX_RETRY_ATTEMPTS

    with ledger_context(show_id, operation):
        return await _run_locked(db, show_id, work, operation, lock, attempts)


async def _run_locked(
    db: AsyncSession,
    show_id: uuid.UUID,
    work: Callable[[], Awaitable[T]],
    operation: str,
    lock: ShowLock,
    attempts: int,
) -> T:
    async with lock.hold(show_id):
        # Close whatever the caller read before the lock
        if db.in_transaction():
            await db.commit()

        for attempt in range(1, attempts + 1):
            try:
                result = await work()
                await db.commit()
            except (LedgerConflictError, IntegrityError) as e:
                await db.rollback()
                ledger_retries.inc()
                logger.info(
                    "ledger_retry",
                    show_id=str(show_id),
                    operation=operation,
                    attempt=attempt,
                    reason=type(e).__name__,
                )
                continue
            except Exception:
                await db.rollback()
                raise

            record_ledger_operation(operation)
            return result

    logger.warning("ledger_contention", show_id=str(show_id), operation=operation, attempts=attempts)
    raise LedgerContentionError(show_id, attempts)


async def _read_version(db: AsyncSession, show_id: uuid.UUID) -> int:
    version = (
        await db.execute(select(Show.version).where(Show.id == show_id))
    ).scalar_one_or_none()
    if version is None:
        logger.error("ledger_show_missing", show_id=str(show_id))
        raise ShowNotFoundError(show_id)
    return version


async def _bump_version(db: AsyncSession, show_id: uuid.UUID, read_version: int) -> None:
    result = await db.execute(
        update(Show)
        .where(Show.id == show_id, Show.version == read_version)
        .values(version=Show.version + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise LedgerConflictError(show_id)


async def snapshot(db: AsyncSession, show_id: uuid.UUID, now: Optional[datetime] = None) -> SeatSnapshot:
    """
    Read-only view of a show's seats. Holds past their expiry are left out
    (lazy expiry); no lock is taken.
    """
    now = now or utcnow()
    await _read_version(db, show_id)

    occupied = (
        await db.execute(
            select(OccupiedSeat.seat_id)
            .where(OccupiedSeat.show_id == show_id)
            .order_by(OccupiedSeat.seat_id)
        )
    ).scalars().all()

    holds = (
        await db.execute(
            select(SeatHold.seat_id, SeatHold.reservation_id, SeatHold.claimant_id, SeatHold.expires_at)
            .where(SeatHold.show_id == show_id, SeatHold.expires_at > now)
            .order_by(SeatHold.seat_id)
        )
    ).all()

    return SeatSnapshot(
        show_id=show_id,
        occupied_seat_ids=list(occupied),
        active_holds=[
            HeldSeat(
                seat_id=row.seat_id,
                reservation_id=row.reservation_id,
                claimant_id=row.claimant_id,
                expires_at=row.expires_at,
            )
            for row in holds
        ],
        taken_at=now,
    )


async def claim(
    db: AsyncSession,
    show_id: uuid.UUID,
    seat_ids: Sequence[str],
    reservation_id: uuid.UUID,
    claimant_id: str,
    expires_at: datetime,
    now: Optional[datetime] = None,
) -> ClaimOutcome:
    """
    Hold every seat in `seat_ids` for `reservation_id`, or none of them.

    A seat is unavailable if it is occupied, or held by a different
    reservation with an expiry still in the future. Expired holds on the
    requested seats are replaced.
    """
    now = now or utcnow()
    seats = normalize_seat_ids(seat_ids)
    read_version = await _read_version(db, show_id)

    occupied = (
        await db.execute(
            select(OccupiedSeat.seat_id).where(
                OccupiedSeat.show_id == show_id, OccupiedSeat.seat_id.in_(seats)
            )
        )
    ).scalars().all()

    holds = (
        await db.execute(
            select(SeatHold.seat_id, SeatHold.reservation_id, SeatHold.expires_at).where(
                SeatHold.show_id == show_id, SeatHold.seat_id.in_(seats)
            )
        )
    ).all()

    unavailable = set(occupied)
    for hold in holds:
        if hold.reservation_id != reservation_id and hold.expires_at > now:
            unavailable.add(hold.seat_id)

    if unavailable:
        logger.info(
            "seat_claim_rejected",
            show_id=str(show_id),
            reservation_id=str(reservation_id),
            unavailable=sorted(unavailable),
        )
        return ClaimOutcome(success=False, unavailable_seats=tuple(sorted(unavailable)))

    # Expired holds of other reservations, and our own previous rows, make way
    await db.execute(
        delete(SeatHold)
        .where(
            SeatHold.show_id == show_id,
            SeatHold.seat_id.in_(seats),
            or_(SeatHold.expires_at <= now, SeatHold.reservation_id == reservation_id),
        )
        .execution_options(synchronize_session=False)
    )
    await db.execute(
        insert(SeatHold),
        [
            {
                "show_id": show_id,
                "seat_id": seat_id,
                "reservation_id": reservation_id,
                "claimant_id": claimant_id,
                "expires_at": expires_at,
            }
            for seat_id in seats
        ],
    )
    await _bump_version(db, show_id, read_version)
    return ClaimOutcome(success=True)


async def release(db: AsyncSession, show_id: uuid.UUID, reservation_id: uuid.UUID) -> int:
    """Remove every hold of the reservation, expired or not. Idempotent."""
    read_version = await _read_version(db, show_id)

    result = await db.execute(
        delete(SeatHold)
        .where(SeatHold.show_id == show_id, SeatHold.reservation_id == reservation_id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        await _bump_version(db, show_id, read_version)
    return result.rowcount


async def confirm(
    db: AsyncSession,
    show_id: uuid.UUID,
    reservation_id: uuid.UUID,
    claimant_id: str,
    seat_ids: Sequence[str],
    now: Optional[datetime] = None,
) -> int:
    """
    Turn the reservation's held seats into occupied seats owned by the claimant.

    Seats already occupied by this reservation are left alone (idempotent).
    A listed seat whose hold is gone but which nobody else holds is
    occupied as well, so the confirmed reservation and the occupied map
    always agree. A listed seat owned by someone else is an integrity
    violation.
    """
    now = now or utcnow()
    seats = normalize_seat_ids(seat_ids)
    read_version = await _read_version(db, show_id)

    occupied = {
        row.seat_id: row.reservation_id
        for row in (
            await db.execute(
                select(OccupiedSeat.seat_id, OccupiedSeat.reservation_id).where(
                    OccupiedSeat.show_id == show_id, OccupiedSeat.seat_id.in_(seats)
                )
            )
        ).all()
    }
    holds = {
        row.seat_id: row
        for row in (
            await db.execute(
                select(SeatHold.seat_id, SeatHold.reservation_id, SeatHold.expires_at).where(
                    SeatHold.show_id == show_id, SeatHold.seat_id.in_(seats)
                )
            )
        ).all()
    }

    to_occupy = []
    foreign = []
    for seat_id in seats:
        if seat_id in occupied:
            if occupied[seat_id] != reservation_id:
                foreign.append(seat_id)
            continue
        hold = holds.get(seat_id)
        if hold is None or hold.reservation_id == reservation_id:
            if hold is None:
                logger.warning(
                    "confirm_without_hold",
                    show_id=str(show_id),
                    reservation_id=str(reservation_id),
                    seat=seat_id,
                )
            to_occupy.append(seat_id)
        elif hold.expires_at > now:
            foreign.append(seat_id)
        else:
            to_occupy.append(seat_id)

    if foreign:
        logger.error(
            "confirm_seat_conflict",
            show_id=str(show_id),
            reservation_id=str(reservation_id),
            seats=foreign,
        )
        raise SeatLedgerIntegrityError(show_id, foreign)

    if not to_occupy:
        return 0

    await db.execute(
        delete(SeatHold)
        .where(SeatHold.show_id == show_id, SeatHold.seat_id.in_(to_occupy))
        .execution_options(synchronize_session=False)
    )
    await db.execute(
        insert(OccupiedSeat),
        [
            {
                "show_id": show_id,
                "seat_id": seat_id,
                "claimant_id": claimant_id,
                "reservation_id": reservation_id,
                "occupied_at": now,
            }
            for seat_id in to_occupy
        ],
    )
    await _bump_version(db, show_id, read_version)
    return len(to_occupy)


async def sweep_expired(db: AsyncSession, show_id: uuid.UUID, now: Optional[datetime] = None) -> int:
    """Delete every expired hold of the show, whoever owns it. Never touches occupied seats."""
    now = now or utcnow()
    read_version = await _read_version(db, show_id)

    result = await db.execute(
        delete(SeatHold)
        .where(SeatHold.show_id == show_id, SeatHold.expires_at <= now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        await _bump_version(db, show_id, read_version)
        logger.info("holds_expired", show_id=str(show_id), holds=result.rowcount)
    return result.rowcount


async def shows_with_expired_holds(db: AsyncSession, now: Optional[datetime] = None) -> List[uuid.UUID]:
    now = now or utcnow()
    rows = await db.execute(
        select(SeatHold.show_id).where(SeatHold.expires_at <= now).distinct()
    )
    return list(rows.scalars().all())
