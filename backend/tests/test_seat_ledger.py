"""
Tests for the seat ledger: claims, releases, confirmations and sweeps.
"""

import uuid
from datetime import timedelta

import pytest
from sqlalchemy import select

from seathold.core.exceptions import LedgerConflictError, LedgerContentionError, ShowNotFoundError
from seathold.db.base import utcnow
from seathold.db.session import AsyncSessionLocal
from seathold.models.show import Show
from seathold.services import seat_ledger
from seathold.services.seat_ledger import SeatLedgerIntegrityError


async def _claim(show_id, seats, claimant="shopper-x", ttl=600, reservation_id=None):
    reservation_id = reservation_id or uuid.uuid4()
    now = utcnow()
    async with AsyncSessionLocal() as db:
        outcome = await seat_ledger.run_in_show_transaction(
            db,
            show_id,
            lambda: seat_ledger.claim(
                db, show_id, seats, reservation_id, claimant, now + timedelta(seconds=ttl), now=now
            ),
            operation="claim",
        )
    return reservation_id, outcome


async def _snapshot(show_id, now=None):
    async with AsyncSessionLocal() as db:
        return await seat_ledger.snapshot(db, show_id, now=now)


def _held(snapshot):
    return sorted(hold.seat_id for hold in snapshot.active_holds)


@pytest.mark.asyncio
async def test_claim_holds_all_seats(test_show):
    """A claim on free seats holds every one of them."""
    reservation_id, outcome = await _claim(test_show.id, ["A1", "A2"])
    assert outcome.success

    snapshot = await _snapshot(test_show.id)
    assert _held(snapshot) == ["A1", "A2"]
    assert all(hold.reservation_id == reservation_id for hold in snapshot.active_holds)
    assert snapshot.occupied_seat_ids == []


@pytest.mark.asyncio
async def test_claim_is_all_or_nothing(test_show):
    """One unavailable seat rejects the whole selection and writes nothing."""
    await _claim(test_show.id, ["A2"], claimant="shopper-x")

    _, outcome = await _claim(test_show.id, ["A1", "A2", "A3"], claimant="shopper-y")
    assert not outcome.success
    assert outcome.unavailable_seats == ("A2",)

    snapshot = await _snapshot(test_show.id)
    assert _held(snapshot) == ["A2"]


@pytest.mark.asyncio
async def test_claim_rejects_occupied_seat(test_show):
    """Sold seats are never claimable again."""
    reservation_id, _ = await _claim(test_show.id, ["B1"])
    async with AsyncSessionLocal() as db:
        await seat_ledger.run_in_show_transaction(
            db,
            test_show.id,
            lambda: seat_ledger.confirm(db, test_show.id, reservation_id, "shopper-x", ["B1"]),
            operation="confirm",
        )

    _, outcome = await _claim(test_show.id, ["B1"], claimant="shopper-y")
    assert not outcome.success
    assert outcome.unavailable_seats == ("B1",)


@pytest.mark.asyncio
async def test_expired_hold_is_claimable_without_sweep(test_show):
    """A lapsed hold counts as absent even though no sweep deleted it."""
    await _claim(test_show.id, ["C1"], claimant="shopper-x", ttl=-1)

    snapshot = await _snapshot(test_show.id)
    assert _held(snapshot) == []

    _, outcome = await _claim(test_show.id, ["C1"], claimant="shopper-y")
    assert outcome.success
    snapshot = await _snapshot(test_show.id)
    assert [hold.claimant_id for hold in snapshot.active_holds] == ["shopper-y"]


@pytest.mark.asyncio
async def test_release_frees_seats_and_is_idempotent(test_show):
    reservation_id, _ = await _claim(test_show.id, ["D1", "D2"])

    async with AsyncSessionLocal() as db:
        removed = await seat_ledger.run_in_show_transaction(
            db,
            test_show.id,
            lambda: seat_ledger.release(db, test_show.id, reservation_id),
            operation="release",
        )
        assert removed == 2

        removed_again = await seat_ledger.run_in_show_transaction(
            db,
            test_show.id,
            lambda: seat_ledger.release(db, test_show.id, reservation_id),
            operation="release",
        )
        assert removed_again == 0

    snapshot = await _snapshot(test_show.id)
    assert _held(snapshot) == []


@pytest.mark.asyncio
async def test_confirm_moves_holds_to_occupied(test_show):
    reservation_id, _ = await _claim(test_show.id, ["E1", "E2"])

    async with AsyncSessionLocal() as db:
        moved = await seat_ledger.run_in_show_transaction(
            db,
            test_show.id,
            lambda: seat_ledger.confirm(db, test_show.id, reservation_id, "shopper-x", ["E1", "E2"]),
            operation="confirm",
        )
        assert moved == 2

        # Second confirm changes nothing
        moved_again = await seat_ledger.run_in_show_transaction(
            db,
            test_show.id,
            lambda: seat_ledger.confirm(db, test_show.id, reservation_id, "shopper-x", ["E1", "E2"]),
            operation="confirm",
        )
        assert moved_again == 0

    snapshot = await _snapshot(test_show.id)
    assert snapshot.occupied_seat_ids == ["E1", "E2"]
    assert snapshot.active_holds == []


@pytest.mark.asyncio
async def test_confirm_refuses_seat_held_by_someone_else(test_show):
    await _claim(test_show.id, ["F1"], claimant="shopper-y")
    stranger = uuid.uuid4()

    async with AsyncSessionLocal() as db:
        with pytest.raises(SeatLedgerIntegrityError):
            await seat_ledger.run_in_show_transaction(
                db,
                test_show.id,
                lambda: seat_ledger.confirm(db, test_show.id, stranger, "shopper-x", ["F1"]),
                operation="confirm",
            )

    snapshot = await _snapshot(test_show.id)
    assert snapshot.occupied_seat_ids == []
    assert _held(snapshot) == ["F1"]


@pytest.mark.asyncio
async def test_sweep_removes_only_expired_holds(test_show):
    await _claim(test_show.id, ["G1"], ttl=-1)
    await _claim(test_show.id, ["G2"], ttl=600)
    sold, _ = await _claim(test_show.id, ["G3"], ttl=600)
    async with AsyncSessionLocal() as db:
        await seat_ledger.run_in_show_transaction(
            db,
            test_show.id,
            lambda: seat_ledger.confirm(db, test_show.id, sold, "shopper-x", ["G3"]),
            operation="confirm",
        )

        swept = await seat_ledger.run_in_show_transaction(
            db,
            test_show.id,
            lambda: seat_ledger.sweep_expired(db, test_show.id),
            operation="sweep",
        )
    assert swept == 1

    snapshot = await _snapshot(test_show.id)
    assert _held(snapshot) == ["G2"]
    assert snapshot.occupied_seat_ids == ["G3"]


@pytest.mark.asyncio
async def test_every_mutation_bumps_show_version(test_show):
    reservation_id, _ = await _claim(test_show.id, ["H1"])
    async with AsyncSessionLocal() as db:
        await seat_ledger.run_in_show_transaction(
            db,
            test_show.id,
            lambda: seat_ledger.release(db, test_show.id, reservation_id),
            operation="release",
        )
        version = (await db.execute(select(Show.version).where(Show.id == test_show.id))).scalar_one()
    assert version == test_show.version + 2


@pytest.mark.asyncio
async def test_version_conflict_is_retried(test_show):
    """A lost compare-and-swap is rolled back and the work re-run."""
    calls = []

    async with AsyncSessionLocal() as db:
        async def work():
            calls.append(1)
            if len(calls) == 1:
                raise LedgerConflictError(test_show.id)
            return await seat_ledger.release(db, test_show.id, uuid.uuid4())

        result = await seat_ledger.run_in_show_transaction(db, test_show.id, work, operation="release")

    assert result == 0
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_retries_are_bounded(test_show):
    async with AsyncSessionLocal() as db:
        async def work():
            raise LedgerConflictError(test_show.id)

        with pytest.raises(LedgerContentionError):
            await seat_ledger.run_in_show_transaction(
                db, test_show.id, work, operation="claim", max_attempts=2
            )


@pytest.mark.asyncio
async def test_unknown_show_is_fatal(db_session):
    with pytest.raises(ShowNotFoundError):
        await _snapshot(uuid.uuid4())


def test_normalize_seat_ids_keeps_order_and_drops_duplicates():
    assert seat_ledger.normalize_seat_ids([" A2", "A1", "A2", "", "B7 "]) == ["A2", "A1", "B7"]
