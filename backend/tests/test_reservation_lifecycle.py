"""
Tests for the reservation lifecycle: confirmation, expiry and reconciliation.
"""

import asyncio
import uuid
from datetime import timedelta

import pytest
from prometheus_client import REGISTRY

from seathold.core.exceptions import ReservationNotFoundError
from seathold.db.base import utcnow
from seathold.db.session import AsyncSessionLocal
from seathold.models.reservation import Reservation
from seathold.services import seat_ledger
from seathold.services.fulfillment import dispatcher
from seathold.services.hold_service import create_reservation, release_reservation
from seathold.services.reservation_service import (
    _expire_show,
    confirm_reservation,
    expire_reservation,
    expire_sweep,
    expiry_scheduler,
    list_reconciliation_queue,
)
from seathold.services.results import ConfirmStatus, HoldStatus


async def _hold(show_id, claimant, seats, ttl_seconds=None):
    async with AsyncSessionLocal() as db:
        return await create_reservation(db, show_id, claimant, seats, ttl_seconds=ttl_seconds)


async def _confirm(reservation_id, payment_reference=None):
    async with AsyncSessionLocal() as db:
        return await confirm_reservation(db, reservation_id, payment_reference)


async def _load(reservation_id):
    async with AsyncSessionLocal() as db:
        return await db.get(Reservation, reservation_id)


async def _snapshot(show_id):
    async with AsyncSessionLocal() as db:
        return await seat_ledger.snapshot(db, show_id)


def _anomaly_count():
    return REGISTRY.get_sample_value("reservation_payment_anomalies_total") or 0.0


@pytest.mark.asyncio
async def test_hold_confirm_then_seats_stay_sold(test_show):
    """
    X holds {A1, A2}; Y's concurrent claim on A2 fails; X confirms; Y's
    retry still fails because A2 is now occupied, not held.
    """
    r1 = await _hold(test_show.id, "shopper-x", ["A1", "A2"], ttl_seconds=600)
    assert r1.status is HoldStatus.CREATED

    y_attempt = await _hold(test_show.id, "shopper-y", ["A2"])
    assert y_attempt.status is HoldStatus.SEAT_UNAVAILABLE

    confirmed = await _confirm(r1.reservation.id, payment_reference="pi_123")
    assert confirmed.status is ConfirmStatus.CONFIRMED
    assert confirmed.reservation.status == "confirmed"
    assert confirmed.reservation.expires_at is None
    assert confirmed.reservation.payment_reference == "pi_123"

    snapshot = await _snapshot(test_show.id)
    assert snapshot.occupied_seat_ids == ["A1", "A2"]
    assert snapshot.active_holds == []

    retry = await _hold(test_show.id, "shopper-y", ["A2"])
    assert retry.status is HoldStatus.SEAT_UNAVAILABLE
    assert retry.unavailable_seats == ("A2",)


@pytest.mark.asyncio
async def test_confirm_is_idempotent(test_show):
    held = await _hold(test_show.id, "shopper-x", ["A1", "A2"])

    first = await _confirm(held.reservation.id, payment_reference="pi_1")
    after_first = await _snapshot(test_show.id)

    second = await _confirm(held.reservation.id, payment_reference="pi_1")
    after_second = await _snapshot(test_show.id)

    assert first.status is ConfirmStatus.CONFIRMED
    assert second.status is ConfirmStatus.ALREADY_CONFIRMED
    assert second.ok
    assert after_first.occupied_seat_ids == after_second.occupied_seat_ids == ["A1", "A2"]
    assert after_second.active_holds == []


@pytest.mark.asyncio
async def test_confirm_after_expiry_is_rejected_without_sweep(test_show):
    """The lazy check at confirm time catches a lapsed hold on its own."""
    held = await _hold(test_show.id, "shopper-x", ["C1"], ttl_seconds=0.2)
    # Take the deferred check out of the picture
    expiry_scheduler.cancel(held.reservation.id)
    await asyncio.sleep(0.4)

    result = await _confirm(held.reservation.id)
    assert result.status is ConfirmStatus.RESERVATION_EXPIRED
    assert result.lapsed_now
    assert not result.reservation.needs_reconciliation

    stored = await _load(held.reservation.id)
    assert stored.status == "cancelled"
    assert stored.cancel_reason == "expired"

    snapshot = await _snapshot(test_show.id)
    assert snapshot.occupied_seat_ids == []
    assert snapshot.active_holds == []


@pytest.mark.asyncio
async def test_payment_after_expiry_is_flagged_for_reconciliation(test_show):
    held = await _hold(test_show.id, "shopper-x", ["C2"], ttl_seconds=0.2)
    expiry_scheduler.cancel(held.reservation.id)
    await asyncio.sleep(0.4)
    anomalies_before = _anomaly_count()

    result = await _confirm(held.reservation.id, payment_reference="pi_late")
    assert result.status is ConfirmStatus.RESERVATION_EXPIRED
    assert result.reservation.needs_reconciliation
    assert result.reservation.payment_reference == "pi_late"
    assert _anomaly_count() == anomalies_before + 1

    async with AsyncSessionLocal() as db:
        queue = await list_reconciliation_queue(db)
    assert [r.id for r in queue] == [held.reservation.id]

    # Never confirmed behind the shopper's back
    snapshot = await _snapshot(test_show.id)
    assert snapshot.occupied_seat_ids == []


@pytest.mark.asyncio
async def test_confirm_released_reservation_is_rejected(test_show):
    held = await _hold(test_show.id, "shopper-x", ["D1"])
    async with AsyncSessionLocal() as db:
        await release_reservation(db, held.reservation.id, "shopper-x")

    result = await _confirm(held.reservation.id)
    assert result.status is ConfirmStatus.RESERVATION_EXPIRED
    assert not result.lapsed_now
    assert result.reservation.cancel_reason == "released"


@pytest.mark.asyncio
async def test_confirm_unknown_reservation(db_session):
    with pytest.raises(ReservationNotFoundError):
        await _confirm(uuid.uuid4())


@pytest.mark.asyncio
async def test_sweep_frees_abandoned_hold(test_show):
    """Z holds B1 for 1s and walks away; after a sweep W can take B1."""
    r2 = await _hold(test_show.id, "shopper-z", ["B1"], ttl_seconds=1)
    # As after a restart: no deferred check is pending
    expiry_scheduler.cancel(r2.reservation.id)
    await asyncio.sleep(2)

    expired = await expire_sweep()
    assert expired == 1

    stored = await _load(r2.reservation.id)
    assert stored.status == "cancelled"
    assert stored.cancel_reason == "expired"

    w_attempt = await _hold(test_show.id, "shopper-w", ["B1"])
    assert w_attempt.status is HoldStatus.CREATED


@pytest.mark.asyncio
async def test_sweep_leaves_live_and_confirmed_reservations(test_show):
    live = await _hold(test_show.id, "shopper-x", ["E1"], ttl_seconds=600)
    sold = await _hold(test_show.id, "shopper-y", ["E2"], ttl_seconds=600)
    await _confirm(sold.reservation.id)

    assert await expire_sweep() == 0

    assert (await _load(live.reservation.id)).status == "pending"
    assert (await _load(sold.reservation.id)).status == "confirmed"
    snapshot = await _snapshot(test_show.id)
    assert snapshot.occupied_seat_ids == ["E2"]
    assert [hold.seat_id for hold in snapshot.active_holds] == ["E1"]


@pytest.mark.asyncio
async def test_deferred_check_expires_hold(test_show):
    """Without any sweep, the scheduled check cancels the lapsed reservation."""
    held = await _hold(test_show.id, "shopper-x", ["F1"], ttl_seconds=0.2)
    assert expiry_scheduler.pending_count() == 1

    await asyncio.sleep(0.6)

    stored = await _load(held.reservation.id)
    assert stored.status == "cancelled"
    assert stored.cancel_reason == "expired"
    assert expiry_scheduler.pending_count() == 0


@pytest.mark.asyncio
async def test_confirm_cancels_deferred_check(test_show):
    held = await _hold(test_show.id, "shopper-x", ["F2"])
    assert expiry_scheduler.pending_count() == 1

    await _confirm(held.reservation.id)
    await asyncio.sleep(0)
    assert expiry_scheduler.pending_count() == 0


@pytest.mark.asyncio
async def test_expire_reservation_is_noop_for_live_hold(test_show):
    held = await _hold(test_show.id, "shopper-x", ["F3"], ttl_seconds=600)

    async with AsyncSessionLocal() as db:
        assert await expire_reservation(db, held.reservation.id) is False
        assert await expire_reservation(db, uuid.uuid4()) is False

    assert (await _load(held.reservation.id)).status == "pending"


@pytest.mark.asyncio
async def test_failing_fulfillment_hook_keeps_confirmation(test_show):
    calls = []

    async def broken_hook(booking):
        calls.append(booking.reservation_id)
        raise RuntimeError("ticket service down")

    dispatcher.register("broken", broken_hook)
    try:
        held = await _hold(test_show.id, "shopper-x", ["G1"])
        result = await _confirm(held.reservation.id)
        await dispatcher.drain()
    finally:
        dispatcher.unregister("broken")

    assert result.status is ConfirmStatus.CONFIRMED
    assert calls == [held.reservation.id]
    assert (await _load(held.reservation.id)).status == "confirmed"


@pytest.mark.asyncio
async def test_sweep_skips_reservation_confirmed_after_scan(test_show):
    """
    Both reservations were pending and lapsed when the sweep scanned; one
    is confirmed before its show is processed and must stay sold.
    """
    sold = await _hold(test_show.id, "shopper-x", ["H1", "H2"], ttl_seconds=600)
    abandoned = await _hold(test_show.id, "shopper-y", ["H3"], ttl_seconds=600)
    scanned_at = utcnow() + timedelta(hours=1)

    await _confirm(sold.reservation.id, payment_reference="pi_race")

    expired = await _expire_show(
        AsyncSessionLocal,
        test_show.id,
        [sold.reservation.id, abandoned.reservation.id],
        scanned_at,
    )
    assert expired == [abandoned.reservation.id]

    stored = await _load(sold.reservation.id)
    assert stored.status == "confirmed"
    assert stored.payment_reference == "pi_race"
    assert (await _load(abandoned.reservation.id)).status == "cancelled"

    snapshot = await _snapshot(test_show.id)
    assert snapshot.occupied_seat_ids == ["H1", "H2"]
    assert snapshot.active_holds == []
