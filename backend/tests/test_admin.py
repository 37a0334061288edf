"""
Tests for administrative endpoints and service health.
"""

import asyncio

import pytest
from httpx import AsyncClient

from seathold.db.session import AsyncSessionLocal
from seathold.services.hold_service import create_reservation
from seathold.services.reservation_service import expiry_scheduler


@pytest.mark.asyncio
async def test_manual_sweep_clears_stuck_holds(client: AsyncClient, admin_headers, auth_headers, test_show):
    async with AsyncSessionLocal() as db:
        held = await create_reservation(db, test_show.id, "shopper-x", ["A1"], ttl_seconds=0.2)
    expiry_scheduler.cancel(held.reservation.id)
    await asyncio.sleep(0.4)

    response = await client.post("/api/v1/admin/sweep", headers=admin_headers)
    assert response.status_code == 200
    assert response.json() == {"expired": 1}

    reservation = await client.get(f"/api/v1/reservations/{held.reservation.id}", headers=auth_headers)
    assert reservation.json()["status"] == "cancelled"


@pytest.mark.asyncio
async def test_manual_sweep_requires_admin(client: AsyncClient, auth_headers):
    response = await client.post("/api/v1/admin/sweep", headers=auth_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_reconciliation_queue_lists_late_payments(
    client: AsyncClient, admin_headers, payment_headers, test_show
):
    async with AsyncSessionLocal() as db:
        held = await create_reservation(db, test_show.id, "shopper-x", ["A1"], ttl_seconds=0.2)
    expiry_scheduler.cancel(held.reservation.id)
    await asyncio.sleep(0.4)

    await client.post(
        f"/api/v1/reservations/{held.reservation.id}/confirm",
        json={"payment_reference": "pi_late"},
        headers=payment_headers,
    )

    response = await client.get("/api/v1/admin/reconciliation", headers=admin_headers)
    assert response.status_code == 200
    data = response.json()
    assert len(data) == 1
    assert data[0]["id"] == str(held.reservation.id)
    assert data[0]["payment_reference"] == "pi_late"
    assert data[0]["status"] == "cancelled"


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["cache"] == {"status": "disabled"}


@pytest.mark.asyncio
async def test_metrics_endpoint(client: AsyncClient, auth_headers, test_show):
    await client.post(
        "/api/v1/reservations/",
        json={"show_id": str(test_show.id), "seats": ["A1"]},
        headers=auth_headers,
    )

    response = await client.get("/metrics")
    assert response.status_code == 200
    assert "reservation_attempts_total" in response.text
    assert "seat_claim_latency_seconds" in response.text


@pytest.mark.asyncio
async def test_request_id_is_echoed(client: AsyncClient):
    response = await client.get("/health", headers={"X-Request-ID": "cb-42"})
    assert response.headers["X-Request-ID"] == "cb-42"
    assert response.headers["X-Response-Time"].endswith("ms")

    generated = await client.get("/health")
    assert len(generated.headers["X-Request-ID"]) == 8
