"""
Tests for show endpoints and the seat snapshot.
"""

import json
import uuid
from datetime import datetime, timezone, timedelta

import pytest
from httpx import AsyncClient

from seathold.api.routes.shows import stream_seat_snapshots
from seathold.db.session import AsyncSessionLocal
from seathold.services.hold_service import create_reservation
from seathold.services.notifier import notifier


def _show_payload(days=30, price="9.50"):
    return {
        "title": "Late Night Screening",
        "starts_at": (datetime.now(timezone.utc) + timedelta(days=days)).isoformat(),
        "price": price,
        "layout_ref": "hall-2",
    }


@pytest.mark.asyncio
async def test_create_show(client: AsyncClient, admin_headers):
    """Administrators can create a show."""
    response = await client.post("/api/v1/shows/", json=_show_payload(), headers=admin_headers)
    assert response.status_code == 201
    data = response.json()
    assert data["title"] == "Late Night Screening"
    assert data["layout_ref"] == "hall-2"

    snapshot = await client.get(f"/api/v1/shows/{data['id']}/seats")
    assert snapshot.status_code == 200
    assert snapshot.json()["occupied_seats"] == []
    assert snapshot.json()["held_seats"] == []


@pytest.mark.asyncio
async def test_create_show_requires_admin(client: AsyncClient, auth_headers):
    response = await client.post("/api/v1/shows/", json=_show_payload(), headers=auth_headers)
    assert response.status_code == 403

    response = await client.post("/api/v1/shows/", json=_show_payload())
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_create_show_past_date(client: AsyncClient, admin_headers):
    """Show in the past returns 400."""
    response = await client.post("/api/v1/shows/", json=_show_payload(days=-1), headers=admin_headers)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_create_show_without_price(client: AsyncClient, admin_headers):
    response = await client.post("/api/v1/shows/", json=_show_payload(price="0"), headers=admin_headers)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_get_show(client: AsyncClient, test_show):
    response = await client.get(f"/api/v1/shows/{test_show.id}")
    assert response.status_code == 200
    assert response.json()["title"] == "Test Screening"


@pytest.mark.asyncio
async def test_list_shows(client: AsyncClient, test_show):
    response = await client.get("/api/v1/shows/")
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 1
    assert data["shows"][0]["id"] == str(test_show.id)


@pytest.mark.asyncio
async def test_unknown_show_is_404(client: AsyncClient):
    show_id = uuid.uuid4()
    assert (await client.get(f"/api/v1/shows/{show_id}")).status_code == 404
    assert (await client.get(f"/api/v1/shows/{show_id}/seats")).status_code == 404
    assert (await client.get(f"/api/v1/shows/{show_id}/seats/stream")).status_code == 404


@pytest.mark.asyncio
async def test_create_show_without_offset_is_utc(client: AsyncClient, admin_headers):
    """A start time without an offset is read as UTC."""
    payload = _show_payload()
    payload["starts_at"] = "2030-01-01T10:00:00"
    response = await client.post("/api/v1/shows/", json=payload, headers=admin_headers)
    assert response.status_code == 201
    starts_at = datetime.fromisoformat(response.json()["starts_at"].replace("Z", "+00:00"))
    assert starts_at == datetime(2030, 1, 1, 10, 0, tzinfo=timezone.utc)

    payload["starts_at"] = "2001-01-01T10:00:00"
    response = await client.post("/api/v1/shows/", json=payload, headers=admin_headers)
    assert response.status_code == 400


class _ConnectedRequest:
    async def is_disconnected(self):
        return False


@pytest.mark.asyncio
async def test_seat_stream_sends_snapshot_then_closes(test_show):
    """The stream opens with a full seats frame; closing it drops the subscription."""
    async with AsyncSessionLocal() as db:
        held = await create_reservation(db, test_show.id, "shopper-x", ["A1"])

    response = await stream_seat_snapshots(test_show.id, _ConnectedRequest())
    assert response.headers["X-Accel-Buffering"] == "no"

    frames = response.body_iterator
    frame = await frames.__anext__()
    assert frame["event"] == "seats"
    payload = json.loads(frame["data"])
    assert payload["show_id"] == str(test_show.id)
    assert payload["occupied_seats"] == []
    assert [hold["seat"] for hold in payload["held_seats"]] == ["A1"]
    assert payload["held_seats"][0]["reservation_id"] == str(held.reservation.id)
    assert notifier.active_subscriptions(test_show.id) == 1

    await frames.aclose()
    assert notifier.active_subscriptions(test_show.id) == 0
