"""
Show endpoints: details, seat snapshot and the live seat stream.
"""

import json
import uuid
from contextlib import aclosing

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from sse_starlette.sse import EventSourceResponse

from seathold.core.exceptions import ShowNotFoundError
from seathold.core.logging import get_logger
from seathold.core.security import Principal, require_admin
from seathold.db.session import AsyncSessionLocal, get_db
from seathold.schemas.show import ShowCreate, ShowListResponse, ShowResponse, SeatSnapshotResponse
from seathold.services import seat_ledger
from seathold.services.notifier import notifier
from seathold.services.show_service import create_show, get_show, list_shows

logger = get_logger(__name__)
router = APIRouter(prefix="/shows", tags=["Shows"])


@router.post("/", response_model=ShowResponse, status_code=status.HTTP_201_CREATED)
async def create_show_endpoint(
    show_data: ShowCreate,
    principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Create a new show. Requires an administrator token."""
    return await create_show(db, show_data)


@router.get("/", response_model=ShowListResponse)
async def list_shows_endpoint(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    upcoming_only: bool = Query(True),
    db: AsyncSession = Depends(get_db),
):
    shows, total = await list_shows(db, page, page_size, upcoming_only)
    return ShowListResponse(
        shows=[ShowResponse.model_validate(s) for s in shows],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/{show_id}", response_model=ShowResponse)
async def get_show_endpoint(
    show_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    return await get_show(db, show_id)


@router.get("/{show_id}/seats", response_model=SeatSnapshotResponse)
async def get_seat_snapshot(
    show_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """
    Current occupied seats and active holds.
    Always read from the database (polling fallback for the stream).
    """
    snapshot = await seat_ledger.snapshot(db, show_id)
    return SeatSnapshotResponse.model_validate(snapshot.to_payload())


@router.get("/{show_id}/seats/stream")
async def stream_seat_snapshots(show_id: uuid.UUID, request: Request):
    """
    Server-Sent Events: a "seats" event with the full snapshot right away,
    then every SEAT_STREAM_INTERVAL_SECONDS and after every seat change.
    """
    # Short-lived session: the stream must not pin a connection
    async with AsyncSessionLocal() as db:
        await get_show(db, show_id)

    async def event_generator():
        async with aclosing(notifier.subscribe(show_id)) as snapshots:
            try:
                async for payload in snapshots:
                    if await request.is_disconnected():
                        break
                    yield {"event": "seats", "data": json.dumps(payload)}
            except ShowNotFoundError as e:
                logger.warning("seat_stream_show_gone", show_id=str(show_id))
                yield {"event": "error", "data": json.dumps({"message": e.message})}

    return EventSourceResponse(
        event_generator(),
        headers={"X-Accel-Buffering": "no"},
        ping=15,
    )
