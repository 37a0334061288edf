"""
Show service handling creation and lookup.
"""

import uuid
from datetime import datetime, timezone

from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from seathold.core.exceptions import ShowNotFoundError
from seathold.core.logging import get_logger
from seathold.models.show import Show
from seathold.schemas.show import ShowCreate

logger = get_logger(__name__)


async def create_show(db: AsyncSession, show_data: ShowCreate) -> Show:
    """Create a new show with an empty seat ledger."""
    if show_data.starts_at <= datetime.now(timezone.utc):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Show start time must be in the future",
        )

    show = Show(
        title=show_data.title,
        starts_at=show_data.starts_at,
        price=show_data.price,
        layout_ref=show_data.layout_ref,
    )
    db.add(show)
    await db.flush()
    await db.refresh(show)

    logger.info("show_created", show_id=str(show.id), title=show.title, price=str(show.price))
    return show


async def get_show(db: AsyncSession, show_id: uuid.UUID) -> Show:
    """Get a single show by ID."""
    result = await db.execute(select(Show).where(Show.id == show_id))
    show = result.scalar_one_or_none()

    if not show:
        raise ShowNotFoundError(show_id)
    return show


async def list_shows(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 20,
    upcoming_only: bool = True,
) -> tuple[list[Show], int]:
    """List shows with pagination. Uses the ix_shows_starts_at index."""
    query = select(Show)

    if upcoming_only:
        query = query.where(Show.starts_at >= datetime.now(timezone.utc))

    count_query = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_query)).scalar()

    result = await db.execute(
        query
        .order_by(Show.starts_at.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list(result.scalars().all()), total
