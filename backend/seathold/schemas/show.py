"""
Pydantic schemas for show and seat-map request/response validation.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class ShowCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    starts_at: datetime
    price: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    layout_ref: Optional[str] = Field(None, max_length=100)

    @field_validator("starts_at")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        """Start times without an offset are UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class ShowResponse(BaseModel):
    id: UUID
    title: str
    starts_at: datetime
    price: Decimal
    layout_ref: Optional[str]
    created_at: datetime

    model_config = {"from_attributes": True}


class ShowListResponse(BaseModel):
    shows: list[ShowResponse]
    total: int
    page: int
    page_size: int


class HeldSeatResponse(BaseModel):
    seat: str
    reservation_id: UUID
    claimant_id: str
    expires_at: datetime


class SeatSnapshotResponse(BaseModel):
    show_id: UUID
    occupied_seats: list[str]
    held_seats: list[HeldSeatResponse]
    timestamp: datetime
