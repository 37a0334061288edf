"""
Pydantic schemas for reservation-related request/response validation.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Optional
from uuid import UUID

from pydantic import BaseModel, Field, StringConstraints, field_validator

from seathold.core.config import get_settings

settings = get_settings()

SeatId = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=32)]


class ReservationCreate(BaseModel):
    show_id: UUID
    seats: list[SeatId] = Field(..., min_length=1, max_length=settings.MAX_SEATS_PER_RESERVATION)

    @field_validator("seats")
    @classmethod
    def seats_must_be_unique(cls, seats: list[str]) -> list[str]:
        if len(set(seats)) != len(seats):
            raise ValueError("Each seat may be selected only once")
        return seats


class ReservationResponse(BaseModel):
    id: UUID
    show_id: UUID
    claimant_id: str
    seats: list[str]
    amount: Decimal
    status: str
    expires_at: Optional[datetime]
    payment_reference: Optional[str]
    cancel_reason: Optional[str]
    needs_reconciliation: bool
    confirmed_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    created_at: datetime

    model_config = {"from_attributes": True}


class ReservationCreatedResponse(BaseModel):
    reservation_id: UUID
    show_id: UUID
    seats: list[str]
    amount: Decimal
    status: str
    expires_at: datetime


class ConfirmRequest(BaseModel):
    payment_reference: Optional[str] = Field(None, max_length=255)


class ReservationOutcomeResponse(BaseModel):
    outcome: str
    reservation: ReservationResponse


class SweepResponse(BaseModel):
    expired: int
