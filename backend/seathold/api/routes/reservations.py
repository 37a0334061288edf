"""
Reservation endpoints: hold, query, release and confirm.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from seathold.core.logging import get_logger
from seathold.core.security import Principal, get_current_principal, require_payment_caller
from seathold.db.session import get_db
from seathold.schemas.reservation import (
    ConfirmRequest,
    ReservationCreate,
    ReservationCreatedResponse,
    ReservationOutcomeResponse,
    ReservationResponse,
)
from seathold.services.hold_service import create_reservation, release_reservation
from seathold.services.reservation_service import (
    confirm_reservation,
    get_reservation,
    list_claimant_reservations,
)
from seathold.services.results import ConfirmStatus, HoldStatus, ReleaseStatus

logger = get_logger(__name__)
router = APIRouter(prefix="/reservations", tags=["Reservations"])


@router.post("/", response_model=ReservationCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_reservation_endpoint(
    reservation_data: ReservationCreate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """
    Hold the selected seats for the caller.

    All seats or none: if any seat is occupied or held by someone else the
    request fails with 409 and lists the unavailable seats. The hold lasts
    HOLD_TTL_SECONDS; confirm before it lapses.
    """
    result = await create_reservation(
        db, reservation_data.show_id, principal.claimant_id, reservation_data.seats
    )

    if result.status is HoldStatus.SEAT_UNAVAILABLE:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "message": "Some of the selected seats are no longer available",
                "unavailable_seats": list(result.unavailable_seats),
            },
        )
    if result.status is HoldStatus.INVALID_SHOW:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=result.reason)
    if result.status is HoldStatus.INVALID_REQUEST:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=result.reason)

    reservation = result.reservation
    return ReservationCreatedResponse(
        reservation_id=reservation.id,
        show_id=reservation.show_id,
        seats=reservation.seats,
        amount=reservation.amount,
        status=reservation.status,
        expires_at=reservation.expires_at,
    )


@router.get("/", response_model=list[ReservationResponse])
async def list_my_reservations(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Get all reservations of the authenticated claimant."""
    return await list_claimant_reservations(db, principal.claimant_id)


@router.get("/{reservation_id}", response_model=ReservationResponse)
async def get_reservation_endpoint(
    reservation_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    reservation = await get_reservation(db, reservation_id)
    if reservation.claimant_id != principal.claimant_id and not principal.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not your reservation",
        )
    return reservation


@router.post("/{reservation_id}/release", response_model=ReservationOutcomeResponse)
async def release_reservation_endpoint(
    reservation_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Release a pending reservation; its seats are free immediately."""
    result = await release_reservation(
        db, reservation_id, principal.claimant_id, is_admin=principal.is_admin
    )
    if result.status is ReleaseStatus.NOT_AUTHORIZED:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the claimant or an administrator can release this reservation",
        )
    return ReservationOutcomeResponse(
        outcome=result.status.value,
        reservation=ReservationResponse.model_validate(result.reservation),
    )


@router.post("/{reservation_id}/confirm", response_model=ReservationOutcomeResponse)
async def confirm_reservation_endpoint(
    reservation_id: uuid.UUID,
    confirm_data: Optional[ConfirmRequest] = None,
    caller: str = Depends(require_payment_caller),
    db: AsyncSession = Depends(get_db),
):
    """
    Payment succeeded: turn the held seats into sold seats.

    Safe to call more than once. A reservation whose hold lapsed is not
    confirmed (410); if a payment reference is supplied it is kept and the
    reservation is queued for reconciliation.
    """
    payment_reference = confirm_data.payment_reference if confirm_data else None
    logger.info("confirm_requested", reservation_id=str(reservation_id), caller=caller)

    result = await confirm_reservation(db, reservation_id, payment_reference)

    if result.status is ConfirmStatus.RESERVATION_EXPIRED:
        raise HTTPException(
            status_code=status.HTTP_410_GONE,
            detail={
                "message": "The hold on these seats has expired",
                "reservation_id": str(reservation_id),
                "needs_reconciliation": result.reservation.needs_reconciliation,
            },
        )
    return ReservationOutcomeResponse(
        outcome=result.status.value,
        reservation=ReservationResponse.model_validate(result.reservation),
    )
