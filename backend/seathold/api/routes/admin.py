"""
Administrative endpoints.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from seathold.core.logging import get_logger
from seathold.core.security import Principal, require_admin
from seathold.db.session import get_db
from seathold.schemas.reservation import ReservationResponse, SweepResponse
from seathold.services.expiry_worker import expiry_worker
from seathold.services.reservation_service import list_reconciliation_queue

logger = get_logger(__name__)
router = APIRouter(prefix="/admin", tags=["Admin"])


@router.post("/sweep", response_model=SweepResponse)
async def run_expiry_sweep(principal: Principal = Depends(require_admin)):
    """Expire every lapsed hold now instead of waiting for the next sweep."""
    expired = await expiry_worker.run_once()
    logger.info("manual_sweep", admin=principal.claimant_id, expired=expired)
    return SweepResponse(expired=expired)


@router.get("/reconciliation", response_model=list[ReservationResponse])
async def get_reconciliation_queue(
    principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Reservations that were paid after their hold expired."""
    return await list_reconciliation_queue(db)
