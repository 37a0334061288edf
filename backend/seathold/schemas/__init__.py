from seathold.schemas.show import (
    ShowCreate,
    ShowResponse,
    ShowListResponse,
    HeldSeatResponse,
    SeatSnapshotResponse,
)
from seathold.schemas.reservation import (
    ReservationCreate,
    ReservationResponse,
    ReservationCreatedResponse,
    ConfirmRequest,
    ReservationOutcomeResponse,
    SweepResponse,
)

__all__ = [
    "ShowCreate",
    "ShowResponse",
    "ShowListResponse",
    "HeldSeatResponse",
    "SeatSnapshotResponse",
    "ReservationCreate",
    "ReservationResponse",
    "ReservationCreatedResponse",
    "ConfirmRequest",
    "ReservationOutcomeResponse",
    "SweepResponse",
]
