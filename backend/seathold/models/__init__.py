from seathold.models.show import Show, SeatHold, OccupiedSeat
from seathold.models.reservation import Reservation, ReservationStatus, CancelReason

__all__ = ["Show", "SeatHold", "OccupiedSeat", "Reservation", "ReservationStatus", "CancelReason"]
