"""
Typed outcomes of the hold and lifecycle operations.

Expected conditions a shopper can recover from are values, not
exceptions: the API layer maps each status to a response.
"""

import enum
from dataclasses import dataclass
from typing import Optional, Tuple

from seathold.models.reservation import Reservation


class HoldStatus(str, enum.Enum):
    CREATED = "created"
    SEAT_UNAVAILABLE = "seat_unavailable"
    INVALID_SHOW = "invalid_show"
    INVALID_REQUEST = "invalid_request"


class ReleaseStatus(str, enum.Enum):
    RELEASED = "released"
    NOT_AUTHORIZED = "not_authorized"
    ALREADY_TERMINAL = "already_terminal"


class ConfirmStatus(str, enum.Enum):
    CONFIRMED = "confirmed"
    ALREADY_CONFIRMED = "already_confirmed"
    RESERVATION_EXPIRED = "reservation_expired"


@dataclass
class HoldResult:
    status: HoldStatus
    reservation: Optional[Reservation] = None
    unavailable_seats: Tuple[str, ...] = ()
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is HoldStatus.CREATED


@dataclass
class ReleaseResult:
    status: ReleaseStatus
    reservation: Reservation

    @property
    def ok(self) -> bool:
        return self.status is ReleaseStatus.RELEASED


@dataclass
class ConfirmResult:
    status: ConfirmStatus
    reservation: Reservation
    # True when this call is the one that noticed the hold had lapsed
    lapsed_now: bool = False

    @property
    def ok(self) -> bool:
        return self.status in (ConfirmStatus.CONFIRMED, ConfirmStatus.ALREADY_CONFIRMED)
