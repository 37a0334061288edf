"""
Reservation model: the audit/lifecycle record of one claim attempt.

Key design decisions:
- A reservation never grants a seat by itself; only the show's seat maps do
- (status, expires_at) index lets the sweep find expired pending rows fast
- Status field allows cancellation without deleting records
- needs_reconciliation marks payments that arrived after the hold expired
"""

import enum
import uuid

from sqlalchemy import Boolean, CheckConstraint, Column, ForeignKey, Index, JSON, Numeric, String, Uuid

from seathold.db.base import Base, TimestampMixin, UTCDateTime


class ReservationStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class CancelReason(str, enum.Enum):
    RELEASED = "released"
    EXPIRED = "expired"


TERMINAL_STATUSES = frozenset({ReservationStatus.CONFIRMED.value, ReservationStatus.CANCELLED.value})


class Reservation(Base, TimestampMixin):
    __tablename__ = "reservations"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    show_id = Column(Uuid, ForeignKey("shows.id"), nullable=False, index=True)
    claimant_id = Column(String(255), nullable=False, index=True)
    seats = Column(JSON, nullable=False)  # list of seat ids
    amount = Column(Numeric(10, 2), nullable=False)
    status = Column(String(20), nullable=False, default=ReservationStatus.PENDING.value)

    # Set on creation, cleared on confirmation
    expires_at = Column(UTCDateTime(), nullable=True)

    payment_reference = Column(String(255), nullable=True)
    cancel_reason = Column(String(20), nullable=True)
    needs_reconciliation = Column(Boolean, nullable=False, default=False)
    confirmed_at = Column(UTCDateTime(), nullable=True)
    cancelled_at = Column(UTCDateTime(), nullable=True)

    __table_args__ = (
        CheckConstraint("amount >= 0", name="check_reservation_amount_non_negative"),
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'cancelled')", name="check_reservation_status"
        ),
        Index("ix_reservations_status_expires", "status", "expires_at"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self) -> str:
        return f"<Reservation(id={self.id}, show={self.show_id}, status={self.status})>"
