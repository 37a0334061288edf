"""
Show model: one screening, and the owner of all seat-claim state.

Key design decisions:
- The two seat maps live in child tables keyed (show_id, seat_id), so each
  seat is claimed, released or occupied by a single-row insert/delete
  instead of rewriting a whole document
- The composite primary key makes a second hold on the same seat impossible
- `version` is bumped by every ledger mutation (optimistic locking)
"""

import uuid

from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, Index, CheckConstraint, Uuid

from seathold.db.base import Base, TimestampMixin, UTCDateTime, utcnow


class Show(Base, TimestampMixin):
    __tablename__ = "shows"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(String(255), nullable=False)
    starts_at = Column(UTCDateTime(), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)  # per seat
    layout_ref = Column(String(100), nullable=True)

    # Optimistic locking version counter
    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        CheckConstraint("price >= 0", name="check_show_price_non_negative"),
        Index("ix_shows_starts_at", "starts_at"),
    )

    def __repr__(self) -> str:
        return f"<Show(id={self.id}, title={self.title}, version={self.version})>"


class SeatHold(Base):
    """A temporary claim on one seat, owned by exactly one pending reservation."""

    __tablename__ = "seat_holds"

    show_id = Column(Uuid, ForeignKey("shows.id", ondelete="CASCADE"), primary_key=True)
    seat_id = Column(String(32), primary_key=True)
    # Not a foreign key: the hold is written before the reservation row in the same transaction
    reservation_id = Column(Uuid, nullable=False)
    claimant_id = Column(String(255), nullable=False)
    expires_at = Column(UTCDateTime(), nullable=False)

    __table_args__ = (
        Index("ix_seat_holds_reservation_id", "reservation_id"),
        # Sweep: expired holds of one show
        Index("ix_seat_holds_show_expires", "show_id", "expires_at"),
    )

    def __repr__(self) -> str:
        return f"<SeatHold(show={self.show_id}, seat={self.seat_id}, reservation={self.reservation_id})>"


class OccupiedSeat(Base):
    """A permanently sold seat. Written only by confirmation."""

    __tablename__ = "occupied_seats"

    show_id = Column(Uuid, ForeignKey("shows.id", ondelete="CASCADE"), primary_key=True)
    seat_id = Column(String(32), primary_key=True)
    claimant_id = Column(String(255), nullable=False)
    reservation_id = Column(Uuid, nullable=False, index=True)
    occupied_at = Column(UTCDateTime(), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<OccupiedSeat(show={self.show_id}, seat={self.seat_id}, claimant={self.claimant_id})>"
