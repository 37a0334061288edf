"""Initial schema: shows, seat maps and reservations with indexes and constraints.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Shows table
    op.create_table(
        "shows",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("layout_ref", sa.String(100), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("price >= 0", name="check_show_price_non_negative"),
    )
    op.create_index("ix_shows_starts_at", "shows", ["starts_at"])

    # Held seats: the (show_id, seat_id) primary key allows one hold per seat
    op.create_table(
        "seat_holds",
        sa.Column("show_id", sa.Uuid(), sa.ForeignKey("shows.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("seat_id", sa.String(32), primary_key=True),
        sa.Column("reservation_id", sa.Uuid(), nullable=False),
        sa.Column("claimant_id", sa.String(255), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_seat_holds_reservation_id", "seat_holds", ["reservation_id"])
    # Sweep and lazy-expiry reads: "expired holds of this show"
    op.create_index("ix_seat_holds_show_expires", "seat_holds", ["show_id", "expires_at"])

    # Occupied (sold) seats
    op.create_table(
        "occupied_seats",
        sa.Column("show_id", sa.Uuid(), sa.ForeignKey("shows.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("seat_id", sa.String(32), primary_key=True),
        sa.Column("claimant_id", sa.String(255), nullable=False),
        sa.Column("reservation_id", sa.Uuid(), nullable=False),
        sa.Column("occupied_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_occupied_seats_reservation_id", "occupied_seats", ["reservation_id"])

    # Reservations table
    op.create_table(
        "reservations",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("show_id", sa.Uuid(), sa.ForeignKey("shows.id"), nullable=False),
        sa.Column("claimant_id", sa.String(255), nullable=False),
        sa.Column("seats", sa.JSON(), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_reference", sa.String(255), nullable=True),
        sa.Column("cancel_reason", sa.String(20), nullable=True),
        sa.Column("needs_reconciliation", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("amount >= 0", name="check_reservation_amount_non_negative"),
        sa.CheckConstraint(
            "status IN ('pending', 'confirmed', 'cancelled')", name="check_reservation_status"
        ),
    )
    op.create_index("ix_reservations_show_id", "reservations", ["show_id"])
    op.create_index("ix_reservations_claimant_id", "reservations", ["claimant_id"])
    # Expiry sweep: WHERE status = 'pending' AND expires_at <= now()
    op.create_index("ix_reservations_status_expires", "reservations", ["status", "expires_at"])


def downgrade() -> None:
    op.drop_table("reservations")
    op.drop_table("occupied_seats")
    op.drop_table("seat_holds")
    op.drop_table("shows")
