"""
booking engine schema

Revision ID: 0001_booking_engine
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_booking_engine"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "venues",
        sa.Column("venue_id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("hourly_rate", sa.Numeric(12, 2), nullable=False),
        sa.Column("sport_pricing", sa.JSON(), nullable=False),
        sa.Column("allow_external_coaches", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "coaches",
        sa.Column("coach_id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("hourly_rate", sa.Numeric(12, 2), nullable=False),
        sa.Column("sport_pricing", sa.JSON(), nullable=False),
        sa.Column("home_venue_id", sa.String(length=36), sa.ForeignKey("venues.venue_id"), nullable=True),
        sa.Column("availability", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "promo_codes",
        sa.Column("promo_id", sa.String(length=36), primary_key=True),
        sa.Column("code", sa.String(length=32), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("discount_type", sa.String(length=16), nullable=False),
        sa.Column("discount_value", sa.Numeric(12, 2), nullable=False),
        sa.Column("tiers", sa.JSON(), nullable=False),
        sa.Column("max_discount_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("min_booking_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("applicable_to", sa.String(length=16), nullable=False, server_default="ALL"),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=True),
        sa.Column("valid_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_by", sa.String(length=100), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_promo_codes_code", "promo_codes", ["code"], unique=True)

    op.create_table(
        "checkout_sessions",
        sa.Column("session_id", sa.String(length=36), primary_key=True),
        sa.Column("state", sa.String(length=32), nullable=False),
        sa.Column("booking_request", sa.JSON(), nullable=False),
        sa.Column("price_breakdown", sa.JSON(), nullable=True),
        sa.Column("hold_id", sa.String(length=36), nullable=True),
        sa.Column("gateway_checkout_url", sa.String(length=1024), nullable=True),
        sa.Column("gateway_session_id", sa.String(length=255), nullable=True),
        sa.Column("gateway_reference", sa.String(length=255), nullable=True),
        sa.Column("booking_id", sa.String(length=36), nullable=True),
        sa.Column("failure_reason", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_checkout_sessions_state", "checkout_sessions", ["state"])
    op.create_index("ix_checkout_sessions_gateway_session", "checkout_sessions", ["gateway_session_id"])

    op.create_table(
        "reservation_holds",
        sa.Column("hold_id", sa.String(length=36), primary_key=True),
        sa.Column("venue_id", sa.String(length=36), nullable=True),
        sa.Column("coach_id", sa.String(length=36), nullable=True),
        sa.Column("hold_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("owner_request_id", sa.String(length=36), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("release_reason", sa.String(length=32), nullable=True),
    )
    op.create_index("ix_reservation_holds_owner_request_id", "reservation_holds", ["owner_request_id"])
    op.create_index("ix_holds_venue_date", "reservation_holds", ["venue_id", "hold_date"])
    op.create_index("ix_holds_coach_date", "reservation_holds", ["coach_id", "hold_date"])

    op.create_table(
        "bookings",
        sa.Column("booking_id", sa.String(length=36), primary_key=True),
        sa.Column("checkout_session_id", sa.String(length=36), nullable=False),
        sa.Column("venue_id", sa.String(length=36), nullable=True),
        sa.Column("coach_id", sa.String(length=36), nullable=True),
        sa.Column("sport", sa.String(length=64), nullable=False),
        sa.Column("booking_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("attendee_ref", sa.String(length=100), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("price_breakdown", sa.JSON(), nullable=False),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("promo_code", sa.String(length=32), nullable=True),
        sa.Column("gateway_reference", sa.String(length=255), nullable=True),
        sa.Column("verification_token", sa.String(length=36), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("checkout_session_id", name="uq_bookings_checkout_session"),
        sa.UniqueConstraint("verification_token", name="uq_bookings_verification_token"),
    )
    op.create_index("ix_bookings_venue_id", "bookings", ["venue_id"])
    op.create_index("ix_bookings_coach_id", "bookings", ["coach_id"])
    op.create_index("ix_bookings_venue_date", "bookings", ["venue_id", "booking_date"])
    op.create_index("ix_bookings_coach_date", "bookings", ["coach_id", "booking_date"])


def downgrade() -> None:
    op.drop_index("ix_bookings_coach_date", table_name="bookings")
    op.drop_index("ix_bookings_venue_date", table_name="bookings")
    op.drop_index("ix_bookings_coach_id", table_name="bookings")
    op.drop_index("ix_bookings_venue_id", table_name="bookings")
    op.drop_table("bookings")
    op.drop_index("ix_holds_coach_date", table_name="reservation_holds")
    op.drop_index("ix_holds_venue_date", table_name="reservation_holds")
    op.drop_index("ix_reservation_holds_owner_request_id", table_name="reservation_holds")
    op.drop_table("reservation_holds")
    op.drop_index("ix_checkout_sessions_gateway_session", table_name="checkout_sessions")
    op.drop_index("ix_checkout_sessions_state", table_name="checkout_sessions")
    op.drop_table("checkout_sessions")
    op.drop_index("ix_promo_codes_code", table_name="promo_codes")
    op.drop_table("promo_codes")
    op.drop_table("coaches")
    op.drop_table("venues")
