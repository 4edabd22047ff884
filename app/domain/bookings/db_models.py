import uuid
from datetime import date, datetime, time
from decimal import Decimal

from sqlalchemy import Date, DateTime, Index, Numeric, String, Time, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from app.infra.db import Base


class Booking(Base):
    __tablename__ = "bookings"

    booking_id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    checkout_session_id: Mapped[str] = mapped_column(String(36), nullable=False)
    venue_id: Mapped[str | None] = mapped_column(String(36), index=True)
    coach_id: Mapped[str | None] = mapped_column(String(36), index=True)
    sport: Mapped[str] = mapped_column(String(64), nullable=False)
    booking_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    attendee_ref: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="CONFIRMED")
    price_breakdown: Mapped[dict] = mapped_column(JSON, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    promo_code: Mapped[str | None] = mapped_column(String(32))
    gateway_reference: Mapped[str | None] = mapped_column(String(255))
    verification_token: Mapped[str] = mapped_column(
        String(36), nullable=False, default=lambda: str(uuid.uuid4())
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("checkout_session_id", name="uq_bookings_checkout_session"),
        UniqueConstraint("verification_token", name="uq_bookings_verification_token"),
        Index("ix_bookings_venue_date", "venue_id", "booking_date"),
        Index("ix_bookings_coach_date", "coach_id", "booking_date"),
    )


class ReservationHold(Base):
    __tablename__ = "reservation_holds"

    hold_id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    venue_id: Mapped[str | None] = mapped_column(String(36))
    coach_id: Mapped[str | None] = mapped_column(String(36))
    hold_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    owner_request_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    released_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    release_reason: Mapped[str | None] = mapped_column(String(32))

    __table_args__ = (
        Index("ix_holds_venue_date", "venue_id", "hold_date"),
        Index("ix_holds_coach_date", "coach_id", "hold_date"),
    )
