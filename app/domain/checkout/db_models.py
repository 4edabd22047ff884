import uuid
from datetime import datetime

from sqlalchemy import DateTime, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from app.infra.db import Base


class CheckoutSession(Base):
    __tablename__ = "checkout_sessions"

    session_id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    state: Mapped[str] = mapped_column(String(32), nullable=False)
    booking_request: Mapped[dict] = mapped_column(JSON, nullable=False)
    price_breakdown: Mapped[dict | None] = mapped_column(JSON)
    hold_id: Mapped[str | None] = mapped_column(String(36))
    gateway_checkout_url: Mapped[str | None] = mapped_column(String(1024))
    gateway_session_id: Mapped[str | None] = mapped_column(String(255))
    gateway_reference: Mapped[str | None] = mapped_column(String(255))
    booking_id: Mapped[str | None] = mapped_column(String(36))
    failure_reason: Mapped[str | None] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_checkout_sessions_state", "state"),
        Index("ix_checkout_sessions_gateway_session", "gateway_session_id"),
    )
