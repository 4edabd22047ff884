import logging
from datetime import date
from decimal import Decimal
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.bookings.db_models import Booking
from app.domain.bookings.request import BookingRequest
from app.domain.pricing.duration import TimeInterval
from app.domain.pricing.engine import PriceBreakdown

logger = logging.getLogger(__name__)

VENUE = "venue"
COACH = "coach"
BLOCKING_STATUSES = {"CONFIRMED"}


class BookingLedger(Protocol):
    async def record_confirmed_booking(
        self,
        session: AsyncSession,
        session_id: str,
        request: BookingRequest,
        breakdown: PriceBreakdown,
        gateway_reference: str | None = None,
    ) -> Booking: ...

    async def list_confirmed_intervals(
        self, session: AsyncSession, resource_kind: str, resource_id: str, target_date: date
    ) -> list[TimeInterval]: ...

    async def get_booking(self, session: AsyncSession, booking_id: str) -> Booking | None: ...

    async def find_by_verification_token(self, session: AsyncSession, token: str) -> Booking | None: ...


class SqlBookingLedger:
    async def record_confirmed_booking(
        self,
        session: AsyncSession,
        session_id: str,
        request: BookingRequest,
        breakdown: PriceBreakdown,
        gateway_reference: str | None = None,
    ) -> Booking:
        existing = await session.scalar(
            select(Booking).where(Booking.checkout_session_id == session_id).limit(1)
        )
        if existing is not None:
            return existing

        booking = Booking(
            checkout_session_id=session_id,
            venue_id=request.venue_id,
            coach_id=request.coach_id,
            sport=request.sport,
            booking_date=request.date,
            start_time=request.start_time,
            end_time=request.end_time,
            attendee_ref=request.attendee_ref,
            status="CONFIRMED",
            price_breakdown=breakdown.to_payload(),
            total_amount=Decimal(breakdown.total),
            promo_code=request.promo_code or None,
            gateway_reference=gateway_reference,
        )
        session.add(booking)
        await session.flush()
        logger.info(
            "booking_recorded",
            extra={
                "extra": {
                    "booking_id": booking.booking_id,
                    "checkout_session_id": session_id,
                    "venue_id": request.venue_id,
                    "coach_id": request.coach_id,
                }
            },
        )
        return booking

    async def list_confirmed_intervals(
        self, session: AsyncSession, resource_kind: str, resource_id: str, target_date: date
    ) -> list[TimeInterval]:
        column = Booking.venue_id if resource_kind == VENUE else Booking.coach_id
        stmt = select(Booking.start_time, Booking.end_time).where(
            column == resource_id,
            Booking.booking_date == target_date,
            Booking.status.in_(BLOCKING_STATUSES),
        )
        result = await session.execute(stmt)
        return [TimeInterval(start=start, end=end) for start, end in result.all()]

    async def get_booking(self, session: AsyncSession, booking_id: str) -> Booking | None:
        return await session.get(Booking, booking_id)

    async def find_by_verification_token(self, session: AsyncSession, token: str) -> Booking | None:
        """Look up a booking by the token the venue scans at check-in."""
        if not token:
            return None
        return await session.scalar(select(Booking).where(Booking.verification_token == token).limit(1))
