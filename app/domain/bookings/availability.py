import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timezone

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.bookings.db_models import ReservationHold
from app.domain.bookings.ledger import COACH, VENUE, BookingLedger, SqlBookingLedger
from app.domain.pricing.duration import TimeInterval, minutes_to_time
from app.domain.resources.service import CoachProfile

logger = logging.getLogger(__name__)

SLOT_STEP_MINUTES = 60


def normalize_datetime(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def hold_is_active(hold: ReservationHold, now: datetime) -> bool:
    if hold.released_at is not None:
        return False
    return normalize_datetime(hold.expires_at) > normalize_datetime(now)


def hold_interval(hold: ReservationHold) -> TimeInterval:
    return TimeInterval(start=hold.start_time, end=hold.end_time)


@dataclass(frozen=True)
class AvailabilityResult:
    available: bool
    reason: str | None = None


@dataclass(frozen=True)
class SlotStatus:
    start_time: time
    end_time: time
    available: bool


async def load_holds(
    session: AsyncSession,
    venue_id: str | None,
    coach_id: str | None,
    target_date: date,
) -> list[ReservationHold]:
    conditions = []
    if venue_id:
        conditions.append(ReservationHold.venue_id == venue_id)
    if coach_id:
        conditions.append(ReservationHold.coach_id == coach_id)
    if not conditions:
        return []
    stmt = select(ReservationHold).where(
        ReservationHold.hold_date == target_date,
        ReservationHold.released_at.is_(None),
        or_(*conditions),
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


class SlotAvailabilityResolver:
    """Answers whether a venue and/or coach is free for an interval.

    Confirmed bookings come from the booking ledger; holds are read from the
    hold table and filtered lazily on ``expires_at`` so a missed sweep never
    keeps a slot blocked. The resolver never writes.
    """

    def __init__(self, ledger: BookingLedger | None = None) -> None:
        self.ledger = ledger or SqlBookingLedger()

    async def check(
        self,
        session: AsyncSession,
        *,
        venue_id: str | None,
        coach_id: str | None,
        target_date: date,
        interval: TimeInterval,
        request_id: str | None = None,
        coach: CoachProfile | None = None,
        now: datetime | None = None,
    ) -> AvailabilityResult:
        moment = now or utcnow()

        if coach is not None and not coach.is_working(target_date, interval):
            return AvailabilityResult(False, "Coach is not available for the selected time slot")

        for kind, resource_id in ((VENUE, venue_id), (COACH, coach_id)):
            if not resource_id:
                continue
            confirmed = await self.ledger.list_confirmed_intervals(session, kind, resource_id, target_date)
            if any(interval.overlaps(existing) for existing in confirmed):
                return AvailabilityResult(False, f"Selected time slot is already booked for this {kind}")

        holds = await load_holds(session, venue_id, coach_id, target_date)
        for hold in holds:
            if request_id and hold.owner_request_id == request_id:
                continue
            if not hold_is_active(hold, moment):
                continue
            if interval.overlaps(hold_interval(hold)):
                return AvailabilityResult(False, "Selected time slot is being held by another checkout")

        return AvailabilityResult(True)

    async def list_open_slots(
        self,
        session: AsyncSession,
        *,
        venue_id: str | None,
        coach_id: str | None,
        target_date: date,
        day_start_hour: int,
        day_end_hour: int,
        coach: CoachProfile | None = None,
        now: datetime | None = None,
    ) -> list[SlotStatus]:
        slots: list[SlotStatus] = []
        minute = day_start_hour * 60
        last_start = day_end_hour * 60 - SLOT_STEP_MINUTES
        while minute <= last_start:
            end_minute = minute + SLOT_STEP_MINUTES
            interval = TimeInterval(start=minutes_to_time(minute), end=minutes_to_time(end_minute))
            result = await self.check(
                session,
                venue_id=venue_id,
                coach_id=coach_id,
                target_date=target_date,
                interval=interval,
                coach=coach,
                now=now,
            )
            slots.append(SlotStatus(start_time=interval.start, end_time=interval.end, available=result.available))
            minute = end_minute
        return slots
