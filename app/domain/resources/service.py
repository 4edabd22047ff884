import logging
from dataclasses import dataclass, field
from datetime import date, time
from decimal import Decimal
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.errors import BookingNotAllowed, ResourceNotFound
from app.domain.pricing.duration import TimeInterval
from app.domain.pricing.rates import ResourceRates
from app.domain.resources.db_models import Coach, Venue

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AvailabilityWindow:
    day_of_week: int
    start_time: time
    end_time: time

    def contains(self, interval: TimeInterval) -> bool:
        window = TimeInterval(start=self.start_time, end=self.end_time)
        return window.start_minute <= interval.start_minute and interval.end_minute <= window.end_minute


@dataclass(frozen=True)
class VenueProfile:
    rates: ResourceRates
    allow_external_coaches: bool = True


@dataclass(frozen=True)
class CoachProfile:
    rates: ResourceRates
    home_venue_id: str | None = None
    availability: tuple[AvailabilityWindow, ...] = field(default_factory=tuple)

    def is_working(self, target_date: date, interval: TimeInterval) -> bool:
        # no declared schedule means the coach takes bookings at any time
        if not self.availability:
            return True
        weekday = target_date.weekday()
        return any(
            window.day_of_week == weekday and window.contains(interval) for window in self.availability
        )


class ResourceDirectory(Protocol):
    async def get_venue(self, session: AsyncSession, venue_id: str) -> VenueProfile: ...

    async def get_coach(self, session: AsyncSession, coach_id: str) -> CoachProfile: ...


def _parse_windows(raw: list[dict] | None) -> tuple[AvailabilityWindow, ...]:
    windows: list[AvailabilityWindow] = []
    for entry in raw or []:
        try:
            windows.append(
                AvailabilityWindow(
                    day_of_week=int(entry["day_of_week"]),
                    start_time=time.fromisoformat(str(entry["start_time"])),
                    end_time=time.fromisoformat(str(entry["end_time"])),
                )
            )
        except (KeyError, TypeError, ValueError):
            logger.warning("coach_availability_entry_invalid", extra={"extra": {"entry": str(entry)}})
    return tuple(windows)


class SqlResourceDirectory:
    async def get_venue(self, session: AsyncSession, venue_id: str) -> VenueProfile:
        venue = await session.get(Venue, venue_id)
        if venue is None or not venue.is_active:
            raise ResourceNotFound(f"Venue {venue_id} not found")
        return VenueProfile(
            rates=ResourceRates(
                resource_id=venue.venue_id,
                hourly_rate=Decimal(str(venue.hourly_rate)),
                sport_pricing=dict(venue.sport_pricing or {}),
            ),
            allow_external_coaches=venue.allow_external_coaches,
        )

    async def get_coach(self, session: AsyncSession, coach_id: str) -> CoachProfile:
        coach = await session.get(Coach, coach_id)
        if coach is None or not coach.is_active:
            raise ResourceNotFound(f"Coach {coach_id} not found")
        return CoachProfile(
            rates=ResourceRates(
                resource_id=coach.coach_id,
                hourly_rate=Decimal(str(coach.hourly_rate)),
                sport_pricing=dict(coach.sport_pricing or {}),
            ),
            home_venue_id=coach.home_venue_id,
            availability=_parse_windows(coach.availability),
        )


def ensure_coach_allowed(venue: VenueProfile | None, coach: CoachProfile | None) -> None:
    if venue is None or coach is None:
        return
    if coach.home_venue_id == venue.rates.resource_id:
        return
    if not venue.allow_external_coaches:
        raise BookingNotAllowed("This venue does not allow external coaches")
