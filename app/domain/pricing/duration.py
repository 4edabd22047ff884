from dataclasses import dataclass
from datetime import time
from decimal import Decimal

from app.domain.errors import InvalidInterval

MINUTES_PER_HOUR = 60


def time_to_minutes(value: time) -> int:
    if value.second or value.microsecond:
        raise InvalidInterval("Times must be given with minute granularity")
    return value.hour * MINUTES_PER_HOUR + value.minute


def minutes_to_time(minutes: int) -> time:
    return time(hour=minutes // MINUTES_PER_HOUR, minute=minutes % MINUTES_PER_HOUR)


@dataclass(frozen=True)
class TimeInterval:
    """Half-open ``[start, end)`` interval within a single day."""

    start: time
    end: time

    @property
    def start_minute(self) -> int:
        return time_to_minutes(self.start)

    @property
    def end_minute(self) -> int:
        return time_to_minutes(self.end)

    def overlaps(self, other: "TimeInterval") -> bool:
        return self.start_minute < other.end_minute and other.start_minute < self.end_minute

    def label(self) -> str:
        return f"{self.start.strftime('%H:%M')}-{self.end.strftime('%H:%M')}"


@dataclass(frozen=True)
class Duration:
    minutes: int

    @property
    def hours(self) -> Decimal:
        return Decimal(self.minutes) / Decimal(MINUTES_PER_HOUR)


def calculate_duration(start: time, end: time) -> Duration:
    start_minutes = time_to_minutes(start)
    end_minutes = time_to_minutes(end)
    if end_minutes <= start_minutes:
        raise InvalidInterval(
            f"End time {end.strftime('%H:%M')} must be after start time {start.strftime('%H:%M')}"
        )
    return Duration(minutes=end_minutes - start_minutes)


def build_interval(start: time, end: time) -> TimeInterval:
    calculate_duration(start, end)
    return TimeInterval(start=start, end=end)
