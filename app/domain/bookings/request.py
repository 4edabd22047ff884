from dataclasses import dataclass
from datetime import date, time
from decimal import Decimal
from typing import Any

from app.domain.errors import MissingBookingDetails
from app.domain.pricing.duration import TimeInterval, build_interval


@dataclass(frozen=True)
class BookingRequest:
    sport: str
    date: date
    start_time: time
    end_time: time
    account_id: str
    venue_id: str | None = None
    coach_id: str | None = None
    dependent_id: str | None = None
    promo_code: str | None = None
    expected_total: Decimal | None = None

    @property
    def attendee_ref(self) -> str:
        if self.dependent_id:
            return f"dependent:{self.dependent_id}"
        return f"account:{self.account_id}"

    @property
    def interval(self) -> TimeInterval:
        return TimeInterval(start=self.start_time, end=self.end_time)

    def validate(self) -> TimeInterval:
        missing: list[dict[str, str]] = []
        if not self.venue_id and not self.coach_id:
            missing.append({"field": "venue_id", "message": "venue_id or coach_id is required"})
        if not (self.sport or "").strip():
            missing.append({"field": "sport", "message": "sport is required"})
        if not self.account_id:
            missing.append({"field": "account_id", "message": "account_id is required"})
        if missing:
            raise MissingBookingDetails("Booking request is incomplete", errors=missing)
        return build_interval(self.start_time, self.end_time)

    def to_payload(self) -> dict[str, Any]:
        return {
            "sport": self.sport,
            "date": self.date.isoformat(),
            "start_time": self.start_time.strftime("%H:%M"),
            "end_time": self.end_time.strftime("%H:%M"),
            "account_id": self.account_id,
            "venue_id": self.venue_id,
            "coach_id": self.coach_id,
            "dependent_id": self.dependent_id,
            "promo_code": self.promo_code,
            "expected_total": str(self.expected_total) if self.expected_total is not None else None,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "BookingRequest":
        expected = payload.get("expected_total")
        return cls(
            sport=payload["sport"],
            date=date.fromisoformat(payload["date"]),
            start_time=time.fromisoformat(payload["start_time"]),
            end_time=time.fromisoformat(payload["end_time"]),
            account_id=payload["account_id"],
            venue_id=payload.get("venue_id"),
            coach_id=payload.get("coach_id"),
            dependent_id=payload.get("dependent_id"),
            promo_code=payload.get("promo_code"),
            expected_total=Decimal(expected) if expected is not None else None,
        )
