"""Price breakdown computation for venue and coach bookings.

The engine is a pure function of its inputs: the booking request, the
resolved rates of each resource and the promo definition looked up for the
request's code. Calling it twice with identical inputs yields an identical
breakdown, which is what allows the checkout flow to recompute the price at
payment time and compare it with the one shown when the slot was held.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from app.domain.bookings.request import BookingRequest
from app.domain.pricing.duration import calculate_duration
from app.domain.pricing.rates import ResourceRates
from app.domain.promos.rules import PromoCodeValidator, PromoDefinition, round_amount

ZERO = Decimal("0")


@dataclass(frozen=True)
class PricingConfig:
    service_fee_rate: Decimal = Decimal("0.02")
    tax_rate: Decimal = Decimal("0.05")
    currency: str = "inr"

    @classmethod
    def from_settings(cls, app_settings) -> "PricingConfig":
        return cls(
            service_fee_rate=Decimal(str(app_settings.service_fee_rate)),
            tax_rate=Decimal(str(app_settings.tax_rate)),
            currency=app_settings.currency,
        )


@dataclass(frozen=True)
class PayeeSplit:
    venue_share: Decimal
    coach_share: Decimal


@dataclass(frozen=True)
class PriceBreakdown:
    duration_minutes: int
    venue_rate: Decimal | None
    coach_rate: Decimal | None
    subtotal: Decimal
    service_fee: Decimal
    tax: Decimal
    discount: Decimal
    total: Decimal
    currency: str
    promo_code: str | None = None
    promo_message: str | None = None
    split: PayeeSplit | None = None

    def amount_minor_units(self) -> int:
        return int((self.total * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    def matches(self, other: "PriceBreakdown", tolerance: Decimal = ZERO) -> bool:
        return abs(self.total - other.total) <= tolerance

    def to_payload(self) -> dict[str, Any]:
        return {
            "duration_minutes": self.duration_minutes,
            "venue_rate": _dec_str(self.venue_rate),
            "coach_rate": _dec_str(self.coach_rate),
            "subtotal": str(self.subtotal),
            "service_fee": str(self.service_fee),
            "tax": str(self.tax),
            "discount": str(self.discount),
            "total": str(self.total),
            "currency": self.currency,
            "promo_code": self.promo_code,
            "promo_message": self.promo_message,
            "split": (
                {"venue_share": str(self.split.venue_share), "coach_share": str(self.split.coach_share)}
                if self.split
                else None
            ),
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "PriceBreakdown":
        split = payload.get("split")
        return cls(
            duration_minutes=int(payload["duration_minutes"]),
            venue_rate=_dec_or_none(payload.get("venue_rate")),
            coach_rate=_dec_or_none(payload.get("coach_rate")),
            subtotal=Decimal(payload["subtotal"]),
            service_fee=Decimal(payload["service_fee"]),
            tax=Decimal(payload["tax"]),
            discount=Decimal(payload["discount"]),
            total=Decimal(payload["total"]),
            currency=payload["currency"],
            promo_code=payload.get("promo_code"),
            promo_message=payload.get("promo_message"),
            split=(
                PayeeSplit(
                    venue_share=Decimal(split["venue_share"]),
                    coach_share=Decimal(split["coach_share"]),
                )
                if split
                else None
            ),
        )


def _dec_str(value: Decimal | None) -> str | None:
    return str(value) if value is not None else None


def _dec_or_none(value: str | None) -> Decimal | None:
    return Decimal(value) if value is not None else None


def _resource_subtotal(rate: Decimal, minutes: int) -> Decimal:
    # multiply before dividing so whole-hour and half-hour spans stay exact
    return rate * Decimal(minutes) / Decimal(60)


class PricingEngine:
    def __init__(self, config: PricingConfig | None = None, validator: PromoCodeValidator | None = None) -> None:
        self.config = config or PricingConfig()
        self.validator = validator or PromoCodeValidator()

    def compute(
        self,
        request: BookingRequest,
        venue_rates: ResourceRates | None,
        coach_rates: ResourceRates | None,
        promo: PromoDefinition | None = None,
        now: datetime | None = None,
    ) -> PriceBreakdown:
        duration = calculate_duration(request.start_time, request.end_time)

        venue_rate = venue_rates.rate_for(request.sport) if request.venue_id and venue_rates else None
        coach_rate = coach_rates.rate_for(request.sport) if request.coach_id and coach_rates else None
        venue_subtotal = _resource_subtotal(venue_rate, duration.minutes) if venue_rate is not None else ZERO
        coach_subtotal = _resource_subtotal(coach_rate, duration.minutes) if coach_rate is not None else ZERO
        subtotal = venue_subtotal + coach_subtotal

        service_fee = round_amount(subtotal * self.config.service_fee_rate)
        tax = round_amount(subtotal * self.config.tax_rate)
        evaluation = self.validator.evaluate(
            request.promo_code,
            promo,
            subtotal,
            has_venue=venue_rate is not None,
            has_coach=coach_rate is not None,
            now=now,
        )
        discount = evaluation.discount_amount
        total = max(ZERO, subtotal + service_fee + tax - discount)

        split = None
        if venue_subtotal > 0 and coach_subtotal > 0:
            split = PayeeSplit(venue_share=venue_subtotal, coach_share=coach_subtotal)

        return PriceBreakdown(
            duration_minutes=duration.minutes,
            venue_rate=venue_rate,
            coach_rate=coach_rate,
            subtotal=subtotal,
            service_fee=service_fee,
            tax=tax,
            discount=discount,
            total=total,
            currency=self.config.currency,
            promo_code=request.promo_code or None,
            promo_message=evaluation.message,
            split=split,
        )
