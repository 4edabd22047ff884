import datetime as dt
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from app.domain.bookings.request import BookingRequest
from app.domain.checkout.gateway import OUTCOMES
from app.domain.pricing.engine import PriceBreakdown


class CheckoutSessionCreateRequest(BaseModel):
    venue_id: str | None = Field(default=None, max_length=36)
    coach_id: str | None = Field(default=None, max_length=36)
    sport: str = Field(min_length=1, max_length=64)
    date: dt.date
    start_time: dt.time
    end_time: dt.time
    dependent_id: str | None = Field(default=None, max_length=36)
    promo_code: str | None = Field(default=None, max_length=32)
    expected_total: Decimal | None = Field(default=None, ge=0)

    @field_validator("sport")
    @classmethod
    def normalize_sport(cls, value: str) -> str:
        return value.strip()

    def to_booking_request(self, account_id: str) -> BookingRequest:
        return BookingRequest(
            sport=self.sport,
            date=self.date,
            start_time=self.start_time,
            end_time=self.end_time,
            account_id=account_id,
            venue_id=self.venue_id or None,
            coach_id=self.coach_id or None,
            dependent_id=self.dependent_id or None,
            promo_code=self.promo_code or None,
            expected_total=self.expected_total,
        )


class PayeeSplitModel(BaseModel):
    venue_share: Decimal
    coach_share: Decimal


class PriceBreakdownModel(BaseModel):
    duration_minutes: int
    venue_rate: Decimal | None = None
    coach_rate: Decimal | None = None
    subtotal: Decimal
    service_fee: Decimal
    tax: Decimal
    discount: Decimal
    total: Decimal
    currency: str
    promo_code: str | None = None
    promo_message: str | None = None
    split: PayeeSplitModel | None = None

    @classmethod
    def from_breakdown(cls, breakdown: PriceBreakdown | None) -> "PriceBreakdownModel | None":
        if breakdown is None:
            return None
        return cls(
            duration_minutes=breakdown.duration_minutes,
            venue_rate=breakdown.venue_rate,
            coach_rate=breakdown.coach_rate,
            subtotal=breakdown.subtotal,
            service_fee=breakdown.service_fee,
            tax=breakdown.tax,
            discount=breakdown.discount,
            total=breakdown.total,
            currency=breakdown.currency,
            promo_code=breakdown.promo_code,
            promo_message=breakdown.promo_message,
            split=(
                PayeeSplitModel(venue_share=breakdown.split.venue_share, coach_share=breakdown.split.coach_share)
                if breakdown.split
                else None
            ),
        )


class CheckoutSessionResponse(BaseModel):
    session_id: str
    state: str
    price_breakdown: PriceBreakdownModel | None = None
    checkout_url: str | None = None
    booking_id: str | None = None
    expires_at: dt.datetime | None = None
    failure_reason: str | None = None
    verification_token: str | None = None


class SlotModel(BaseModel):
    start_time: dt.time
    end_time: dt.time
    available: bool


class SlotsResponse(BaseModel):
    venue_id: str
    coach_id: str | None = None
    date: dt.date
    slots: list[SlotModel]


class PaymentCallbackRequest(BaseModel):
    session_id: str = Field(min_length=1, max_length=36)
    outcome: str
    gateway_reference: str | None = Field(default=None, max_length=255)

    @field_validator("outcome")
    @classmethod
    def validate_outcome(cls, value: str) -> str:
        lowered = value.strip().lower()
        if lowered not in OUTCOMES:
            raise ValueError("outcome must be 'success' or 'failure'")
        return lowered


class PaymentCallbackResponse(BaseModel):
    session_id: str
    state: str
    booking_id: str | None = None
