from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

PERCENTAGE = "PERCENTAGE"
FIXED_AMOUNT = "FIXED_AMOUNT"
TIERED = "TIERED"

DISCOUNT_TYPES = {PERCENTAGE, FIXED_AMOUNT, TIERED}

APPLIES_ALL = "ALL"
APPLIES_VENUE_ONLY = "VENUE_ONLY"
APPLIES_COACH_ONLY = "COACH_ONLY"

APPLICABILITY = {APPLIES_ALL, APPLIES_VENUE_ONLY, APPLIES_COACH_ONLY}

MESSAGE_NO_CODE = "No code applied"
MESSAGE_INVALID = "Invalid promo code"

HUNDRED = Decimal("100")


def round_amount(value: Decimal) -> Decimal:
    return value.quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


@dataclass(frozen=True)
class PromoTier:
    min_subtotal: Decimal
    percent: Decimal


@dataclass(frozen=True)
class PromoDefinition:
    code: str
    discount_type: str
    discount_value: Decimal
    tiers: tuple[PromoTier, ...] = ()
    max_discount_amount: Decimal | None = None
    min_booking_amount: Decimal | None = None
    applicable_to: str = APPLIES_ALL
    valid_from: datetime | None = None
    valid_until: datetime | None = None
    is_active: bool = True

    def raw_discount(self, subtotal: Decimal) -> Decimal:
        if self.discount_type == FIXED_AMOUNT:
            return min(self.discount_value, subtotal)
        percent = self.discount_value
        if self.discount_type == TIERED:
            eligible = [tier for tier in self.tiers if tier.min_subtotal <= subtotal]
            if not eligible:
                return Decimal("0")
            percent = max(eligible, key=lambda tier: tier.min_subtotal).percent
        discount = subtotal * percent / HUNDRED
        if self.max_discount_amount is not None and discount > self.max_discount_amount:
            discount = self.max_discount_amount
        return discount


@dataclass(frozen=True)
class PromoEvaluation:
    discount_amount: Decimal
    message: str
    accepted: bool = False


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class PromoCodeValidator:
    """Evaluates a promo code against a pre-computed subtotal.

    Never raises for bad input: every rejection is reported as a zero discount
    with a human-readable message so checkout can continue without the code.
    """

    def evaluate(
        self,
        code: str | None,
        definition: PromoDefinition | None,
        subtotal: Decimal,
        *,
        has_venue: bool = True,
        has_coach: bool = False,
        now: datetime | None = None,
    ) -> PromoEvaluation:
        if not normalize_code(code):
            return PromoEvaluation(Decimal("0"), MESSAGE_NO_CODE)
        if definition is None or definition.discount_type not in DISCOUNT_TYPES:
            return PromoEvaluation(Decimal("0"), MESSAGE_INVALID)
        if not definition.is_active:
            return PromoEvaluation(Decimal("0"), "Promo code is inactive")

        moment = _aware(now) if now else datetime.now(timezone.utc)
        if definition.valid_from and moment < _aware(definition.valid_from):
            return PromoEvaluation(Decimal("0"), "Promo code not yet valid")
        if definition.valid_until and moment > _aware(definition.valid_until):
            return PromoEvaluation(Decimal("0"), "Promo code has expired")
        if definition.min_booking_amount and subtotal < definition.min_booking_amount:
            return PromoEvaluation(
                Decimal("0"), f"Minimum booking amount is {round_amount(definition.min_booking_amount)}"
            )
        if definition.applicable_to == APPLIES_COACH_ONLY and not has_coach:
            return PromoEvaluation(Decimal("0"), "This promo code only applies to coach bookings")
        if definition.applicable_to == APPLIES_VENUE_ONLY and not has_venue:
            return PromoEvaluation(Decimal("0"), "This promo code only applies to venue bookings")

        discount = round_amount(max(Decimal("0"), definition.raw_discount(subtotal)))
        if discount <= 0:
            return PromoEvaluation(Decimal("0"), "Promo code does not apply to this amount")
        return PromoEvaluation(discount, f"Discount of {discount} applied", accepted=True)
