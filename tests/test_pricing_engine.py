from datetime import date, datetime, time, timezone
from decimal import Decimal

import pytest

from app.domain.bookings.request import BookingRequest
from app.domain.errors import InvalidInterval, MissingBookingDetails
from app.domain.pricing.engine import PriceBreakdown, PricingConfig, PricingEngine
from app.domain.pricing.rates import ResourceRates
from app.domain.promos import rules
from app.domain.promos.rules import PromoDefinition

NOW = datetime(2030, 1, 6, 12, 0, tzinfo=timezone.utc)
VENUE = ResourceRates(resource_id="venue-1", hourly_rate=Decimal("1000"), sport_pricing={"Cricket": 1200})
COACH = ResourceRates(resource_id="coach-1", hourly_rate=Decimal("500"))
SAVE10 = PromoDefinition(code="SAVE10", discount_type=rules.PERCENTAGE, discount_value=Decimal("10"))


def _request(**overrides) -> BookingRequest:
    values = {
        "sport": "Cricket",
        "date": date(2030, 1, 7),
        "start_time": time(9, 0),
        "end_time": time(11, 0),
        "account_id": "acct-1",
        "venue_id": "venue-1",
    }
    values.update(overrides)
    return BookingRequest(**values)


def test_scenario_venue_with_sport_override():
    breakdown = PricingEngine().compute(_request(), VENUE, None, now=NOW)

    assert breakdown.duration_minutes == 120
    assert breakdown.venue_rate == Decimal("1200")
    assert breakdown.subtotal == Decimal("2400")
    assert breakdown.service_fee == Decimal("48")
    assert breakdown.tax == Decimal("120")
    assert breakdown.discount == Decimal("0")
    assert breakdown.total == Decimal("2568")
    assert breakdown.split is None
    assert breakdown.promo_message == "No code applied"
    assert breakdown.amount_minor_units() == 256800


def test_scenario_promo_discount_applies_after_fee_and_tax():
    breakdown = PricingEngine().compute(_request(promo_code="SAVE10"), VENUE, None, SAVE10, now=NOW)

    assert breakdown.service_fee == Decimal("48")
    assert breakdown.tax == Decimal("120")
    assert breakdown.discount == Decimal("240")
    assert breakdown.total == Decimal("2328")
    assert breakdown.promo_code == "SAVE10"


def test_scenario_venue_and_coach_split():
    request = _request(sport="Tennis", coach_id="coach-1", start_time=time(10, 0), end_time=time(11, 0))
    breakdown = PricingEngine().compute(request, VENUE, COACH, now=NOW)

    assert breakdown.subtotal == Decimal("1500")
    assert breakdown.split is not None
    assert breakdown.split.venue_share == Decimal("1000")
    assert breakdown.split.coach_share == Decimal("500")
    assert breakdown.service_fee == Decimal("30")
    assert breakdown.tax == Decimal("75")
    assert breakdown.total == Decimal("1605")


def test_coach_only_booking_has_no_split():
    request = _request(venue_id=None, coach_id="coach-1", sport="Tennis")
    breakdown = PricingEngine().compute(request, None, COACH, now=NOW)

    assert breakdown.venue_rate is None
    assert breakdown.subtotal == Decimal("1000")
    assert breakdown.split is None


def test_split_requires_both_subtotals_to_be_positive():
    free_venue = ResourceRates(resource_id="venue-free", hourly_rate=Decimal("0"))
    request = _request(coach_id="coach-1", sport="Tennis")
    breakdown = PricingEngine().compute(request, free_venue, COACH, now=NOW)
    assert breakdown.split is None
    assert breakdown.subtotal == Decimal("1000")


def test_partial_hours_are_not_rounded_before_multiplying():
    request = _request(sport="Tennis", start_time=time(9, 0), end_time=time(10, 20))
    breakdown = PricingEngine().compute(request, VENUE, None, now=NOW)
    # 1000 * 80 / 60 = 1333.33...; fee and tax round half-up, the subtotal does not
    assert breakdown.subtotal == Decimal("1000") * 80 / 60
    assert breakdown.service_fee == Decimal("27")
    assert breakdown.tax == Decimal("67")


def test_total_identity_and_never_negative():
    huge = PromoDefinition(code="ALL", discount_type=rules.FIXED_AMOUNT, discount_value=Decimal("100000"))
    breakdown = PricingEngine().compute(_request(promo_code="ALL"), VENUE, None, huge, now=NOW)

    assert breakdown.discount == breakdown.subtotal
    assert breakdown.total >= 0
    assert breakdown.total == breakdown.subtotal + breakdown.service_fee + breakdown.tax - breakdown.discount


def test_configurable_fee_and_tax_rates():
    config = PricingConfig(service_fee_rate=Decimal("0"), tax_rate=Decimal("0.18"), currency="inr")
    breakdown = PricingEngine(config).compute(_request(), VENUE, None, now=NOW)
    assert breakdown.service_fee == Decimal("0")
    assert breakdown.tax == Decimal("432")
    assert breakdown.total == Decimal("2832")


def test_compute_is_deterministic():
    engine = PricingEngine()
    first = engine.compute(_request(promo_code="SAVE10"), VENUE, COACH, SAVE10, now=NOW)
    second = engine.compute(_request(promo_code="SAVE10"), VENUE, COACH, SAVE10, now=NOW)
    assert first == second


def test_breakdown_survives_payload_round_trip():
    request = _request(coach_id="coach-1", promo_code="SAVE10")
    breakdown = PricingEngine().compute(request, VENUE, COACH, SAVE10, now=NOW)
    assert PriceBreakdown.from_payload(breakdown.to_payload()) == breakdown


def test_matches_uses_tolerance():
    breakdown = PricingEngine().compute(_request(), VENUE, None, now=NOW)
    cheaper = PricingEngine().compute(
        _request(),
        ResourceRates(resource_id="venue-1", hourly_rate=Decimal("1000"), sport_pricing={"Cricket": 1190}),
        None,
        now=NOW,
    )
    assert breakdown.matches(breakdown)
    assert not breakdown.matches(cheaper, tolerance=Decimal("0.50"))


def test_invalid_interval_is_rejected_before_pricing():
    with pytest.raises(InvalidInterval):
        PricingEngine().compute(_request(end_time=time(9, 0)), VENUE, None, now=NOW)


def test_request_requires_venue_or_coach():
    with pytest.raises(MissingBookingDetails) as excinfo:
        _request(venue_id=None).validate()
    assert excinfo.value.errors[0]["field"] == "venue_id"


def test_attendee_ref_prefers_dependent():
    assert _request().attendee_ref == "account:acct-1"
    assert _request(dependent_id="kid-1").attendee_ref == "dependent:kid-1"
