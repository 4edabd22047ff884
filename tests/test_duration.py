from datetime import time
from decimal import Decimal

import pytest

from app.domain.errors import InvalidInterval
from app.domain.pricing.duration import TimeInterval, calculate_duration, time_to_minutes


def test_ninety_minutes_is_one_and_a_half_hours():
    duration = calculate_duration(time(9, 0), time(10, 30))
    assert duration.minutes == 90
    assert duration.hours == Decimal("1.5")


def test_two_hour_block():
    duration = calculate_duration(time(9, 0), time(11, 0))
    assert duration.minutes == 120
    assert duration.hours == Decimal("2")


@pytest.mark.parametrize(
    "start, end",
    [
        (time(10, 0), time(10, 0)),
        (time(11, 0), time(9, 0)),
        (time(23, 30), time(0, 30)),
    ],
)
def test_non_positive_interval_is_rejected(start, end):
    with pytest.raises(InvalidInterval):
        calculate_duration(start, end)


def test_seconds_are_rejected():
    with pytest.raises(InvalidInterval):
        time_to_minutes(time(9, 0, 30))


def test_half_open_intervals_touching_do_not_overlap():
    morning = TimeInterval(time(9, 0), time(10, 0))
    next_hour = TimeInterval(time(10, 0), time(11, 0))
    assert not morning.overlaps(next_hour)
    assert not next_hour.overlaps(morning)


def test_partial_overlap_is_detected_both_ways():
    first = TimeInterval(time(9, 0), time(10, 30))
    second = TimeInterval(time(10, 0), time(11, 0))
    assert first.overlaps(second)
    assert second.overlaps(first)
    assert TimeInterval(time(8, 0), time(12, 0)).overlaps(TimeInterval(time(9, 0), time(9, 30)))
