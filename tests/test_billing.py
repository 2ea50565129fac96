from datetime import datetime, timezone
from decimal import Decimal

import pytest

from evrent.errors import ValidationError
from evrent.services.billing import compute_cost, cost_breakdown, is_peak_hour
from evrent.services.pricing import PriceSchedule, quote_booking

SCHEDULE = PriceSchedule(
    per_kwh=Decimal("0.30"),
    per_hour=Decimal("1.00"),
    peak_multiplier=Decimal("1.5"),
)


def test_off_peak_cost():
    assert compute_cost(Decimal("10"), Decimal("2"), SCHEDULE, is_peak=False) == Decimal("5.00")


def test_peak_multiplier_applies_to_whole_amount():
    assert compute_cost(Decimal("10"), Decimal("2"), SCHEDULE, is_peak=True) == Decimal("7.50")


def test_peak_without_multiplier_is_plain_price():
    schedule = PriceSchedule(per_kwh=Decimal("0.30"), per_hour=Decimal("1.00"))
    assert compute_cost(10, 2, schedule, is_peak=True) == Decimal("5.00")


def test_rounds_half_up_once_at_the_end():
    schedule = PriceSchedule(per_kwh=Decimal("0.125"))
    # 0.125 -> 0.13 (half up), not banker's 0.12
    assert compute_cost(Decimal("1"), Decimal("0"), schedule, is_peak=False) == Decimal("0.13")
    # 3 * 0.3333 = 0.9999 -> 1.00; rounding each part first would give 0.99
    schedule = PriceSchedule(per_kwh=Decimal("0.3333"))
    assert compute_cost(Decimal("3"), Decimal("0"), schedule, is_peak=False) == Decimal("1.00")


def test_cost_is_deterministic():
    results = {compute_cost(Decimal("7.77"), Decimal("1.3"), SCHEDULE, True) for _ in range(50)}
    assert len(results) == 1


def test_negative_inputs_rejected():
    with pytest.raises(ValidationError):
        compute_cost(Decimal("-1"), Decimal("1"), SCHEDULE, False)
    with pytest.raises(ValidationError):
        cost_breakdown(Decimal("1"), Decimal("-0.5"), SCHEDULE, False)


def test_zero_session_costs_nothing():
    assert compute_cost(0, 0, SCHEDULE, True) == Decimal("0.00")


@pytest.mark.parametrize(
    "hour, minute, expected",
    [
        (17, 59, False),
        (18, 0, True),
        (20, 59, True),
        (21, 0, False),
        (3, 0, False),
    ],
)
def test_peak_window_is_half_open(hour, minute, expected):
    moment = datetime(2030, 1, 1, hour, minute, tzinfo=timezone.utc)
    assert is_peak_hour(moment, "UTC", 18, 21) is expected


def test_peak_uses_local_time():
    # 17:30 UTC is 18:30 in Berlin (CET, winter)
    moment = datetime(2030, 1, 1, 17, 30, tzinfo=timezone.utc)
    assert is_peak_hour(moment, "UTC") is False
    assert is_peak_hour(moment, "Europe/Berlin") is True


def test_quote_uses_hourly_rate():
    assert quote_booking(SCHEDULE, 90) == Decimal("1.50")
    assert quote_booking(PriceSchedule(per_kwh=Decimal("0.30")), 60) == Decimal("0.00")
