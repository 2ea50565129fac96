from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from evrent.services.refund_policy import compute_refund, refund_ratio

START = datetime(2030, 1, 1, 10, 0, tzinfo=timezone.utc)
PAID = Decimal("50.00")


@pytest.mark.parametrize(
    "lead, expected",
    [
        (timedelta(hours=3), Decimal("50.00")),
        (timedelta(hours=2), Decimal("50.00")),
        (timedelta(minutes=90), Decimal("25.00")),
        (timedelta(hours=1), Decimal("25.00")),
        (timedelta(minutes=10), Decimal("0.00")),
        (timedelta(minutes=-30), Decimal("0.00")),
    ],
)
def test_refund_tiers(lead, expected):
    assert compute_refund(PAID, START, START - lead) == expected


def test_refund_never_increases_closer_to_start():
    previous = None
    for minutes in range(240, -60, -5):
        refund = compute_refund(PAID, START, START - timedelta(minutes=minutes))
        if previous is not None:
            assert refund <= previous
        previous = refund


def test_emergency_is_not_refunded():
    assert compute_refund(PAID, START, START - timedelta(hours=5), is_emergency=True) == Decimal("0.00")


def test_unpaid_booking_refunds_nothing():
    assert compute_refund(None, START, START - timedelta(hours=5)) == Decimal("0.00")


def test_half_refund_rounds_to_cents():
    assert compute_refund(Decimal("0.05"), START, START - timedelta(minutes=90)) == Decimal("0.03")


def test_ratio():
    assert refund_ratio(START, START - timedelta(hours=2, seconds=1)) == Decimal("1")
    assert refund_ratio(START, START - timedelta(minutes=59)) == Decimal("0")
