# backend/evrent/services/refund_policy.py
"""
Time-based refund policy for cancelled reservations.

    cancelled >= 2h before start  -> full refund
    cancelled >= 1h before start  -> 50 %
    later                         -> nothing

Only prepaid reservations are refundable. Emergency bookings are charged on
completion and never refunded.
"""

from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

CENT = Decimal("0.01")

FULL_REFUND_BEFORE = timedelta(hours=2)
HALF_REFUND_BEFORE = timedelta(hours=1)


def refund_ratio(start: datetime, cancelled_at: datetime) -> Decimal:
    lead = start - cancelled_at
    if lead >= FULL_REFUND_BEFORE:
        return Decimal("1")
    if lead >= HALF_REFUND_BEFORE:
        return Decimal("0.5")
    return Decimal("0")


def compute_refund(
    paid_amount: Optional[Decimal],
    start: datetime,
    cancelled_at: datetime,
    is_emergency: bool = False,
) -> Decimal:
    if is_emergency or not paid_amount:
        return Decimal("0.00")
    amount = Decimal(str(paid_amount)) * refund_ratio(start, cancelled_at)
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)
