# backend/evrent/services/billing.py
"""
Billing calculator. Pure functions, no I/O.

    amount = energy_kwh * per_kwh + duration_hours * per_hour
    amount *= peak_multiplier          (peak hours only, whole amount)
    amount -> 2 dp, ROUND_HALF_UP      (once, at the very end)
"""

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from zoneinfo import ZoneInfo

from ..errors import ValidationError
from .pricing import PriceSchedule

CENT = Decimal("0.01")


def _dec(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def is_peak_hour(
    moment: datetime,
    tz: str = "UTC",
    start_hour: int = 18,
    end_hour: int = 21,
) -> bool:
    """True if `moment`, in local time `tz`, falls in [start_hour, end_hour)."""
    local = moment.astimezone(ZoneInfo(tz))
    return start_hour <= local.hour < end_hour


def cost_breakdown(
    energy_kwh,
    duration_hours,
    schedule: PriceSchedule,
    is_peak: bool,
) -> dict:
    """Unrounded components of a charge, for receipts."""
    energy_kwh = _dec(energy_kwh)
    duration_hours = _dec(duration_hours)
    if energy_kwh < 0 or duration_hours < 0:
        raise ValidationError(
            "Energy and duration must not be negative",
            energy_kwh=str(energy_kwh),
            duration_hours=str(duration_hours),
        )
    energy_cost = energy_kwh * schedule.per_kwh
    time_cost = duration_hours * schedule.per_hour
    multiplier = schedule.peak_multiplier if is_peak and schedule.peak_multiplier else Decimal("1")
    return {
        "energy_cost": energy_cost,
        "time_cost": time_cost,
        "multiplier": multiplier,
        "subtotal": energy_cost + time_cost,
    }


def compute_cost(
    energy_kwh,
    duration_hours,
    schedule: PriceSchedule,
    is_peak: bool,
) -> Decimal:
    """Final charge for a session, rounded once to cents."""
    parts = cost_breakdown(energy_kwh, duration_hours, schedule, is_peak)
    amount = parts["subtotal"] * parts["multiplier"]
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)
