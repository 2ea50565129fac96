# backend/evrent/services/pricing.py
"""
Read-only pricing lookup for a charger.

Price schedules are owned by the charger row (managed elsewhere); the core
only reads them. A reservation is quoted at the hourly rate; metered
energy is billed at session stop.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

CENT = Decimal("0.01")


@dataclass(frozen=True)
class PriceSchedule:
    """
    Rates applied to a charger.

    Attributes:
        per_kwh: Energy rate (0 if the charger bills by time only)
        per_hour: Time rate (0 if the charger bills by energy only)
        peak_multiplier: Factor applied to the whole amount in peak hours
    """
    per_kwh: Decimal = Decimal("0")
    per_hour: Decimal = Decimal("0")
    peak_multiplier: Optional[Decimal] = None


def _dec(value) -> Decimal:
    return Decimal(str(value)) if value is not None else Decimal("0")


def schedule_for(charger) -> PriceSchedule:
    """Build the price schedule for a charger row."""
    multiplier = charger.peak_multiplier
    return PriceSchedule(
        per_kwh=_dec(charger.price_per_kwh),
        per_hour=_dec(charger.price_per_hour),
        peak_multiplier=_dec(multiplier) if multiplier is not None else None,
    )


def quote_booking(schedule: PriceSchedule, duration_minutes: int) -> Decimal:
    """Quoted amount for reserving a port for `duration_minutes`."""
    hours = Decimal(duration_minutes) / Decimal(60)
    return (schedule.per_hour * hours).quantize(CENT, rounding=ROUND_HALF_UP)
