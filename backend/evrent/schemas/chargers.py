# backend/evrent/schemas/chargers.py

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import AwareDatetime, BaseModel, Field


class ChargerCreate(BaseModel):
    name: str = Field(..., min_length=1)
    total_ports: int = Field(1, ge=1)
    price_per_kwh: Decimal = Field(Decimal("0"), ge=0)
    price_per_hour: Decimal = Field(Decimal("0"), ge=0)
    peak_multiplier: Optional[Decimal] = Field(None, gt=0)


class ChargerStatusUpdate(BaseModel):
    status: Literal["active", "busy", "disabled"]


class ChargerRead(BaseModel):
    id: int
    owner_id: int
    name: str
    total_ports: int
    price_per_kwh: Decimal
    price_per_hour: Decimal
    peak_multiplier: Optional[Decimal] = None
    status: str
    created_at: datetime

    model_config = {"from_attributes": True}


class AvailabilityQuery(BaseModel):
    start: AwareDatetime
    end: AwareDatetime


class AvailabilityRead(BaseModel):
    """Response for GET /chargers/{id}/availability"""
    charger_id: int
    total_ports: int
    occupied_ports: int
    available_ports: int
    is_available: bool

    model_config = {"from_attributes": True}


class ChargerStatsRead(BaseModel):
    """Owner dashboard numbers for GET /chargers/{id}/stats"""
    total_sessions: int
    unique_users: int
    total_energy_kwh: Decimal
    total_minutes: int
    total_revenue: Decimal
    average_cost: Decimal
    max_cost: Decimal
