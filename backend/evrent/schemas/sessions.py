# backend/evrent/schemas/sessions.py

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class SessionStart(BaseModel):
    charger_id: int
    booking_id: Optional[int] = None  # None = walk-up


class TelemetryUpdate(BaseModel):
    """Request body for POST /sessions/{id}/progress (from the charger)"""
    energy_kwh: Decimal = Field(..., ge=0, description="Cumulative meter reading")
    sequence: Optional[int] = Field(None, ge=0, description="Per-session monotonic counter")
    power_kw: Optional[Decimal] = None
    voltage: Optional[Decimal] = None
    current_a: Optional[Decimal] = None
    temperature_c: Optional[Decimal] = None
    battery_percent: Optional[Decimal] = Field(None, ge=0, le=100)


class SessionRead(BaseModel):
    id: int
    booking_id: Optional[int] = None
    charger_id: int
    user_id: int
    status: str

    start_time: datetime
    end_time: Optional[datetime] = None
    paused_seconds: int
    energy_delivered: Decimal

    power_kw: Optional[Decimal] = None
    voltage: Optional[Decimal] = None
    current_a: Optional[Decimal] = None
    temperature_c: Optional[Decimal] = None
    battery_percent: Optional[Decimal] = None
    last_telemetry_at: Optional[datetime] = None

    duration_minutes: Optional[int] = None
    cost: Optional[Decimal] = None
    is_peak_hour: Optional[bool] = None
    collections_flag: bool

    model_config = {"from_attributes": True}


class SessionStatsRead(BaseModel):
    total_sessions: int
    total_energy_kwh: Decimal
    total_minutes: int
    total_spent: Decimal
    average_cost: Decimal
    max_cost: Decimal
