# backend/evrent/schemas/bookings.py

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import AwareDatetime, BaseModel, Field


class BookingCreate(BaseModel):
    charger_id: int

    start_time: AwareDatetime
    end_time: AwareDatetime

    is_emergency: bool = False
    require_confirmation: bool = False
    notes: Optional[str] = None


class EmergencyBookingCreate(BaseModel):
    charger_id: int


class BookingCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class BookingReschedule(BaseModel):
    start_time: AwareDatetime
    end_time: AwareDatetime


class BookingRead(BaseModel):
    id: int

    user_id: int
    charger_id: int

    start_time: datetime
    end_time: datetime
    duration_minutes: int

    status: str
    is_emergency: bool
    amount: Decimal
    paid_amount: Optional[Decimal] = None
    refund_amount: Optional[Decimal] = None
    notes: Optional[str] = None
    cancel_reason: Optional[str] = None
    reschedule_count: int

    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    rescheduled_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}
