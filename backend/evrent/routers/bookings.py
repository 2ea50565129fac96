# backend/evrent/routers/bookings.py
"""
Booking Domain API.

Thin layer over services.bookings: every write runs in one unit of work,
domain errors are rendered by the app-level DomainError handler.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ..database import get_db, transaction
from ..errors import NotFound
from ..models import Bookings as DBBooking
from ..schemas.bookings import (
    BookingCancel,
    BookingCreate,
    BookingRead,
    BookingReschedule,
    EmergencyBookingCreate,
)
from ..services import bookings as booking_service
from .deps import CurrentUser, get_current_user, require_role

router = APIRouter(prefix="/bookings", tags=["bookings"])


# ──────────────────────────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────────────────────────

def _check_access(booking: DBBooking, user: CurrentUser) -> DBBooking:
    """Other users' bookings are reported as missing."""
    if user.role != "admin" and booking.user_id != user.id:
        raise NotFound(f"Booking {booking.id} not found", entity="booking", id=booking.id)
    return booking


def _own_booking(db: Session, booking_id: int, user: CurrentUser) -> DBBooking:
    return _check_access(booking_service.get_booking(db, booking_id), user)


# ──────────────────────────────────────────────────────────────────────────────
# Endpoints
# ──────────────────────────────────────────────────────────────────────────────

@router.post("/", response_model=BookingRead, status_code=status.HTTP_201_CREATED)
def create_booking(
    data: BookingCreate,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with transaction(db):
        booking = booking_service.create_booking(
            db,
            user_id=user.id,
            charger_id=data.charger_id,
            start=data.start_time,
            end=data.end_time,
            is_emergency=data.is_emergency,
            require_confirmation=data.require_confirmation,
            notes=data.notes,
        )
    db.refresh(booking)
    return booking


@router.post("/emergency", response_model=BookingRead, status_code=status.HTTP_201_CREATED)
def create_emergency_booking(
    data: EmergencyBookingCreate,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Immediate priority booking; may preempt normal reservations."""
    with transaction(db):
        booking = booking_service.create_emergency_booking(db, user.id, data.charger_id)
    db.refresh(booking)
    return booking


@router.get("/", response_model=list[BookingRead])
def list_bookings(
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return booking_service.list_user_bookings(db, user.id, status_filter, limit, offset)


@router.get("/history", response_model=list[BookingRead])
def get_booking_history(
    limit: int = Query(20, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return booking_service.booking_history(db, user.id, limit, offset)


@router.get("/{id}", response_model=BookingRead)
def get_booking(
    id: int,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _own_booking(db, id, user)


@router.post("/{id}/confirm", response_model=BookingRead)
def confirm_booking(
    id: int,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with transaction(db):
        _own_booking(db, id, user)
        booking = booking_service.confirm_booking(db, id)
    db.refresh(booking)
    return booking


@router.post("/{id}/pay", response_model=BookingRead)
def pay_booking(
    id: int,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Prepay the quoted amount from the wallet."""
    with transaction(db):
        _own_booking(db, id, user)
        booking = booking_service.pay_booking(db, id)
    db.refresh(booking)
    return booking


@router.post("/{id}/cancel", response_model=BookingRead)
def cancel_booking(
    id: int,
    data: BookingCancel,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with transaction(db):
        _own_booking(db, id, user)
        booking = booking_service.cancel_booking(db, id, data.reason)
    db.refresh(booking)
    return booking


@router.post("/{id}/reschedule", response_model=BookingRead)
def reschedule_booking(
    id: int,
    data: BookingReschedule,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with transaction(db):
        _own_booking(db, id, user)
        booking = booking_service.reschedule_booking(db, id, data.start_time, data.end_time)
    db.refresh(booking)
    return booking


@router.post("/{id}/complete", response_model=BookingRead)
def complete_booking(
    id: int,
    user: CurrentUser = Depends(require_role("admin")),
    db: Session = Depends(get_db),
):
    """Manual completion. Normally done by stopping the charging session."""
    with transaction(db):
        booking = booking_service.complete_booking(db, id)
    db.refresh(booking)
    return booking
