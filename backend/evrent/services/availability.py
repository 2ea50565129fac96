# backend/evrent/services/availability.py
"""
Slot conflict detection.

A charger has `total_ports` concurrent charging units. A port is occupied
during [start, end) by:

- every booking in an occupying status whose window overlaps (half-open
  test: existing.start < end AND existing.end > start) and that has no open
  charging session yet;
- every open charging session from its start. A session started for a
  booking holds the port until the booking ends or, if it overruns, until
  it is stopped. Walk-up sessions, and sessions whose booking was cancelled
  or closed while charging, hold the port until stopped.

`pending` counts as occupying: an unconfirmed booking keeps its port until
it is confirmed or expired by the sweep, so confirming never needs a fresh
capacity check.

Capacity math always derives from booking/session rows, never from the
charger's informational `busy` flag.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..errors import NotFound, ValidationError
from ..models import Bookings, Chargers, ChargingSessions, utcnow

OCCUPYING_STATUSES = ("pending", "reserved", "confirmed", "active")
OPEN_SESSION_STATUSES = ("active", "paused")

@dataclass(frozen=True)
class Availability:
    charger_id: int
    total_ports: int
    occupied_ports: int

    @property
    def available_ports(self) -> int:
        return max(self.total_ports - self.occupied_ports, 0)

    @property
    def is_available(self) -> bool:
        return self.occupied_ports < self.total_ports


def validate_window(start: datetime, end: datetime) -> None:
    """Reject naive, empty and inverted windows."""
    if start.tzinfo is None or end.tzinfo is None:
        raise ValidationError("Booking window must be timezone-aware", field="start_time")
    if end <= start:
        raise ValidationError(
            "Booking window must end after it starts",
            start_time=start.isoformat(),
            end_time=end.isoformat(),
        )


def get_charger(db: Session, charger_id: int, lock: bool = False) -> Chargers:
    """
    Load a charger, optionally taking a row lock (SELECT ... FOR UPDATE).

    The lock serialises every capacity-sensitive read-check-write on this
    charger until the surrounding transaction ends. On SQLite the whole
    database is already write-locked by BEGIN IMMEDIATE.
    """
    query = db.query(Chargers).filter(Chargers.id == charger_id)
    if lock:
        query = query.with_for_update()
    charger = query.first()
    if not charger:
        raise NotFound(f"Charger {charger_id} not found", entity="charger", id=charger_id)
    return charger


def count_occupied(
    db: Session,
    charger_id: int,
    start: datetime,
    end: datetime,
    exclude_booking_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> int:
    now = now or utcnow()

    # A booking with an open session is counted through the session
    bookings = db.query(func.count(Bookings.id)).filter(
        Bookings.charger_id == charger_id,
        Bookings.status.in_(OCCUPYING_STATUSES),
        Bookings.start_time < end,
        Bookings.end_time > start,
        ~Bookings.sessions.any(ChargingSessions.status.in_(OPEN_SESSION_STATUSES)),
    )
    if exclude_booking_id is not None:
        bookings = bookings.filter(Bookings.id != exclude_booking_id)

    sessions = (
        db.query(func.count(ChargingSessions.id))
        .outerjoin(Bookings, ChargingSessions.booking_id == Bookings.id)
        .filter(
            ChargingSessions.charger_id == charger_id,
            ChargingSessions.status.in_(OPEN_SESSION_STATUSES),
            ChargingSessions.start_time < end,
        )
    )
    if exclude_booking_id is not None:
        sessions = sessions.filter(
            or_(
                ChargingSessions.booking_id.is_(None),
                ChargingSessions.booking_id != exclude_booking_id,
            )
        )
    if start > now:
        # A booked session still inside its booking frees the port at
        # booking end; anything else runs until stopped
        sessions = sessions.filter(
            or_(
                ChargingSessions.booking_id.is_(None),
                Bookings.status.notin_(OCCUPYING_STATUSES),
                Bookings.end_time > start,
            )
        )
    return bookings.scalar() + sessions.scalar()


def check_availability(
    db: Session,
    charger_id: int,
    start: datetime,
    end: datetime,
    exclude_booking_id: Optional[int] = None,
    lock: bool = False,
    now: Optional[datetime] = None,
) -> Availability:
    """
    Port availability for a charger over [start, end).

    Call with lock=True from inside the transaction that is about to insert
    or move a booking, so no concurrent creator can slip in between the check
    and the write.
    """
    validate_window(start, end)
    charger = get_charger(db, charger_id, lock=lock)
    occupied = count_occupied(db, charger_id, start, end, exclude_booking_id, now=now)
    return Availability(
        charger_id=charger.id,
        total_ports=charger.total_ports,
        occupied_ports=occupied,
    )
