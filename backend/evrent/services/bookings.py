# backend/evrent/services/bookings.py
"""
Booking state machine.

    pending ──► confirmed ──► active ──► completed
       │            ▲           ▲
       ▼            │           │
    expired      reserved ──────┘
                    │
    (pending | reserved | confirmed | active) ──► cancelled

completed / cancelled / expired are terminal.

Every operation runs inside the caller's unit of work (see
database.transaction): functions flush but never commit. Capacity-sensitive
operations lock the charger row before counting occupied ports, so the
check and the insert/update are atomic with respect to other writers.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..errors import CapacityExceeded, InvalidState, NotFound, ValidationError
from ..models import Bookings as DBBooking, Users as DBUser, utcnow
from . import ledger
from .availability import OPEN_SESSION_STATUSES, count_occupied, get_charger, validate_window
from .events import queue_event
from .pricing import quote_booking, schedule_for
from .refund_policy import compute_refund

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = ("completed", "cancelled", "expired")
CANCELLABLE_STATUSES = ("pending", "reserved", "confirmed", "active")
PAYABLE_STATUSES = ("pending", "reserved", "confirmed")
RESCHEDULABLE_STATUSES = ("pending", "reserved", "confirmed")


def _minutes(start: datetime, end: datetime) -> int:
    return int((end - start).total_seconds() // 60)


def _require_status(booking: DBBooking, allowed: tuple, action: str) -> None:
    if booking.status not in allowed:
        raise InvalidState(
            f"Cannot {action} booking {booking.id} in status '{booking.status}'",
            entity="booking",
            id=booking.id,
            state=booking.status,
        )


def _event_payload(booking: DBBooking, **extra) -> dict:
    return {
        "booking_id": booking.id,
        "user_id": booking.user_id,
        "charger_id": booking.charger_id,
        "status": booking.status,
        **extra,
    }


# ──────────────────────────────────────────────────────────────────────────────
# Reads
# ──────────────────────────────────────────────────────────────────────────────

def get_booking(db: Session, booking_id: int, lock: bool = False) -> DBBooking:
    query = db.query(DBBooking).filter(DBBooking.id == booking_id)
    if lock:
        query = query.with_for_update()
    booking = query.first()
    if not booking:
        raise NotFound(f"Booking {booking_id} not found", entity="booking", id=booking_id)
    return booking


def list_user_bookings(
    db: Session,
    user_id: int,
    status: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> list[DBBooking]:
    query = db.query(DBBooking).filter(DBBooking.user_id == user_id)
    if status:
        query = query.filter(DBBooking.status == status)
    return (
        query.order_by(DBBooking.start_time.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def booking_history(
    db: Session,
    user_id: int,
    limit: int = 20,
    offset: int = 0,
) -> list[DBBooking]:
    """Completed bookings, most recently completed first."""
    return (
        db.query(DBBooking)
        .filter(DBBooking.user_id == user_id, DBBooking.status == "completed")
        .order_by(DBBooking.completed_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


# ──────────────────────────────────────────────────────────────────────────────
# Transitions
# ──────────────────────────────────────────────────────────────────────────────

def create_booking(
    db: Session,
    user_id: int,
    charger_id: int,
    start: datetime,
    end: datetime,
    is_emergency: bool = False,
    require_confirmation: bool = False,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> DBBooking:
    """
    Reserve a port on a charger for [start, end).

    Steps:
    1. Validate window, user and charger (must not be disabled)
    2. Lock the charger and count occupied ports over the window
    3. No capacity: emergency requests preempt once and re-check once,
       everything else fails fast with CapacityExceeded
    4. Insert booking as `reserved` (`pending` if confirmation is required)
    """
    now = now or utcnow()
    validate_window(start, end)
    if end <= now:
        raise ValidationError("Booking window is already over", end_time=end.isoformat())

    if not db.get(DBUser, user_id):
        raise NotFound(f"User {user_id} not found", entity="user", id=user_id)

    charger = get_charger(db, charger_id, lock=True)
    if charger.status == "disabled":
        raise InvalidState(
            f"Charger {charger_id} is disabled",
            entity="charger",
            id=charger_id,
            state=charger.status,
        )

    occupied = count_occupied(db, charger_id, start, end, now=now)
    if occupied >= charger.total_ports and is_emergency:
        # Lazy import: preemption cancels through this module
        from .preemption import preempt

        needed = occupied - charger.total_ports + 1
        preempted = preempt(db, charger_id, needed, start=start, end=end, now=now)
        logger.info(
            f"Emergency booking on charger {charger_id}: "
            f"preempted {preempted}/{needed} reservation(s)"
        )
        occupied = count_occupied(db, charger_id, start, end, now=now)

    if occupied >= charger.total_ports:
        raise CapacityExceeded(
            f"No free port on charger {charger_id} for the requested window",
            charger_id=charger_id,
            occupied_ports=occupied,
            total_ports=charger.total_ports,
        )

    duration = _minutes(start, end)
    booking = DBBooking(
        user_id=user_id,
        charger_id=charger_id,
        start_time=start,
        end_time=end,
        duration_minutes=duration,
        amount=quote_booking(schedule_for(charger), duration),
        is_emergency=is_emergency,
        status="pending" if require_confirmation and not is_emergency else "reserved",
        notes=notes,
        reschedule_count=0,
        created_at=now,
    )
    db.add(booking)
    db.flush()

    queue_event(db, "booking_created", _event_payload(booking, is_emergency=is_emergency))
    logger.info(
        f"Booking {booking.id} {booking.status}: charger={charger_id} user={user_id} "
        f"{start.isoformat()}..{end.isoformat()}"
        f"{' [emergency]' if is_emergency else ''}"
    )
    return booking


def create_emergency_booking(
    db: Session,
    user_id: int,
    charger_id: int,
    now: Optional[datetime] = None,
) -> DBBooking:
    """Immediate priority booking starting now."""
    now = now or utcnow()
    end = now + timedelta(minutes=settings.emergency_duration_minutes)
    return create_booking(db, user_id, charger_id, now, end, is_emergency=True, now=now)


def confirm_booking(db: Session, booking_id: int, now: Optional[datetime] = None) -> DBBooking:
    booking = get_booking(db, booking_id, lock=True)
    _require_status(booking, ("pending",), "confirm")

    booking.status = "confirmed"
    booking.confirmed_at = now or utcnow()
    db.flush()

    queue_event(db, "booking_confirmed", _event_payload(booking))
    logger.info(f"Booking {booking_id} confirmed")
    return booking


def pay_booking(db: Session, booking_id: int, now: Optional[datetime] = None) -> DBBooking:
    """
    Prepay a reservation from the wallet.

    Emergency bookings are charged on completion and cannot be prepaid.
    A pending booking becomes confirmed once paid.
    """
    booking = get_booking(db, booking_id, lock=True)
    _require_status(booking, PAYABLE_STATUSES, "pay")
    if booking.is_emergency:
        raise InvalidState(
            f"Emergency booking {booking_id} is charged on completion",
            entity="booking",
            id=booking_id,
            state=booking.status,
        )
    if booking.paid_amount is not None:
        raise InvalidState(
            f"Booking {booking_id} is already paid",
            entity="booking",
            id=booking_id,
            state=booking.status,
        )
    amount = ledger.to_money(booking.amount)
    if amount <= 0:
        raise ValidationError(f"Booking {booking_id} has nothing to pay", amount=str(amount))

    ledger.debit(
        db,
        booking.user_id,
        amount,
        f"Reservation #{booking.id}",
        booking_id=booking.id,
    )
    booking.paid_amount = amount
    if booking.status == "pending":
        booking.status = "confirmed"
        booking.confirmed_at = now or utcnow()
    db.flush()

    logger.info(f"Booking {booking_id} paid {amount}")
    return booking


def cancel_booking(
    db: Session,
    booking_id: int,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> DBBooking:
    """
    Cancel a booking and credit the refund the policy allows.

    The refund is written in the same unit of work as the status change and
    can only happen once, since cancelled is terminal.
    """
    now = now or utcnow()
    booking = get_booking(db, booking_id, lock=True)
    _require_status(booking, CANCELLABLE_STATUSES, "cancel")

    refund = compute_refund(
        booking.paid_amount,
        booking.start_time,
        now,
        is_emergency=booking.is_emergency,
    )

    booking.status = "cancelled"
    booking.cancel_reason = reason
    booking.cancelled_at = now
    booking.refund_amount = refund
    db.flush()

    if refund > 0:
        ledger.credit(
            db,
            booking.user_id,
            refund,
            f"Refund for booking #{booking.id}",
            booking_id=booking.id,
        )

    queue_event(
        db,
        "booking_cancelled",
        _event_payload(booking, reason=reason, refund_amount=str(refund)),
    )
    logger.info(f"Booking {booking_id} cancelled ({reason or 'no reason'}), refund={refund}")
    return booking


def reschedule_booking(
    db: Session,
    booking_id: int,
    new_start: datetime,
    new_end: datetime,
    now: Optional[datetime] = None,
) -> DBBooking:
    """
    Move a booking to a new window on the same charger.

    The booking's own row is excluded from the conflict check. On conflict
    nothing is changed.
    """
    now = now or utcnow()
    validate_window(new_start, new_end)
    if new_end <= now:
        raise ValidationError("Booking window is already over", end_time=new_end.isoformat())

    booking = get_booking(db, booking_id, lock=True)
    _require_status(booking, RESCHEDULABLE_STATUSES, "reschedule")

    charger = get_charger(db, booking.charger_id, lock=True)
    occupied = count_occupied(
        db,
        booking.charger_id,
        new_start,
        new_end,
        exclude_booking_id=booking.id,
        now=now,
    )
    if occupied >= charger.total_ports:
        raise CapacityExceeded(
            f"New window conflicts with existing bookings on charger {charger.id}",
            charger_id=charger.id,
            booking_id=booking.id,
            occupied_ports=occupied,
            total_ports=charger.total_ports,
        )

    old_start = booking.start_time
    booking.start_time = new_start
    booking.end_time = new_end
    booking.duration_minutes = _minutes(new_start, new_end)
    if booking.paid_amount is None:
        booking.amount = quote_booking(schedule_for(charger), booking.duration_minutes)
    booking.reschedule_count = (booking.reschedule_count or 0) + 1
    booking.rescheduled_at = now
    db.flush()

    queue_event(
        db,
        "booking_rescheduled",
        _event_payload(booking, old_start=old_start.isoformat(), new_start=new_start.isoformat()),
    )
    logger.info(
        f"Booking {booking_id} rescheduled to {new_start.isoformat()}..{new_end.isoformat()} "
        f"(#{booking.reschedule_count})"
    )
    return booking


def activate_booking(db: Session, booking: DBBooking) -> DBBooking:
    """reserved/confirmed -> active, when a charging session starts."""
    if booking.status == "active":
        return booking
    _require_status(booking, ("reserved", "confirmed"), "start")
    booking.status = "active"
    db.flush()
    return booking


def complete_booking(db: Session, booking_id: int, now: Optional[datetime] = None) -> DBBooking:
    booking = get_booking(db, booking_id, lock=True)
    _require_status(booking, ("active",), "complete")
    open_sessions = [s.id for s in booking.sessions if s.status in OPEN_SESSION_STATUSES]
    if open_sessions:
        raise InvalidState(
            f"Booking {booking_id} is still charging; stop session {open_sessions[0]} instead",
            entity="booking",
            id=booking_id,
            state=booking.status,
            session_id=open_sessions[0],
        )

    booking.status = "completed"
    booking.completed_at = now or utcnow()
    db.flush()

    logger.info(f"Booking {booking_id} completed")
    return booking
