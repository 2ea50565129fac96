# backend/evrent/services/sessions.py
"""
Charging session engine.

    active ⇄ paused ──► completed

A session is tied to a booking (one open session per booking) or is a
walk-up start holding a port until it stops. Telemetry carries a cumulative
meter reading; the engine accumulates deltas so a restarted meter never
produces negative energy. Stop bills the session and writes the ledger debit
and the booking completion in the caller's unit of work.
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import CapacityExceeded, InvalidState, NotFound, ValidationError
from ..models import ChargingSessions as DBSession, utcnow
from . import ledger
from .availability import OPEN_SESSION_STATUSES, count_occupied, get_charger
from .billing import compute_cost, is_peak_hour
from .bookings import TERMINAL_STATUSES, activate_booking, get_booking
from .events import queue_event
from .pricing import schedule_for

logger = logging.getLogger(__name__)

INSTANT = timedelta(microseconds=1)


def _require_status(session: DBSession, allowed: tuple, action: str) -> None:
    if session.status not in allowed:
        raise InvalidState(
            f"Cannot {action} session {session.id} in status '{session.status}'",
            entity="session",
            id=session.id,
            state=session.status,
        )


def _refresh_charger_flag(db: Session, charger, now: datetime) -> None:
    """Informational busy/active flag; never used for capacity math."""
    if charger.status == "disabled":
        return
    occupied = count_occupied(db, charger.id, now, now + INSTANT, now=now)
    status = "busy" if occupied >= charger.total_ports else "active"
    if charger.status != status:
        charger.status = status
        logger.info(f"Charger {charger.id} is now {status}")


# ──────────────────────────────────────────────────────────────────────────────
# Reads
# ──────────────────────────────────────────────────────────────────────────────

def get_session(db: Session, session_id: int, lock: bool = False) -> DBSession:
    query = db.query(DBSession).filter(DBSession.id == session_id)
    if lock:
        query = query.with_for_update()
    session = query.first()
    if not session:
        raise NotFound(f"Session {session_id} not found", entity="session", id=session_id)
    return session


def get_active_session(db: Session, user_id: int) -> Optional[DBSession]:
    return (
        db.query(DBSession)
        .filter(DBSession.user_id == user_id, DBSession.status.in_(OPEN_SESSION_STATUSES))
        .order_by(DBSession.start_time.desc())
        .first()
    )


def session_history(
    db: Session,
    user_id: int,
    limit: int = 20,
    offset: int = 0,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    min_cost: Optional[Decimal] = None,
    max_cost: Optional[Decimal] = None,
) -> list[DBSession]:
    query = db.query(DBSession).filter(
        DBSession.user_id == user_id,
        DBSession.status == "completed",
    )
    if start_date is not None:
        query = query.filter(DBSession.start_time >= start_date)
    if end_date is not None:
        query = query.filter(DBSession.end_time <= end_date)
    if min_cost is not None:
        query = query.filter(DBSession.cost >= min_cost)
    if max_cost is not None:
        query = query.filter(DBSession.cost <= max_cost)
    return (
        query.order_by(DBSession.end_time.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def _stats(query) -> dict:
    row = query.one()
    sessions, energy, minutes, spent, avg_cost, max_cost = row
    return {
        "total_sessions": sessions or 0,
        "total_energy_kwh": Decimal(str(energy or 0)),
        "total_minutes": int(minutes or 0),
        "total_spent": ledger.to_money(spent or 0),
        "average_cost": ledger.to_money(avg_cost or 0),
        "max_cost": ledger.to_money(max_cost or 0),
    }


def _stats_columns():
    return (
        func.count(DBSession.id),
        func.sum(DBSession.energy_delivered),
        func.sum(DBSession.duration_minutes),
        func.sum(DBSession.cost),
        func.avg(DBSession.cost),
        func.max(DBSession.cost),
    )


def session_stats(db: Session, user_id: int) -> dict:
    query = db.query(*_stats_columns()).filter(
        DBSession.user_id == user_id,
        DBSession.status == "completed",
    )
    return _stats(query)


def charger_session_stats(db: Session, charger_id: int) -> dict:
    """Owner dashboard numbers for one charger."""
    get_charger(db, charger_id)
    query = db.query(*_stats_columns()).filter(
        DBSession.charger_id == charger_id,
        DBSession.status == "completed",
    )
    stats = _stats(query)
    stats["unique_users"] = (
        db.query(func.count(func.distinct(DBSession.user_id)))
        .filter(DBSession.charger_id == charger_id, DBSession.status == "completed")
        .scalar()
    )
    stats["total_revenue"] = stats.pop("total_spent")
    return stats


# ──────────────────────────────────────────────────────────────────────────────
# Lifecycle
# ──────────────────────────────────────────────────────────────────────────────

def start_session(
    db: Session,
    charger_id: int,
    user_id: int,
    booking_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> DBSession:
    """
    Start charging.

    Idempotent: a retried start for the same booking (or the same walk-up
    user on the same charger) returns the open session instead of a second one.
    """
    now = now or utcnow()

    if booking_id is not None:
        booking = get_booking(db, booking_id, lock=True)
        if booking.user_id != user_id:
            raise ValidationError(
                f"Booking {booking_id} belongs to another user",
                booking_id=booking_id,
            )
        if booking.charger_id != charger_id:
            raise ValidationError(
                f"Booking {booking_id} is for charger {booking.charger_id}",
                booking_id=booking_id,
                charger_id=charger_id,
            )

        existing = (
            db.query(DBSession)
            .filter(DBSession.booking_id == booking_id, DBSession.status.in_(OPEN_SESSION_STATUSES))
            .first()
        )
        if existing:
            return existing

        if booking.status not in TERMINAL_STATUSES:
            if now < booking.start_time - timedelta(minutes=settings.early_start_minutes):
                raise ValidationError(
                    f"Booking {booking_id} starts at {booking.start_time.isoformat()}",
                    booking_id=booking_id,
                )
            if now >= booking.end_time:
                raise ValidationError(f"Booking {booking_id} window is over", booking_id=booking_id)
        charger = get_charger(db, charger_id, lock=True)
        activate_booking(db, booking)

        # The previous driver may still be charging (early start or overrun)
        occupied = count_occupied(
            db, charger_id, now, now + INSTANT, exclude_booking_id=booking_id, now=now
        )
        if occupied >= charger.total_ports:
            raise CapacityExceeded(
                f"No free port on charger {charger_id} yet",
                charger_id=charger_id,
                booking_id=booking_id,
                occupied_ports=occupied,
                total_ports=charger.total_ports,
            )
    else:
        charger = get_charger(db, charger_id, lock=True)
        if charger.status == "disabled":
            raise InvalidState(
                f"Charger {charger_id} is disabled",
                entity="charger",
                id=charger_id,
                state=charger.status,
            )

        existing = (
            db.query(DBSession)
            .filter(
                DBSession.charger_id == charger_id,
                DBSession.user_id == user_id,
                DBSession.booking_id.is_(None),
                DBSession.status.in_(OPEN_SESSION_STATUSES),
            )
            .first()
        )
        if existing:
            return existing

        window_end = now + timedelta(minutes=settings.walkup_window_minutes)
        occupied = count_occupied(db, charger_id, now, window_end, now=now)
        if occupied >= charger.total_ports:
            raise CapacityExceeded(
                f"No free port on charger {charger_id} right now",
                charger_id=charger_id,
                occupied_ports=occupied,
                total_ports=charger.total_ports,
            )

    session = DBSession(
        booking_id=booking_id,
        charger_id=charger_id,
        user_id=user_id,
        status="active",
        start_time=now,
        paused_seconds=0,
        energy_delivered=Decimal("0"),
        last_energy_reading=Decimal("0"),
        collections_flag=False,
        created_at=now,
    )
    db.add(session)
    db.flush()

    _refresh_charger_flag(db, charger, now)
    db.flush()

    queue_event(db, "session_started", {
        "session_id": session.id,
        "booking_id": booking_id,
        "charger_id": charger_id,
        "user_id": user_id,
    })
    logger.info(
        f"Session {session.id} started: charger={charger_id} user={user_id} "
        f"booking={booking_id or 'walk-up'}"
    )
    return session


def record_progress(
    db: Session,
    session_id: int,
    energy_kwh,
    sequence: Optional[int] = None,
    power_kw=None,
    voltage=None,
    current_a=None,
    temperature_c=None,
    battery_percent=None,
    now: Optional[datetime] = None,
) -> DBSession:
    """
    Apply one telemetry reading.

    `energy_kwh` is the cumulative meter value. Readings carrying a sequence
    number not greater than the last applied one are ignored. A reading lower
    than the last one means the meter restarted: it becomes the new baseline
    and contributes no energy.
    """
    now = now or utcnow()
    session = get_session(db, session_id, lock=True)
    _require_status(session, OPEN_SESSION_STATUSES, "update")

    if sequence is not None and session.last_sequence is not None and sequence <= session.last_sequence:
        logger.debug(
            f"Session {session_id}: stale telemetry seq={sequence} "
            f"(last={session.last_sequence}), ignored"
        )
        return session

    reading = Decimal(str(energy_kwh))
    if reading < 0:
        raise ValidationError("Energy reading must not be negative", energy_kwh=str(reading))

    last = Decimal(str(session.last_energy_reading or 0))
    if reading >= last:
        session.energy_delivered = Decimal(str(session.energy_delivered or 0)) + (reading - last)
    else:
        logger.warning(
            f"Session {session_id}: meter reset ({last} -> {reading}), new baseline"
        )
    session.last_energy_reading = reading
    if sequence is not None:
        session.last_sequence = sequence

    if power_kw is not None:
        session.power_kw = power_kw
    if voltage is not None:
        session.voltage = voltage
    if current_a is not None:
        session.current_a = current_a
    if temperature_c is not None:
        session.temperature_c = temperature_c
    if battery_percent is not None:
        session.battery_percent = battery_percent
    session.last_telemetry_at = now
    db.flush()
    return session


def pause_session(db: Session, session_id: int, now: Optional[datetime] = None) -> DBSession:
    session = get_session(db, session_id, lock=True)
    _require_status(session, ("active",), "pause")

    session.status = "paused"
    session.paused_at = now or utcnow()
    db.flush()

    logger.info(f"Session {session_id} paused")
    return session


def _close_pause(session: DBSession, now: datetime) -> None:
    if session.paused_at is not None:
        paused = max(int((now - session.paused_at).total_seconds()), 0)
        session.paused_seconds = (session.paused_seconds or 0) + paused
        session.paused_at = None


def resume_session(db: Session, session_id: int, now: Optional[datetime] = None) -> DBSession:
    now = now or utcnow()
    session = get_session(db, session_id, lock=True)
    _require_status(session, ("paused",), "resume")

    _close_pause(session, now)
    session.status = "active"
    db.flush()

    logger.info(f"Session {session_id} resumed (paused total {session.paused_seconds}s)")
    return session


def stop_session(db: Session, session_id: int, now: Optional[datetime] = None) -> DBSession:
    """
    Stop charging and bill.

    In the caller's unit of work:
    - session -> completed with end_time, duration and cost
    - ledger debit for the cost (allowed to go negative: the energy has been
      delivered; the session is flagged for collections instead)
    - linked booking -> completed unless a sweep already closed it
    """
    now = now or utcnow()
    session = get_session(db, session_id, lock=True)
    _require_status(session, OPEN_SESSION_STATUSES, "stop")

    _close_pause(session, now)
    elapsed = (now - session.start_time).total_seconds() - (session.paused_seconds or 0)
    elapsed = max(elapsed, 0)
    hours = Decimal(str(elapsed)) / Decimal(3600)

    charger = get_charger(db, session.charger_id, lock=True)
    peak = is_peak_hour(
        now,
        settings.local_timezone,
        settings.peak_start_hour,
        settings.peak_end_hour,
    )
    energy = Decimal(str(session.energy_delivered or 0))
    cost = compute_cost(energy, hours, schedule_for(charger), peak)

    session.status = "completed"
    session.end_time = now
    session.duration_minutes = int(round(elapsed / 60))
    session.cost = cost
    session.is_peak_hour = peak
    db.flush()

    if cost > 0:
        ledger.debit(
            db,
            session.user_id,
            cost,
            f"Charging session #{session.id}: {session.duration_minutes} min, {energy:.2f} kWh",
            booking_id=session.booking_id,
            session_id=session.id,
            allow_negative=True,
        )
        balance = ledger.get_balance(db, session.user_id)
        if balance < 0:
            session.collections_flag = True
            logger.warning(
                f"Session {session.id}: wallet of user {session.user_id} "
                f"is negative ({balance}), flagged for collections"
            )
            queue_event(db, "wallet_negative", {
                "user_id": session.user_id,
                "session_id": session.id,
                "balance": str(balance),
            })

    if session.booking_id is not None:
        booking = get_booking(db, session.booking_id, lock=True)
        if booking.status not in TERMINAL_STATUSES:
            booking.status = "completed"
            booking.completed_at = now

    db.flush()
    _refresh_charger_flag(db, charger, now)
    db.flush()

    queue_event(db, "session_completed", {
        "session_id": session.id,
        "booking_id": session.booking_id,
        "user_id": session.user_id,
        "cost": str(cost),
        "energy_kwh": str(energy),
    })
    logger.info(
        f"Session {session.id} stopped: {energy} kWh, {session.duration_minutes} min, "
        f"cost={cost}{' [peak]' if peak else ''}"
    )
    return session
