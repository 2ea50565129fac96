"""
Booking sweeps.

- auto_expire_unconfirmed: pending bookings older than the grace period
  become `expired`, releasing their port.
- auto_complete_overrun: occupying bookings whose window has ended become
  `completed`. This only changes booking status; billing happens at session
  stop and never here.

Each row is moved with a conditional UPDATE guarded on its current status,
inside its own savepoint, so overlapping sweeps and live traffic are safe:
a row someone else already moved is simply skipped. A failing row is logged
and the sweep continues with the rest.

Runs as an asyncio task in the app lifespan (sweeper_loop).
Uses synchronous DB (via asyncio.to_thread).
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..database import SessionLocal, transaction
from ..models import Bookings, utcnow
from .events import queue_event

logger = logging.getLogger(__name__)

OVERRUN_STATUSES = ("reserved", "confirmed", "active")


async def sweeper_loop() -> None:
    """Periodic loop running both sweeps every sweep_interval_seconds."""
    logger.info("sweeper_loop started")

    try:
        while True:
            try:
                await asyncio.to_thread(run_sweeps)
            except asyncio.CancelledError:
                logger.info("sweeper_loop cancelled")
                raise
            except Exception:
                logger.exception("sweeper_loop error")

            await asyncio.sleep(settings.sweep_interval_seconds)
    except asyncio.CancelledError:
        pass


def run_sweeps(now: Optional[datetime] = None) -> dict:
    """Run both sweeps once (synchronous)."""
    db = SessionLocal()
    try:
        with transaction(db):
            expired = auto_expire_unconfirmed(db, now)
        with transaction(db):
            completed = auto_complete_overrun(db, now)
    finally:
        db.close()

    if expired or completed:
        logger.info(f"Sweep: expired={expired} completed={completed}")
    return {"expired": expired, "completed": completed}


def _move(
    db: Session,
    booking_id: int,
    from_statuses: tuple,
    values: dict,
) -> bool:
    """Conditional transition; False if the row is no longer in from_statuses."""
    with db.begin_nested():
        updated = (
            db.query(Bookings)
            .filter(Bookings.id == booking_id, Bookings.status.in_(from_statuses))
            .update(values, synchronize_session=False)
        )
    return updated == 1


def _expire_one(db: Session, booking_id: int, now: datetime) -> bool:
    return _move(db, booking_id, ("pending",), {"status": "expired", "expired_at": now})


def _complete_one(db: Session, booking_id: int, now: datetime) -> bool:
    return _move(db, booking_id, OVERRUN_STATUSES, {"status": "completed", "completed_at": now})


def auto_expire_unconfirmed(db: Session, now: Optional[datetime] = None) -> int:
    now = now or utcnow()
    cutoff = now - timedelta(minutes=settings.pending_grace_minutes)

    rows = (
        db.query(Bookings.id, Bookings.user_id)
        .filter(Bookings.status == "pending", Bookings.created_at < cutoff)
        .order_by(Bookings.id)
        .all()
    )

    expired = 0
    for booking_id, user_id in rows:
        try:
            if _expire_one(db, booking_id, now):
                expired += 1
                queue_event(db, "booking_expired", {"booking_id": booking_id, "user_id": user_id})
                logger.info(f"Booking {booking_id} expired (unconfirmed)")
        except Exception:
            logger.exception(f"Error expiring booking {booking_id}")

    return expired


def auto_complete_overrun(db: Session, now: Optional[datetime] = None) -> int:
    now = now or utcnow()

    rows = (
        db.query(Bookings.id)
        .filter(Bookings.status.in_(OVERRUN_STATUSES), Bookings.end_time < now)
        .order_by(Bookings.id)
        .all()
    )

    completed = 0
    for (booking_id,) in rows:
        try:
            if _complete_one(db, booking_id, now):
                completed += 1
                logger.info(f"Booking {booking_id} auto-completed (window ended)")
        except Exception:
            logger.exception(f"Error auto-completing booking {booking_id}")

    return completed
