# backend/evrent/services/preemption.py
"""
Preemption of normal reservations in favour of an emergency booking.

Victims are `reserved`, non-emergency bookings on the charger, oldest
created first (ties by id). When a window is given only bookings that
overlap it are eligible: cancelling anything else frees no port for it.
Each victim goes through the regular cancel path, so refund rules apply.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ..models import Bookings as DBBooking, utcnow
from .bookings import cancel_booking

logger = logging.getLogger(__name__)

PREEMPTED_REASON = "preempted"


def preempt(
    db: Session,
    charger_id: int,
    count_needed: int,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> int:
    """
    Cancel up to `count_needed` preemptable reservations.

    Returns the number actually cancelled; may be fewer than requested.
    """
    if count_needed <= 0:
        return 0
    now = now or utcnow()

    query = db.query(DBBooking).filter(
        DBBooking.charger_id == charger_id,
        DBBooking.status == "reserved",
        DBBooking.is_emergency.is_(False),
    )
    if start is not None and end is not None:
        query = query.filter(DBBooking.start_time < end, DBBooking.end_time > start)

    victims = (
        query.order_by(DBBooking.created_at.asc(), DBBooking.id.asc())
        .limit(count_needed)
        .all()
    )

    for booking in victims:
        cancel_booking(db, booking.id, PREEMPTED_REASON, now=now)
        logger.warning(f"Booking {booking.id} preempted on charger {charger_id}")

    if len(victims) < count_needed:
        logger.info(
            f"Partial preemption on charger {charger_id}: "
            f"{len(victims)} of {count_needed} needed"
        )
    return len(victims)
