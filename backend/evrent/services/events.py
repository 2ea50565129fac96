"""
backend/evrent/services/events.py

Event emitter: pushes notification events to Redis for the delivery workers
(email / push), which live outside this service.

Services never push directly: they call queue_event(db, ...), and the queued
events are emitted only once the SQLAlchemy session commits. A rolled back
unit of work sends nothing. Delivery is best-effort and never raises.
"""

import json
import time
import logging

from sqlalchemy import event
from sqlalchemy.orm import Session

from ..redis_client import redis_client

logger = logging.getLogger(__name__)

P2P_QUEUE = "events:p2p"
_PENDING_KEY = "pending_events"


def emit_event(event_type: str, payload: dict) -> None:
    """
    Emit a p2p event (instant delivery).

    Pushed to Redis list `events:p2p` for the consumer loop.
    """
    ev = {
        "type": event_type,
        **payload,
        "ts": int(time.time()),
    }
    try:
        redis_client.rpush(P2P_QUEUE, json.dumps(ev, default=str))
        logger.info(f"Event emitted: {event_type} → {P2P_QUEUE}")
    except Exception as e:
        logger.error(f"Failed to emit event {event_type}: {e}")


def queue_event(db: Session, event_type: str, payload: dict) -> None:
    """Queue an event to be emitted after `db` commits."""
    db.info.setdefault(_PENDING_KEY, []).append((event_type, payload))


@event.listens_for(Session, "after_commit")
def _emit_pending(session: Session) -> None:
    # Releasing a savepoint is not the end of the unit of work
    if session.in_nested_transaction():
        return
    for event_type, payload in session.info.pop(_PENDING_KEY, []):
        emit_event(event_type, payload)


@event.listens_for(Session, "after_soft_rollback")
def _drop_pending(session: Session, previous_transaction) -> None:
    # A savepoint rollback keeps the outer unit of work and its events
    if previous_transaction.parent is not None:
        return
    dropped = session.info.pop(_PENDING_KEY, [])
    if dropped:
        logger.debug(f"Dropped {len(dropped)} queued event(s) on rollback")
