# backend/evrent/routers/sessions.py

from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import AwareDatetime
from sqlalchemy.orm import Session

from ..database import get_db, transaction
from ..errors import NotFound
from ..models import ChargingSessions as DBSession
from ..schemas.sessions import SessionRead, SessionStart, SessionStatsRead, TelemetryUpdate
from ..services import sessions as session_service
from .deps import CurrentUser, get_current_user

router = APIRouter(prefix="/sessions", tags=["sessions"])


def _own_session(db: Session, session_id: int, user: CurrentUser) -> DBSession:
    session = session_service.get_session(db, session_id)
    if user.role != "admin" and session.user_id != user.id:
        raise NotFound(f"Session {session_id} not found", entity="session", id=session_id)
    return session


@router.post("/start", response_model=SessionRead, status_code=status.HTTP_201_CREATED)
def start_session(
    data: SessionStart,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Start charging. Retrying returns the already open session."""
    with transaction(db):
        session = session_service.start_session(db, data.charger_id, user.id, data.booking_id)
    db.refresh(session)
    return session


@router.get("/active", response_model=Optional[SessionRead])
def get_active_session(
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return session_service.get_active_session(db, user.id)


@router.get("/history", response_model=list[SessionRead])
def get_session_history(
    limit: int = Query(20, ge=1, le=200),
    offset: int = Query(0, ge=0),
    start_date: Optional[AwareDatetime] = None,
    end_date: Optional[AwareDatetime] = None,
    min_cost: Optional[Decimal] = None,
    max_cost: Optional[Decimal] = None,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return session_service.session_history(
        db,
        user.id,
        limit=limit,
        offset=offset,
        start_date=start_date,
        end_date=end_date,
        min_cost=min_cost,
        max_cost=max_cost,
    )


@router.get("/stats", response_model=SessionStatsRead)
def get_session_stats(
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return session_service.session_stats(db, user.id)


@router.get("/{id}", response_model=SessionRead)
def get_session(
    id: int,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _own_session(db, id, user)


@router.post("/{id}/progress", response_model=SessionRead)
def record_progress(
    id: int,
    data: TelemetryUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Telemetry from the charger (cumulative energy + instantaneous metrics)."""
    with transaction(db):
        session = session_service.get_session(db, id)
        if user.role != "admin" and user.id not in (session.user_id, session.charger.owner_id):
            raise NotFound(f"Session {id} not found", entity="session", id=id)
        session = session_service.record_progress(db, id, **data.model_dump())
    db.refresh(session)
    return session


@router.post("/{id}/pause", response_model=SessionRead)
def pause_session(
    id: int,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with transaction(db):
        _own_session(db, id, user)
        session = session_service.pause_session(db, id)
    db.refresh(session)
    return session


@router.post("/{id}/resume", response_model=SessionRead)
def resume_session(
    id: int,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with transaction(db):
        _own_session(db, id, user)
        session = session_service.resume_session(db, id)
    db.refresh(session)
    return session


@router.post("/{id}/stop", response_model=SessionRead)
def stop_session(
    id: int,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Stop charging, bill the session and debit the wallet."""
    with transaction(db):
        _own_session(db, id, user)
        session = session_service.stop_session(db, id)
    db.refresh(session)
    return session
