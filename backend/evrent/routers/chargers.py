# backend/evrent/routers/chargers.py

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import AwareDatetime
from sqlalchemy.orm import Session

from ..database import get_db, transaction
from ..models import Chargers as DBCharger
from ..schemas.chargers import (
    AvailabilityRead,
    ChargerCreate,
    ChargerRead,
    ChargerStatsRead,
    ChargerStatusUpdate,
)
from ..services.availability import check_availability, get_charger
from ..services.sessions import charger_session_stats
from .deps import CurrentUser, require_role

router = APIRouter(prefix="/chargers", tags=["chargers"])


def _check_owner(charger: DBCharger, user: CurrentUser) -> None:
    if user.role != "admin" and charger.owner_id != user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not the owner of this charger",
        )


@router.post("/", response_model=ChargerRead, status_code=status.HTTP_201_CREATED)
def create_charger(
    data: ChargerCreate,
    user: CurrentUser = Depends(require_role("owner", "admin")),
    db: Session = Depends(get_db),
):
    with transaction(db):
        obj = DBCharger(owner_id=user.id, status="active", **data.model_dump())
        db.add(obj)
    db.refresh(obj)
    return obj


@router.get("/{id}", response_model=ChargerRead)
def get_charger_by_id(id: int, db: Session = Depends(get_db)):
    return get_charger(db, id)


@router.patch("/{id}/status", response_model=ChargerRead)
def update_charger_status(
    id: int,
    data: ChargerStatusUpdate,
    user: CurrentUser = Depends(require_role("owner", "admin")),
    db: Session = Depends(get_db),
):
    with transaction(db):
        charger = get_charger(db, id, lock=True)
        _check_owner(charger, user)
        charger.status = data.status
    db.refresh(charger)
    return charger


@router.get("/{id}/availability", response_model=AvailabilityRead)
def get_availability(
    id: int,
    start: AwareDatetime = Query(...),
    end: AwareDatetime = Query(...),
    db: Session = Depends(get_db),
):
    """Free ports on the charger over [start, end)."""
    return check_availability(db, id, start, end)


@router.get("/{id}/stats", response_model=ChargerStatsRead)
def get_charger_stats(
    id: int,
    user: CurrentUser = Depends(require_role("owner", "admin")),
    db: Session = Depends(get_db),
):
    _check_owner(get_charger(db, id), user)
    return charger_session_stats(db, id)
