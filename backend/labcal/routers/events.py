"""Event API routes: creation, lookup and import of legacy documents."""
import logging
from typing import Any, Optional
from fastapi import APIRouter, Body, Depends, Query, status
from sqlalchemy.orm import Session

from labcal.database import get_db
from labcal.dependencies import get_current_user
from labcal.schemas.event import EventCreate, EventCreateOut, EventOut
from labcal.schemas.user import CurrentUser
from labcal.services import event_store
from labcal.services.legacy_migration import import_legacy_event

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/", response_model=EventCreateOut, status_code=status.HTTP_201_CREATED)
def create_event(
    payload: EventCreate,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Create an event owned by the caller with its initial time slots."""
    event, warnings = event_store.create_event(
        db=db,
        owner=user,
        title=payload.title,
        discipline=payload.discipline.value,
        time_slots=payload.time_slots,
    )
    return EventCreateOut(event=EventOut.model_validate(event), warnings=warnings)


@router.get("/", response_model=list[EventOut])
def list_events(
    discipline: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    """List events, optionally filtered by discipline or state."""
    return event_store.list_events(db, discipline=discipline, state=state)


@router.post("/import", response_model=EventOut, status_code=status.HTTP_201_CREATED)
def import_event(
    payload: dict[str, Any] = Body(...),
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Import a calendar document, lifting pre-ledger documents to the current shape."""
    logger.info("User %s importing event %s", user.id, payload.get("id"))
    return import_legacy_event(db, payload)


@router.get("/{event_id}", response_model=EventOut)
def get_event(event_id: str, db: Session = Depends(get_db)):
    """Fetch a single event with its full slot ledger."""
    return event_store.get_event(db, event_id)
