"""Pending modification routes: the proposal / confirmation workflow.

A non-owner proposes CANCEL or MOVE; the owner confirms or rejects it.
The owner's own proposals are applied immediately.
"""
import logging
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from labcal.database import get_db
from labcal.dependencies import get_current_user
from labcal.schemas.event import TransitionOut
from labcal.schemas.modification import ModificationDecision, ModificationOut, ProposalCreate
from labcal.schemas.user import CurrentUser
from labcal.services import event_store, transition_engine

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/{event_id}/modifications", response_model=TransitionOut, status_code=status.HTTP_201_CREATED)
def submit_modification(
    event_id: str,
    payload: ProposalCreate,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Propose cancelling or moving an event."""
    result = transition_engine.submit_proposal(
        db=db,
        event_id=event_id,
        user=user,
        action=payload.action.value,
        reason=payload.reason,
        time_slots=payload.time_slots,
        version=payload.version,
    )
    return TransitionOut.from_result(result)


@router.get("/{event_id}/modifications", response_model=list[ModificationOut])
def list_modifications(event_id: str, db: Session = Depends(get_db)):
    """Pending modifications of an event, oldest first."""
    return event_store.get_event(db, event_id).event_modifying


@router.put("/{event_id}/modifications", response_model=TransitionOut)
def decide_modification(
    event_id: str,
    payload: ModificationDecision,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Owner confirms or rejects one pending modification."""
    result = transition_engine.decide_modification(
        db=db,
        event_id=event_id,
        modification_id=payload.modification_id,
        decision=payload.action,
        user=user,
        version=payload.version,
    )
    return TransitionOut.from_result(result)
