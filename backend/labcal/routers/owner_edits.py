"""Owner direct edits, event state changes and staff validation."""
import logging
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from labcal.database import get_db
from labcal.dependencies import get_current_user
from labcal.schemas.event import (
    OwnerModifyRequest,
    RestoreRequest,
    SlotDecision,
    StateChangeRequest,
    TransitionOut,
    ValidationDecision,
)
from labcal.schemas.user import CurrentUser
from labcal.services import transition_engine

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/{event_id}/owner-modify", response_model=TransitionOut)
def owner_modify(
    event_id: str,
    payload: OwnerModifyRequest,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Replace all slots (GLOBAL_MODIFY) or one slot (SLOT_MODIFY); the event then awaits validation."""
    result = transition_engine.owner_modify(
        db=db,
        event_id=event_id,
        user=user,
        action=payload.action,
        reason=payload.reason,
        slot_id=payload.slot_id,
        proposed_time_slots=payload.proposed_time_slots,
        version=payload.version,
    )
    return TransitionOut.from_result(result)


@router.post("/{event_id}/slots/{slot_id}/restore", response_model=TransitionOut)
def restore_slot(
    event_id: str,
    slot_id: str,
    payload: RestoreRequest,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Bring a deleted slot back as a new slot."""
    result = transition_engine.restore_slot(
        db=db,
        event_id=event_id,
        slot_id=slot_id,
        user=user,
        reason=payload.reason,
        version=payload.version,
    )
    return TransitionOut.from_result(result)


@router.post("/{event_id}/validation", response_model=TransitionOut)
def validate_owner_changes(
    event_id: str,
    payload: ValidationDecision,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Laboratory staff approve or send back the owner's changes."""
    result = transition_engine.validate_owner_changes(
        db=db,
        event_id=event_id,
        user=user,
        approve=payload.approve,
        reason=payload.reason,
        version=payload.version,
    )
    return TransitionOut.from_result(result)


@router.post("/{event_id}/slots/{slot_id}/decision", response_model=TransitionOut)
def decide_slot(
    event_id: str,
    slot_id: str,
    payload: SlotDecision,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Laboratory staff approve or reject a single time slot."""
    result = transition_engine.decide_slot(
        db=db,
        event_id=event_id,
        slot_id=slot_id,
        user=user,
        approve=payload.approve,
        reason=payload.reason,
        version=payload.version,
    )
    return TransitionOut.from_result(result)


@router.put("/{event_id}/state", response_model=TransitionOut)
def change_event_state(
    event_id: str,
    payload: StateChangeRequest,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    result = transition_engine.change_event_state(
        db=db,
        event_id=event_id,
        user=user,
        state=payload.state,
        reason=payload.reason,
        version=payload.version,
    )
    return TransitionOut.from_result(result)
