"""Pydantic schemas for events and their slot ledger."""
from datetime import date, datetime
from typing import Any, Optional
from pydantic import BaseModel

from labcal.models.event import Discipline, EventState, ValidationState
from labcal.models.time_slot import SlotAction, SlotState, SlotStatus
from labcal.schemas.modification import ModificationOut


class EventCreate(BaseModel):
    title: str
    discipline: Discipline
    # Candidates are normalized by the service; unusable ones come back as warnings
    time_slots: list[dict[str, Any]] = []


class SlotHistoryOut(BaseModel):
    user_id: str
    date: datetime
    action: SlotAction
    note: Optional[str] = None
    previous_start: Optional[datetime] = None
    previous_end: Optional[datetime] = None
    new_start: Optional[datetime] = None
    new_end: Optional[datetime] = None

    model_config = {"from_attributes": True}


class TimeSlotOut(BaseModel):
    slot_id: str
    event_id: str
    discipline: Optional[Discipline] = None
    start_date: datetime
    end_date: datetime
    timeslot_date: date
    status: SlotStatus
    state: SlotState
    created_by: str
    parent_slot_id: Optional[str] = None
    notes: Optional[str] = None
    modified_by: list[SlotHistoryOut] = []

    model_config = {"from_attributes": True}


class StateChangeOut(BaseModel):
    user_id: str
    from_state: Optional[EventState] = None
    to_state: EventState
    reason: Optional[str] = None
    changed_at: datetime

    model_config = {"from_attributes": True}


class EventOut(BaseModel):
    event_id: str
    discipline: Discipline
    owner_id: str
    owner_email: Optional[str] = None
    title: str
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    state: EventState
    state_reason: Optional[str] = None
    validation_state: Optional[ValidationState] = None
    time_slots: list[TimeSlotOut] = []
    actuel_time_slots: list[dict[str, Any]] = []
    event_modifying: list[ModificationOut] = []
    last_state_change: Optional[StateChangeOut] = None
    state_changer: list[list[str]] = []
    version: int
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class EventCreateOut(BaseModel):
    event: EventOut
    warnings: list[dict[str, Any]] = []


class TransitionOut(BaseModel):
    """Result of a proposal, decision, owner edit or validation."""

    event: EventOut
    applied: bool
    message: str
    modification: Optional[dict[str, Any]] = None
    warnings: list[dict[str, Any]] = []
    invalidated_modifications: list[str] = []

    @classmethod
    def from_result(cls, result) -> "TransitionOut":
        return cls(
            event=EventOut.model_validate(result.event),
            applied=result.applied,
            message=result.message,
            modification=result.modification,
            warnings=result.warnings,
            invalidated_modifications=result.invalidated_modifications,
        )


class OwnerModifyRequest(BaseModel):
    action: str  # GLOBAL_MODIFY | SLOT_MODIFY
    reason: Optional[str] = None
    slot_id: Optional[str] = None
    proposed_time_slots: list[dict[str, Any]] = []
    version: Optional[int] = None


class RestoreRequest(BaseModel):
    reason: Optional[str] = None
    version: Optional[int] = None


class ValidationDecision(BaseModel):
    approve: bool
    reason: Optional[str] = None
    version: Optional[int] = None


class StateChangeRequest(BaseModel):
    state: str
    reason: Optional[str] = None
    version: Optional[int] = None


class SlotDecision(BaseModel):
    approve: bool
    reason: Optional[str] = None
    version: Optional[int] = None
