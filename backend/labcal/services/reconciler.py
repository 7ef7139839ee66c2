"""Proposal reconciler: turns a plan into ledger mutations.

Each plan type is one closed variant (cancel, move, owner global edit,
owner single-slot edit, restore). ``reconcile`` dispatches on the variant,
supersedes the slots it replaces, appends the new ones, sets the event-level
state and recomputes ``actuel_time_slots`` before returning. It never
commits: the transition engine owns the transaction.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Union

from labcal.exceptions import NotFoundError, ValidationError
from labcal.models.event import Event, EventState, ValidationState
from labcal.models.time_slot import SlotAction, TimeSlot
from labcal.services import slot_ledger
from labcal.services.slot_normalization import CandidateSlot, find_overlaps
from labcal.timeutils import as_utc

logger = logging.getLogger(__name__)

NOTE_REPLACED_BY_OWNER = "Remplacé par le propriétaire"
NOTE_DELETED_BY_OWNER = "Supprimé par le propriétaire"
NOTE_CREATED_BY_OWNER = "Nouveau créneau créé par le propriétaire"
NOTE_REPLACEMENT_BY_OWNER = "Créneau de remplacement créé par le propriétaire"


@dataclass(frozen=True)
class CancelPlan:
    reason: str = ""
    replacements: tuple[CandidateSlot, ...] = ()
    proposed_by: Optional[str] = None


@dataclass(frozen=True)
class MovePlan:
    replacements: tuple[CandidateSlot, ...]
    reason: str = ""
    proposed_by: Optional[str] = None


@dataclass(frozen=True)
class GlobalModifyPlan:
    replacements: tuple[CandidateSlot, ...]
    reason: str = ""


@dataclass(frozen=True)
class SlotModifyPlan:
    slot_id: str
    replacement: Optional[CandidateSlot] = None
    reason: str = ""


@dataclass(frozen=True)
class RestorePlan:
    slot_id: str
    reason: str = ""


Plan = Union[CancelPlan, MovePlan, GlobalModifyPlan, SlotModifyPlan, RestorePlan]


@dataclass
class ReconcileResult:
    created: list[TimeSlot] = field(default_factory=list)
    superseded: list[TimeSlot] = field(default_factory=list)
    warnings: list[dict[str, Any]] = field(default_factory=list)


def _proposal_note(plan: Union[CancelPlan, MovePlan]) -> Optional[str]:
    if plan.proposed_by:
        return f"Proposition de {plan.proposed_by} confirmée"
    return None


def _retire_all_active(event: Event, user_id: str, now: datetime, note: Optional[str], result: ReconcileResult) -> None:
    for slot in slot_ledger.active_slots(event.time_slots):
        result.superseded.append(slot_ledger.supersede(slot, user_id, now, note=note))


def _open_all(
    event: Event,
    candidates: tuple[CandidateSlot, ...],
    user_id: str,
    now: datetime,
    note: Optional[str],
    result: ReconcileResult,
) -> None:
    for candidate in sorted(candidates, key=lambda c: c.start):
        result.created.append(slot_ledger.open_slot(event, candidate.start, candidate.end, user_id, now, note=note))


def _find_slot(event: Event, slot_id: str) -> TimeSlot:
    for slot in event.time_slots:
        if slot.slot_id == slot_id:
            return slot
    raise NotFoundError("Time slot not found", event_id=event.event_id, slot_id=slot_id)


def _refresh_bounds(event: Event) -> None:
    """Overall event bounds follow the min/max of the active set."""
    active = slot_ledger.active_slots(event.time_slots)
    if not active:
        return
    event.start_date = min((as_utc(s.start_date) for s in active))
    event.end_date = max((as_utc(s.end_date) for s in active))


def _owner_edit_state(event: Event, user_id: str, now: datetime, label: str, reason: str) -> None:
    event.state_reason = reason or f"{label} par le propriétaire"
    event.validation_state = ValidationState.owner_pending
    slot_ledger.record_state_change(
        event, user_id, EventState.pending, now,
        reason=f"Modifications par le propriétaire: {reason or label}",
    )


def _apply_cancel(event: Event, plan: CancelPlan, user_id: str, now: datetime, result: ReconcileResult) -> None:
    _retire_all_active(event, user_id, now, _proposal_note(plan), result)
    _open_all(event, plan.replacements, user_id, now, _proposal_note(plan), result)
    event.state_reason = plan.reason
    slot_ledger.record_state_change(event, user_id, EventState.cancelled, now, reason=plan.reason)


def _apply_move(event: Event, plan: MovePlan, user_id: str, now: datetime, result: ReconcileResult) -> None:
    if not plan.replacements:
        raise ValidationError("A move needs at least one valid replacement slot", event_id=event.event_id)
    _retire_all_active(event, user_id, now, _proposal_note(plan), result)
    _open_all(event, plan.replacements, user_id, now, _proposal_note(plan), result)
    event.state_reason = plan.reason
    slot_ledger.record_state_change(event, user_id, EventState.moved, now, reason=plan.reason)


def _apply_global_modify(event: Event, plan: GlobalModifyPlan, user_id: str, now: datetime, result: ReconcileResult) -> None:
    if not plan.replacements:
        raise ValidationError("New time slots are required for a global modification", event_id=event.event_id)
    _retire_all_active(event, user_id, now, NOTE_REPLACED_BY_OWNER, result)
    _open_all(event, plan.replacements, user_id, now, NOTE_CREATED_BY_OWNER, result)
    _owner_edit_state(event, user_id, now, "GLOBAL_MODIFY", plan.reason)


def _apply_slot_modify(event: Event, plan: SlotModifyPlan, user_id: str, now: datetime, result: ReconcileResult) -> None:
    target = _find_slot(event, plan.slot_id)
    if not target.is_active:
        raise ValidationError("Time slot is already deleted", event_id=event.event_id, slot_id=plan.slot_id)
    if plan.replacement is None:
        result.superseded.append(slot_ledger.supersede(target, user_id, now, note=NOTE_DELETED_BY_OWNER))
    else:
        result.superseded.append(slot_ledger.supersede(target, user_id, now, note=NOTE_REPLACED_BY_OWNER))
        result.created.append(slot_ledger.open_slot(
            event, plan.replacement.start, plan.replacement.end, user_id, now,
            note=NOTE_REPLACEMENT_BY_OWNER, parent_slot_id=target.slot_id,
        ))
    _owner_edit_state(event, user_id, now, f"SLOT_MODIFY {plan.slot_id}", plan.reason)


def _apply_restore(event: Event, plan: RestorePlan, user_id: str, now: datetime, result: ReconcileResult) -> None:
    original = _find_slot(event, plan.slot_id)
    if original.is_active:
        raise ValidationError("Only deleted time slots can be restored", event_id=event.event_id, slot_id=plan.slot_id)
    result.created.append(slot_ledger.open_slot(
        event, as_utc(original.start_date), as_utc(original.end_date), user_id, now,
        note=f"Restauré depuis le créneau {original.slot_id}",
        action=SlotAction.restored,
        parent_slot_id=original.slot_id,
    ))
    _owner_edit_state(event, user_id, now, f"RESTORE {plan.slot_id}", plan.reason)


def reconcile(event: Event, plan: Plan, user_id: str, now: datetime) -> ReconcileResult:
    """Apply ``plan`` to ``event`` on behalf of ``user_id`` (the confirming or editing user)."""
    result = ReconcileResult()
    if isinstance(plan, CancelPlan):
        _apply_cancel(event, plan, user_id, now, result)
    elif isinstance(plan, MovePlan):
        _apply_move(event, plan, user_id, now, result)
    elif isinstance(plan, GlobalModifyPlan):
        _apply_global_modify(event, plan, user_id, now, result)
    elif isinstance(plan, SlotModifyPlan):
        _apply_slot_modify(event, plan, user_id, now, result)
    elif isinstance(plan, RestorePlan):
        _apply_restore(event, plan, user_id, now, result)
    else:
        raise TypeError(f"Unsupported plan: {type(plan).__name__}")

    if result.created:
        _refresh_bounds(event)
    slot_ledger.refresh_actuel_time_slots(event)
    result.warnings.extend(find_overlaps(slot_ledger.active_slots(event.time_slots)))
    logger.info(
        "Reconciled %s on event %s: %d superseded, %d created",
        type(plan).__name__, event.event_id, len(result.superseded), len(result.created),
    )
    return result
