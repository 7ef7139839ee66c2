"""Transition engine: the proposal / validation state machine.

A proposal (``eventModifying`` entry) is created PENDING by a non-owner and
ends in exactly one of two terminal transitions, both decided by the owner:

    PENDING --confirm--> applied    (slot set reconciled, entry removed)
    PENDING --reject-->  discarded  (entry removed, nothing else changes)

Owners bypass the queue: their proposals and direct edits are reconciled
immediately and flag the event ``ownerPending`` until staff re-validate it.
Every public function is one transaction: load under lock, mutate, save.
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Optional

from sqlalchemy.orm import Session

from labcal.config import settings
from labcal.exceptions import LabCalendarError, NotFoundError, ValidationError
from labcal.models.event import Event, EventState, ValidationState
from labcal.models.modification import EventModification, ModificationAction
from labcal.models.time_slot import SlotAction, SlotState
from labcal.schemas.user import CurrentUser
from labcal.services import event_store, slot_ledger
from labcal.services.authorization import can_confirm, can_modify, is_validator, require_owner, require_validator
from labcal.services.notification_service import notify_owner
from labcal.services.reconciler import (
    CancelPlan,
    GlobalModifyPlan,
    MovePlan,
    RestorePlan,
    SlotModifyPlan,
    reconcile,
)
from labcal.services.slot_normalization import CandidateSlot, normalize_candidate, normalize_candidates
from labcal.timeutils import as_utc, utcnow

logger = logging.getLogger(__name__)

CONFIRM = "confirm"
REJECT = "reject"
GLOBAL_MODIFY = "GLOBAL_MODIFY"
SLOT_MODIFY = "SLOT_MODIFY"
OWNER_DECIDED_STATES = (EventState.cancelled, EventState.moved)


@dataclass
class TransitionResult:
    event: Event
    applied: bool
    message: str
    modification: Optional[dict[str, Any]] = None
    warnings: list[dict[str, Any]] = field(default_factory=list)
    invalidated_modifications: list[str] = field(default_factory=list)


@contextmanager
def _unit_of_work(db: Session):
    """Roll back any half-applied change when a domain error interrupts a transition."""
    try:
        yield
    except LabCalendarError:
        db.rollback()
        raise


def _parse_action(action: str) -> ModificationAction:
    try:
        return ModificationAction(action)
    except ValueError as exc:
        raise ValidationError(f"Unsupported modification action: {action}", action=action) from exc


def _plan_for(
    action: ModificationAction,
    reason: str,
    slots: list[CandidateSlot],
    proposed_by: Optional[str] = None,
):
    if action == ModificationAction.cancel:
        return CancelPlan(reason=reason, replacements=tuple(slots), proposed_by=proposed_by)
    if action == ModificationAction.move:
        return MovePlan(replacements=tuple(slots), reason=reason, proposed_by=proposed_by)
    raise ValidationError(f"Unsupported modification action: {action}")


def modification_summary(modification: EventModification) -> dict[str, Any]:
    return {
        "modification_id": modification.modification_id,
        "legacy_key": modification.legacy_key,
        "user_id": modification.user_id,
        "action": modification.action.value,
        "reason": modification.reason,
        "request_date": as_utc(modification.request_date).isoformat(),
        "time_slots": list(modification.time_slots or []),
    }


def list_pending_modifications(event: Event) -> list[dict[str, Any]]:
    return [modification_summary(modification) for modification in event.event_modifying]


def find_pending_modification(event: Event, modification_id: str) -> EventModification:
    """Look up a pending entry by generated id, or by the ``userId-action-requestDate`` key."""
    for modification in event.event_modifying:
        if modification.modification_id == modification_id or modification.legacy_key == modification_id:
            return modification
    raise NotFoundError(
        "Pending modification not found",
        event_id=event.event_id,
        modification_id=modification_id,
    )


def submit_proposal(
    db: Session,
    event_id: str,
    user: CurrentUser,
    action: str,
    reason: Optional[str] = None,
    time_slots: Optional[list[dict[str, Any]]] = None,
    version: Optional[int] = None,
) -> TransitionResult:
    """Propose cancelling or moving an event.

    Non-owners queue a pending entry and the owner is notified. The owner's
    own proposal is reconciled at once, with the owner as confirming user.
    """
    parsed_action = _parse_action(action)
    reason = reason or ""
    with _unit_of_work(db):
        event = event_store.load_event(db, event_id)
        event_store.check_version(event, version)

        batch = normalize_candidates(time_slots)
        if parsed_action == ModificationAction.move and not batch.slots:
            raise ValidationError(
                "Time slots are required to move an event",
                event_id=event_id,
                warnings=batch.warnings,
            )

        decision = can_modify(event, user)
        now = utcnow()

        if decision.auto:
            result = reconcile(event, _plan_for(parsed_action, reason, batch.slots), user.id, now)
            event.validation_state = ValidationState.owner_pending
            event = event_store.save_event(db, event)
            logger.info("Owner %s applied %s directly on event %s", user.id, parsed_action.value, event_id)
            return TransitionResult(
                event=event,
                applied=True,
                message=f"{parsed_action.value} applied by the owner",
                warnings=batch.warnings + result.warnings,
            )

        for existing in event.event_modifying:
            if (existing.user_id, existing.action, as_utc(existing.request_date)) == (user.id, parsed_action, now):
                raise ValidationError(
                    "An identical modification request already exists",
                    event_id=event_id,
                    modification_id=existing.modification_id,
                )

        modification = EventModification(
            user_id=user.id,
            action=parsed_action,
            reason=reason,
            request_date=now,
            time_slots=[candidate.as_bounds() for candidate in batch.slots],
        )
        event.event_modifying.append(modification)
        event = event_store.save_event(db, event)

    summary = modification_summary(modification)
    logger.info(
        "Modification %s (%s) queued on event %s by %s",
        summary["modification_id"], parsed_action.value, event_id, user.id,
    )
    notify_owner(event, {"type": "modification_requested", **summary})
    return TransitionResult(
        event=event,
        applied=False,
        message=f"{parsed_action.value} request sent to the event owner",
        modification=summary,
        warnings=batch.warnings,
    )


def decide_modification(
    db: Session,
    event_id: str,
    modification_id: Optional[str],
    decision: Optional[str],
    user: CurrentUser,
    version: Optional[int] = None,
) -> TransitionResult:
    """Owner confirms or rejects one pending modification; the entry is removed either way."""
    if not modification_id:
        raise ValidationError("Modification id is required", event_id=event_id)
    if decision not in (CONFIRM, REJECT):
        raise ValidationError("Action must be 'confirm' or 'reject'", event_id=event_id, modification_id=modification_id)

    with _unit_of_work(db):
        event = event_store.load_event(db, event_id)
        if not can_confirm(event, user):
            require_owner(event, user, f"{decision} modifications", modification_id=modification_id)
        event_store.check_version(event, version)
        modification = find_pending_modification(event, modification_id)
        summary = modification_summary(modification)

        if decision == REJECT:
            event.event_modifying.remove(modification)
            event = event_store.save_event(db, event)
            logger.info("Modification %s rejected on event %s by %s", summary["modification_id"], event_id, user.id)
            return TransitionResult(
                event=event,
                applied=False,
                message=f"{summary['action']} modification rejected",
                modification=summary,
            )

        batch = normalize_candidates(modification.time_slots)
        plan = _plan_for(modification.action, modification.reason or "", batch.slots, proposed_by=modification.user_id)
        result = reconcile(event, plan, user.id, utcnow())
        event.event_modifying.remove(modification)

        invalidated = []
        if settings.INVALIDATE_SIBLING_PROPOSALS:
            for sibling in list(event.event_modifying):
                invalidated.append(sibling.modification_id)
                event.event_modifying.remove(sibling)
        event = event_store.save_event(db, event)

    logger.info(
        "Modification %s confirmed on event %s by %s (%d sibling(s) invalidated)",
        summary["modification_id"], event_id, user.id, len(invalidated),
    )
    return TransitionResult(
        event=event,
        applied=True,
        message=f"{summary['action']} modification confirmed",
        modification=summary,
        warnings=batch.warnings + result.warnings,
        invalidated_modifications=invalidated,
    )


def owner_modify(
    db: Session,
    event_id: str,
    user: CurrentUser,
    action: str,
    reason: Optional[str] = None,
    slot_id: Optional[str] = None,
    proposed_time_slots: Optional[list[dict[str, Any]]] = None,
    version: Optional[int] = None,
) -> TransitionResult:
    """Owner edits slots directly: ``GLOBAL_MODIFY`` replaces the whole set, ``SLOT_MODIFY`` one slot."""
    reason = reason or ""
    with _unit_of_work(db):
        event = event_store.load_event(db, event_id)
        require_owner(event, user, "modify its time slots directly")
        event_store.check_version(event, version)

        if action == GLOBAL_MODIFY:
            batch = normalize_candidates(proposed_time_slots)
            warnings = batch.warnings
            if not batch.slots:
                raise ValidationError(
                    "New time slots are required for a global modification",
                    event_id=event_id,
                    warnings=warnings,
                )
            plan = GlobalModifyPlan(replacements=tuple(batch.slots), reason=reason)
        elif action == SLOT_MODIFY:
            if not slot_id:
                raise ValidationError("Slot id is required for a slot modification", event_id=event_id)
            warnings = []
            replacement = None
            if proposed_time_slots:
                try:
                    replacement = normalize_candidate(proposed_time_slots[0])
                except ValidationError as exc:
                    raise ValidationError(
                        f"Invalid replacement slot: {exc.message}",
                        event_id=event_id,
                        slot_id=slot_id,
                    ) from exc
            plan = SlotModifyPlan(slot_id=slot_id, replacement=replacement, reason=reason)
        else:
            raise ValidationError(f"Unsupported owner action: {action}", event_id=event_id, action=action)

        result = reconcile(event, plan, user.id, utcnow())
        event = event_store.save_event(db, event)

    logger.info("Owner %s applied %s on event %s; awaiting validation", user.id, action, event_id)
    return TransitionResult(
        event=event,
        applied=True,
        message="Changes applied, event awaiting validation",
        warnings=warnings + result.warnings,
    )


def restore_slot(
    db: Session,
    event_id: str,
    slot_id: str,
    user: CurrentUser,
    reason: Optional[str] = None,
    version: Optional[int] = None,
) -> TransitionResult:
    """Re-create a deleted slot as a new active record pointing at the old one."""
    with _unit_of_work(db):
        event = event_store.load_event(db, event_id)
        require_owner(event, user, "restore time slots", slot_id=slot_id)
        event_store.check_version(event, version)
        result = reconcile(event, RestorePlan(slot_id=slot_id, reason=reason or ""), user.id, utcnow())
        event = event_store.save_event(db, event)

    logger.info("Slot %s restored on event %s by %s", slot_id, event_id, user.id)
    return TransitionResult(
        event=event,
        applied=True,
        message="Time slot restored, event awaiting validation",
        warnings=result.warnings,
    )


def validate_owner_changes(
    db: Session,
    event_id: str,
    user: CurrentUser,
    approve: bool,
    reason: Optional[str] = None,
    version: Optional[int] = None,
) -> TransitionResult:
    """Staff decision on an event the owner edited (``validationState == ownerPending``)."""
    require_validator(user, event_id)
    with _unit_of_work(db):
        event = event_store.load_event(db, event_id)
        event_store.check_version(event, version)
        if event.validation_state != ValidationState.owner_pending:
            raise ValidationError(
                "Event has no owner changes awaiting validation",
                event_id=event_id,
                validation_state=event.validation_state.value if event.validation_state else None,
            )

        now = utcnow()
        if approve:
            note = f"Validé par {user.email or user.id}"
            slot_state, slot_action = SlotState.approved, SlotAction.approved
            target_state, validation_state = EventState.validated, ValidationState.validated
            if event.state in OWNER_DECIDED_STATES:
                # An approved owner CANCEL/MOVE keeps its outcome
                target_state = event.state
        else:
            note = f"Rejeté par {user.email or user.id}: {reason or 'Modifications non acceptées'}"
            slot_state, slot_action = SlotState.rejected, SlotAction.rejected
            target_state, validation_state = EventState.pending, ValidationState.rejected

        for slot in slot_ledger.active_slots(event.time_slots):
            slot_ledger.mark_slot_state(slot, user.id, slot_state, slot_action, now, note=note)
        event.validation_state = validation_state
        event.state_reason = reason or note
        slot_ledger.record_state_change(event, user.id, target_state, now, reason=reason or note)
        slot_ledger.refresh_actuel_time_slots(event)
        event = event_store.save_event(db, event)

    logger.info("Event %s %s by validator %s", event_id, "validated" if approve else "sent back", user.id)
    notify_owner(event, {"type": "validation", "approved": approve, "reason": reason, "validator_id": user.id})
    return TransitionResult(
        event=event,
        applied=True,
        message="Changes validated" if approve else "Changes rejected",
    )


def change_event_state(
    db: Session,
    event_id: str,
    user: CurrentUser,
    state: str,
    reason: Optional[str] = None,
    version: Optional[int] = None,
) -> TransitionResult:
    """Set the event-level state by hand (owner or laboratory staff) and record who did it.

    Clearing ``ownerPending`` by moving the event to VALIDATED stays a staff decision.
    """
    try:
        target_state = EventState(state)
    except ValueError as exc:
        raise ValidationError(f"Unknown event state: {state}", event_id=event_id, state=state) from exc

    with _unit_of_work(db):
        event = event_store.load_event(db, event_id)
        validator = is_validator(user.role)
        if not validator:
            require_owner(event, user, "change its state", state=target_state.value)
        event_store.check_version(event, version)

        if target_state == EventState.validated and event.validation_state == ValidationState.owner_pending:
            if not validator:
                require_validator(user, event_id)
            event.validation_state = ValidationState.validated

        previous_state = event.state
        event.state_reason = reason or None
        slot_ledger.record_state_change(event, user.id, target_state, utcnow(), reason=reason)
        slot_ledger.refresh_actuel_time_slots(event)
        event = event_store.save_event(db, event)

    logger.info("Event %s state changed %s -> %s by %s", event_id, previous_state.value, target_state.value, user.id)
    return TransitionResult(
        event=event,
        applied=True,
        message=f"Event state changed from {previous_state.value} to {target_state.value}",
    )


def decide_slot(
    db: Session,
    event_id: str,
    slot_id: str,
    user: CurrentUser,
    approve: bool,
    reason: Optional[str] = None,
    version: Optional[int] = None,
) -> TransitionResult:
    """Staff approve or reject one active slot.

    Once every active slot is approved the event is validated; a rejected
    slot sends a validated event back to PENDING.
    """
    require_validator(user, event_id)
    with _unit_of_work(db):
        event = event_store.load_event(db, event_id)
        event_store.check_version(event, version)
        target = next((s for s in event.time_slots if s.slot_id == slot_id), None)
        if target is None:
            raise NotFoundError("Time slot not found", event_id=event_id, slot_id=slot_id)
        if not target.is_active:
            raise ValidationError("Only active time slots can be approved or rejected", event_id=event_id, slot_id=slot_id)

        now = utcnow()
        if approve:
            note = f"Créneau validé par {user.email or user.id}"
            slot_ledger.mark_slot_state(target, user.id, SlotState.approved, SlotAction.approved, now, note=note)
        else:
            note = f"Créneau rejeté par {user.email or user.id}: {reason or 'Créneau non accepté'}"
            slot_ledger.mark_slot_state(target, user.id, SlotState.rejected, SlotAction.rejected, now, note=note)

        active = slot_ledger.active_slots(event.time_slots)
        all_approved = all(s.state == SlotState.approved for s in active)
        if all_approved:
            if event.validation_state == ValidationState.owner_pending:
                event.validation_state = ValidationState.validated
            if event.state not in OWNER_DECIDED_STATES and event.state != EventState.validated:
                slot_ledger.record_state_change(event, user.id, EventState.validated, now, reason=note)
        elif not approve and event.state == EventState.validated:
            slot_ledger.record_state_change(event, user.id, EventState.pending, now, reason=note)
        slot_ledger.refresh_actuel_time_slots(event)
        event = event_store.save_event(db, event)

    logger.info(
        "Slot %s on event %s %s by %s (event %s)",
        slot_id, event_id, "approved" if approve else "rejected", user.id, event.state.value,
    )
    return TransitionResult(
        event=event,
        applied=True,
        message=f"Time slot {'approved' if approve else 'rejected'}, event {event.state.value}",
    )
