"""Slot ledger primitives: history recording, supersession and the active-slot projection.

These are the only functions that touch ``TimeSlot.status``, append to
``modified_by`` or write ``Event.actuel_time_slots``. Higher layers
(reconciler, transition engine, retention) compose them.
"""
import logging
import uuid
from datetime import datetime
from typing import Any, Iterable, Optional

from labcal.models.event import Event, EventState
from labcal.models.modification import StateChange
from labcal.models.time_slot import (
    SlotAction,
    SlotHistoryEntry,
    SlotState,
    SlotStatus,
    TimeSlot,
)
from labcal.timeutils import iso_z, to_local

logger = logging.getLogger(__name__)


def append_history(
    slot: TimeSlot,
    user_id: str,
    action: SlotAction,
    now: datetime,
    note: Optional[str] = None,
    previous: Optional[tuple[datetime, datetime]] = None,
    new: Optional[tuple[datetime, datetime]] = None,
) -> SlotHistoryEntry:
    """Append one immutable entry to ``slot.modified_by``."""
    entry = SlotHistoryEntry(
        sequence=len(slot.modified_by),
        user_id=user_id,
        action=action,
        note=note,
        previous_start=previous[0] if previous else None,
        previous_end=previous[1] if previous else None,
        new_start=new[0] if new else None,
        new_end=new[1] if new else None,
        date=now,
    )
    slot.modified_by.append(entry)
    return entry


def open_slot(
    event: Event,
    start: datetime,
    end: datetime,
    user_id: str,
    now: datetime,
    note: Optional[str] = None,
    action: SlotAction = SlotAction.created,
    parent_slot_id: Optional[str] = None,
) -> TimeSlot:
    """Append a new active slot to the event's ledger with its opening history entry."""
    slot = TimeSlot(
        slot_id=str(uuid.uuid4()),
        discipline=event.discipline,
        sequence=len(event.time_slots),
        start_date=start,
        end_date=end,
        timeslot_date=to_local(start).date(),
        status=SlotStatus.active,
        state=SlotState.created,
        created_by=user_id,
        parent_slot_id=parent_slot_id,
        created_at=now,
        updated_at=now,
    )
    append_history(slot, user_id, action, now, note=note, new=(start, end))
    event.time_slots.append(slot)
    return slot


def supersede(slot: TimeSlot, user_id: str, now: datetime, note: Optional[str] = None) -> TimeSlot:
    """Retire an active slot. The record stays in the ledger with status ``deleted``."""
    if not slot.is_active:
        raise ValueError(f"Slot {slot.slot_id} is already deleted")
    bounds = (slot.start_date, slot.end_date)
    slot.status = SlotStatus.deleted
    slot.state = SlotState.deleted
    slot.updated_at = now
    append_history(slot, user_id, SlotAction.deleted, now, note=note, previous=bounds)
    return slot


def mark_slot_state(
    slot: TimeSlot,
    user_id: str,
    state: SlotState,
    action: SlotAction,
    now: datetime,
    note: Optional[str] = None,
) -> TimeSlot:
    """Move an active slot to a lifecycle ``state`` (approved/rejected) without touching its bounds."""
    slot.state = state
    slot.updated_at = now
    append_history(slot, user_id, action, now, note=note)
    return slot


def active_slots(slots: Iterable[TimeSlot]) -> list[TimeSlot]:
    return [slot for slot in slots if slot.status == SlotStatus.active]


def slot_snapshot(slot: TimeSlot) -> dict[str, Any]:
    """JSON-safe view of a slot for the materialized ``actuel_time_slots`` column."""
    return {
        "slot_id": slot.slot_id,
        "start_date": iso_z(slot.start_date),
        "end_date": iso_z(slot.end_date),
        "status": slot.status.value,
        "state": slot.state.value,
        "created_by": slot.created_by,
        "parent_slot_id": slot.parent_slot_id,
    }


def project_actuel_time_slots(slots: Iterable[TimeSlot]) -> list[dict[str, Any]]:
    """Pure projection of a ledger onto its active view."""
    return [slot_snapshot(slot) for slot in active_slots(slots)]


def refresh_actuel_time_slots(event: Event) -> list[dict[str, Any]]:
    """Recompute the materialized view; every ledger writer calls this in the same transaction."""
    event.actuel_time_slots = project_actuel_time_slots(event.time_slots)
    return event.actuel_time_slots


def record_state_change(
    event: Event,
    user_id: str,
    to_state: EventState,
    now: datetime,
    reason: Optional[str] = None,
) -> StateChange:
    """Set ``event.state`` and append the ``stateChanger`` / ``lastStateChange`` record."""
    change = StateChange(
        sequence=len(event.state_changes),
        user_id=user_id,
        from_state=event.state,
        to_state=to_state,
        reason=reason,
        changed_at=now,
    )
    event.state_changes.append(change)
    event.state = to_state
    logger.info("Event %s state %s -> %s by %s", event.event_id, change.from_state, to_state, user_id)
    return change
