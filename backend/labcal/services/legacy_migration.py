"""Import of calendar documents written before the time-slot ledger existed.

Older documents carry only ``startDate``/``endDate`` on the event itself.
``migrate_legacy_event`` lifts them into the current document shape and
``import_legacy_event`` persists the result as ORM rows.
"""
import copy
import logging
import uuid
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from labcal.exceptions import ValidationError
from labcal.models.event import Discipline, Event, EventState, ValidationState
from labcal.models.modification import EventModification, ModificationAction, StateChange
from labcal.models.time_slot import SlotAction, SlotHistoryEntry, SlotState, SlotStatus, TimeSlot
from labcal.services import slot_ledger
from labcal.timeutils import parse_iso, to_local, utcnow

logger = logging.getLogger(__name__)

CURRENT_SHAPE_KEYS = ("timeSlots", "actuelTimeSlots", "eventModifying", "stateChanger")
LEGACY_NOTE = "Créneau migré depuis l'ancien format"


def _legacy_slot_id(event_id: Optional[str]) -> str:
    # Deterministic so that migrating the same document twice yields the same slot
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"labcal:legacy-slot:{event_id}"))


def migrate_legacy_event(raw: dict[str, Any]) -> dict[str, Any]:
    """Return ``raw`` in the current document shape. Idempotent."""
    document = copy.deepcopy(raw)
    if all(key in document for key in CURRENT_SHAPE_KEYS):
        return document

    owner = document.get("ownerId") or document.get("createdBy")
    document.setdefault("ownerId", owner)

    if "timeSlots" not in document:
        slots = []
        if document.get("startDate") and document.get("endDate"):
            slots.append({
                "id": _legacy_slot_id(document.get("id")),
                "startDate": document["startDate"],
                "endDate": document["endDate"],
                "createdBy": owner,
                "modifiedBy": [{
                    "userId": owner,
                    "date": document.get("createdAt") or document["startDate"],
                    "action": SlotAction.created.value,
                    "note": LEGACY_NOTE,
                }],
            })
        document["timeSlots"] = slots

    for slot in document["timeSlots"]:
        slot.setdefault("status", SlotStatus.active.value)
        slot.setdefault("state", SlotState.deleted.value if slot["status"] == SlotStatus.deleted.value else SlotState.created.value)
        slot.setdefault("createdBy", owner)
        slot.setdefault("modifiedBy", [])

    document["actuelTimeSlots"] = [
        copy.deepcopy(slot) for slot in document["timeSlots"] if slot["status"] == SlotStatus.active.value
    ]
    document.setdefault("eventModifying", [])
    document.setdefault("stateChanger", [])
    return document


def _enum(enum_cls, value, field_name: str, event_id: Optional[str]):
    try:
        return enum_cls(value)
    except ValueError as exc:
        raise ValidationError(f"Invalid {field_name}: {value}", event_id=event_id) from exc


def _instant(value: Any, field_name: str, event_id: Optional[str]):
    if value in (None, ""):
        return None
    try:
        return parse_iso(str(value))
    except ValueError as exc:
        raise ValidationError(f"Invalid {field_name}: {value}", event_id=event_id) from exc


def _build_slot(event: Event, raw_slot: dict[str, Any], sequence: int) -> TimeSlot:
    event_id = event.event_id
    start = _instant(raw_slot.get("startDate"), "startDate", event_id)
    end = _instant(raw_slot.get("endDate"), "endDate", event_id)
    if start is None or end is None:
        raise ValidationError("Imported slot needs startDate and endDate", event_id=event_id, slot_id=raw_slot.get("id"))
    if start > end:
        start, end = end, start

    history = raw_slot.get("modifiedBy") or []
    stamp = _instant(history[-1].get("date"), "modifiedBy.date", event_id) if history else None
    slot = TimeSlot(
        slot_id=raw_slot.get("id") or str(uuid.uuid4()),
        discipline=event.discipline,
        sequence=sequence,
        start_date=start,
        end_date=end,
        timeslot_date=to_local(start).date(),
        status=_enum(SlotStatus, raw_slot.get("status", SlotStatus.active.value), "slot status", event_id),
        state=_enum(SlotState, raw_slot.get("state", SlotState.created.value), "slot state", event_id),
        created_by=raw_slot.get("createdBy") or event.owner_id,
        parent_slot_id=raw_slot.get("parentSlotId"),
        notes=raw_slot.get("notes"),
        created_at=stamp or utcnow(),
        updated_at=stamp or utcnow(),
    )
    for index, entry in enumerate(history):
        slot.modified_by.append(SlotHistoryEntry(
            sequence=index,
            user_id=entry.get("userId") or slot.created_by,
            action=_enum(SlotAction, entry.get("action"), "history action", event_id),
            note=entry.get("note"),
            previous_start=_instant(entry.get("previousStart"), "previousStart", event_id),
            previous_end=_instant(entry.get("previousEnd"), "previousEnd", event_id),
            new_start=_instant(entry.get("newStart"), "newStart", event_id),
            new_end=_instant(entry.get("newEnd"), "newEnd", event_id),
            date=_instant(entry.get("date"), "modifiedBy.date", event_id) or utcnow(),
        ))
    return slot


def _reassign_taken_slot_ids(db: Session, event: Event) -> None:
    """Slot ids are global; an imported id already stored elsewhere gets a fresh one."""
    wanted = [slot.slot_id for slot in event.time_slots]
    taken = {row.slot_id for row in db.query(TimeSlot.slot_id).filter(TimeSlot.slot_id.in_(wanted))}
    if not taken:
        return
    renamed = {slot_id: str(uuid.uuid4()) for slot_id in taken}
    for slot in event.time_slots:
        slot.slot_id = renamed.get(slot.slot_id, slot.slot_id)
        slot.parent_slot_id = renamed.get(slot.parent_slot_id, slot.parent_slot_id)
    logger.warning("Event %s: %d imported slot id(s) already in use, reassigned", event.event_id, len(taken))


def import_legacy_event(db: Session, raw: dict[str, Any]) -> Event:
    """Persist a (possibly legacy) calendar document; an already imported id is returned as stored."""
    document = migrate_legacy_event(raw)
    event_id = document.get("id") or str(uuid.uuid4())

    existing = db.query(Event).filter(Event.event_id == event_id).first()
    if existing:
        logger.info("Event %s already imported, leaving it unchanged", event_id)
        return existing

    if not document.get("ownerId"):
        raise ValidationError("Imported event needs ownerId or createdBy", event_id=event_id)
    if not document.get("title"):
        raise ValidationError("Imported event needs a title", event_id=event_id)

    now = utcnow()
    event = Event(
        event_id=event_id,
        discipline=_enum(Discipline, document.get("discipline"), "discipline", event_id),
        owner_id=document["ownerId"],
        owner_email=document.get("ownerEmail"),
        title=document["title"],
        state=_enum(EventState, document.get("state") or EventState.pending.value, "state", event_id),
        state_reason=document.get("stateReason"),
        validation_state=(
            _enum(ValidationState, document["validationState"], "validationState", event_id)
            if document.get("validationState") else None
        ),
        actuel_time_slots=[],
        created_at=_instant(document.get("createdAt"), "createdAt", event_id) or now,
        updated_at=now,
    )
    for sequence, raw_slot in enumerate(document["timeSlots"]):
        event.time_slots.append(_build_slot(event, raw_slot, sequence))
    _reassign_taken_slot_ids(db, event)

    for entry in document["eventModifying"]:
        if not entry.get("userId"):
            raise ValidationError("Imported modification needs a userId", event_id=event_id)
        event.event_modifying.append(EventModification(
            user_id=entry.get("userId"),
            action=_enum(ModificationAction, entry.get("action"), "modification action", event_id),
            reason=entry.get("reason"),
            request_date=_instant(entry.get("requestDate"), "requestDate", event_id) or now,
            time_slots=list(entry.get("timeSlots") or []),
        ))

    sequence = 0
    for row in document["stateChanger"]:
        if not row:
            continue
        user_id, *dates = row
        for stamp in dates:
            event.state_changes.append(StateChange(
                sequence=sequence,
                user_id=user_id,
                from_state=None,
                to_state=event.state,
                reason="Importé",
                changed_at=_instant(stamp, "stateChanger", event_id) or now,
            ))
            sequence += 1

    active = slot_ledger.active_slots(event.time_slots)
    event.start_date = _instant(document.get("startDate"), "startDate", event_id) or (
        min(s.start_date for s in active) if active else None
    )
    event.end_date = _instant(document.get("endDate"), "endDate", event_id) or (
        max(s.end_date for s in active) if active else None
    )
    slot_ledger.refresh_actuel_time_slots(event)

    db.add(event)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ValidationError("Imported event conflicts with stored data", event_id=event_id) from exc
    db.refresh(event)
    logger.info("Imported event %s with %d slot(s) (%d active)", event_id, len(event.time_slots), len(active))
    return event
