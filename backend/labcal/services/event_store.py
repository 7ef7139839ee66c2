"""Event persistence boundary and event creation.

Responsibilities:
- ``load_event`` reads one event under a row lock (``SELECT ... FOR UPDATE``)
- ``check_version`` rejects callers holding a stale copy (optimistic locking)
- ``save_event`` commits; the ORM ``version_id_col`` makes the UPDATE fail if
  another writer committed in between, which surfaces as ``ConcurrencyError``
"""
import logging
import uuid
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from labcal.exceptions import ConcurrencyError, NotFoundError, ValidationError
from labcal.models.event import Discipline, Event, EventState
from labcal.schemas.user import CurrentUser
from labcal.services import slot_ledger
from labcal.services.slot_normalization import find_overlaps, normalize_candidates
from labcal.timeutils import utcnow

logger = logging.getLogger(__name__)


def load_event(db: Session, event_id: str, for_update: bool = True) -> Event:
    query = db.query(Event).filter(Event.event_id == event_id)
    if for_update:
        query = query.with_for_update().populate_existing()
    event = query.first()
    if not event:
        raise NotFoundError("Event not found", event_id=event_id)
    return event


def get_event(db: Session, event_id: str) -> Event:
    return load_event(db, event_id, for_update=False)


def check_version(event: Event, version: Optional[int]) -> None:
    if version is not None and event.version != version:
        raise ConcurrencyError(
            f"Version mismatch: expected {event.version}, got {version}. Re-fetch and retry.",
            event_id=event.event_id,
            current_version=event.version,
        )


def save_event(db: Session, event: Event) -> Event:
    """Commit the pending changes of ``event`` as one transaction."""
    event_id = event.event_id
    event.updated_at = utcnow()
    try:
        db.commit()
    except StaleDataError as exc:
        db.rollback()
        logger.warning("Concurrent write detected on event %s", event_id)
        raise ConcurrencyError(
            "The event was modified concurrently. Re-fetch and retry.",
            event_id=event_id,
        ) from exc
    except IntegrityError as exc:
        db.rollback()
        logger.warning("Integrity conflict while saving event %s: %s", event_id, exc.orig)
        raise ConcurrencyError(
            "A conflicting change was saved concurrently. Re-fetch and retry.",
            event_id=event_id,
        ) from exc
    db.refresh(event)
    return event


def create_event(
    db: Session,
    owner: CurrentUser,
    title: str,
    discipline: str,
    time_slots: list[dict[str, Any]],
) -> tuple[Event, list[dict[str, Any]]]:
    """Create an event owned by ``owner`` with its initial slot set."""
    if not title:
        raise ValidationError("Title is required")
    try:
        parsed_discipline = Discipline(discipline)
    except ValueError as exc:
        raise ValidationError(f"Unknown discipline: {discipline}", discipline=discipline) from exc

    batch = normalize_candidates(time_slots)
    if not batch.slots:
        raise ValidationError("At least one valid time slot is required", warnings=batch.warnings)

    now = utcnow()
    event = Event(
        event_id=str(uuid.uuid4()),
        discipline=parsed_discipline,
        owner_id=owner.id,
        owner_email=owner.email,
        title=title,
        state=EventState.pending,
        actuel_time_slots=[],
        created_at=now,
        updated_at=now,
    )
    for candidate in sorted(batch.slots, key=lambda c: c.start):
        slot_ledger.open_slot(event, candidate.start, candidate.end, owner.id, now)
    event.start_date = min(c.start for c in batch.slots)
    event.end_date = max(c.end for c in batch.slots)
    slot_ledger.refresh_actuel_time_slots(event)
    warnings = batch.warnings + find_overlaps(event.time_slots)

    db.add(event)
    db.commit()
    db.refresh(event)
    logger.info("Created event '%s' (%s) by owner %s with %d slots", title, event.event_id, owner.id, len(batch.slots))
    return event, warnings


def list_events(
    db: Session,
    discipline: Optional[str] = None,
    state: Optional[str] = None,
) -> list[Event]:
    query = db.query(Event)
    try:
        if discipline:
            query = query.filter(Event.discipline == Discipline(discipline))
        if state:
            query = query.filter(Event.state == EventState(state))
    except ValueError as exc:
        raise ValidationError(str(exc), discipline=discipline, state=state) from exc
    return query.order_by(Event.start_date).all()
