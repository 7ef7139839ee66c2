"""Retention job for the slot ledger.

Four passes, run in one transaction:

1. deleted slots not updated for ``remove_older_than`` days
2. slots whose event no longer exists (any age)
3. history entries older than ``2 x remove_older_than`` days, except the
   ``deleted`` entry of a slot that is still stored
4. approved/rejected slots whose slot date is older than ``3 x remove_older_than`` days

A dry run executes the same statements and rolls back, so the reported
counts are exactly what a real run would remove.
"""
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import and_, func, select
from sqlalchemy.orm import Session

from labcal.config import settings
from labcal.models.event import Event
from labcal.models.time_slot import SlotAction, SlotHistoryEntry, SlotState, SlotStatus, TimeSlot
from labcal.services import slot_ledger
from labcal.timeutils import to_local, utcnow

logger = logging.getLogger(__name__)

TERMINAL_SLOT_STATES = (SlotState.approved, SlotState.rejected)


@dataclass
class CleanupStats:
    deleted_timeslots: int = 0
    orphaned_timeslots: int = 0
    deleted_history: int = 0
    old_timeslots: int = 0
    dry_run: bool = True

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _purge_slots(db: Session, *criteria) -> int:
    """Delete matching slots and their history; returns the number of slots removed."""
    slot_ids = select(TimeSlot.slot_id).where(*criteria)
    db.query(SlotHistoryEntry).filter(SlotHistoryEntry.slot_id.in_(slot_ids)).delete(synchronize_session=False)
    return db.query(TimeSlot).filter(*criteria).delete(synchronize_session=False)


def _orphan_criterion():
    return ~TimeSlot.event_id.in_(select(Event.event_id))


def _history_purge_criterion():
    # A kept deleted slot must keep the entry that records its deletion
    kept_deletion = and_(
        SlotHistoryEntry.action == SlotAction.deleted,
        SlotHistoryEntry.slot_id.in_(select(TimeSlot.slot_id)),
    )
    return ~kept_deletion


def _refresh_views(db: Session, event_ids: set[str]) -> None:
    # Bulk deletes bypass the session; reload before recomputing the derived view
    db.expire_all()
    for event in db.query(Event).filter(Event.event_id.in_(event_ids)).all():
        slot_ledger.refresh_actuel_time_slots(event)
    db.flush()


def cleanup_timeslots(
    db: Session,
    remove_deleted: bool = True,
    remove_orphaned: bool = True,
    remove_older_than: Optional[int] = None,
    dry_run: bool = True,
    now: Optional[datetime] = None,
) -> CleanupStats:
    """Purge expired ledger rows. Idempotent: a second real run right after the first removes nothing."""
    days = settings.SLOT_RETENTION_DAYS if remove_older_than is None else remove_older_than
    if days < 0:
        raise ValueError("remove_older_than must be zero or positive")
    now = now or utcnow()
    stats = CleanupStats(dry_run=dry_run)
    logger.info("Starting slot cleanup (%s, threshold %d days)", "dry run" if dry_run else "real run", days)

    try:
        if remove_deleted:
            stats.deleted_timeslots = _purge_slots(
                db,
                TimeSlot.status == SlotStatus.deleted,
                TimeSlot.updated_at < now - timedelta(days=days),
            )
            logger.info("Deleted slots purged: %d", stats.deleted_timeslots)

        if remove_orphaned:
            stats.orphaned_timeslots = _purge_slots(db, _orphan_criterion())
            logger.info("Orphaned slots purged: %d", stats.orphaned_timeslots)

        stats.deleted_history = (
            db.query(SlotHistoryEntry)
            .filter(SlotHistoryEntry.date < now - timedelta(days=days * 2), _history_purge_criterion())
            .delete(synchronize_session=False)
        )
        logger.info("History entries purged: %d", stats.deleted_history)

        very_old = (
            TimeSlot.state.in_(TERMINAL_SLOT_STATES),
            TimeSlot.timeslot_date < to_local(now).date() - timedelta(days=days * 3),
        )
        affected_events = {
            row.event_id for row in db.query(TimeSlot.event_id).filter(*very_old, TimeSlot.status == SlotStatus.active)
        }
        stats.old_timeslots = _purge_slots(db, *very_old)
        if affected_events:
            _refresh_views(db, affected_events)
        logger.info("Very old slots purged: %d", stats.old_timeslots)

        if dry_run:
            db.rollback()
            logger.info("Dry run finished, nothing changed")
        else:
            db.commit()
            logger.info("Cleanup committed")
    except Exception:
        db.rollback()
        logger.exception("Slot cleanup failed, transaction rolled back")
        raise
    return stats


def get_timeslot_statistics(db: Session) -> dict[str, Any]:
    """Ledger size overview: totals, per state and discipline, date range and orphan count."""
    total = db.query(func.count(TimeSlot.slot_id)).scalar() or 0
    by_state = {
        state.value: count
        for state, count in db.query(TimeSlot.state, func.count(TimeSlot.slot_id)).group_by(TimeSlot.state)
    }
    by_discipline = {
        (discipline.value if discipline else "unknown"): count
        for discipline, count in db.query(TimeSlot.discipline, func.count(TimeSlot.slot_id)).group_by(TimeSlot.discipline)
    }
    oldest, newest = db.query(func.min(TimeSlot.timeslot_date), func.max(TimeSlot.timeslot_date)).one()
    orphaned = db.query(func.count(TimeSlot.slot_id)).filter(_orphan_criterion()).scalar() or 0
    return {
        "total": total,
        "by_state": by_state,
        "by_discipline": by_discipline,
        "oldest_date": oldest.isoformat() if oldest else None,
        "newest_date": newest.isoformat() if newest else None,
        "orphaned_count": orphaned,
    }
