"""Tests for the retention job and ledger statistics."""
from datetime import timedelta

import pytest

from labcal.models.event import Discipline
from labcal.models.time_slot import SlotAction, SlotHistoryEntry, SlotStatus, TimeSlot
from labcal.scripts import cleanup_timeslots as cleanup_script
from labcal.services import event_store, transition_engine
from labcal.services.retention_service import cleanup_timeslots, get_timeslot_statistics
from labcal.timeutils import utcnow
from tests.conftest import OWNER, VALIDATOR, create_test_event, slot
from tests.test_proposals import assert_ledger_consistent


def _deleted_slot(db, days_ago):
    """Create an event, delete its only slot and age the deletion."""
    event = create_test_event(db)
    slot_id = event.time_slots[0].slot_id
    transition_engine.owner_modify(db, event.event_id, OWNER, "SLOT_MODIFY", slot_id=slot_id)
    db.query(TimeSlot).filter(TimeSlot.slot_id == slot_id).update(
        {"updated_at": utcnow() - timedelta(days=days_ago)}, synchronize_session=False,
    )
    db.commit()
    return slot_id


def _orphan(db):
    now = utcnow()
    orphan = TimeSlot(
        event_id="event-from-elsewhere",
        discipline=Discipline.physique,
        start_date=now,
        end_date=now + timedelta(hours=1),
        timeslot_date=now.date(),
        created_by="someone",
    )
    orphan.modified_by.append(SlotHistoryEntry(user_id="someone", action=SlotAction.created, date=now))
    db.add(orphan)
    db.commit()
    return orphan.slot_id


def _slot_exists(db, slot_id):
    return db.query(TimeSlot).filter(TimeSlot.slot_id == slot_id).count() == 1


class TestRetention:

    def test_only_expired_deleted_slot_purged(self, db):
        old = _deleted_slot(db, days_ago=120)
        recent = _deleted_slot(db, days_ago=10)

        preview = cleanup_timeslots(db, remove_older_than=90, dry_run=True)
        assert preview.deleted_timeslots == 1
        assert _slot_exists(db, old)

        stats = cleanup_timeslots(db, remove_older_than=90, dry_run=False)

        assert stats.deleted_timeslots == preview.deleted_timeslots == 1
        assert not stats.dry_run
        assert not _slot_exists(db, old)
        assert db.query(SlotHistoryEntry).filter(SlotHistoryEntry.slot_id == old).count() == 0
        assert _slot_exists(db, recent)

    def test_second_run_finds_nothing(self, db):
        _deleted_slot(db, days_ago=120)
        _orphan(db)
        cleanup_timeslots(db, remove_older_than=90, dry_run=False)

        again = cleanup_timeslots(db, remove_older_than=90, dry_run=False)

        assert (again.deleted_timeslots, again.orphaned_timeslots, again.deleted_history, again.old_timeslots) == (0, 0, 0, 0)

    def test_orphans_purged_regardless_of_age(self, db):
        orphan_id = _orphan(db)
        create_test_event(db)

        kept = cleanup_timeslots(db, remove_orphaned=False, dry_run=False)
        assert kept.orphaned_timeslots == 0
        assert _slot_exists(db, orphan_id)

        stats = cleanup_timeslots(db, dry_run=False)
        assert stats.orphaned_timeslots == 1
        assert not _slot_exists(db, orphan_id)
        assert db.query(TimeSlot).count() == 1

    def test_history_has_longer_retention(self, db):
        event = create_test_event(db)
        slot_id = event.time_slots[0].slot_id
        db.query(SlotHistoryEntry).filter(SlotHistoryEntry.slot_id == slot_id).update(
            {"date": utcnow() - timedelta(days=150)}, synchronize_session=False,
        )
        db.commit()

        assert cleanup_timeslots(db, remove_older_than=90, dry_run=False).deleted_history == 0

        db.query(SlotHistoryEntry).filter(SlotHistoryEntry.slot_id == slot_id).update(
            {"date": utcnow() - timedelta(days=200)}, synchronize_session=False,
        )
        db.commit()
        stats = cleanup_timeslots(db, remove_older_than=90, dry_run=False)

        assert stats.deleted_history == 1
        assert _slot_exists(db, slot_id)

    def test_kept_deleted_slot_keeps_its_deletion_entry(self, db):
        slot_id = _deleted_slot(db, days_ago=300)
        db.query(SlotHistoryEntry).filter(SlotHistoryEntry.slot_id == slot_id).update(
            {"date": utcnow() - timedelta(days=300)}, synchronize_session=False,
        )
        db.commit()

        stats = cleanup_timeslots(db, remove_deleted=False, remove_older_than=90, dry_run=False)

        assert stats.deleted_timeslots == 0
        assert stats.deleted_history == 1
        remaining = db.query(SlotHistoryEntry).filter(SlotHistoryEntry.slot_id == slot_id).all()
        assert [h.action for h in remaining] == [SlotAction.deleted]
        event = event_store.get_event(db, db.get(TimeSlot, slot_id).event_id)
        assert_ledger_consistent(event)

    def test_very_old_validated_slots_purged_and_view_refreshed(self, db):
        event = create_test_event(db, slots=[slot("2020-01-06", "09:00", "11:00")])
        transition_engine.owner_modify(
            db, event.event_id, OWNER, "GLOBAL_MODIFY", proposed_time_slots=[slot("2020-01-07", "09:00", "11:00")],
        )
        transition_engine.validate_owner_changes(db, event.event_id, VALIDATOR, approve=True)

        stats = cleanup_timeslots(db, remove_older_than=90, dry_run=False)

        assert stats.old_timeslots == 1
        event = event_store.get_event(db, event.event_id)
        assert event.actuel_time_slots == []
        assert [s.status for s in event.time_slots] == [SlotStatus.deleted]
        assert_ledger_consistent(event)

    def test_dry_run_leaves_view_untouched(self, db):
        event = create_test_event(db, slots=[slot("2020-01-06", "09:00", "11:00")])
        transition_engine.owner_modify(
            db, event.event_id, OWNER, "GLOBAL_MODIFY", proposed_time_slots=[slot("2020-01-07", "09:00", "11:00")],
        )
        transition_engine.validate_owner_changes(db, event.event_id, VALIDATOR, approve=True)

        stats = cleanup_timeslots(db, remove_older_than=90, dry_run=True)

        assert stats.old_timeslots == 1
        assert len(event_store.get_event(db, event.event_id).actuel_time_slots) == 1

    def test_negative_threshold_refused(self, db):
        with pytest.raises(ValueError):
            cleanup_timeslots(db, remove_older_than=-1)


class TestStatistics:

    def test_statistics(self, db):
        create_test_event(db, slots=[slot("2030-03-04", "09:00", "11:00"), slot("2030-05-04", "09:00", "11:00")])
        _orphan(db)

        stats = get_timeslot_statistics(db)

        assert stats["total"] == 3
        assert stats["by_state"] == {"created": 3}
        assert stats["by_discipline"] == {"chimie": 2, "physique": 1}
        assert stats["newest_date"] == "2030-05-04"
        assert stats["orphaned_count"] == 1


class TestCleanupCommand:

    def test_dry_run_by_default(self, db, session_factory, monkeypatch, capsys):
        old = _deleted_slot(db, days_ago=120)
        monkeypatch.setattr(cleanup_script, "SessionLocal", session_factory)

        assert cleanup_script.main(["--days", "90"]) == 0

        out = capsys.readouterr().out
        assert "dry run" in out
        assert "Deleted slots:   1" in out
        assert _slot_exists(db, old)

    def test_real_run(self, db, session_factory, monkeypatch):
        old = _deleted_slot(db, days_ago=120)
        monkeypatch.setattr(cleanup_script, "SessionLocal", session_factory)

        assert cleanup_script.main(["--real", "--days", "90"]) == 0
        assert not _slot_exists(db, old)

    def test_stats(self, db, session_factory, monkeypatch, capsys):
        create_test_event(db)
        monkeypatch.setattr(cleanup_script, "SessionLocal", session_factory)

        assert cleanup_script.main(["--stats"]) == 0
        assert "Total: 1" in capsys.readouterr().out
