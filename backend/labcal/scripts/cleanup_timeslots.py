"""Purge expired time slots and history.

Runs in dry-run mode unless ``--real`` is given:

    python -m labcal.scripts.cleanup_timeslots            # report only
    python -m labcal.scripts.cleanup_timeslots --real     # delete
    python -m labcal.scripts.cleanup_timeslots --stats    # ledger overview
"""
import sys

from labcal.config import settings
from labcal.database import SessionLocal
from labcal.log import setup_logging
from labcal.services.retention_service import cleanup_timeslots, get_timeslot_statistics


def print_statistics(db) -> None:
    stats = get_timeslot_statistics(db)
    print("Time slot statistics")
    print(f"  Total: {stats['total']}")
    for state, count in sorted(stats["by_state"].items()):
        print(f"  State {state}: {count}")
    for discipline, count in sorted(stats["by_discipline"].items()):
        print(f"  Discipline {discipline}: {count}")
    print(f"  Date range: {stats['oldest_date']} -> {stats['newest_date']}")
    print(f"  Orphaned: {stats['orphaned_count']}")


def run(real: bool, days: int, keep_orphans: bool, keep_deleted: bool, show_stats: bool) -> int:
    db = SessionLocal()
    try:
        if show_stats:
            print_statistics(db)
            return 0

        stats = cleanup_timeslots(
            db,
            remove_deleted=not keep_deleted,
            remove_orphaned=not keep_orphans,
            remove_older_than=days,
            dry_run=not real,
        )
        print(f"Cleanup {'applied' if real else 'simulated (dry run, nothing deleted)'}")
        print(f"  Deleted slots:   {stats.deleted_timeslots}")
        print(f"  Orphaned slots:  {stats.orphaned_timeslots}")
        print(f"  History entries: {stats.deleted_history}")
        print(f"  Very old slots:  {stats.old_timeslots}")
        if not real:
            print("Re-run with --real to apply.")
        return 0
    finally:
        db.close()


def main(argv=None) -> int:
    """CLI entry point"""
    import argparse

    parser = argparse.ArgumentParser(
        description="Purge deleted, orphaned and expired time slots",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--real", action="store_true", help="Delete for real (default is a dry run)")
    parser.add_argument("--stats", action="store_true", help="Print ledger statistics and exit")
    parser.add_argument(
        "--days", type=int, default=settings.SLOT_RETENTION_DAYS,
        help="Retention threshold in days (default: %(default)s)",
    )
    parser.add_argument("--keep-orphans", action="store_true", help="Skip the orphaned-slot pass")
    parser.add_argument("--keep-deleted", action="store_true", help="Skip the deleted-slot pass")

    args = parser.parse_args(argv)
    if args.days < 0:
        parser.error("--days must be zero or positive")

    setup_logging()
    return run(args.real, args.days, args.keep_orphans, args.keep_deleted, args.stats)


if __name__ == "__main__":
    sys.exit(main())
