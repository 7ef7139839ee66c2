"""Maintenance routes: slot retention job and ledger statistics (staff only)."""
import logging
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from labcal.database import get_db
from labcal.dependencies import get_validator
from labcal.schemas.maintenance import CleanupRequest, CleanupStatsOut, TimeslotStatisticsOut
from labcal.schemas.user import CurrentUser
from labcal.services.retention_service import cleanup_timeslots, get_timeslot_statistics

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/cleanup", response_model=CleanupStatsOut)
def run_cleanup(
    payload: CleanupRequest,
    user: CurrentUser = Depends(get_validator),
    db: Session = Depends(get_db),
):
    """Purge expired slots. Dry run unless ``dry_run`` is false."""
    logger.info("Cleanup requested by %s (dry_run=%s)", user.id, payload.dry_run)
    return cleanup_timeslots(
        db,
        remove_deleted=payload.remove_deleted,
        remove_orphaned=payload.remove_orphaned,
        remove_older_than=payload.remove_older_than,
        dry_run=payload.dry_run,
    ).to_dict()


@router.get("/timeslot-stats", response_model=TimeslotStatisticsOut)
def timeslot_statistics(
    user: CurrentUser = Depends(get_validator),
    db: Session = Depends(get_db),
):
    return get_timeslot_statistics(db)
