"""Pydantic schemas for the retention job."""
from typing import Optional
from pydantic import BaseModel, Field


class CleanupRequest(BaseModel):
    remove_deleted: bool = True
    remove_orphaned: bool = True
    remove_older_than: Optional[int] = Field(None, ge=0)
    dry_run: bool = True


class CleanupStatsOut(BaseModel):
    deleted_timeslots: int
    orphaned_timeslots: int
    deleted_history: int
    old_timeslots: int
    dry_run: bool

    model_config = {"from_attributes": True}


class TimeslotStatisticsOut(BaseModel):
    total: int
    by_state: dict[str, int] = {}
    by_discipline: dict[str, int] = {}
    oldest_date: Optional[str] = None
    newest_date: Optional[str] = None
    orphaned_count: int = 0
