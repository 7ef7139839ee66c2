"""Clock and timezone helpers.

Timestamps are stored as UTC. Candidate slots arrive as wall-clock
``{date, startTime, endTime}`` triples in the laboratory's zone
(``settings.TIMEZONE``); pytz does the localisation so DST transitions are
resolved the same way everywhere.
"""
from datetime import date, datetime, time, timezone
from typing import Optional

import pytz

from labcal.config import settings


def utcnow() -> datetime:
    """Timezone-aware now, truncated to milliseconds."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive values read back from backends that drop tzinfo (SQLite)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def iso_z(value: datetime) -> str:
    """ISO-8601 with millisecond precision and a ``Z`` suffix, e.g. ``2025-03-01T08:00:00.000Z``."""
    value = as_utc(value)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_iso(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; a naive value is read as UTC."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return as_utc(datetime.fromisoformat(value))


def local_zone():
    return pytz.timezone(settings.TIMEZONE)


def combine_local(day: date, clock: time) -> datetime:
    """Wall-clock date + time in the laboratory zone -> aware UTC datetime."""
    localized = local_zone().localize(datetime.combine(day, clock))
    return localized.astimezone(timezone.utc)


def to_local(value: datetime) -> datetime:
    return as_utc(value).astimezone(local_zone())
