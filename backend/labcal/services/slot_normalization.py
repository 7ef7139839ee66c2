"""Candidate slot normalization and intra-event conflict reporting.

Candidates arrive in one of two shapes:

- wall-clock triples ``{date, start_time, end_time}`` (``startTime``/``endTime``
  accepted too), read in the laboratory zone;
- absolute bounds ``{start_date, end_date}`` (``startDate``/``endDate``), ISO-8601.

Reversed bounds are swapped, never rejected. Candidates with missing or
unreadable fields are dropped and reported as warnings so the rest of the
batch still applies.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any, Iterable, Mapping, Optional

from labcal.exceptions import ValidationError
from labcal.timeutils import as_utc, combine_local, iso_z, parse_iso

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CandidateSlot:
    start: datetime
    end: datetime

    def as_bounds(self) -> dict[str, str]:
        """Absolute form stored on pending modifications; survives local midnight and keeps seconds."""
        return {"start_date": iso_z(self.start), "end_date": iso_z(self.end)}


@dataclass
class NormalizedBatch:
    slots: list[CandidateSlot] = field(default_factory=list)
    warnings: list[dict[str, Any]] = field(default_factory=list)


def _pick(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value not in (None, ""):
            return value
    return None


def _parse_clock(value: Any) -> time:
    if isinstance(value, time):
        return value
    return time.fromisoformat(str(value))


def _parse_day(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _parse_instant(value: Any) -> datetime:
    if isinstance(value, datetime):
        return as_utc(value)
    return parse_iso(str(value))


def normalize_candidate(raw: Mapping[str, Any]) -> CandidateSlot:
    """Normalize one candidate or raise ``ValidationError`` describing why it was unusable."""
    if not isinstance(raw, Mapping):
        raise ValidationError("Slot candidate must be an object", reason="malformed")

    start_at = _pick(raw, "start_date", "startDate")
    end_at = _pick(raw, "end_date", "endDate")
    day = _pick(raw, "date")
    start_clock = _pick(raw, "start_time", "startTime")
    end_clock = _pick(raw, "end_time", "endTime")

    try:
        if day is not None and start_clock is not None and end_clock is not None:
            parsed_day = _parse_day(day)
            first, second = _parse_clock(start_clock), _parse_clock(end_clock)
            if first > second:
                first, second = second, first
            start, end = combine_local(parsed_day, first), combine_local(parsed_day, second)
        elif start_at is not None and end_at is not None:
            start, end = _parse_instant(start_at), _parse_instant(end_at)
            if start > end:
                start, end = end, start
        else:
            raise ValidationError(
                "Slot candidate needs date, start_time and end_time",
                reason="missing_fields",
            )
    except ValueError as exc:
        raise ValidationError(f"Unreadable slot candidate: {exc}", reason="unparseable") from exc

    if start == end:
        raise ValidationError("Slot candidate has zero length", reason="zero_length")
    return CandidateSlot(start=start, end=end)


def normalize_candidates(candidates: Optional[Iterable[Mapping[str, Any]]]) -> NormalizedBatch:
    """Normalize a batch; bad candidates become warnings instead of failing the batch."""
    batch = NormalizedBatch()
    for index, raw in enumerate(candidates or []):
        try:
            batch.slots.append(normalize_candidate(raw))
        except ValidationError as exc:
            logger.warning("Dropping slot candidate #%d: %s", index, exc.message)
            batch.warnings.append({
                "index": index,
                "reason": exc.details.get("reason", "invalid"),
                "message": exc.message,
                "candidate": dict(raw) if isinstance(raw, Mapping) else raw,
            })
    return batch


def find_overlaps(slots: Iterable[Any]) -> list[dict[str, Any]]:
    """Pairs of overlapping slots within one event's active set, as warnings."""
    ordered = sorted(slots, key=lambda s: as_utc(s.start_date))
    warnings = []
    for i, first in enumerate(ordered):
        for second in ordered[i + 1:]:
            if as_utc(second.start_date) >= as_utc(first.end_date):
                break
            warnings.append({
                "reason": "overlap",
                "message": "Slots overlap within the event",
                "slot_ids": [first.slot_id, second.slot_id],
            })
    return warnings
