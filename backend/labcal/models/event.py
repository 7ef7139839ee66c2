"""Event ORM model: a scheduled lab session owning a ledger of time slots."""
import uuid
import enum
from sqlalchemy import Column, String, DateTime, Integer, JSON, Enum as SAEnum
from sqlalchemy.orm import relationship

from labcal.database import Base
from labcal.timeutils import utcnow


class Discipline(str, enum.Enum):
    chimie = "chimie"
    physique = "physique"


class EventState(str, enum.Enum):
    pending = "PENDING"
    validated = "VALIDATED"
    cancelled = "CANCELLED"
    moved = "MOVED"
    in_progress = "IN_PROGRESS"


class ValidationState(str, enum.Enum):
    owner_pending = "ownerPending"
    validated = "validated"
    rejected = "rejected"


class Event(Base):
    __tablename__ = "events"

    event_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    discipline = Column(SAEnum(Discipline), nullable=False)
    owner_id = Column(String(255), nullable=False, index=True)
    owner_email = Column(String(255), nullable=True)
    title = Column(String(255), nullable=False)
    start_date = Column(DateTime(timezone=True), nullable=True)
    end_date = Column(DateTime(timezone=True), nullable=True)
    state = Column(SAEnum(EventState), nullable=False, default=EventState.pending)
    state_reason = Column(String(500), nullable=True)
    validation_state = Column(SAEnum(ValidationState), nullable=True)
    # Materialized projection of the active slots; written only by slot_ledger.refresh_actuel_time_slots
    actuel_time_slots = Column(JSON, nullable=False, default=list)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow)

    __mapper_args__ = {"version_id_col": version}

    time_slots = relationship(
        "TimeSlot",
        primaryjoin="Event.event_id == foreign(TimeSlot.event_id)",
        order_by="TimeSlot.sequence",
        passive_deletes="all",
    )
    event_modifying = relationship(
        "EventModification",
        back_populates="event",
        order_by="EventModification.request_date",
        cascade="all, delete-orphan",
    )
    state_changes = relationship(
        "StateChange",
        order_by="StateChange.sequence",
        cascade="all, delete-orphan",
    )

    @property
    def last_state_change(self):
        return self.state_changes[-1] if self.state_changes else None

    @property
    def state_changer(self) -> list[list[str]]:
        """``[[user_id, date, date, ...], ...]`` in first-appearance order."""
        grouped: dict[str, list[str]] = {}
        for change in self.state_changes:
            grouped.setdefault(change.user_id, []).append(change.changed_at.isoformat())
        return [[user_id, *dates] for user_id, dates in grouped.items()]
