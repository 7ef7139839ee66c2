"""TimeSlot and SlotHistoryEntry ORM models: the per-event slot ledger.

A slot is never edited in place once active: it is superseded (status flips
to ``deleted``) and a new slot is appended. Every change to bounds or status
appends exactly one ``SlotHistoryEntry`` (the ``modifiedBy`` list).
"""
import uuid
import enum
from sqlalchemy import Column, String, Date, DateTime, Integer, ForeignKey, Enum as SAEnum
from sqlalchemy.orm import relationship

from labcal.database import Base
from labcal.models.event import Discipline
from labcal.timeutils import utcnow


class SlotStatus(str, enum.Enum):
    active = "active"
    deleted = "deleted"


class SlotState(str, enum.Enum):
    created = "created"
    modified = "modified"
    counter_proposed = "counter_proposed"
    approved = "approved"
    rejected = "rejected"
    deleted = "deleted"


class SlotAction(str, enum.Enum):
    created = "created"
    modified = "modified"
    deleted = "deleted"
    invalidated = "invalidated"
    approved = "approved"
    rejected = "rejected"
    restored = "restored"
    time_modified = "time_modified"


class TimeSlot(Base):
    __tablename__ = "time_slots"

    slot_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    # Not a foreign key: ledger rows may outlive their event until the retention job purges them
    event_id = Column(String(36), nullable=False, index=True)
    discipline = Column(SAEnum(Discipline), nullable=True)
    sequence = Column(Integer, nullable=False, default=0)
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False)
    timeslot_date = Column(Date, nullable=False)
    status = Column(SAEnum(SlotStatus), nullable=False, default=SlotStatus.active)
    state = Column(SAEnum(SlotState), nullable=False, default=SlotState.created)
    created_by = Column(String(255), nullable=False)
    parent_slot_id = Column(String(36), nullable=True)
    notes = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    modified_by = relationship(
        "SlotHistoryEntry",
        order_by="SlotHistoryEntry.sequence",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def is_active(self) -> bool:
        return self.status == SlotStatus.active


class SlotHistoryEntry(Base):
    __tablename__ = "slot_history"

    entry_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    slot_id = Column(String(36), ForeignKey("time_slots.slot_id", ondelete="CASCADE"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False, default=0)
    user_id = Column(String(255), nullable=False)
    action = Column(SAEnum(SlotAction), nullable=False)
    note = Column(String(500), nullable=True)
    previous_start = Column(DateTime(timezone=True), nullable=True)
    previous_end = Column(DateTime(timezone=True), nullable=True)
    new_start = Column(DateTime(timezone=True), nullable=True)
    new_end = Column(DateTime(timezone=True), nullable=True)
    date = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
