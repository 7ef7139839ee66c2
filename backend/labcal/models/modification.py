"""Pending modification (``eventModifying``) and event state-change ORM models."""
import uuid
import enum
from sqlalchemy import Column, String, DateTime, Integer, JSON, ForeignKey, UniqueConstraint, Enum as SAEnum
from sqlalchemy.orm import relationship

from labcal.database import Base
from labcal.models.event import EventState
from labcal.timeutils import iso_z, utcnow


class ModificationAction(str, enum.Enum):
    cancel = "CANCEL"
    move = "MOVE"


class EventModification(Base):
    """A proposal awaiting the owner's decision. Rows exist only while pending."""

    __tablename__ = "event_modifications"
    __table_args__ = (
        UniqueConstraint("event_id", "user_id", "action", "request_date", name="uq_event_modification_triple"),
    )

    modification_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    event_id = Column(String(36), ForeignKey("events.event_id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(255), nullable=False)
    action = Column(SAEnum(ModificationAction), nullable=False)
    reason = Column(String(500), nullable=True)
    request_date = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    time_slots = Column(JSON, nullable=False, default=list)

    event = relationship("Event", back_populates="event_modifying")

    @property
    def legacy_key(self) -> str:
        """``{userId}-{action}-{requestDate}`` reference used by older clients."""
        return f"{self.user_id}-{self.action.value}-{iso_z(self.request_date)}"


class StateChange(Base):
    """One event-level state change (``stateChanger`` / ``lastStateChange``)."""

    __tablename__ = "event_state_changes"

    change_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    event_id = Column(String(36), ForeignKey("events.event_id", ondelete="CASCADE"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False, default=0)
    user_id = Column(String(255), nullable=False)
    from_state = Column(SAEnum(EventState), nullable=True)
    to_state = Column(SAEnum(EventState), nullable=False)
    reason = Column(String(500), nullable=True)
    changed_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
