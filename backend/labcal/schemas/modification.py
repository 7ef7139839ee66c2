"""Pydantic schemas for pending modifications (``eventModifying``)."""
from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel

from labcal.models.modification import ModificationAction


class ProposalCreate(BaseModel):
    action: ModificationAction
    reason: Optional[str] = None
    time_slots: list[dict[str, Any]] = []
    version: Optional[int] = None


class ModificationDecision(BaseModel):
    # Generated id or the "{userId}-{action}-{requestDate}" key
    modification_id: Optional[str] = None
    action: Optional[str] = None  # confirm | reject
    version: Optional[int] = None


class ModificationOut(BaseModel):
    modification_id: str
    legacy_key: str
    user_id: str
    action: ModificationAction
    reason: Optional[str] = None
    request_date: datetime
    time_slots: list[dict[str, Any]] = []

    model_config = {"from_attributes": True}
