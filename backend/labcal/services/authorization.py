"""Authorization gate: owner / validator checks for every transition.

Role-string checks live here and nowhere else.
"""
import logging
from dataclasses import dataclass
from typing import Any, Optional

from labcal.exceptions import AuthorizationError
from labcal.models.event import Event
from labcal.schemas.user import CurrentUser

logger = logging.getLogger(__name__)

ADMIN_ROLE = "ADMINLABO"
LAB_STAFF_PREFIX = "LABORANTIN"


@dataclass(frozen=True)
class ModifyDecision:
    """Outcome of ``can_modify``: ``auto`` means the change applies without owner review."""

    auto: bool
    is_owner: bool


def is_validator(role: Optional[str]) -> bool:
    """Staff allowed to re-validate owner edits: ``LABORANTIN``, ``LABORANTIN_*`` and ``ADMINLABO``."""
    if not role:
        return False
    return role == ADMIN_ROLE or role == LAB_STAFF_PREFIX or role.startswith(LAB_STAFF_PREFIX + "_")


def is_owner(event: Event, user: CurrentUser) -> bool:
    """Match by id, or by email for events whose owner was recorded by email."""
    if user.id and user.id == event.owner_id:
        return True
    if user.email:
        return user.email == event.owner_email or user.email == event.owner_id
    return False


def can_confirm(event: Event, user: CurrentUser) -> bool:
    """Only the owner decides on pending modifications, whoever proposed them."""
    return is_owner(event, user)


def can_modify(event: Event, user: CurrentUser) -> ModifyDecision:
    """Owners auto-apply (the event then awaits staff re-validation); everyone else queues a proposal."""
    owner = is_owner(event, user)
    return ModifyDecision(auto=owner, is_owner=owner)


def require_owner(event: Event, user: CurrentUser, operation: str, **details: Any) -> None:
    if not is_owner(event, user):
        logger.warning("User %s denied %s on event %s (not owner)", user.id, operation, event.event_id)
        raise AuthorizationError(
            f"Only the event owner may {operation}",
            event_id=event.event_id,
            **details,
        )


def require_validator(user: CurrentUser, event_id: Optional[str] = None) -> None:
    if not is_validator(user.role):
        logger.warning("User %s with role %s denied validation", user.id, user.role)
        raise AuthorizationError(
            "Only laboratory staff may validate changes",
            event_id=event_id,
            role=user.role,
        )
