"""Owner notification side channel.

Delivery (WebSocket, e-mail) is pluggable through ``register_notifier``.
Notifications run after the domain transaction has committed; a failing
notifier is logged and never propagates.
"""
import logging
from typing import Any, Callable

from labcal.models.event import Event

logger = logging.getLogger(__name__)

Notifier = Callable[[Event, dict[str, Any]], None]

_notifiers: list[Notifier] = []


def register_notifier(notifier: Notifier) -> None:
    _notifiers.append(notifier)


def clear_notifiers() -> None:
    _notifiers.clear()


def notify_owner(event: Event, change_summary: dict[str, Any]) -> None:
    """Fire-and-forget notification to the owner of ``event``."""
    logger.info("Notifying owner %s of event %s: %s", event.owner_id, event.event_id, change_summary.get("type"))
    for notifier in list(_notifiers):
        try:
            notifier(event, change_summary)
        except Exception:
            logger.exception("Notifier %r failed for event %s", notifier, event.event_id)
