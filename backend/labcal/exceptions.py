"""Domain errors raised by the slot engine.

Services raise these; the HTTP layer maps them to status codes in
``labcal.main``. Every error carries enough context (event id, modification
id, slot id) for a caller to build a meaningful message.
"""
from typing import Any, Optional


class LabCalendarError(Exception):
    """Base class for all domain errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for API responses
        details: Additional context (event_id, modification_id, ...)
    """

    status_code = 400

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(LabCalendarError):
    """A required field is missing or a request cannot be applied as given."""

    status_code = 422

    def __init__(self, message: str, **details: Any):
        super().__init__(message, "VALIDATION_ERROR", details)


class NotFoundError(LabCalendarError):
    """Unknown event, slot or pending modification."""

    status_code = 404

    def __init__(self, message: str, **details: Any):
        super().__init__(message, "NOT_FOUND", details)


class AuthorizationError(LabCalendarError):
    """The acting user may not perform this transition."""

    status_code = 403

    def __init__(self, message: str, **details: Any):
        super().__init__(message, "FORBIDDEN", details)


class ConcurrencyError(LabCalendarError):
    """The event changed between read and write; the caller must re-fetch and retry."""

    status_code = 409

    def __init__(self, message: str, **details: Any):
        super().__init__(message, "CONCURRENT_MODIFICATION", details)
