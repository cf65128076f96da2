"""
Booking engine errors.

Every error carries a stable ``code`` used in API responses. Handlers in
``app.main`` translate them to HTTP status codes.
"""

from datetime import date
from typing import Any, Optional


class BookingError(Exception):
    """Base class for booking engine errors."""

    code: str = "booking_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API response."""
        return {"error": self.code, "detail": self.message}


class ValidationError(BookingError):
    """Malformed slot, date or time input. Never retried."""

    code = "validation_error"


class NotFoundError(BookingError):
    """Unknown provider or booking."""

    code = "not_found"


class ConflictError(BookingError):
    """Requested range is already reserved."""

    code = "conflict"

    def __init__(self, reason: str = "slot_taken", message: Optional[str] = None):
        super().__init__(message or "This time slot is already booked for the selected provider")
        self.reason = reason

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["reason"] = self.reason
        return result


class PolicyViolation(BookingError):
    """Requester is at the booking cap until ``retry_after``."""

    code = "policy_violation"

    def __init__(
        self,
        reason: str,
        retry_after: Optional[date] = None,
        message: Optional[str] = None,
    ):
        if message is None and retry_after is not None:
            message = f"Booking limit reached. You can book again starting {retry_after.isoformat()}"
        super().__init__(message or "Booking policy violated")
        self.reason = reason
        self.retry_after = retry_after

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["reason"] = self.reason
        result["retry_after"] = self.retry_after.isoformat() if self.retry_after else None
        return result


class InvalidTransitionError(BookingError):
    """Workflow action is not legal from the booking's current state."""

    code = "invalid_transition"

    def __init__(self, current: str, action: str, message: Optional[str] = None):
        super().__init__(message or f"Cannot {action} a booking that is {current}")
        self.current = current
        self.action = action

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["current_status"] = self.current
        result["action"] = self.action
        return result


class AuthorizationError(BookingError):
    """Caller lacks the capability for the requested action."""

    code = "forbidden"
