"""
Scheduling Module

Provides the booking engine: schedule store, availability resolver,
booking ledger, booking policy and approval workflow.

Usage:
    from app.core.scheduling import BookingEngine, RequestContext

    engine = BookingEngine(db)
    result = await engine.get_availability(provider_id, requester_id="student-1")
    booking = await engine.reserve(
        RequestContext(requester_id="student-1"),
        provider_id,
        slot_start,
        slot_end,
    )
"""

# Errors
from app.core.scheduling.errors import (
    BookingError,
    ValidationError,
    NotFoundError,
    ConflictError,
    PolicyViolation,
    InvalidTransitionError,
    AuthorizationError,
)

# Value types
from app.core.scheduling.types import (
    TimeRange,
    Slot,
    DayAvailability,
    AvailabilityResult,
)
from app.core.scheduling.context import RequestContext

# Components
from app.core.scheduling.schedule import ScheduleStore
from app.core.scheduling.ledger import BookingLedger, ContactInfo
from app.core.scheduling.policy import BookingPolicy, QuotaState
from app.core.scheduling.availability import AvailabilityResolver
from app.core.scheduling.workflow import (
    ApprovalWorkflow,
    BookingAction,
    VALID_TRANSITIONS,
    can_transition,
)

# Booking Engine (main orchestrator)
from app.core.scheduling.engine import BookingEngine

__all__ = [
    # Errors
    "BookingError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "PolicyViolation",
    "InvalidTransitionError",
    "AuthorizationError",
    # Value types
    "TimeRange",
    "Slot",
    "DayAvailability",
    "AvailabilityResult",
    "RequestContext",
    # Components
    "ScheduleStore",
    "BookingLedger",
    "ContactInfo",
    "BookingPolicy",
    "QuotaState",
    "AvailabilityResolver",
    "ApprovalWorkflow",
    "BookingAction",
    "VALID_TRANSITIONS",
    "can_transition",
    # Booking Engine
    "BookingEngine",
]
