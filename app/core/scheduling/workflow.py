"""
Approval Workflow.

Moderated sessions move through:

    booked ──approve──> approved ──complete──> completed
       │                   │
       └──────cancel───────┴──────────────────> cancelled

``completed`` and ``cancelled`` are terminal. Approve and cancel notify the
requester; delivery problems never fail the transition.
"""

import logging
from enum import Enum
from typing import Optional
from zoneinfo import ZoneInfo

from app.config import Settings, get_settings
from app.core.clock import Clock, get_clock
from app.core.scheduling.context import RequestContext
from app.core.scheduling.errors import AuthorizationError, InvalidTransitionError
from app.core.scheduling.ledger import BookingLedger
from app.core.scheduling.types import as_utc, to_utc_naive
from app.infra.notifications import NotificationService, get_notification_service
from app.models.database import Booking, BookingStatus, BookingVariant

logger = logging.getLogger(__name__)


class BookingAction(str, Enum):
    """Moderator actions on a session."""

    APPROVE = "approve"
    CANCEL = "cancel"
    COMPLETE = "complete"


# Valid transitions: current status -> action -> resulting status
VALID_TRANSITIONS: dict[BookingStatus, dict[BookingAction, BookingStatus]] = {
    BookingStatus.BOOKED: {
        BookingAction.APPROVE: BookingStatus.APPROVED,
        BookingAction.CANCEL: BookingStatus.CANCELLED,
    },
    BookingStatus.APPROVED: {
        BookingAction.COMPLETE: BookingStatus.COMPLETED,
        BookingAction.CANCEL: BookingStatus.CANCELLED,
    },
    BookingStatus.COMPLETED: {},  # Terminal
    BookingStatus.CANCELLED: {},  # Terminal
}


def can_transition(current: BookingStatus, action: BookingAction) -> bool:
    """Check if an action is legal from a status."""
    return action in VALID_TRANSITIONS.get(current, {})


def get_valid_actions(current: BookingStatus) -> set[BookingAction]:
    """Get all actions legal from a status."""
    return set(VALID_TRANSITIONS.get(current, {}))


def is_terminal_status(status: BookingStatus) -> bool:
    """Check if status is terminal (no further transitions)."""
    return not VALID_TRANSITIONS.get(status)


class ApprovalWorkflow:
    """Applies moderator actions to approval-variant bookings."""

    def __init__(
        self,
        ledger: BookingLedger,
        notifier: Optional[NotificationService] = None,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
    ):
        self.ledger = ledger
        self.notifier = notifier or get_notification_service()
        self.clock = clock or get_clock()
        self.settings = settings or get_settings()
        self.tz = ZoneInfo(self.settings.schedule_timezone)

    async def transition(
        self,
        context: RequestContext,
        booking_id,
        action: str,
    ) -> Booking:
        """Apply ``action`` to a booking.

        Raises:
            AuthorizationError: caller cannot moderate, or owns the booking
            NotFoundError: unknown booking
            InvalidTransitionError: action not legal from the current status
        """
        try:
            action = BookingAction(action)
        except ValueError:
            raise InvalidTransitionError(current="unknown", action=str(action))

        if not context.can_moderate:
            raise AuthorizationError("Moderator role required to change session status")

        db = self.ledger.db
        booking = await self.ledger.get(booking_id, for_update=True)

        if context.requester_id is not None and booking.requester_id == context.requester_id:
            await db.rollback()
            raise AuthorizationError("Cannot moderate your own booking")

        if booking.variant == BookingVariant.DIRECT:
            current = booking.status.value
            await db.rollback()
            raise InvalidTransitionError(
                current=current,
                action=action.value,
                message="Direct appointments are not moderated",
            )

        if not can_transition(booking.status, action):
            current = booking.status.value
            await db.rollback()
            logger.info(f"Illegal transition | Booking: {booking_id} | {current} -/-> {action.value}")
            raise InvalidTransitionError(current=current, action=action.value)

        previous = booking.status
        now = to_utc_naive(self.clock.now(), self.tz)
        booking.status = VALID_TRANSITIONS[previous][action]
        if action == BookingAction.APPROVE:
            booking.approved_at = now
        elif action == BookingAction.COMPLETE:
            booking.completed_at = now
        else:
            booking.cancelled_at = now

        await db.commit()
        logger.info(
            f"Session transitioned | Booking: {booking.id} | "
            f"{previous.value} -> {booking.status.value} | By: {context.requester_id}"
        )

        if action in (BookingAction.APPROVE, BookingAction.CANCEL):
            await self._notify(booking, approved=action == BookingAction.APPROVE)

        if action == BookingAction.CANCEL and not self.settings.retain_rejected_bookings:
            booking.is_deleted = True
            booking.deleted_at = now
            await db.commit()
            logger.info(f"Rejected session removed | Booking: {booking.id}")

        return booking

    async def _notify(self, booking: Booking, approved: bool) -> None:
        """Tell the requester about the outcome. Never raises."""
        recipient = booking.contact_email or booking.requester_id
        subject, body = compose_outcome_message(booking, approved, self.tz)
        try:
            await self.notifier.send(recipient, subject, body)
        except Exception as e:
            logger.error(f"Notification failed | Booking: {booking.id} | Error: {e}")


def compose_outcome_message(booking: Booking, approved: bool, tz: ZoneInfo) -> tuple[str, str]:
    """Subject and body for an approved or rejected session."""
    local_start = as_utc(booking.slot_start).astimezone(tz)
    day = local_start.strftime("%Y-%m-%d")
    at = local_start.strftime("%H:%M")
    name = booking.patient_name or "there"

    if approved:
        subject = "Your session is approved"
        body = (
            f"Hello {name},\n\n"
            f"Your session scheduled for {day} at {at} has been approved.\n"
            f"Mode: {booking.mode.value.replace('_', ' ')}.\n"
        )
    else:
        subject = "Your session is rejected"
        body = (
            f"Hello {name},\n\n"
            f"We regret to inform you that your session scheduled for {day} at {at} "
            f"has been rejected.\n"
        )
    return subject, body
