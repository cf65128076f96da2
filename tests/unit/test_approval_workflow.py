"""Tests for the Approval Workflow."""

import uuid
from datetime import datetime, timezone

import pytest

from app.core.scheduling.context import RequestContext
from app.core.scheduling.errors import AuthorizationError, InvalidTransitionError, NotFoundError
from app.core.scheduling.ledger import BookingLedger, ContactInfo
from app.core.scheduling.workflow import (
    ApprovalWorkflow,
    BookingAction,
    VALID_TRANSITIONS,
    can_transition,
    compose_outcome_message,
    get_valid_actions,
    is_terminal_status,
)
from app.models.database import BookingStatus, BookingVariant
from tests.conftest import make_settings

MODERATOR = RequestContext(requester_id="counselor-1", role="admin", can_moderate=True)
STUDENT = RequestContext(requester_id="student-1", role="student")


def at(hour: int, minute: int = 0) -> datetime:
    return datetime(2026, 3, 9, hour, minute, tzinfo=timezone.utc)


@pytest.fixture
def ledger(db, clock, settings):
    return BookingLedger(db, clock=clock, settings=settings)


@pytest.fixture
def workflow(ledger, notifier, clock, settings):
    return ApprovalWorkflow(ledger, notifier=notifier, clock=clock, settings=settings)


async def reserve(ledger, provider_id, variant=BookingVariant.APPROVAL):
    booking = await ledger.reserve(
        provider_id,
        at(9),
        at(10),
        requester_id="student-1",
        variant=variant,
        contact=ContactInfo(patient_name="Ravi", email="ravi@example.com"),
    )
    return booking.id


class TestTransitionTable:
    """Test the transition table helpers."""

    def test_booked_actions(self):
        assert get_valid_actions(BookingStatus.BOOKED) == {BookingAction.APPROVE, BookingAction.CANCEL}

    def test_approved_actions(self):
        assert get_valid_actions(BookingStatus.APPROVED) == {BookingAction.COMPLETE, BookingAction.CANCEL}

    @pytest.mark.parametrize("status", [BookingStatus.COMPLETED, BookingStatus.CANCELLED])
    def test_terminal_statuses(self, status):
        assert is_terminal_status(status)
        assert get_valid_actions(status) == set()

    def test_cannot_complete_unapproved(self):
        assert not can_transition(BookingStatus.BOOKED, BookingAction.COMPLETE)

    def test_every_status_listed(self):
        assert set(VALID_TRANSITIONS) == set(BookingStatus)


class TestTransitions:
    """Test moderator actions against the ledger."""

    @pytest.mark.asyncio
    async def test_approve_then_complete(self, workflow, ledger, provider_id):
        booking_id = await reserve(ledger, provider_id)

        approved = await workflow.transition(MODERATOR, booking_id, "approve")
        assert approved.status == BookingStatus.APPROVED
        assert approved.approved_at == datetime(2026, 3, 2, 8, 0)

        completed = await workflow.transition(MODERATOR, booking_id, BookingAction.COMPLETE)
        assert completed.status == BookingStatus.COMPLETED
        assert completed.completed_at is not None

    @pytest.mark.asyncio
    async def test_cancelled_cannot_be_approved(self, workflow, ledger, provider_id):
        booking_id = await reserve(ledger, provider_id)
        await workflow.transition(MODERATOR, booking_id, "cancel")

        with pytest.raises(InvalidTransitionError) as exc_info:
            await workflow.transition(MODERATOR, booking_id, "approve")

        assert exc_info.value.current == "cancelled"
        assert exc_info.value.action == "approve"
        assert (await ledger.get(booking_id)).status == BookingStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_complete_requires_approval(self, workflow, ledger, provider_id):
        booking_id = await reserve(ledger, provider_id)

        with pytest.raises(InvalidTransitionError):
            await workflow.transition(MODERATOR, booking_id, "complete")

        assert (await ledger.get(booking_id)).status == BookingStatus.BOOKED

    @pytest.mark.asyncio
    async def test_unknown_action(self, workflow, ledger, provider_id):
        booking_id = await reserve(ledger, provider_id)

        with pytest.raises(InvalidTransitionError):
            await workflow.transition(MODERATOR, booking_id, "reschedule")

    @pytest.mark.asyncio
    async def test_moderator_required(self, workflow, ledger, provider_id):
        booking_id = await reserve(ledger, provider_id)

        with pytest.raises(AuthorizationError):
            await workflow.transition(STUDENT, booking_id, "approve")

    @pytest.mark.asyncio
    async def test_cannot_moderate_own_booking(self, workflow, ledger, provider_id):
        booking_id = await reserve(ledger, provider_id)
        self_moderator = RequestContext(requester_id="student-1", role="admin", can_moderate=True)

        with pytest.raises(AuthorizationError):
            await workflow.transition(self_moderator, booking_id, "approve")

        assert (await ledger.get(booking_id)).status == BookingStatus.BOOKED

    @pytest.mark.asyncio
    async def test_direct_appointments_not_moderated(self, workflow, ledger, provider_id):
        booking_id = await reserve(ledger, provider_id, variant=BookingVariant.DIRECT)

        with pytest.raises(InvalidTransitionError):
            await workflow.transition(MODERATOR, booking_id, "approve")

    @pytest.mark.asyncio
    async def test_unknown_booking(self, workflow):
        with pytest.raises(NotFoundError):
            await workflow.transition(MODERATOR, uuid.uuid4(), "approve")

    @pytest.mark.asyncio
    async def test_cancel_frees_slot(self, workflow, ledger, provider_id):
        booking_id = await reserve(ledger, provider_id)
        await workflow.transition(MODERATOR, booking_id, "cancel")

        assert not await ledger.has_overlap(provider_id, datetime(2026, 3, 9, 9), datetime(2026, 3, 9, 10))


class TestNotifications:
    """Test outcome notifications."""

    @pytest.mark.asyncio
    async def test_approve_notifies_requester(self, workflow, ledger, provider_id, notifier):
        booking_id = await reserve(ledger, provider_id)

        await workflow.transition(MODERATOR, booking_id, "approve")

        notifier.send.assert_awaited_once()
        recipient, subject, body = notifier.send.await_args.args
        assert recipient == "ravi@example.com"
        assert subject == "Your session is approved"
        assert "2026-03-09 at 09:00" in body

    @pytest.mark.asyncio
    async def test_cancel_sends_rejection(self, workflow, ledger, provider_id, notifier):
        booking_id = await reserve(ledger, provider_id)

        await workflow.transition(MODERATOR, booking_id, "cancel")

        assert notifier.send.await_args.args[1] == "Your session is rejected"

    @pytest.mark.asyncio
    async def test_complete_does_not_notify(self, workflow, ledger, provider_id, notifier):
        booking_id = await reserve(ledger, provider_id)
        await workflow.transition(MODERATOR, booking_id, "approve")
        notifier.send.reset_mock()

        await workflow.transition(MODERATOR, booking_id, "complete")

        notifier.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_notification_failure_does_not_fail_transition(self, workflow, ledger, provider_id, notifier):
        notifier.send.side_effect = RuntimeError("dispatcher down")
        booking_id = await reserve(ledger, provider_id)

        booking = await workflow.transition(MODERATOR, booking_id, "approve")

        assert booking.status == BookingStatus.APPROVED
        assert (await ledger.get(booking_id)).status == BookingStatus.APPROVED

    @pytest.mark.asyncio
    async def test_rejected_removed_when_not_retained(self, db, clock, notifier, provider_id):
        settings = make_settings(retain_rejected_bookings=False)
        ledger = BookingLedger(db, clock=clock, settings=settings)
        workflow = ApprovalWorkflow(ledger, notifier=notifier, clock=clock, settings=settings)
        booking_id = await reserve(ledger, provider_id)

        booking = await workflow.transition(MODERATOR, booking_id, "cancel")

        assert booking.status == BookingStatus.CANCELLED
        assert booking.is_deleted is True
        notifier.send.assert_awaited_once()
        with pytest.raises(NotFoundError):
            await ledger.get(booking_id)

    def test_compose_message_uses_schedule_timezone(self):
        from zoneinfo import ZoneInfo

        from app.models.database import Booking, BookingMode

        booking = Booking(
            slot_start=datetime(2026, 3, 9, 3, 30),
            slot_end=datetime(2026, 3, 9, 4, 30),
            mode=BookingMode.REMOTE,
            patient_name=None,
        )

        subject, body = compose_outcome_message(booking, True, ZoneInfo("Asia/Kolkata"))

        assert subject == "Your session is approved"
        assert "2026-03-09 at 09:00" in body
        assert body.startswith("Hello there,")
