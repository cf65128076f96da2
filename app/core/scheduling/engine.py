"""
Booking Engine - Main Orchestrator.

Transport-agnostic facade over the schedule store, availability resolver,
booking ledger, policy engine and approval workflow. One engine is bound
to one database session (one request).
"""

import logging
from datetime import date, datetime, timedelta
from functools import partial
from typing import Any, Optional
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, get_settings
from app.core.clock import Clock, get_clock
from app.core.scheduling.availability import AvailabilityResolver
from app.core.scheduling.context import RequestContext
from app.core.scheduling.errors import AuthorizationError
from app.core.scheduling.ledger import BookingLedger, ContactInfo
from app.core.scheduling.policy import BookingPolicy
from app.core.scheduling.schedule import ScheduleStore
from app.core.scheduling.types import (
    AvailabilityResult,
    DayAvailability,
    TimeRange,
    parse_date,
)
from app.core.scheduling.workflow import ApprovalWorkflow
from app.infra.notifications import NotificationService
from app.models.database import Booking, BookingMode, BookingStatus, BookingVariant, Provider

logger = logging.getLogger(__name__)


class BookingEngine:
    """
    Main booking engine.

    Wires:
    - ScheduleStore: templates, overrides, unavailable flag
    - AvailabilityResolver: free slots per date
    - BookingLedger: atomic reserve / idempotent release
    - BookingPolicy: cap, cooldown, pre-checks
    - ApprovalWorkflow: moderator transitions + notifications
    """

    def __init__(
        self,
        db: AsyncSession,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
        notifier: Optional[NotificationService] = None,
    ):
        """Initialize engine.

        Args:
            db: Database session for this unit of work
            clock: Time source (defaults to wall clock)
            settings: Settings (defaults to cached settings)
            notifier: Notification collaborator (defaults to singleton)
        """
        self.db = db
        self.clock = clock or get_clock()
        self.settings = settings or get_settings()
        self.tz = ZoneInfo(self.settings.schedule_timezone)

        self.store = ScheduleStore(db)
        self.ledger = BookingLedger(db, clock=self.clock, settings=self.settings)
        self.policy = BookingPolicy(self.ledger, self.store, clock=self.clock, settings=self.settings)
        self.resolver = AvailabilityResolver(
            self.store,
            self.ledger,
            policy=self.policy,
            clock=self.clock,
            settings=self.settings,
        )
        self.workflow = ApprovalWorkflow(
            self.ledger,
            notifier=notifier,
            clock=self.clock,
            settings=self.settings,
        )

    # === Providers ===

    async def register_provider(
        self,
        name: str,
        specialization: Optional[str] = None,
        email: Optional[str] = None,
    ) -> Provider:
        return await self.store.register_provider(name, specialization=specialization, email=email)

    async def get_provider(self, provider_id: Any) -> Provider:
        return await self.store.get_provider(provider_id)

    # === Availability ===

    async def get_availability(
        self,
        provider_id: Any,
        start_date: Optional[Any] = None,
        end_date: Optional[Any] = None,
        requester_id: Optional[str] = None,
        days: Optional[int] = None,
    ) -> AvailabilityResult:
        """Bookable dates for a provider.

        Without explicit bounds the window starts today and spans
        ``days`` (default ``settings.availability_default_days``).
        """
        start = parse_date(start_date) if start_date is not None else self.clock.today(self.tz)
        if end_date is not None:
            end = parse_date(end_date)
        else:
            span = days if days is not None else self.settings.availability_default_days
            end = start + timedelta(days=max(span, 1) - 1)

        return await self.resolver.resolve(provider_id, start, end, requester_id=requester_id)

    async def get_today(self, provider_id: Any, requester_id: Optional[str] = None) -> DayAvailability:
        return await self.resolver.resolve_for_today(provider_id, requester_id=requester_id)

    # === Reservations ===

    async def reserve(
        self,
        context: RequestContext,
        provider_id: Any,
        slot_start: datetime,
        slot_end: datetime,
        mode: BookingMode = BookingMode.IN_PERSON,
        notes: str = "",
        variant: BookingVariant = BookingVariant.APPROVAL,
        contact: Optional[ContactInfo] = None,
    ) -> Booking:
        """Validate against policy, then reserve atomically.

        The cap is checked again inside the reserve transaction so that
        concurrent requests from one requester cannot both pass it.

        Raises:
            ValidationError, PolicyViolation, ConflictError, NotFoundError
        """
        await self.policy.check(
            provider_id,
            slot_start,
            slot_end,
            requester_id=context.requester_id,
            variant=variant,
        )
        guard = None
        if not self.policy.is_exempt(context.requester_id):
            guard = partial(self.policy.enforce_cap, context.requester_id)

        return await self.ledger.reserve(
            provider_id,
            slot_start,
            slot_end,
            requester_id=context.requester_id,
            mode=mode,
            notes=notes,
            variant=variant,
            contact=contact,
            guard=guard,
        )

    async def release(self, booking_id: Any, context: Optional[RequestContext] = None) -> Booking:
        """Release a booking. Non-moderators may only release their own."""
        owner = None
        if context is not None and not context.can_moderate:
            owner = context.requester_id
        return await self.ledger.release(booking_id, requester_id=owner)

    async def get_booking(self, booking_id: Any, context: Optional[RequestContext] = None) -> Booking:
        """Load a booking. Non-moderators may only see their own."""
        booking = await self.ledger.get(booking_id)
        if context is not None and not context.can_moderate and booking.requester_id != context.requester_id:
            raise AuthorizationError("Cannot view another requester's booking")
        return booking

    async def list_bookings(
        self,
        status: Optional[BookingStatus] = None,
        provider_id: Optional[Any] = None,
        requester_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[Booking]:
        return await self.ledger.list_bookings(
            status=status,
            provider_id=provider_id,
            requester_id=requester_id,
            limit=limit,
        )

    # === Schedule ===

    async def set_schedule(self, provider_id: Any, day: Any, slots: Any) -> list[TimeRange]:
        return await self.store.set_date_slots(provider_id, day, slots)

    async def clear_schedule(self, provider_id: Any, day: Any) -> bool:
        return await self.store.clear_date_slots(provider_id, day)

    async def set_multiple(
        self,
        provider_id: Any,
        date_slots: Optional[dict],
        available: bool = True,
    ) -> dict[date, list[TimeRange]]:
        return await self.store.set_multiple_date_slots(provider_id, date_slots, available=available)

    async def set_template(self, provider_id: Any, template: Any) -> dict[int, list[TimeRange]]:
        return await self.store.set_template(provider_id, template)

    async def get_template(self, provider_id: Any) -> dict[int, list[TimeRange]]:
        return await self.store.get_template(provider_id)

    async def get_overrides(self, provider_id: Any) -> dict[date, list[TimeRange]]:
        return await self.store.get_overrides(provider_id)

    async def set_provider_available(self, provider_id: Any, available: bool) -> Provider:
        return await self.store.set_provider_available(provider_id, available)

    # === Workflow ===

    async def transition(self, context: RequestContext, booking_id: Any, action: str) -> Booking:
        return await self.workflow.transition(context, booking_id, action)
