"""
Booking Policy Engine.

Gatekeeper in front of the ledger:
- a requester holding ``booking_cap`` future active bookings is blocked
  until the day after the earliest of them (cooldown)
- direct appointments fail fast on overlap before reaching the ledger
- optionally, only published available slots may be booked
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Optional
from zoneinfo import ZoneInfo

from app.config import Settings, get_settings
from app.core.clock import Clock, get_clock
from app.core.scheduling.errors import ConflictError, PolicyViolation, ValidationError
from app.core.scheduling.ledger import BookingLedger
from app.core.scheduling.schedule import ScheduleStore
from app.core.scheduling.types import as_utc, day_start_utc, to_utc_naive
from app.models.database import BookingVariant

logger = logging.getLogger(__name__)


@dataclass
class QuotaState:
    """Derived booking quota of one requester. Never persisted."""

    active_count: int = 0
    earliest_date: Optional[date] = None

    def is_capped(self, cap: int, today: date) -> bool:
        """At the cap, and the earliest booking is not yet behind us."""
        return (
            self.active_count >= cap
            and self.earliest_date is not None
            and today <= self.earliest_date
        )

    def to_dict(self) -> dict:
        return {
            "active_count": self.active_count,
            "earliest_date": self.earliest_date.isoformat() if self.earliest_date else None,
        }


class BookingPolicy:
    """Cap, cooldown, overlap pre-check and published-slot check."""

    def __init__(
        self,
        ledger: BookingLedger,
        store: ScheduleStore,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
    ):
        self.ledger = ledger
        self.store = store
        self.clock = clock or get_clock()
        self.settings = settings or get_settings()
        self.tz = ZoneInfo(self.settings.schedule_timezone)

    def is_exempt(self, requester_id: Optional[str]) -> bool:
        """Guests and configured requesters are never capped."""
        return requester_id is None or requester_id in self.settings.cap_exempt_requesters

    async def quota_for(self, requester_id: Optional[str]) -> QuotaState:
        """Count active bookings starting today or later."""
        if requester_id is None:
            return QuotaState()

        today = self.clock.today(self.tz)
        bookings = await self.ledger.list_for_requester(
            requester_id, since=day_start_utc(today, self.tz)
        )
        if not bookings:
            return QuotaState()

        earliest = min(b.slot_start for b in bookings)
        return QuotaState(
            active_count=len(bookings),
            earliest_date=as_utc(earliest).astimezone(self.tz).date(),
        )

    async def cooldown_for(self, requester_id: Optional[str]) -> Optional[date]:
        """Date the requester may book again, or None when not capped."""
        if self.is_exempt(requester_id):
            return None

        quota = await self.quota_for(requester_id)
        if not quota.is_capped(self.settings.booking_cap, self.clock.today(self.tz)):
            return None
        return quota.earliest_date + timedelta(days=1)

    async def enforce_cap(self, requester_id: Optional[str]) -> None:
        """Raise PolicyViolation while the requester is in cooldown."""
        retry_after = await self.cooldown_for(requester_id)
        if retry_after is not None:
            logger.info(f"Booking cap reached | Requester: {requester_id} | Retry after: {retry_after}")
            raise PolicyViolation(reason="booking_limit", retry_after=retry_after)

    async def check(
        self,
        provider_id: Any,
        slot_start: datetime,
        slot_end: datetime,
        requester_id: Optional[str] = None,
        variant: BookingVariant = BookingVariant.APPROVAL,
    ) -> None:
        """Validate a reservation request before it reaches the ledger.

        Raises:
            ValidationError: malformed or past range, or not a published slot
            PolicyViolation: requester is at the booking cap
            ConflictError: direct appointment overlaps an active booking
        """
        start = to_utc_naive(slot_start, self.tz)
        end = to_utc_naive(slot_end, self.tz)
        if start >= end:
            raise ValidationError("slot_start must be before slot_end")

        today = self.clock.today(self.tz)
        if start < day_start_utc(today, self.tz):
            raise ValidationError("Cannot book a slot in the past")

        await self.enforce_cap(requester_id)

        provider = await self.store.get_provider(provider_id)

        if variant == BookingVariant.DIRECT and await self.ledger.has_overlap(provider.id, start, end):
            logger.info(f"Direct booking overlaps | Provider: {provider.id} | Start: {start}")
            raise ConflictError(reason="slot_taken")

        if self.settings.enforce_published_slots:
            slot = await self.store.find_published_slot(
                provider.id, as_utc(start), as_utc(end), self.tz
            )
            if slot is None:
                raise ValidationError("Requested time is not an available slot for this provider")
