"""
Availability Resolver.

Computes a provider's bookable slots per date by layering:

    override for the date  >  weekly template weekday  >  nothing

then dropping past dates, slots overlapping an active booking, and slots
flagged unavailable. Dates left without slots are omitted. The ledger is
read fresh on every call.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Any, AsyncIterator, Optional
from zoneinfo import ZoneInfo

from app.config import Settings, get_settings
from app.core.clock import Clock, get_clock
from app.core.scheduling.errors import ValidationError
from app.core.scheduling.ledger import BookingLedger
from app.core.scheduling.policy import BookingPolicy
from app.core.scheduling.schedule import ScheduleStore
from app.core.scheduling.types import AvailabilityResult, DayAvailability, Slot

logger = logging.getLogger(__name__)


class AvailabilityResolver:
    """Lazy per-date view of a provider's free slots."""

    def __init__(
        self,
        store: ScheduleStore,
        ledger: BookingLedger,
        policy: Optional[BookingPolicy] = None,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.ledger = ledger
        self.policy = policy
        self.clock = clock or get_clock()
        self.settings = settings or get_settings()
        self.tz = ZoneInfo(self.settings.schedule_timezone)

    def _validate_range(self, start_date: date, end_date: date) -> None:
        if end_date < start_date:
            raise ValidationError("end_date must not be before start_date")
        span = (end_date - start_date).days + 1
        if span > self.settings.availability_max_days:
            raise ValidationError(
                f"Requested range spans {span} days, maximum is {self.settings.availability_max_days}"
            )

    async def iter_days(
        self,
        provider_id: Any,
        start_date: date,
        end_date: date,
    ) -> AsyncIterator[DayAvailability]:
        """Yield free slots for every non-past date in ``[start_date, end_date]``.

        Empty dates are yielded too; callers decide whether to omit them.
        """
        self._validate_range(start_date, end_date)
        provider = await self.store.get_provider(provider_id)

        first = max(start_date, self.clock.today(self.tz))
        if first > end_date:
            return

        overrides = await self.store.overrides_between(provider.id, first, end_date)
        bookings = await self.ledger.list_active(provider.id, first, until=end_date)
        taken = [(b.slot_start, b.slot_end) for b in bookings]

        current = first
        while current <= end_date:
            base = self.store.layered_slots(provider, current, overrides)
            yield DayAvailability(date=current, slots=self._free(base, taken))
            current += timedelta(days=1)

    def _free(self, base: list[Slot], taken: list[tuple[datetime, datetime]]) -> list[Slot]:
        return [
            slot
            for slot in base
            if slot.is_available
            and not any(slot.overlaps(start, end, self.tz) for start, end in taken)
        ]

    async def _cooldown(self, provider_id: Any, requester_id: Optional[str]) -> Optional[date]:
        if requester_id is None or self.policy is None:
            return None
        cooldown = await self.policy.cooldown_for(requester_id)
        if cooldown is not None:
            await self.store.get_provider(provider_id)
            logger.info(
                f"Availability hidden, requester capped | Requester: {requester_id} | "
                f"Until: {cooldown}"
            )
        return cooldown

    async def resolve(
        self,
        provider_id: Any,
        start_date: date,
        end_date: date,
        requester_id: Optional[str] = None,
    ) -> AvailabilityResult:
        """Bookable dates in the range, or the requester's cooldown.

        A capped requester gets no dates and ``cooldown_until`` set.
        """
        self._validate_range(start_date, end_date)

        cooldown = await self._cooldown(provider_id, requester_id)
        if cooldown is not None:
            return AvailabilityResult(days=[], cooldown_until=cooldown)

        days = [
            day
            async for day in self.iter_days(provider_id, start_date, end_date)
            if day.slots
        ]
        logger.debug(f"Availability resolved | Provider: {provider_id} | Dates: {len(days)}")
        return AvailabilityResult(days=days)

    async def resolve_for_today(
        self, provider_id: Any, requester_id: Optional[str] = None
    ) -> DayAvailability:
        """Free slots for today, possibly empty. Empty for a capped requester."""
        today = self.clock.today(self.tz)
        if await self._cooldown(provider_id, requester_id) is not None:
            return DayAvailability(date=today)
        async for day in self.iter_days(provider_id, today, today):
            return day
        return DayAvailability(date=today)

    async def find_published_slot(
        self,
        provider_id: Any,
        slot_start: datetime,
        slot_end: datetime,
    ) -> Optional[Slot]:
        """Base slot (ignoring the ledger) matching the requested instants."""
        return await self.store.find_published_slot(provider_id, slot_start, slot_end, self.tz)
