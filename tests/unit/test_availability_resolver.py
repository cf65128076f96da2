"""Tests for the Availability Resolver."""

import uuid
from datetime import date, datetime, time, timezone

import pytest

from app.core.scheduling.availability import AvailabilityResolver
from app.core.scheduling.errors import NotFoundError, ValidationError
from app.core.scheduling.ledger import BookingLedger
from app.core.scheduling.policy import BookingPolicy
from app.core.scheduling.schedule import ScheduleStore
from tests.conftest import make_settings


def at(hour: int, minute: int = 0, day: int = 9) -> datetime:
    return datetime(2026, 3, day, hour, minute, tzinfo=timezone.utc)


def build(db, clock, settings):
    store = ScheduleStore(db)
    ledger = BookingLedger(db, clock=clock, settings=settings)
    policy = BookingPolicy(ledger, store, clock=clock, settings=settings)
    resolver = AvailabilityResolver(store, ledger, policy=policy, clock=clock, settings=settings)
    return store, ledger, resolver


def starts(day) -> list[time]:
    return [slot.start for slot in day.slots]


class TestLayering:
    """Test override > template > nothing."""

    @pytest.mark.asyncio
    async def test_empty_override_hides_template_day(self, db, clock, settings):
        clock.set(datetime(2023, 12, 30, 12, 0, tzinfo=timezone.utc))
        store, _, resolver = build(db, clock, settings)
        provider = await store.register_provider("Dr. X")
        await store.set_template(provider.id, {"monday": ["10:00-10:30"]})
        await store.set_date_slots(provider.id, "2024-01-01", [])

        result = await resolver.resolve(provider.id, date(2024, 1, 1), date(2024, 1, 1))

        assert result.days == []
        assert result.cooldown_until is None

        # The following Monday still comes from the template
        result = await resolver.resolve(provider.id, date(2024, 1, 8), date(2024, 1, 8))
        assert starts(result.days[0]) == [time(10, 0)]

    @pytest.mark.asyncio
    async def test_template_weekdays(self, db, clock, settings, provider_id):
        _, _, resolver = build(db, clock, settings)

        result = await resolver.resolve(provider_id, date(2026, 3, 2), date(2026, 3, 8))

        assert [d.date for d in result.days] == [date(2026, 3, 2), date(2026, 3, 4)]
        assert starts(result.days[0]) == [time(9, 0), time(10, 0)]
        assert starts(result.days[1]) == [time(14, 0)]

    @pytest.mark.asyncio
    async def test_override_replaces_template(self, db, clock, settings, provider_id):
        store, _, resolver = build(db, clock, settings)
        await store.set_date_slots(provider_id, "2026-03-09", ["12:00-13:00"])
        # Non-template weekday gets slots from its override
        await store.set_date_slots(provider_id, "2026-03-10", ["08:00-08:30"])

        result = await resolver.resolve(provider_id, date(2026, 3, 9), date(2026, 3, 10))

        assert [starts(d) for d in result.days] == [[time(12, 0)], [time(8, 0)]]

    @pytest.mark.asyncio
    async def test_slots_flagged_unavailable_dropped(self, db, clock, settings, provider_id):
        store, _, resolver = build(db, clock, settings)
        await store.set_date_slots(
            provider_id,
            "2026-03-09",
            [{"startTime": "09:00", "endTime": "10:00", "isAvailable": False}, "11:00-12:00"],
        )

        result = await resolver.resolve(provider_id, date(2026, 3, 9), date(2026, 3, 9))

        assert starts(result.days[0]) == [time(11, 0)]

    @pytest.mark.asyncio
    async def test_provider_unavailable_flag(self, db, clock, settings, provider_id):
        store, _, resolver = build(db, clock, settings)
        await store.set_provider_available(provider_id, False)

        result = await resolver.resolve(provider_id, date(2026, 3, 2), date(2026, 3, 15))

        assert result.days == []


class TestFiltering:
    """Test past-date and ledger subtraction."""

    @pytest.mark.asyncio
    async def test_past_dates_omitted(self, db, clock, settings, provider_id):
        _, _, resolver = build(db, clock, settings)

        result = await resolver.resolve(provider_id, date(2026, 2, 23), date(2026, 3, 2))

        assert [d.date for d in result.days] == [date(2026, 3, 2)]

    @pytest.mark.asyncio
    async def test_entirely_past_range_is_empty(self, db, clock, settings, provider_id):
        _, _, resolver = build(db, clock, settings)

        result = await resolver.resolve(provider_id, date(2026, 2, 1), date(2026, 2, 28))

        assert result.days == []

    @pytest.mark.asyncio
    async def test_booked_slot_removed(self, db, clock, settings, provider_id):
        _, ledger, resolver = build(db, clock, settings)
        await ledger.reserve(provider_id, at(9), at(10), requester_id="a")

        result = await resolver.resolve(provider_id, date(2026, 3, 9), date(2026, 3, 9))

        assert starts(result.days[0]) == [time(10, 0)]

    @pytest.mark.asyncio
    async def test_partial_overlap_removes_both_slots(self, db, clock, settings, provider_id):
        _, ledger, resolver = build(db, clock, settings)
        await ledger.reserve(provider_id, at(9, 30), at(10, 30), requester_id="a")

        result = await resolver.resolve(provider_id, date(2026, 3, 9), date(2026, 3, 9))

        assert result.days == []

    @pytest.mark.asyncio
    async def test_released_booking_frees_slot(self, db, clock, settings, provider_id):
        _, ledger, resolver = build(db, clock, settings)
        booking = await ledger.reserve(provider_id, at(9), at(10), requester_id="a")
        await ledger.release(booking.id)

        result = await resolver.resolve(provider_id, date(2026, 3, 9), date(2026, 3, 9))

        assert starts(result.days[0]) == [time(9, 0), time(10, 0)]

    @pytest.mark.asyncio
    async def test_schedule_timezone(self, db, clock, provider_id):
        settings = make_settings(schedule_timezone="Asia/Kolkata")
        _, ledger, resolver = build(db, clock, settings)
        # 09:00-10:00 in Kolkata is 03:30-04:30 UTC
        await ledger.reserve(provider_id, at(3, 30), at(4, 30), requester_id="a")

        result = await resolver.resolve(provider_id, date(2026, 3, 9), date(2026, 3, 9))

        assert starts(result.days[0]) == [time(10, 0)]
        assert result.days[0].slots[0].to_dict(resolver.tz)["slot_start"] == "2026-03-09T04:30:00+00:00"

    @pytest.mark.asyncio
    async def test_iter_days_yields_empty_dates(self, db, clock, settings, provider_id):
        _, _, resolver = build(db, clock, settings)

        days = [d async for d in resolver.iter_days(provider_id, date(2026, 3, 2), date(2026, 3, 4))]

        assert [d.date for d in days] == [date(2026, 3, 2), date(2026, 3, 3), date(2026, 3, 4)]
        assert days[1].slots == []


class TestCooldown:
    """Test the capped requester view."""

    @pytest.mark.asyncio
    async def test_capped_requester_gets_cooldown(self, db, clock, settings, provider_id):
        _, ledger, resolver = build(db, clock, settings)
        await ledger.reserve(provider_id, at(9), at(10), requester_id="U")
        await ledger.reserve(provider_id, at(14, day=11), at(14, 30, day=11), requester_id="U")

        result = await resolver.resolve(provider_id, date(2026, 3, 2), date(2026, 3, 15), requester_id="U")

        assert result.days == []
        assert result.cooldown_until == date(2026, 3, 10)
        assert result.to_dict(resolver.tz) == {"data": [], "cooldown_until": "2026-03-10"}

    @pytest.mark.asyncio
    async def test_other_requesters_see_slots(self, db, clock, settings, provider_id):
        _, ledger, resolver = build(db, clock, settings)
        await ledger.reserve(provider_id, at(9), at(10), requester_id="U")
        await ledger.reserve(provider_id, at(14, day=11), at(14, 30, day=11), requester_id="U")

        result = await resolver.resolve(provider_id, date(2026, 3, 9), date(2026, 3, 9), requester_id="V")

        assert starts(result.days[0]) == [time(10, 0)]

    @pytest.mark.asyncio
    async def test_capped_requester_sees_nothing_today(self, db, clock, settings, provider_id):
        _, ledger, resolver = build(db, clock, settings)
        await ledger.reserve(provider_id, at(9), at(10), requester_id="U")
        await ledger.reserve(provider_id, at(14, day=11), at(14, 30, day=11), requester_id="U")

        mine = await resolver.resolve_for_today(provider_id, requester_id="U")
        theirs = await resolver.resolve_for_today(provider_id, requester_id="V")

        assert mine.date == date(2026, 3, 2)
        assert mine.slots == []
        assert starts(theirs) == [time(9, 0), time(10, 0)]

    @pytest.mark.asyncio
    async def test_capped_requester_unknown_provider_today(self, db, clock, settings, provider_id):
        _, ledger, resolver = build(db, clock, settings)
        await ledger.reserve(provider_id, at(9), at(10), requester_id="U")
        await ledger.reserve(provider_id, at(10), at(11), requester_id="U")

        with pytest.raises(NotFoundError):
            await resolver.resolve_for_today(uuid.uuid4(), requester_id="U")


class TestValidation:
    """Test range validation and lookups."""

    @pytest.mark.asyncio
    async def test_end_before_start(self, db, clock, settings, provider_id):
        _, _, resolver = build(db, clock, settings)

        with pytest.raises(ValidationError):
            await resolver.resolve(provider_id, date(2026, 3, 9), date(2026, 3, 8))

    @pytest.mark.asyncio
    async def test_span_limit(self, db, clock, provider_id):
        _, _, resolver = build(db, clock, make_settings(availability_max_days=7))

        with pytest.raises(ValidationError):
            await resolver.resolve(provider_id, date(2026, 3, 2), date(2026, 3, 9))

    @pytest.mark.asyncio
    async def test_unknown_provider(self, db, clock, settings):
        _, _, resolver = build(db, clock, settings)

        with pytest.raises(NotFoundError):
            await resolver.resolve(uuid.uuid4(), date(2026, 3, 2), date(2026, 3, 3))

    @pytest.mark.asyncio
    async def test_resolve_for_today(self, db, clock, settings, provider_id):
        _, ledger, resolver = build(db, clock, settings)
        await ledger.reserve(provider_id, at(9, day=2), at(10, day=2), requester_id="a")

        today = await resolver.resolve_for_today(provider_id)

        assert today.date == date(2026, 3, 2)
        assert starts(today) == [time(10, 0)]

    @pytest.mark.asyncio
    async def test_find_published_slot(self, db, clock, settings, provider_id):
        _, _, resolver = build(db, clock, settings)

        slot = await resolver.find_published_slot(provider_id, at(14, day=11), at(14, 30, day=11))
        missing = await resolver.find_published_slot(provider_id, at(14, day=11), at(15, day=11))

        assert slot.start == time(14, 0)
        assert missing is None
