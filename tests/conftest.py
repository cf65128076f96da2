"""Shared fixtures: temporary SQLite ledger, fixed clock, test settings."""

import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from app.config import Settings
from app.core.clock import FixedClock
from app.core.scheduling.engine import BookingEngine
from app.core.scheduling.schedule import ScheduleStore
from app.infra.database import create_engine_for, create_session_factory, init_db
from app.infra.notifications import NotificationService

# Monday 2026-03-02, 08:00 UTC
NOW = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)

WEEKLY_TEMPLATE = {
    "monday": ["09:00-10:00", "10:00-11:00"],
    "wednesday": [{"startTime": "14:00", "endTime": "14:30"}],
}


def make_settings(**overrides) -> Settings:
    values = {
        "schedule_timezone": "UTC",
        "booking_cap": 2,
        "booking_cap_exempt_requesters": "",
        "enforce_published_slots": True,
        "retain_rejected_bookings": True,
        "notification_webhook_url": None,
        "moderator_role": "admin",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def notifier():
    service = AsyncMock(spec=NotificationService)
    service.send.return_value = True
    return service


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'booking.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def booking_engine(db, clock, settings, notifier) -> BookingEngine:
    return BookingEngine(db, clock=clock, settings=settings, notifier=notifier)


@pytest_asyncio.fixture
async def provider_id(session_factory) -> uuid.UUID:
    """Provider with a Monday/Wednesday weekly template."""
    async with session_factory() as session:
        store = ScheduleStore(session)
        provider = await store.register_provider("Dr. Asha Rao", specialization="Counseling")
        await store.set_template(provider.id, WEEKLY_TEMPLATE)
        return provider.id
