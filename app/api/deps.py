"""
Shared FastAPI dependencies.

Routes obtain a request-scoped ``BookingEngine`` through ``get_engine``;
tests override it (or ``get_db`` / ``get_engine_clock``) via
``app.dependency_overrides``.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import Clock, get_clock
from app.core.scheduling.engine import BookingEngine
from app.infra.database import get_db
from app.infra.notifications import get_notification_service


def get_engine_clock() -> Clock:
    """Time source for the booking engine."""
    return get_clock()


async def get_engine(
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_engine_clock),
) -> BookingEngine:
    """Booking engine bound to this request's session."""
    return BookingEngine(db, clock=clock, notifier=get_notification_service())
