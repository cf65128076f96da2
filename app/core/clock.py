"""Injectable time source."""

from datetime import date, datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class Clock:
    """Wall clock used by the booking engine."""

    def now(self) -> datetime:
        """Current instant, timezone-aware UTC."""
        return _utcnow()

    def today(self, tz: ZoneInfo) -> date:
        """Current calendar date in ``tz``."""
        return self.now().astimezone(tz).date()


class FixedClock(Clock):
    """Clock frozen at a given instant. Naive values are read as UTC."""

    def __init__(self, at: datetime):
        self.set(at)

    def set(self, at: datetime) -> None:
        if at.tzinfo is None:
            at = at.replace(tzinfo=timezone.utc)
        self._at = at

    def now(self) -> datetime:
        return self._at


_clock: Optional[Clock] = None


def get_clock() -> Clock:
    """Get singleton Clock."""
    global _clock
    if _clock is None:
        _clock = Clock()
    return _clock
