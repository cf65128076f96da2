"""
Schedule value types and boundary normalization.

Schedule payloads arrive in several shapes (dicts with differing key
names, "HH:MM-HH:MM" strings, already-built objects). Everything is
normalized here into ``TimeRange`` / ``Slot``; the rest of the engine only
sees validated structures.
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from typing import Any, Iterable, Optional
from zoneinfo import ZoneInfo

from app.core.scheduling.errors import ValidationError

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")

_START_KEYS = ("startTime", "start_time", "start", "slotStart", "time")
_END_KEYS = ("endTime", "end_time", "end", "slotEnd")
_AVAILABLE_KEYS = ("isAvailable", "is_available", "available")

WEEKDAY_NAMES = (
    "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
)


def parse_date(value: Any) -> date:
    """Parse an ISO calendar date (YYYY-MM-DD)."""
    if isinstance(value, datetime):
        raise ValidationError(f"Expected a calendar date, got a timestamp: {value}")
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not _DATE_RE.match(value.strip()):
        raise ValidationError(f"Invalid date '{value}', expected YYYY-MM-DD")
    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        raise ValidationError(f"Invalid date '{value}', expected YYYY-MM-DD")


def parse_time(value: Any) -> time:
    """Parse a wall-clock time (HH:MM)."""
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    if not isinstance(value, str):
        raise ValidationError(f"Invalid time '{value}', expected HH:MM")
    match = _TIME_RE.match(value.strip())
    if match is None:
        raise ValidationError(f"Invalid time '{value}', expected HH:MM")
    return time(int(match.group(1)), int(match.group(2)))


def parse_weekday(value: Any) -> int:
    """Parse a weekday as 0 (Monday) .. 6 (Sunday) or a weekday name."""
    if isinstance(value, bool):
        raise ValidationError(f"Invalid weekday '{value}'")
    if isinstance(value, int):
        if 0 <= value <= 6:
            return value
        raise ValidationError(f"Invalid weekday '{value}', expected 0-6")
    if isinstance(value, str):
        key = value.strip().lower()
        if key.isdigit():
            return parse_weekday(int(key))
        for index, name in enumerate(WEEKDAY_NAMES):
            if key == name or key == name[:3]:
                return index
    raise ValidationError(f"Invalid weekday '{value}'")


def _first(data: dict, keys: Iterable[str]) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


def to_utc_naive(value: datetime, tz: ZoneInfo) -> datetime:
    """Normalize an instant for storage. Naive input is read in ``tz``."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=tz)
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to a stored (naive UTC) instant."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def day_start_utc(day: date, tz: ZoneInfo) -> datetime:
    """Start of ``day`` in ``tz`` as naive UTC."""
    return to_utc_naive(datetime.combine(day, time.min, tzinfo=tz), tz)


@dataclass(frozen=True)
class TimeRange:
    """Wall-clock range within one date, with a default availability flag."""

    start: time
    end: time
    is_available: bool = True

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise ValidationError(
                f"Slot start {self.start:%H:%M} must be before end {self.end:%H:%M}"
            )

    @classmethod
    def from_payload(cls, value: Any) -> "TimeRange":
        """Build from any accepted payload shape."""
        if isinstance(value, TimeRange):
            return value

        if isinstance(value, str):
            parts = value.split("-")
            if len(parts) != 2:
                raise ValidationError(f"Invalid slot '{value}', expected HH:MM-HH:MM")
            return cls(start=parse_time(parts[0]), end=parse_time(parts[1]))

        if isinstance(value, dict):
            start = _first(value, _START_KEYS)
            end = _first(value, _END_KEYS)
            if start is None or end is None:
                raise ValidationError(f"Slot requires a start and an end time: {value}")
            available = _first(value, _AVAILABLE_KEYS)
            return cls(
                start=parse_time(start),
                end=parse_time(end),
                is_available=True if available is None else bool(available),
            )

        raise ValidationError(f"Unsupported slot payload: {value!r}")

    def to_dict(self) -> dict:
        """Convert to dictionary (storage and API shape)."""
        return {
            "start": self.start.strftime("%H:%M"),
            "end": self.end.strftime("%H:%M"),
            "is_available": self.is_available,
        }

    def on(self, day: date) -> "Slot":
        """Concrete slot on ``day``."""
        return Slot(date=day, start=self.start, end=self.end, is_available=self.is_available)


def normalize_ranges(values: Optional[Iterable[Any]]) -> list[TimeRange]:
    """Normalize a slot list: parse, order by start, reject overlaps."""
    if values is None:
        return []
    if isinstance(values, (str, dict)):
        raise ValidationError("Slots must be a list")

    ranges = sorted((TimeRange.from_payload(v) for v in values), key=lambda r: r.start)
    for previous, current in zip(ranges, ranges[1:]):
        if current.start < previous.end:
            raise ValidationError(
                f"Slots {previous.start:%H:%M}-{previous.end:%H:%M} and "
                f"{current.start:%H:%M}-{current.end:%H:%M} overlap"
            )
    return ranges


def normalize_template(payload: Any) -> dict[int, list[TimeRange]]:
    """Normalize a weekly template.

    Accepts ``{"monday": [...], "1": [...]}`` or
    ``[{"day": "Monday", "slots": [...]}, ...]``.
    """
    if payload is None:
        return {}

    if isinstance(payload, dict):
        items = list(payload.items())
    elif isinstance(payload, list):
        items = []
        for entry in payload:
            if not isinstance(entry, dict):
                raise ValidationError(f"Invalid template entry: {entry!r}")
            day = entry.get("day", entry.get("weekday"))
            if day is None:
                raise ValidationError(f"Template entry requires a day: {entry!r}")
            items.append((day, entry.get("slots", [])))
    else:
        raise ValidationError("Weekly template must be an object or a list")

    template: dict[int, list[TimeRange]] = {}
    for day, slots in items:
        weekday = parse_weekday(day)
        if weekday in template:
            raise ValidationError(f"Weekday {WEEKDAY_NAMES[weekday]} listed twice")
        template[weekday] = normalize_ranges(slots)
    return template


def ranges_from_storage(raw: Optional[list]) -> list[TimeRange]:
    """Rebuild ranges from their JSON column form."""
    return [TimeRange.from_payload(item) for item in raw or []]


@dataclass(frozen=True)
class Slot:
    """A concrete slot on a calendar date."""

    date: date
    start: time
    end: time
    is_available: bool = True

    def bounds(self, tz: ZoneInfo) -> tuple[datetime, datetime]:
        """Absolute ``[start, end)`` as naive UTC."""
        return (
            to_utc_naive(datetime.combine(self.date, self.start, tzinfo=tz), tz),
            to_utc_naive(datetime.combine(self.date, self.end, tzinfo=tz), tz),
        )

    def overlaps(self, start: datetime, end: datetime, tz: ZoneInfo) -> bool:
        """Any non-empty intersection with ``[start, end)`` (naive UTC)."""
        slot_start, slot_end = self.bounds(tz)
        return slot_start < end and start < slot_end

    def to_dict(self, tz: ZoneInfo) -> dict:
        """Convert to dictionary for API response."""
        slot_start, slot_end = self.bounds(tz)
        return {
            "date": self.date.isoformat(),
            "start_time": self.start.strftime("%H:%M"),
            "end_time": self.end.strftime("%H:%M"),
            "slot_start": as_utc(slot_start).isoformat(),
            "slot_end": as_utc(slot_end).isoformat(),
            "is_available": self.is_available,
        }


@dataclass
class DayAvailability:
    """Free slots of one provider on one date."""

    date: date
    slots: list[Slot] = field(default_factory=list)

    def to_dict(self, tz: ZoneInfo) -> dict:
        return {
            "date": self.date.isoformat(),
            "slots": [slot.to_dict(tz) for slot in self.slots],
        }


@dataclass
class AvailabilityResult:
    """Bookable dates for a provider, or the requester's cooldown."""

    days: list[DayAvailability] = field(default_factory=list)
    cooldown_until: Optional[date] = None

    def to_dict(self, tz: ZoneInfo) -> dict:
        return {
            "data": [day.to_dict(tz) for day in self.days],
            "cooldown_until": self.cooldown_until.isoformat() if self.cooldown_until else None,
        }
