"""
Schedule Store.

Holds each provider's recurring weekly template, per-date overrides and the
provider-level "fully unavailable" flag. Inputs are normalized through
``app.core.scheduling.types`` before anything is written.
"""

import logging
import uuid
from datetime import date, datetime
from typing import Any, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.scheduling.errors import ConflictError, NotFoundError, ValidationError
from app.core.scheduling.types import (
    Slot,
    TimeRange,
    as_utc,
    normalize_ranges,
    normalize_template,
    parse_date,
    ranges_from_storage,
    to_utc_naive,
)
from app.models.database import Provider, ScheduleOverride

logger = logging.getLogger(__name__)


def _coerce_id(provider_id: Any) -> uuid.UUID:
    if isinstance(provider_id, uuid.UUID):
        return provider_id
    try:
        return uuid.UUID(str(provider_id))
    except ValueError:
        raise NotFoundError(f"Provider {provider_id} not found")


class ScheduleStore:
    """Provider schedule persistence."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # === Providers ===

    async def register_provider(
        self,
        name: str,
        specialization: Optional[str] = None,
        email: Optional[str] = None,
        provider_id: Optional[uuid.UUID] = None,
    ) -> Provider:
        """Add a provider to the directory with an empty schedule."""
        if not name or not name.strip():
            raise ValidationError("Provider name is required")

        provider = Provider(
            id=provider_id or uuid.uuid4(),
            name=name.strip(),
            specialization=specialization,
            email=email.lower() if email else None,
            weekly_template={},
            is_unavailable=False,
            ledger_version=0,
        )
        self.db.add(provider)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError(
                reason="provider_exists",
                message=f"Provider {provider_id} already exists",
            )

        logger.info(f"Provider registered | Provider: {provider.id} | Name: {provider.name}")
        return provider

    async def get_provider(self, provider_id: Any) -> Provider:
        """Load a provider or raise NotFoundError."""
        result = await self.db.execute(
            select(Provider).where(
                Provider.id == _coerce_id(provider_id),
                Provider.is_deleted == False,  # noqa: E712
            )
        )
        provider = result.scalar_one_or_none()
        if provider is None:
            raise NotFoundError(f"Provider {provider_id} not found")
        return provider

    # === Weekly template ===

    async def get_template(self, provider_id: Any) -> dict[int, list[TimeRange]]:
        """Weekly template keyed by weekday (0 = Monday)."""
        provider = await self.get_provider(provider_id)
        return {
            int(weekday): ranges_from_storage(raw)
            for weekday, raw in sorted(
                (provider.weekly_template or {}).items(), key=lambda item: int(item[0])
            )
        }

    async def set_template(self, provider_id: Any, template: Any) -> dict[int, list[TimeRange]]:
        """Replace the weekly template wholesale."""
        normalized = normalize_template(template)
        provider = await self.get_provider(provider_id)

        provider.weekly_template = {
            str(weekday): [r.to_dict() for r in ranges]
            for weekday, ranges in sorted(normalized.items())
        }
        await self.db.commit()

        logger.info(f"Weekly template replaced | Provider: {provider.id} | Days: {sorted(normalized)}")
        return normalized

    # === Date overrides ===

    async def get_overrides(self, provider_id: Any) -> dict[date, list[TimeRange]]:
        """All date overrides, ordered by date."""
        provider = await self.get_provider(provider_id)
        return await self.overrides_between(provider.id)

    async def overrides_between(
        self,
        provider_id: uuid.UUID,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> dict[date, list[TimeRange]]:
        """Overrides within ``[start, end]`` (inclusive, both optional)."""
        query = select(ScheduleOverride).where(ScheduleOverride.provider_id == provider_id)
        if start is not None:
            query = query.where(ScheduleOverride.date >= start)
        if end is not None:
            query = query.where(ScheduleOverride.date <= end)

        result = await self.db.execute(query.order_by(ScheduleOverride.date))
        return {row.date: ranges_from_storage(row.slots) for row in result.scalars()}

    async def set_date_slots(self, provider_id: Any, day: Any, slots: Any) -> list[TimeRange]:
        """Replace the override for ``day``. An empty list means no slots."""
        target = parse_date(day)
        ranges = normalize_ranges(slots)
        provider = await self.get_provider(provider_id)

        await self._upsert_override(provider.id, target, ranges)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError(
                reason="concurrent_update",
                message=f"Schedule for {target.isoformat()} changed concurrently, retry",
            )

        logger.info(
            f"Date slots set | Provider: {provider.id} | Date: {target} | Slots: {len(ranges)}"
        )
        return ranges

    async def clear_date_slots(self, provider_id: Any, day: Any) -> bool:
        """Remove the override for ``day``, reverting it to the template.

        Returns:
            True if an override was removed
        """
        target = parse_date(day)
        provider = await self.get_provider(provider_id)

        result = await self.db.execute(
            delete(ScheduleOverride).where(
                ScheduleOverride.provider_id == provider.id,
                ScheduleOverride.date == target,
            )
        )
        await self.db.commit()

        removed = (result.rowcount or 0) > 0
        logger.info(f"Date slots cleared | Provider: {provider.id} | Date: {target} | Removed: {removed}")
        return removed

    async def set_multiple_date_slots(
        self,
        provider_id: Any,
        date_slots: Optional[dict],
        available: bool = True,
    ) -> dict[date, list[TimeRange]]:
        """Bulk override update.

        With ``available=False`` every override is removed and the provider
        is marked fully unavailable; ``date_slots`` is ignored.
        """
        if not available:
            provider = await self.get_provider(provider_id)
            await self.db.execute(
                delete(ScheduleOverride).where(ScheduleOverride.provider_id == provider.id)
            )
            provider.is_unavailable = True
            await self.db.commit()

            logger.info(f"Provider marked unavailable, all overrides cleared | Provider: {provider.id}")
            return {}

        if not isinstance(date_slots, dict):
            raise ValidationError("A mapping of date to slots is required")

        parsed = {parse_date(day): normalize_ranges(slots) for day, slots in date_slots.items()}
        provider = await self.get_provider(provider_id)

        for target, ranges in sorted(parsed.items()):
            await self._upsert_override(provider.id, target, ranges)
        provider.is_unavailable = False

        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError(
                reason="concurrent_update",
                message="Schedule changed concurrently, retry",
            )

        logger.info(f"Bulk date slots set | Provider: {provider.id} | Dates: {len(parsed)}")
        return dict(sorted(parsed.items()))

    async def set_provider_available(self, provider_id: Any, available: bool) -> Provider:
        """Set or clear the provider-level unavailable flag."""
        provider = await self.get_provider(provider_id)
        provider.is_unavailable = not available
        await self.db.commit()

        logger.info(f"Provider availability flag set | Provider: {provider.id} | Available: {available}")
        return provider

    # === Layered view ===

    @staticmethod
    def layered_slots(
        provider: Provider,
        day: date,
        overrides: dict[date, list[TimeRange]],
    ) -> list[Slot]:
        """Base slots for ``day``: override, else template weekday, else none.

        The provider-level unavailable flag wins over both.
        """
        if provider.is_unavailable:
            return []
        if day in overrides:
            ranges = overrides[day]
        else:
            ranges = ranges_from_storage((provider.weekly_template or {}).get(str(day.weekday())))
        return [r.on(day) for r in ranges]

    async def find_published_slot(
        self,
        provider_id: Any,
        slot_start: datetime,
        slot_end: datetime,
        tz: ZoneInfo,
    ) -> Optional[Slot]:
        """The available base slot whose instants equal the requested range."""
        provider = await self.get_provider(provider_id)
        start = to_utc_naive(slot_start, tz)
        end = to_utc_naive(slot_end, tz)
        day = as_utc(start).astimezone(tz).date()

        overrides = await self.overrides_between(provider.id, day, day)
        for slot in self.layered_slots(provider, day, overrides):
            if slot.is_available and slot.bounds(tz) == (start, end):
                return slot
        return None

    async def _upsert_override(
        self,
        provider_id: uuid.UUID,
        target: date,
        ranges: list[TimeRange],
    ) -> None:
        result = await self.db.execute(
            select(ScheduleOverride).where(
                ScheduleOverride.provider_id == provider_id,
                ScheduleOverride.date == target,
            )
        )
        override = result.scalar_one_or_none()
        payload = [r.to_dict() for r in ranges]

        if override is None:
            self.db.add(ScheduleOverride(provider_id=provider_id, date=target, slots=payload))
        else:
            override.slots = payload
