"""
Booking Ledger.

The authoritative record of reservations. Slot availability is derived
from this ledger by subtraction; nothing else records that a slot is taken.

Reservation is a single conditional write: within one transaction the
requester is locked (advisory lock on PostgreSQL), the provider row is
write-locked (``ledger_version`` bump), the caller's quota guard and the
overlap check run against committed rows, and the booking is inserted. The
partial unique index on active ``(provider_id, slot_start)`` backs the
identical-slot case at the storage level.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Awaitable, Callable, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, get_settings
from app.core.clock import Clock, get_clock
from app.core.scheduling.errors import (
    AuthorizationError,
    BookingError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from app.core.scheduling.types import day_start_utc, to_utc_naive
from app.models.database import (
    ACTIVE_STATUSES,
    Booking,
    BookingMode,
    BookingStatus,
    BookingVariant,
    Provider,
)

logger = logging.getLogger(__name__)


@dataclass
class ContactInfo:
    """Who to reach about a booking."""

    patient_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


def _coerce_uuid(value: Any, kind: str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise NotFoundError(f"{kind} {value} not found")


class BookingLedger:
    """Reservation record with atomic reserve and idempotent release."""

    def __init__(
        self,
        db: AsyncSession,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.clock = clock or get_clock()
        self.settings = settings or get_settings()
        self.tz = ZoneInfo(self.settings.schedule_timezone)

    def _now(self) -> datetime:
        return to_utc_naive(self.clock.now(), self.tz)

    # === Writes ===

    async def reserve(
        self,
        provider_id: Any,
        slot_start: datetime,
        slot_end: datetime,
        requester_id: Optional[str] = None,
        mode: BookingMode = BookingMode.IN_PERSON,
        notes: str = "",
        variant: BookingVariant = BookingVariant.APPROVAL,
        contact: Optional[ContactInfo] = None,
        guard: Optional[Callable[[], Awaitable[None]]] = None,
    ) -> Booking:
        """Atomically reserve ``[slot_start, slot_end)`` for a provider.

        ``guard`` runs inside the transaction once the requester and the
        provider are locked; a BookingError it raises aborts the reservation.

        Raises:
            ValidationError: start is not before end
            NotFoundError: unknown provider
            ConflictError: an active booking overlaps the range
            PolicyViolation: raised by ``guard``
        """
        start = to_utc_naive(slot_start, self.tz)
        end = to_utc_naive(slot_end, self.tz)
        if start >= end:
            raise ValidationError("slot_start must be before slot_end")

        pid = _coerce_uuid(provider_id, "Provider")
        contact = contact or ContactInfo()

        try:
            if guard is not None and requester_id is not None:
                await self._lock_requester(requester_id)

            locked = await self.db.execute(
                update(Provider)
                .where(Provider.id == pid, Provider.is_deleted == False)  # noqa: E712
                .values(ledger_version=Provider.ledger_version + 1)
                .execution_options(synchronize_session=False)
            )
            if locked.rowcount == 0:
                raise NotFoundError(f"Provider {provider_id} not found")

            if guard is not None:
                await guard()

            if await self.has_overlap(pid, start, end):
                raise ConflictError(reason="slot_taken")

            booking = Booking(
                provider_id=pid,
                requester_id=requester_id,
                slot_start=start,
                slot_end=end,
                mode=mode,
                variant=variant,
                status=BookingStatus.BOOKED,
                notes=(notes or "").strip(),
                patient_name=contact.patient_name,
                contact_email=contact.email,
                contact_phone=contact.phone,
                is_deleted=False,
            )
            self.db.add(booking)
            await self.db.flush()
            await self.db.commit()

        except IntegrityError:
            await self.db.rollback()
            logger.info(f"Reservation lost race on unique slot | Provider: {pid} | Start: {start}")
            raise ConflictError(reason="slot_taken") from None
        except BookingError as e:
            await self.db.rollback()
            logger.info(f"Reservation rejected | Provider: {pid} | Start: {start} | Reason: {e.code}")
            raise
        except Exception:
            await self.db.rollback()
            raise

        await self.db.refresh(booking)
        logger.info(
            f"Reserved | Booking: {booking.id} | Provider: {pid} | "
            f"Requester: {requester_id or 'guest'} | {start} - {end}"
        )
        return booking

    async def _lock_requester(self, requester_id: str) -> None:
        """Serialize concurrent reservations of one requester.

        PostgreSQL takes a transaction-scoped advisory lock keyed on the
        requester. SQLite serializes writers on the provider update instead.
        """
        if self.db.get_bind().dialect.name != "postgresql":
            return
        await self.db.execute(select(func.pg_advisory_xact_lock(func.hashtext(requester_id))))

    async def release(self, booking_id: Any, requester_id: Optional[str] = None) -> Booking:
        """Release a booking.

        Approval sessions flip to cancelled; direct appointments are
        soft-deleted. Releasing an already released booking is a no-op.
        With ``requester_id`` only that requester's booking may be released.

        Raises:
            NotFoundError: unknown booking
            AuthorizationError: booking belongs to another requester
            InvalidTransitionError: booking is already completed
        """
        bid = _coerce_uuid(booking_id, "Booking")
        result = await self.db.execute(
            select(Booking).where(Booking.id == bid).with_for_update()
        )
        booking = result.scalar_one_or_none()
        if booking is None:
            raise NotFoundError(f"Booking {booking_id} not found")

        if requester_id is not None and booking.requester_id != requester_id:
            await self.db.rollback()
            raise AuthorizationError("Cannot release another requester's booking")

        if booking.is_deleted or booking.status == BookingStatus.CANCELLED:
            logger.debug(f"Release no-op, already released | Booking: {bid}")
            await self.db.commit()
            return booking

        if booking.status == BookingStatus.COMPLETED:
            await self.db.rollback()
            raise InvalidTransitionError(current=BookingStatus.COMPLETED.value, action="release")

        now = self._now()
        if booking.variant == BookingVariant.DIRECT:
            booking.is_deleted = True
            booking.deleted_at = now
        else:
            booking.status = BookingStatus.CANCELLED
            booking.cancelled_at = now

        await self.db.commit()
        logger.info(f"Released | Booking: {bid} | Variant: {booking.variant.value}")
        return booking

    # === Reads ===

    async def get(self, booking_id: Any, for_update: bool = False) -> Booking:
        """Load a visible booking or raise NotFoundError."""
        bid = _coerce_uuid(booking_id, "Booking")
        query = select(Booking).where(Booking.id == bid, Booking.is_deleted == False)  # noqa: E712
        if for_update:
            query = query.with_for_update()

        result = await self.db.execute(query)
        booking = result.scalar_one_or_none()
        if booking is None:
            raise NotFoundError(f"Booking {booking_id} not found")
        return booking

    async def has_overlap(
        self,
        provider_id: uuid.UUID,
        start: datetime,
        end: datetime,
    ) -> bool:
        """Whether any active booking intersects ``[start, end)`` (naive UTC)."""
        result = await self.db.execute(
            select(Booking.id)
            .where(
                Booking.provider_id == provider_id,
                Booking.is_deleted == False,  # noqa: E712
                Booking.status.in_(ACTIVE_STATUSES),
                Booking.slot_start < end,
                Booking.slot_end > start,
            )
            .limit(1)
        )
        return result.first() is not None

    async def list_active(
        self,
        provider_id: Any,
        from_date: date,
        until: Optional[date] = None,
    ) -> list[Booking]:
        """Active bookings of a provider ending after the start of ``from_date``.

        Always queries the database; the resolver depends on seeing the
        latest committed reservations.
        """
        pid = _coerce_uuid(provider_id, "Provider")
        query = select(Booking).where(
            Booking.provider_id == pid,
            Booking.is_deleted == False,  # noqa: E712
            Booking.status.in_(ACTIVE_STATUSES),
            Booking.slot_end > day_start_utc(from_date, self.tz),
        )
        if until is not None:
            query = query.where(Booking.slot_start < day_start_utc(until + timedelta(days=1), self.tz))

        result = await self.db.execute(query.order_by(Booking.slot_start))
        return list(result.scalars())

    async def list_for_requester(self, requester_id: str, since: datetime) -> list[Booking]:
        """Active bookings of a requester starting at or after ``since`` (naive UTC)."""
        result = await self.db.execute(
            select(Booking)
            .where(
                Booking.requester_id == requester_id,
                Booking.is_deleted == False,  # noqa: E712
                Booking.status.in_(ACTIVE_STATUSES),
                Booking.slot_start >= since,
            )
            .order_by(Booking.slot_start)
        )
        return list(result.scalars())

    async def list_bookings(
        self,
        status: Optional[BookingStatus] = None,
        provider_id: Optional[Any] = None,
        requester_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[Booking]:
        """Visible bookings, newest first."""
        query = select(Booking).where(Booking.is_deleted == False)  # noqa: E712
        if status is not None:
            query = query.where(Booking.status == status)
        if provider_id is not None:
            query = query.where(Booking.provider_id == _coerce_uuid(provider_id, "Provider"))
        if requester_id is not None:
            query = query.where(Booking.requester_id == requester_id)

        result = await self.db.execute(
            query.order_by(Booking.created_at.desc(), Booking.slot_start.desc()).limit(limit)
        )
        return list(result.scalars())
