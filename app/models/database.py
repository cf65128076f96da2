"""
Database Models

SQLAlchemy ORM models for the counseling session booking service.
"""

import uuid
from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    JSON, Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text,
    UniqueConstraint, Uuid, Enum as SQLEnum, text
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamp columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=text("CURRENT_TIMESTAMP"),
        nullable=False
    )


class SoftDeleteMixin:
    """Mixin that adds soft delete functionality."""

    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        nullable=True
    )


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    """Persist enum values (lowercase) rather than member names."""
    return [member.value for member in enum_cls]


class BookingStatus(str, Enum):
    """Booking status enumeration."""
    BOOKED = "booked"
    APPROVED = "approved"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Statuses that occupy a slot for overlap purposes
ACTIVE_STATUSES = (BookingStatus.BOOKED, BookingStatus.APPROVED)


class BookingMode(str, Enum):
    """How the session takes place."""
    IN_PERSON = "in_person"
    REMOTE = "remote"


class BookingVariant(str, Enum):
    """Booking flavor.

    APPROVAL sessions go through the moderator workflow and are cancelled
    by status flip. DIRECT appointments have no approval step and disappear
    (soft delete) when released.
    """
    APPROVAL = "approval"
    DIRECT = "direct"


class Provider(Base, TimestampMixin, SoftDeleteMixin):
    """
    Provider model (counselors, doctors).

    Owns the recurring weekly template and the per-date overrides.
    ``weekly_template`` maps weekday ("0" = Monday .. "6" = Sunday) to an
    ordered list of ``{"start": "HH:MM", "end": "HH:MM", "is_available": bool}``.
    """

    __tablename__ = "providers"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    specialization: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    weekly_template: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    is_unavailable: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    ledger_version: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        doc="Bumped by every reservation; the row write lock serializes them"
    )

    # Relationships
    overrides: Mapped[List["ScheduleOverride"]] = relationship(
        "ScheduleOverride",
        back_populates="provider",
        cascade="all, delete-orphan",
        order_by="ScheduleOverride.date",
    )
    bookings: Mapped[List["Booking"]] = relationship(
        "Booking",
        back_populates="provider"
    )

    def __repr__(self) -> str:
        return f"<Provider(id={self.id}, name='{self.name}', specialization='{self.specialization}')>"


class ScheduleOverride(Base, TimestampMixin):
    """
    Per-date slot list replacing the weekly template for that date.

    An empty ``slots`` list is a valid override meaning "no slots".
    """

    __tablename__ = "schedule_overrides"
    __table_args__ = (
        UniqueConstraint("provider_id", "date", name="uq_override_provider_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    provider_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("providers.id", ondelete="CASCADE"),
        nullable=False
    )
    date: Mapped[date] = mapped_column(Date, nullable=False)
    slots: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    # Relationships
    provider: Mapped["Provider"] = relationship("Provider", back_populates="overrides")

    def __repr__(self) -> str:
        return (
            f"<ScheduleOverride(provider_id={self.provider_id}, date={self.date}, "
            f"slots={len(self.slots or [])})>"
        )


class Booking(Base, TimestampMixin, SoftDeleteMixin):
    """
    Booking ledger entry.

    ``slot_start`` and ``slot_end`` are exact instants stored as naive UTC.
    At most one active (booked/approved, not deleted) booking may start at a
    given instant for a provider; overlap of differing ranges is guarded by
    the provider row lock taken during reservation.
    """

    __tablename__ = "bookings"
    __table_args__ = (
        Index("idx_booking_provider_start", "provider_id", "slot_start"),
        Index("idx_booking_requester_start", "requester_id", "slot_start"),
        Index("idx_booking_status", "status"),
        Index(
            "uq_booking_active_slot",
            "provider_id",
            "slot_start",
            unique=True,
            postgresql_where=text("status IN ('booked', 'approved') AND is_deleted = false"),
            sqlite_where=text("status IN ('booked', 'approved') AND is_deleted = 0"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    provider_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("providers.id", ondelete="CASCADE"),
        nullable=False
    )
    requester_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    slot_start: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    slot_end: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    mode: Mapped[BookingMode] = mapped_column(
        SQLEnum(BookingMode, name="booking_mode", values_callable=_enum_values),
        default=BookingMode.IN_PERSON,
        nullable=False
    )
    variant: Mapped[BookingVariant] = mapped_column(
        SQLEnum(BookingVariant, name="booking_variant", values_callable=_enum_values),
        default=BookingVariant.APPROVAL,
        nullable=False
    )
    status: Mapped[BookingStatus] = mapped_column(
        SQLEnum(BookingStatus, name="booking_status", values_callable=_enum_values),
        default=BookingStatus.BOOKED,
        nullable=False
    )
    notes: Mapped[str] = mapped_column(Text, default="", nullable=False)
    patient_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    contact_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    contact_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Relationships
    provider: Mapped["Provider"] = relationship("Provider", back_populates="bookings")

    @property
    def is_active(self) -> bool:
        """Whether the booking occupies its slot."""
        return not self.is_deleted and self.status in ACTIVE_STATUSES

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, provider_id={self.provider_id}, "
            f"requester_id={self.requester_id}, start={self.slot_start}, "
            f"status={self.status.value})>"
        )
