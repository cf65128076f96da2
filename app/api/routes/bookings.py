"""
Booking Endpoints

Reserve, inspect, release and moderate bookings. Domain errors raised by
the engine are translated to HTTP responses by the handlers in app.main.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, EmailStr, Field

from app.api.deps import get_engine
from app.api.middleware.auth import optional_context, require_context
from app.api.middleware.rate_limit import require_rate_limit
from app.core.scheduling.context import RequestContext
from app.core.scheduling.engine import BookingEngine
from app.core.scheduling.ledger import ContactInfo
from app.core.scheduling.types import as_utc
from app.core.scheduling.workflow import BookingAction
from app.models.database import Booking, BookingMode, BookingStatus, BookingVariant

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["Bookings"])


# === Schemas ===

class BookingCreate(BaseModel):
    """Reservation request. Naive times are read in the schedule timezone."""

    provider_id: str
    slot_start: datetime = Field(..., examples=["2026-03-02T09:00:00Z"])
    slot_end: datetime = Field(..., examples=["2026-03-02T10:00:00Z"])
    mode: BookingMode = BookingMode.IN_PERSON
    variant: BookingVariant = BookingVariant.APPROVAL
    notes: str = Field(default="", max_length=2000)
    patient_name: Optional[str] = Field(default=None, max_length=255)
    contact_email: Optional[EmailStr] = None
    contact_phone: Optional[str] = Field(default=None, max_length=50)


class TransitionRequest(BaseModel):
    action: BookingAction


class BookingResponse(BaseModel):
    """Booking as returned by the API. Instants are UTC."""

    id: str
    provider_id: str
    requester_id: Optional[str] = None
    slot_start: datetime
    slot_end: datetime
    mode: BookingMode
    variant: BookingVariant
    status: BookingStatus
    notes: str = ""
    patient_name: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    approved_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    is_deleted: bool = False

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingResponse":
        def _utc(value: Optional[datetime]) -> Optional[datetime]:
            return as_utc(value) if value is not None else None

        return cls(
            id=str(booking.id),
            provider_id=str(booking.provider_id),
            requester_id=booking.requester_id,
            slot_start=as_utc(booking.slot_start),
            slot_end=as_utc(booking.slot_end),
            mode=booking.mode,
            variant=booking.variant,
            status=booking.status,
            notes=booking.notes or "",
            patient_name=booking.patient_name,
            contact_email=booking.contact_email,
            contact_phone=booking.contact_phone,
            approved_at=_utc(booking.approved_at),
            completed_at=_utc(booking.completed_at),
            cancelled_at=_utc(booking.cancelled_at),
            is_deleted=booking.is_deleted,
        )


class BookingListResponse(BaseModel):
    data: list[BookingResponse]


# === Endpoints ===

@router.post(
    "",
    response_model=BookingResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Reserve a slot",
    dependencies=[Depends(require_rate_limit)],
    responses={
        400: {"description": "Malformed, past or unpublished slot"},
        403: {"description": "Booking limit reached (body carries retry_after)"},
        404: {"description": "Unknown provider"},
        409: {"description": "Slot already taken"},
    },
)
async def create_booking(
    request: BookingCreate,
    context: RequestContext = Depends(optional_context),
    engine: BookingEngine = Depends(get_engine),
) -> BookingResponse:
    booking = await engine.reserve(
        context,
        request.provider_id,
        request.slot_start,
        request.slot_end,
        mode=request.mode,
        notes=request.notes,
        variant=request.variant,
        contact=ContactInfo(
            patient_name=request.patient_name,
            email=request.contact_email,
            phone=request.contact_phone,
        ),
    )
    return BookingResponse.from_booking(booking)


@router.get("", response_model=BookingListResponse, summary="List bookings")
async def list_bookings(
    status_filter: Optional[BookingStatus] = Query(default=None, alias="status"),
    provider_id: Optional[str] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    context: RequestContext = Depends(require_context),
    engine: BookingEngine = Depends(get_engine),
) -> BookingListResponse:
    """Moderators see every booking; requesters see their own."""
    bookings = await engine.list_bookings(
        status=status_filter,
        provider_id=provider_id,
        requester_id=None if context.can_moderate else context.requester_id,
        limit=limit,
    )
    return BookingListResponse(data=[BookingResponse.from_booking(b) for b in bookings])


@router.get("/{booking_id}", response_model=BookingResponse, summary="Get a booking")
async def get_booking(
    booking_id: str,
    context: RequestContext = Depends(require_context),
    engine: BookingEngine = Depends(get_engine),
) -> BookingResponse:
    return BookingResponse.from_booking(await engine.get_booking(booking_id, context))


@router.post("/{booking_id}/release", response_model=BookingResponse, summary="Release a booking")
async def release_booking(
    booking_id: str,
    context: RequestContext = Depends(require_context),
    engine: BookingEngine = Depends(get_engine),
) -> BookingResponse:
    """Idempotent: releasing twice returns the released booking."""
    return BookingResponse.from_booking(await engine.release(booking_id, context))


@router.post(
    "/{booking_id}/transitions",
    response_model=BookingResponse,
    summary="Approve, cancel or complete a session",
    responses={
        403: {"description": "Caller cannot moderate this booking"},
        409: {"description": "Action not legal from the current status"},
    },
)
async def transition_booking(
    booking_id: str,
    request: TransitionRequest,
    context: RequestContext = Depends(require_context),
    engine: BookingEngine = Depends(get_engine),
) -> BookingResponse:
    booking = await engine.transition(context, booking_id, request.action)
    return BookingResponse.from_booking(booking)
