"""
Provider Endpoints

Provider directory seed, schedule management (weekly template, per-date
overrides, unavailable flag) and availability queries.
"""

import logging
from datetime import date
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from app.api.deps import get_engine
from app.api.middleware.auth import optional_context, require_moderator
from app.core.scheduling.context import RequestContext
from app.core.scheduling.engine import BookingEngine
from app.core.scheduling.types import TimeRange
from app.models.database import Provider

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/providers", tags=["Providers"])


# === Schemas ===

class ProviderCreate(BaseModel):
    """Provider registration request."""

    name: str = Field(..., min_length=1, max_length=255, examples=["Dr. Asha Rao"])
    specialization: Optional[str] = Field(default=None, max_length=255, examples=["Clinical Psychology"])
    email: Optional[str] = Field(default=None, max_length=255)


class ProviderResponse(BaseModel):
    """Provider directory entry."""

    id: str
    name: str
    specialization: Optional[str] = None
    email: Optional[str] = None
    is_unavailable: bool = False

    @classmethod
    def from_provider(cls, provider: Provider) -> "ProviderResponse":
        return cls(
            id=str(provider.id),
            name=provider.name,
            specialization=provider.specialization,
            email=provider.email,
            is_unavailable=provider.is_unavailable,
        )


class TemplateRequest(BaseModel):
    """Weekly template: weekday (name or 0-6) to slot list, or a list of day entries."""

    template: Any = Field(
        ...,
        examples=[{"monday": [{"start": "09:00", "end": "10:00"}, "10:00-11:00"]}],
    )


class DateSlotsRequest(BaseModel):
    """Slots replacing one date's schedule. An empty list means no slots."""

    slots: list[Any] = Field(default_factory=list, examples=[["09:00-10:00", {"startTime": "11:00", "endTime": "12:00"}]])


class BulkSlotsRequest(BaseModel):
    """Bulk per-date update, or ``available: false`` to mark the provider unavailable."""

    dates: dict[str, list[Any]] = Field(default_factory=dict)
    available: bool = True


class AvailabilityFlagRequest(BaseModel):
    available: bool


def _ranges(ranges: list[TimeRange]) -> list[dict]:
    return [r.to_dict() for r in ranges]


def _by_date(overrides: dict[date, list[TimeRange]]) -> dict[str, list[dict]]:
    return {day.isoformat(): _ranges(ranges) for day, ranges in overrides.items()}


# === Directory ===

@router.post(
    "",
    response_model=ProviderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a provider",
)
async def create_provider(
    request: ProviderCreate,
    context: RequestContext = Depends(require_moderator),
    engine: BookingEngine = Depends(get_engine),
) -> ProviderResponse:
    provider = await engine.register_provider(
        request.name,
        specialization=request.specialization,
        email=request.email,
    )
    return ProviderResponse.from_provider(provider)


@router.get("/{provider_id}", response_model=ProviderResponse, summary="Get a provider")
async def get_provider(
    provider_id: str,
    engine: BookingEngine = Depends(get_engine),
) -> ProviderResponse:
    return ProviderResponse.from_provider(await engine.get_provider(provider_id))


@router.put(
    "/{provider_id}/status",
    response_model=ProviderResponse,
    summary="Set or clear the provider-level unavailable flag",
)
async def set_provider_status(
    provider_id: str,
    request: AvailabilityFlagRequest,
    context: RequestContext = Depends(require_moderator),
    engine: BookingEngine = Depends(get_engine),
) -> ProviderResponse:
    provider = await engine.set_provider_available(provider_id, request.available)
    return ProviderResponse.from_provider(provider)


# === Availability ===

@router.get(
    "/{provider_id}/availability",
    summary="Bookable dates",
    description=(
        "Free slots per date from `start` (default today) over `days` days, or up to `end`. "
        "A requester at the booking cap gets no dates and `cooldown_until`."
    ),
)
async def get_availability(
    provider_id: str,
    start: Optional[str] = Query(default=None, description="YYYY-MM-DD"),
    end: Optional[str] = Query(default=None, description="YYYY-MM-DD, inclusive"),
    days: Optional[int] = Query(default=None, ge=1),
    context: RequestContext = Depends(optional_context),
    engine: BookingEngine = Depends(get_engine),
) -> dict:
    result = await engine.get_availability(
        provider_id,
        start_date=start,
        end_date=end,
        requester_id=context.requester_id,
        days=days,
    )
    return result.to_dict(engine.tz)


@router.get("/{provider_id}/availability/today", summary="Free slots today")
async def get_today(
    provider_id: str,
    context: RequestContext = Depends(optional_context),
    engine: BookingEngine = Depends(get_engine),
) -> dict:
    day = await engine.get_today(provider_id, requester_id=context.requester_id)
    return day.to_dict(engine.tz)


# === Weekly template ===

@router.get("/{provider_id}/template", summary="Weekly template")
async def get_template(
    provider_id: str,
    engine: BookingEngine = Depends(get_engine),
) -> dict:
    template = await engine.get_template(provider_id)
    return {"template": {str(weekday): _ranges(ranges) for weekday, ranges in template.items()}}


@router.put("/{provider_id}/template", summary="Replace the weekly template")
async def put_template(
    provider_id: str,
    request: TemplateRequest,
    context: RequestContext = Depends(require_moderator),
    engine: BookingEngine = Depends(get_engine),
) -> dict:
    template = await engine.set_template(provider_id, request.template)
    return {"template": {str(weekday): _ranges(ranges) for weekday, ranges in template.items()}}


# === Date overrides ===

@router.get("/{provider_id}/overrides", summary="Per-date overrides")
async def get_overrides(
    provider_id: str,
    engine: BookingEngine = Depends(get_engine),
) -> dict:
    return {"overrides": _by_date(await engine.get_overrides(provider_id))}


@router.put("/{provider_id}/overrides/{day}", summary="Replace one date's slots")
async def put_override(
    provider_id: str,
    day: str,
    request: DateSlotsRequest,
    context: RequestContext = Depends(require_moderator),
    engine: BookingEngine = Depends(get_engine),
) -> dict:
    ranges = await engine.set_schedule(provider_id, day, request.slots)
    return {"date": day, "slots": _ranges(ranges)}


@router.delete("/{provider_id}/overrides/{day}", summary="Revert one date to the template")
async def delete_override(
    provider_id: str,
    day: str,
    context: RequestContext = Depends(require_moderator),
    engine: BookingEngine = Depends(get_engine),
) -> dict:
    removed = await engine.clear_schedule(provider_id, day)
    return {"date": day, "removed": removed}


@router.patch("/{provider_id}/overrides", summary="Bulk update dates or mark unavailable")
async def patch_overrides(
    provider_id: str,
    request: BulkSlotsRequest,
    context: RequestContext = Depends(require_moderator),
    engine: BookingEngine = Depends(get_engine),
) -> dict:
    updated = await engine.set_multiple(provider_id, request.dates, available=request.available)
    return {"available": request.available, "overrides": _by_date(updated)}
