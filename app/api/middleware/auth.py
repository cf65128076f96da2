"""
Requester Identity

Identity is issued and verified upstream (gateway / auth service). This
layer reads the trusted headers it forwards, builds a ``RequestContext``
and exposes it through a ContextVar and FastAPI dependencies.

Headers:
    X-Requester-ID: requester identifier (absent for guests)
    X-Requester-Role: role name; ``settings.moderator_role`` may moderate
"""

import logging
from contextvars import ContextVar
from typing import Optional

from fastapi import Depends, HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader

from app.config import settings
from app.core.scheduling.context import RequestContext

logger = logging.getLogger(__name__)

REQUESTER_HEADER = "X-Requester-ID"
ROLE_HEADER = "X-Requester-Role"

requester_header = APIKeyHeader(name=REQUESTER_HEADER, auto_error=False)
role_header = APIKeyHeader(name=ROLE_HEADER, auto_error=False)

# ContextVar for the current requester (accessible anywhere without passing)
_request_context: ContextVar[Optional[RequestContext]] = ContextVar(
    "request_context",
    default=None
)


def build_context(requester_id: Optional[str], role: Optional[str]) -> RequestContext:
    """Build a context from raw header values."""
    requester_id = requester_id.strip() if requester_id else None
    role = role.strip().lower() if role else None
    return RequestContext(
        requester_id=requester_id or None,
        role=role or None,
        can_moderate=bool(role) and role == settings.moderator_role.lower(),
    )


def get_current_context() -> RequestContext:
    """
    Get the current request context.

    Raises RuntimeError if called outside a request that resolved identity.
    """
    context = _request_context.get()
    if context is None:
        raise RuntimeError("No request context - called outside an identified request")
    return context


def get_current_context_optional() -> Optional[RequestContext]:
    """Get the current request context or None."""
    return _request_context.get()


def set_request_context(context: Optional[RequestContext]) -> None:
    """Set request context (used by dependencies and tests)."""
    _request_context.set(context)


def clear_request_context() -> None:
    """
    Clear request context.

    Called at end of request to prevent context leaking.
    """
    _request_context.set(None)


async def optional_context(
    request: Request,
    requester_id: Optional[str] = Security(requester_header),
    role: Optional[str] = Security(role_header),
) -> RequestContext:
    """
    FastAPI dependency for endpoints open to guests.

    Always returns a context; ``requester_id`` is None for guests.
    """
    context = build_context(requester_id, role)
    set_request_context(context)
    request.state.requester = context
    return context


async def require_context(
    request: Request,
    context: RequestContext = Depends(optional_context),
) -> RequestContext:
    """
    FastAPI dependency that requires an identified requester.

    Raises:
        HTTPException 401: No X-Requester-ID header
    """
    if context.requester_id is None:
        client_ip = request.client.host if request.client else "unknown"
        logger.warning(f"Identity missing | Path: {request.url.path} | IP: {client_ip}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"{REQUESTER_HEADER} header required",
        )
    return context


async def require_moderator(
    request: Request,
    context: RequestContext = Depends(require_context),
) -> RequestContext:
    """
    FastAPI dependency for moderator-only endpoints.

    Raises:
        HTTPException 403: Caller's role cannot moderate
    """
    if not context.can_moderate:
        logger.warning(
            f"Moderator required | Requester: {context.requester_id} | "
            f"Role: {context.role} | Path: {request.url.path}"
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Role '{settings.moderator_role}' required",
        )
    return context
