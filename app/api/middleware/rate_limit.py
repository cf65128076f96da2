"""
Rate Limiting

Per-requester throttling of reservation endpoints with a Redis backend.
Guests are throttled per client IP. Headers are added to responses by
``RateLimitMiddleware``.
"""

import logging

from fastapi import Depends, HTTPException, Request, Response, status
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from app.api.middleware.auth import optional_context
from app.core.scheduling.context import RequestContext
from app.infra.redis import RateLimitDecision, get_rate_limiter_store

logger = logging.getLogger(__name__)

# Header names
HEADER_LIMIT = "X-RateLimit-Limit"
HEADER_REMAINING = "X-RateLimit-Remaining"
HEADER_USED = "X-RateLimit-Used"
HEADER_RESET = "X-RateLimit-Reset"
HEADER_RETRY_AFTER = "Retry-After"


def rate_limit_identifier(request: Request, context: RequestContext) -> str:
    """Throttling key: requester when identified, client IP otherwise."""
    if context.requester_id:
        return f"requester:{context.requester_id}"
    client_ip = request.client.host if request.client else "unknown"
    return f"ip:{client_ip}"


def add_rate_limit_headers(response: Response, decision: RateLimitDecision) -> None:
    """Add rate limit headers to response."""
    response.headers[HEADER_LIMIT] = str(decision.limit)
    response.headers[HEADER_REMAINING] = str(decision.remaining)
    response.headers[HEADER_USED] = str(decision.used)
    response.headers[HEADER_RESET] = str(decision.reset_seconds)


async def require_rate_limit(
    request: Request,
    context: RequestContext = Depends(optional_context),
) -> None:
    """
    FastAPI dependency that enforces rate limiting.

    Raises HTTPException 429 if the requester exceeded the window.

    Usage:
        @router.post("/bookings", dependencies=[Depends(require_rate_limit)])
        async def create_booking(...):
            ...
    """
    identifier = rate_limit_identifier(request, context)
    store = await get_rate_limiter_store()
    decision = await store.hit(identifier)

    # Picked up by RateLimitMiddleware
    request.state.rate_limit = decision

    if not decision.allowed:
        logger.warning(
            f"Rate limit exceeded | {identifier} | Limit: {decision.limit} | "
            f"Used: {decision.used} | Path: {request.url.path}"
        )
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "error": "Rate limit exceeded",
                "limit": decision.limit,
                "used": decision.used,
                "retry_after": decision.reset_seconds,
            },
            headers={
                HEADER_LIMIT: str(decision.limit),
                HEADER_REMAINING: "0",
                HEADER_USED: str(decision.used),
                HEADER_RESET: str(decision.reset_seconds),
                HEADER_RETRY_AFTER: str(decision.reset_seconds),
            },
        )


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Adds rate limit headers to responses of throttled endpoints.

    The check itself is done by the require_rate_limit dependency.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        response = await call_next(request)

        decision = getattr(request.state, "rate_limit", None)
        if decision is not None:
            add_rate_limit_headers(response, decision)

        return response
