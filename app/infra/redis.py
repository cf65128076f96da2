"""
Redis Connection Management

Redis backs request throttling only. Booking and schedule data always come
from the database; nothing here caches the ledger.

The connection degrades gracefully: when Redis is down the client is None
and throttling fails open.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError, RedisError, TimeoutError

from app.config import settings

logger = logging.getLogger(__name__)

# Key namespace (allows multiple apps/versions on same Redis)
APP_PREFIX = "booking:v1:"


class RedisClient:
    """
    Process-wide Redis connection.

    Features:
    - Connection pooling
    - Retries with exponential backoff
    - Short timeouts, None on failure instead of raising
    """

    _client: Optional[Redis] = None
    _connected: bool = False

    @classmethod
    async def get_client(cls) -> Optional[Redis]:
        """
        Get or create Redis client.

        Returns:
            Redis client or None if connection fails
        """
        if cls._client is not None and cls._connected:
            return cls._client

        try:
            cls._client = redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=2.0,
                socket_timeout=2.0,
                retry_on_timeout=True,
                retry=Retry(ExponentialBackoff(), retries=2),
            )
            await cls._client.ping()
            cls._connected = True
            logger.info("Redis connection established")
            return cls._client

        except (ConnectionError, TimeoutError, RedisError) as e:
            logger.warning(f"Redis unavailable, throttling disabled: {e}")
            cls._connected = False
            cls._client = None
            return None

    @classmethod
    async def close(cls) -> None:
        """Close Redis connection."""
        if cls._client is None:
            return
        try:
            await cls._client.aclose()
            logger.info("Redis connection closed")
        except RedisError as e:
            logger.error(f"Error closing Redis connection: {e}")
        finally:
            cls._client = None
            cls._connected = False

    @classmethod
    def is_connected(cls) -> bool:
        return cls._connected


async def get_redis() -> Optional[Redis]:
    """Redis client or None when unavailable."""
    return await RedisClient.get_client()


@dataclass
class RateLimitDecision:
    """Outcome of one throttling check."""

    allowed: bool
    limit: int
    used: int
    reset_seconds: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)


class RateLimiterStore:
    """
    Fixed-window request counter.

    Key: booking:v1:ratelimit:{identifier}

    Fails OPEN: if Redis is unavailable or errors, requests are allowed so
    a cache outage never blocks bookings.
    """

    RATELIMIT_PREFIX = f"{APP_PREFIX}ratelimit:"

    def __init__(
        self,
        redis_client: Optional[Redis],
        max_requests: Optional[int] = None,
        window_seconds: Optional[int] = None,
    ):
        self.redis = redis_client
        self.max_requests = max_requests or settings.rate_limit_requests
        self.window_seconds = window_seconds or settings.rate_limit_window

    def _key(self, identifier: str) -> str:
        return f"{self.RATELIMIT_PREFIX}{identifier}"

    def _open(self) -> RateLimitDecision:
        return RateLimitDecision(
            allowed=True,
            limit=self.max_requests,
            used=0,
            reset_seconds=self.window_seconds,
        )

    async def hit(self, identifier: str) -> RateLimitDecision:
        """
        Count one request against ``identifier``.

        Args:
            identifier: e.g. "requester:{requester_id}" or "ip:{address}"
        """
        if self.redis is None:
            logger.debug(f"Redis unavailable - throttling bypassed for {identifier}")
            return self._open()

        key = self._key(identifier)
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.incr(key)
                pipe.expire(key, self.window_seconds, nx=True)
                pipe.ttl(key)
                used, _, ttl = await pipe.execute()

        except RedisError as e:
            logger.error(f"Rate limit check failed for {identifier}: {e} - allowing request")
            return self._open()

        decision = RateLimitDecision(
            allowed=used <= self.max_requests,
            limit=self.max_requests,
            used=used,
            reset_seconds=ttl if ttl and ttl > 0 else self.window_seconds,
        )
        if not decision.allowed:
            logger.info(f"Rate limit exceeded for {identifier}")
        return decision

    async def reset(self, identifier: str) -> bool:
        """Drop the counter for ``identifier``."""
        if self.redis is None:
            return False
        try:
            await self.redis.delete(self._key(identifier))
            return True
        except RedisError as e:
            logger.error(f"Failed to reset rate limit for {identifier}: {e}")
            return False


async def get_rate_limiter_store() -> RateLimiterStore:
    """
    Get RateLimiterStore instance.

    Returned even if Redis is unavailable (fails open).
    """
    return RateLimiterStore(await get_redis())


async def check_redis_health() -> bool:
    """True if Redis is reachable and answers PING."""
    try:
        client = await get_redis()
        if client is None:
            return False
        await client.ping()
        return True
    except RedisError as e:
        logger.error(f"Redis health check failed: {e}")
        return False
