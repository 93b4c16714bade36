"""
Rate limiting backends: Redis (distributed), in-process memory and disabled
"""

import asyncio
import logging
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import redis.asyncio as redis

from .config import RateLimitMode, RateLimitSettings

logger = logging.getLogger(__name__)

# Checks fail open without dialing Redis for this long after a failed connect
RECONNECT_COOLDOWN_SECONDS = 30

Clock = Callable[[], float]


@dataclass
class RateLimitResult:
    """Outcome of one rate limit check"""
    allowed: bool
    backend: RateLimitMode
    remaining: Optional[int] = None
    hourly_remaining: Optional[int] = None
    reset_time: Optional[int] = None
    retry_after: Optional[int] = None
    error: Optional[str] = None
    degraded: bool = False
    bypass: bool = False

    @property
    def backend_label(self) -> str:
        if self.degraded:
            return f"{self.backend.value}-degraded"
        return self.backend.value

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "allowed": self.allowed,
            "backend": self.backend.value,
            "remaining": self.remaining,
            "hourlyRemaining": self.hourly_remaining,
            "resetTime": self.reset_time,
            "retryAfter": self.retry_after,
        }
        if self.error:
            data["error"] = self.error
        if self.degraded:
            data["degraded"] = True
        if self.bypass:
            data["bypass"] = True
        return data

    def headers(self) -> Dict[str, str]:
        """Response headers describing this result"""
        headers = {"X-RateLimit-Backend": self.backend_label}
        if self.remaining is not None:
            headers["X-RateLimit-Remaining"] = str(self.remaining)
        if self.hourly_remaining is not None:
            headers["X-RateLimit-Hourly-Remaining"] = str(self.hourly_remaining)
        if self.reset_time is not None:
            headers["X-RateLimit-Reset"] = str(self.reset_time)
        if not self.allowed and self.retry_after is not None:
            headers["Retry-After"] = str(self.retry_after)
        return headers


@dataclass
class RateLimitRecord:
    """Per-key counters of the in-process backend"""
    identity: str
    window_start: float
    count: int
    hourly_window_start: float
    hourly_count: int


def _minute_exceeded(limit: int, retry_after: int, subject: str) -> str:
    return (
        f"Rate limit exceeded. You can make {limit} {subject} per minute. "
        f"Try again in {retry_after} seconds."
    )


def _hour_exceeded(limit: int, retry_after: int, subject: str) -> str:
    return (
        f"Hourly limit exceeded. You can make {limit} {subject} per hour. "
        f"Try again in {math.ceil(retry_after / 60)} minutes."
    )


class RateLimitBackend(ABC):
    """Counts hits for a key against an optional minute budget and an hourly budget"""

    mode: RateLimitMode

    def __init__(self, settings: RateLimitSettings, clock: Clock = time.time):
        self.settings = settings
        self.clock = clock

    @abstractmethod
    async def hit(self, key: str, per_minute: Optional[int], per_hour: int,
                  subject: str = "requests") -> RateLimitResult:
        ...

    async def close(self) -> None:
        return None


class DisabledBackend(RateLimitBackend):
    mode = RateLimitMode.DISABLED

    async def hit(self, key: str, per_minute: Optional[int], per_hour: int,
                  subject: str = "requests") -> RateLimitResult:
        return RateLimitResult(allowed=True, backend=self.mode)


class MemoryBackend(RateLimitBackend):
    """Single-process counters. Not shared between instances."""

    mode = RateLimitMode.MEMORY

    def __init__(self, settings: RateLimitSettings, clock: Clock = time.time):
        super().__init__(settings, clock)
        self.records: Dict[str, RateLimitRecord] = {}

    async def hit(self, key: str, per_minute: Optional[int], per_hour: int,
                  subject: str = "requests") -> RateLimitResult:
        now = self.clock()
        window = self.settings.window_seconds
        hourly_window = self.settings.hourly_window_seconds
        record = self.records.get(key)

        if record is None:
            record = RateLimitRecord(
                identity=key, window_start=now, count=1,
                hourly_window_start=now, hourly_count=1,
            )
            self.records[key] = record
            return self._allowed(record, per_minute, per_hour)

        # Hourly window first: it is the coarser bound
        if now - record.hourly_window_start < hourly_window:
            if record.hourly_count >= per_hour:
                retry_after = max(1, math.ceil(hourly_window - (now - record.hourly_window_start)))
                return RateLimitResult(
                    allowed=False, backend=self.mode, remaining=0, hourly_remaining=0,
                    reset_time=math.ceil(record.hourly_window_start + hourly_window),
                    retry_after=retry_after,
                    error=_hour_exceeded(per_hour, retry_after, subject),
                )
        else:
            record.hourly_count = 0
            record.hourly_window_start = now

        if per_minute is not None:
            if now - record.window_start < window:
                if record.count >= per_minute:
                    retry_after = max(1, math.ceil(window - (now - record.window_start)))
                    return RateLimitResult(
                        allowed=False, backend=self.mode, remaining=0,
                        hourly_remaining=max(0, per_hour - record.hourly_count),
                        reset_time=math.ceil(record.window_start + window),
                        retry_after=retry_after,
                        error=_minute_exceeded(per_minute, retry_after, subject),
                    )
                record.count += 1
            else:
                record.count = 1
                record.window_start = now

        record.hourly_count += 1
        return self._allowed(record, per_minute, per_hour)

    def _allowed(self, record: RateLimitRecord, per_minute: Optional[int],
                 per_hour: int) -> RateLimitResult:
        hourly_remaining = max(0, per_hour - record.hourly_count)
        if per_minute is None:
            return RateLimitResult(
                allowed=True, backend=self.mode,
                remaining=hourly_remaining, hourly_remaining=hourly_remaining,
                reset_time=math.ceil(record.hourly_window_start + self.settings.hourly_window_seconds),
            )
        return RateLimitResult(
            allowed=True, backend=self.mode,
            remaining=max(0, per_minute - record.count),
            hourly_remaining=hourly_remaining,
            reset_time=math.ceil(record.window_start + self.settings.window_seconds),
        )

    def sweep(self) -> int:
        """Evict records whose windows have both expired; returns the eviction count"""
        now = self.clock()
        expired = [
            key for key, record in self.records.items()
            if now - record.hourly_window_start > self.settings.hourly_window_seconds
            and now - record.window_start > self.settings.window_seconds
        ]
        for key in expired:
            del self.records[key]
        if expired:
            logger.debug(f"Rate limit sweep removed {len(expired)} expired records")
        return len(expired)


class RedisBackend(RateLimitBackend):
    """Fixed-window counters in Redis, shared by every instance.

    Each window bucket is incremented and given its TTL in one MULTI/EXEC
    pipeline. Any Redis failure fails open with ``degraded=True``.
    """

    mode = RateLimitMode.REDIS

    def __init__(self, settings: RateLimitSettings, client: Optional[Any] = None,
                 clock: Clock = time.time):
        super().__init__(settings, clock)
        self.redis_client = client
        self._owns_client = client is None
        self._lock = asyncio.Lock()
        self._reconnect_at = 0.0

    async def _get_client(self):
        if self.redis_client is not None:
            return self.redis_client
        async with self._lock:
            if self.redis_client is None:
                if not self.settings.redis_url:
                    raise ConnectionError("Redis rate limiting enabled but REDIS_URL not configured")
                wait = self._reconnect_at - self.clock()
                if wait > 0:
                    raise ConnectionError(f"Redis unavailable; next connection attempt in {wait:.0f}s")
                client = redis.from_url(self.settings.redis_url, socket_connect_timeout=5)
                try:
                    await client.ping()
                except Exception:
                    self._reconnect_at = self.clock() + RECONNECT_COOLDOWN_SECONDS
                    await client.aclose()
                    raise
                self.redis_client = client
                logger.info("Redis connected for rate limiting")
        return self.redis_client

    def _bucket(self, key: str, name: str, now: float, window: int):
        bucket = math.floor(now / window)
        bucket_end = (bucket + 1) * window
        return f"rate_limit:{key}:{name}:{bucket}", bucket_end

    async def hit(self, key: str, per_minute: Optional[int], per_hour: int,
                  subject: str = "requests") -> RateLimitResult:
        now = self.clock()
        window = self.settings.window_seconds
        hourly_window = self.settings.hourly_window_seconds
        minute_key, minute_end = self._bucket(key, "minute", now, window)
        hour_key, hour_end = self._bucket(key, "hour", now, hourly_window)

        try:
            client = await self._get_client()
            pipeline = client.pipeline(transaction=True)
            pipeline.incr(hour_key)
            pipeline.expire(hour_key, hourly_window)
            if per_minute is not None:
                pipeline.incr(minute_key)
                pipeline.expire(minute_key, window)
            results = await pipeline.execute()
        except Exception as e:
            logger.error(f"Redis rate limiting error, allowing request (fail open): {e}")
            return RateLimitResult(
                allowed=True, backend=self.mode, degraded=True,
                error="Rate limiting temporarily unavailable",
            )

        hourly_count = int(results[0])
        minute_count = int(results[2]) if per_minute is not None else None

        if hourly_count > per_hour:
            retry_after = max(1, math.ceil(hour_end - now))
            return RateLimitResult(
                allowed=False, backend=self.mode, remaining=0, hourly_remaining=0,
                reset_time=math.ceil(hour_end), retry_after=retry_after,
                error=_hour_exceeded(per_hour, retry_after, subject),
            )

        hourly_remaining = max(0, per_hour - hourly_count)
        if minute_count is None:
            return RateLimitResult(
                allowed=True, backend=self.mode, remaining=hourly_remaining,
                hourly_remaining=hourly_remaining, reset_time=math.ceil(hour_end),
            )

        if minute_count > per_minute:
            retry_after = max(1, math.ceil(minute_end - now))
            return RateLimitResult(
                allowed=False, backend=self.mode, remaining=0,
                hourly_remaining=hourly_remaining,
                reset_time=math.ceil(minute_end), retry_after=retry_after,
                error=_minute_exceeded(per_minute, retry_after, subject),
            )

        return RateLimitResult(
            allowed=True, backend=self.mode,
            remaining=max(0, per_minute - minute_count),
            hourly_remaining=hourly_remaining,
            reset_time=math.ceil(minute_end),
        )

    async def close(self) -> None:
        if self.redis_client is not None and self._owns_client:
            await self.redis_client.aclose()
            self.redis_client = None
            logger.info("Redis rate limiting connection closed")


def create_backend(settings: RateLimitSettings, clock: Clock = time.time,
                   redis_client: Optional[Any] = None) -> RateLimitBackend:
    """Select the backend once from resolved settings"""
    if settings.mode is RateLimitMode.REDIS:
        return RedisBackend(settings, client=redis_client, clock=clock)
    if settings.mode is RateLimitMode.MEMORY:
        return MemoryBackend(settings, clock=clock)
    return DisabledBackend(settings, clock=clock)
