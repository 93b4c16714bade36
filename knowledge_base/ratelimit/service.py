"""
RateLimiterService: per-identity budgets with admin and emergency bypass
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

from knowledge_base.crawl.config import CrawlMode
from knowledge_base.exceptions import IdentityResolutionDegraded, RateLimitExceeded
from .admin import AdminAllowlist, DirectoryService
from .backends import (
    Clock,
    MemoryBackend,
    RateLimitBackend,
    RateLimitResult,
    create_backend,
)
from .config import RateLimitMode, RateLimitSettings

logger = logging.getLogger(__name__)

BYPASS_REMAINING = 9999


class RateLimiterService:
    """Owns the selected backend, the admin allowlist and the memory sweep task.

    Lifecycle: construct, ``await start()`` to begin the periodic sweep,
    ``await close()`` to stop it and release the Redis connection.
    """

    def __init__(self, settings: Optional[RateLimitSettings] = None,
                 directory: Optional[DirectoryService] = None,
                 backend: Optional[RateLimitBackend] = None,
                 admins: Optional[AdminAllowlist] = None,
                 clock: Clock = time.time):
        self.settings = settings or RateLimitSettings.from_env()
        self.directory = directory
        self.backend = backend or create_backend(self.settings, clock=clock)
        self.admins = admins if admins is not None else AdminAllowlist.from_raw(self.settings.admin_emails_raw)
        self.emergency_ids = set(self.settings.emergency_bypass_ids)
        self._sweep_task: Optional[asyncio.Task] = None

    @property
    def mode(self) -> RateLimitMode:
        return self.backend.mode

    async def start(self) -> None:
        self.settings.log_startup()
        if isinstance(self.backend, MemoryBackend) and self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def close(self) -> None:
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        await self.backend.close()

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.sweep_interval)
            self.sweep()

    def sweep(self) -> int:
        if isinstance(self.backend, MemoryBackend):
            return self.backend.sweep()
        return 0

    async def _resolve_email(self, identity: str) -> Optional[str]:
        if self.directory is None:
            return None
        try:
            return await self.directory.resolve_email(identity)
        except Exception as e:
            raise IdentityResolutionDegraded(identity, str(e)) from e

    async def _bypass(self, identity: str) -> Optional[RateLimitResult]:
        """Admin or emergency bypass result, or None for standard limiting"""
        try:
            email = await self._resolve_email(identity)
        except IdentityResolutionDegraded as e:
            logger.error(f"{e}; applying standard rate limits")
            email = None

        if email and self.admins.is_admin(email):
            return self._bypass_result()
        if identity in self.emergency_ids:
            logger.warning(f"Emergency rate limit bypass used by {identity}")
            return self._bypass_result()
        return None

    def _bypass_result(self) -> RateLimitResult:
        return RateLimitResult(
            allowed=True, backend=self.backend.mode, bypass=True,
            remaining=BYPASS_REMAINING, hourly_remaining=BYPASS_REMAINING,
        )

    async def check(self, identity: str) -> RateLimitResult:
        """Check the general per-minute and per-hour budget for ``identity``"""
        bypass = await self._bypass(identity)
        if bypass is not None:
            return bypass
        return await self.backend.hit(
            identity, self.settings.max_per_minute, self.settings.max_per_hour,
        )

    async def check_crawl(self, identity: str, mode: CrawlMode) -> RateLimitResult:
        """Check the hour-only crawl budget keyed by (identity, mode)"""
        mode = CrawlMode(mode)
        bypass = await self._bypass(identity)
        if bypass is not None:
            return bypass
        return await self.backend.hit(
            f"crawl:{mode.value}:{identity}", None, self.settings.crawl_limit(mode),
            subject=f"{mode.value} crawls",
        )

    async def enforce(self, identity: str) -> RateLimitResult:
        return self._raise_if_limited(await self.check(identity))

    async def enforce_crawl(self, identity: str, mode: CrawlMode) -> RateLimitResult:
        return self._raise_if_limited(await self.check_crawl(identity, mode))

    @staticmethod
    def _raise_if_limited(result: RateLimitResult) -> RateLimitResult:
        if not result.allowed:
            raise RateLimitExceeded(result.error or "Rate limit exceeded", result.retry_after or 1)
        return result

    def info(self) -> Dict[str, Any]:
        """Current configuration and validation status"""
        return {
            "mode": self.mode.value,
            "config": {
                "max_per_minute": self.settings.max_per_minute,
                "max_per_hour": self.settings.max_per_hour,
                "window_seconds": self.settings.window_seconds,
                "hourly_window_seconds": self.settings.hourly_window_seconds,
                "crawl_limits": {mode.value: limit for mode, limit in self.settings.crawl_limits.items()},
            },
            "environment": {
                "redis_configured": bool(self.settings.redis_url),
                "environment": self.settings.environment,
                "rate_limit_mode_env": self.settings.rate_limit_mode_env,
            },
            "validation": {
                "warnings": list(self.settings.warnings),
                "is_valid": self.settings.is_valid,
            },
            "admins": {
                "count": len(self.admins),
                "emergency_bypass_ids": len(self.emergency_ids),
            },
        }


def recommendations(info: Dict[str, Any]) -> List[str]:
    """Operator hints derived from ``RateLimiterService.info()``"""
    hints: List[str] = []
    mode = info["mode"]
    environment = info["environment"]
    production = (environment.get("environment") or "").lower() == "production"

    if mode == RateLimitMode.MEMORY.value and production:
        hints.append("CRITICAL: Switch to Redis-based rate limiting for production deployment")
        hints.append("Set REDIS_URL environment variable to enable Redis rate limiting")
    if mode == RateLimitMode.DISABLED.value:
        hints.append("Rate limiting is disabled - consider enabling for better security")
    if mode == RateLimitMode.REDIS.value and not environment.get("redis_configured"):
        hints.append("Redis mode enabled but REDIS_URL not configured")
    if mode == RateLimitMode.REDIS.value and environment.get("redis_configured"):
        hints.append("Optimal configuration - using Redis for distributed rate limiting")
    if mode == RateLimitMode.MEMORY.value and not production:
        hints.append("Good for development - using in-memory rate limiting")
        hints.append("Consider testing with Redis before production deployment")
    if not info["validation"]["is_valid"]:
        hints.append("Review the rate limit configuration warnings")
    if info["admins"]["count"] == 1:
        hints.append("Only one admin email configured - consider adding a backup admin for redundancy")
    return hints
