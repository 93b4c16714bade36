"""
Rate limiting configuration: budgets, bounds validation and backend mode resolution
"""

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Mapping, Optional, Tuple

from knowledge_base.crawl.config import CrawlMode

logger = logging.getLogger(__name__)

DEFAULT_MAX_PER_MINUTE = 5
DEFAULT_MAX_PER_HOUR = 20

MIN_PER_MINUTE = 1
MAX_PER_MINUTE = 100
MIN_PER_HOUR = 1
MAX_PER_HOUR = 1000

WINDOW_SECONDS = 60
HOURLY_WINDOW_SECONDS = 60 * 60

DEFAULT_CRAWL_LIMITS = {
    CrawlMode.SINGLE: 30,
    CrawlMode.LIMITED: 10,
    CrawlMode.DEEP: 5,
}

DEFAULT_SWEEP_INTERVAL = 5 * 60


class RateLimitMode(str, Enum):
    REDIS = "redis"
    MEMORY = "memory"
    DISABLED = "disabled"


def parse_limit(name: str, raw: Optional[str], default: int, minimum: int, maximum: int,
                warnings: List[str]) -> int:
    """Parse one budget value, clamping to bounds and collecting warnings"""
    if raw is None or not raw.strip():
        return default
    try:
        parsed = int(raw.strip())
    except ValueError:
        warnings.append(f'Invalid {name}: "{raw}" is not a valid number. Using default: {default}')
        return default
    if parsed < minimum:
        warnings.append(f"{name}: {parsed} is too low (minimum: {minimum}). Using minimum: {minimum}")
        return minimum
    if parsed > maximum:
        warnings.append(f"{name}: {parsed} is too high (maximum: {maximum}). Using maximum: {maximum}")
        return maximum
    return parsed


def resolve_mode(env: Mapping[str, str]) -> Tuple[RateLimitMode, List[str]]:
    """Pick the backend once: explicit mode, then Redis, then production, then memory"""
    warnings: List[str] = []
    explicit = (env.get("RATE_LIMIT_MODE") or "").strip().lower()
    production = (env.get("ENVIRONMENT") or "").strip().lower() == "production"

    if explicit:
        try:
            mode = RateLimitMode(explicit)
        except ValueError:
            warnings.append(f"Unknown RATE_LIMIT_MODE '{explicit}', falling back to memory")
            mode = RateLimitMode.MEMORY
    elif env.get("REDIS_URL"):
        mode = RateLimitMode.REDIS
    elif production:
        warnings.append(
            "PRODUCTION WARNING: No Redis configured, rate limiting disabled. "
            "Consider setting REDIS_URL for proper rate limiting."
        )
        mode = RateLimitMode.DISABLED
    else:
        mode = RateLimitMode.MEMORY

    if mode is RateLimitMode.MEMORY and production:
        warnings.append(
            "PRODUCTION WARNING: Using in-memory rate limiting. This will not work with multiple instances!"
        )
    return mode, warnings


@dataclass
class RateLimitSettings:
    """Resolved rate limiting configuration"""
    mode: RateLimitMode = RateLimitMode.MEMORY
    max_per_minute: int = DEFAULT_MAX_PER_MINUTE
    max_per_hour: int = DEFAULT_MAX_PER_HOUR
    window_seconds: int = WINDOW_SECONDS
    hourly_window_seconds: int = HOURLY_WINDOW_SECONDS
    crawl_limits: Dict[CrawlMode, int] = field(default_factory=lambda: dict(DEFAULT_CRAWL_LIMITS))
    sweep_interval: float = DEFAULT_SWEEP_INTERVAL

    redis_url: Optional[str] = None
    environment: str = "development"
    rate_limit_mode_env: Optional[str] = None

    admin_emails_raw: Optional[str] = None
    emergency_bypass_ids: List[str] = field(default_factory=list)
    # "identity=email" pairs for the static directory
    identity_directory_raw: Optional[str] = None

    warnings: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.warnings

    def crawl_limit(self, mode: CrawlMode) -> int:
        return self.crawl_limits.get(CrawlMode(mode), DEFAULT_CRAWL_LIMITS[CrawlMode(mode)])

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "RateLimitSettings":
        env = os.environ if env is None else env
        warnings: List[str] = []

        max_per_minute = parse_limit(
            "MAX_REQUESTS_PER_MINUTE", env.get("MAX_REQUESTS_PER_MINUTE"),
            DEFAULT_MAX_PER_MINUTE, MIN_PER_MINUTE, MAX_PER_MINUTE, warnings,
        )
        max_per_hour = parse_limit(
            "MAX_REQUESTS_PER_HOUR", env.get("MAX_REQUESTS_PER_HOUR"),
            DEFAULT_MAX_PER_HOUR, MIN_PER_HOUR, MAX_PER_HOUR, warnings,
        )
        if max_per_minute * 60 > max_per_hour:
            warnings.append(
                f"Rate limit configuration issue: {max_per_minute}/minute * 60 = "
                f"{max_per_minute * 60}/hour exceeds {max_per_hour}/hour limit. "
                "Consider adjusting the values."
            )

        crawl_limits = {
            mode: parse_limit(
                f"CRAWL_LIMIT_{mode.name}_PER_HOUR", env.get(f"CRAWL_LIMIT_{mode.name}_PER_HOUR"),
                DEFAULT_CRAWL_LIMITS[mode], MIN_PER_HOUR, MAX_PER_HOUR, warnings,
            )
            for mode in CrawlMode
        }

        mode, mode_warnings = resolve_mode(env)
        warnings.extend(mode_warnings)

        try:
            sweep_interval = float(env.get("RATE_LIMIT_SWEEP_INTERVAL") or DEFAULT_SWEEP_INTERVAL)
        except ValueError:
            sweep_interval = DEFAULT_SWEEP_INTERVAL

        bypass_ids = [
            item.strip()
            for item in (env.get("RATE_LIMIT_EMERGENCY_BYPASS_IDS") or "").split(",")
            if item.strip()
        ]

        return cls(
            mode=mode,
            max_per_minute=max_per_minute,
            max_per_hour=max_per_hour,
            crawl_limits=crawl_limits,
            sweep_interval=max(1.0, sweep_interval),
            redis_url=env.get("REDIS_URL") or None,
            environment=env.get("ENVIRONMENT") or "development",
            rate_limit_mode_env=env.get("RATE_LIMIT_MODE") or None,
            admin_emails_raw=env.get("ADMIN_EMAILS"),
            emergency_bypass_ids=bypass_ids,
            identity_directory_raw=env.get("IDENTITY_DIRECTORY"),
            warnings=warnings,
        )

    def log_startup(self) -> None:
        """Log the resolved configuration and any warnings"""
        logger.info(f"Rate limiting: {self.mode.value.upper()} mode")
        logger.info(f"   Limits: {self.max_per_minute}/minute, {self.max_per_hour}/hour per identity")
        for warning in self.warnings:
            logger.warning(warning)
        if self.mode is RateLimitMode.DISABLED:
            logger.warning("Rate limiting disabled - relying on upstream limits only.")
