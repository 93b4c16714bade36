"""
Configuration settings for the crawler
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from knowledge_base.config import env_float, env_int
from knowledge_base.exceptions import ValidationError


class CrawlMode(str, Enum):
    SINGLE = "single"
    LIMITED = "limited"
    DEEP = "deep"


ALLOWED_CONFIG_FIELDS = ("mode", "maxPages", "maxDepth")
MAX_PAGES_CAP = 50
ALLOWED_DEEP_DEPTHS = (2, 3)
MAX_DEPTH_CEILING = 10

DEFAULT_MODE_TIMEOUTS = {
    CrawlMode.SINGLE: 30.0,
    CrawlMode.LIMITED: 300.0,
    CrawlMode.DEEP: 600.0,
}


@dataclass(frozen=True)
class CrawlConfig:
    """Validated crawl policy chosen by an admin"""
    mode: CrawlMode
    max_pages: Optional[int] = None
    max_depth: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the camelCase wire format"""
        data: Dict[str, Any] = {"mode": self.mode.value}
        if self.max_pages is not None:
            data["maxPages"] = self.max_pages
        if self.max_depth is not None:
            data["maxDepth"] = self.max_depth
        return data

    @property
    def page_limit(self) -> Optional[int]:
        """Cap on successfully fetched pages, None when unbounded"""
        if self.mode is CrawlMode.SINGLE:
            return 1
        if self.mode is CrawlMode.LIMITED:
            return self.max_pages
        return None

    @property
    def depth_limit(self) -> Optional[int]:
        """Maximum hop count from the seed, None when unbounded"""
        if self.mode is CrawlMode.SINGLE:
            return 0
        if self.mode is CrawlMode.DEEP:
            return self.max_depth
        return None

    @classmethod
    def from_dict(cls, data: Any, max_pages_cap: int = MAX_PAGES_CAP) -> "CrawlConfig":
        return validate_crawl_config(data, max_pages_cap=max_pages_cap)


def _require_integer(name: str, value: Any) -> int:
    # bool is an int subclass but never a valid page or depth count
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{name} must be a number")
    if isinstance(value, float) and not value.is_integer():
        raise ValidationError(f"{name} must be an integer")
    if value < 1:
        raise ValidationError(f"{name} must be a positive number (minimum 1)")
    return int(value)


def validate_crawl_config(data: Any, max_pages_cap: int = MAX_PAGES_CAP) -> CrawlConfig:
    """Validate a raw crawl configuration and return the sanitized config.

    Raises ValidationError with a human readable message on the first
    violated rule. Keys that are present count as specified, even when
    their value is None.
    """
    if not isinstance(data, dict):
        raise ValidationError("Invalid crawl configuration: must be an object")

    unexpected = [key for key in data if key not in ALLOWED_CONFIG_FIELDS]
    if unexpected:
        raise ValidationError(
            f"Unexpected properties in crawl configuration: {', '.join(map(str, unexpected))}"
        )

    mode = data.get("mode")
    if not mode:
        raise ValidationError("Crawl mode is required")
    if not isinstance(mode, str) or mode not in {m.value for m in CrawlMode}:
        raise ValidationError("Invalid crawl mode. Must be 'single', 'limited', or 'deep'")

    crawl_mode = CrawlMode(mode)
    has_pages = "maxPages" in data
    has_depth = "maxDepth" in data

    if crawl_mode is CrawlMode.SINGLE:
        if has_pages:
            raise ValidationError("Single crawl mode should not specify maxPages")
        if has_depth:
            raise ValidationError("Single crawl mode should not specify maxDepth")
        return CrawlConfig(mode=crawl_mode)

    if crawl_mode is CrawlMode.LIMITED:
        if has_depth:
            raise ValidationError("Limited crawl mode should not specify maxDepth")
        if not has_pages:
            raise ValidationError("Limited crawl mode requires maxPages to be specified")
        max_pages = _require_integer("maxPages", data["maxPages"])
        if max_pages > max_pages_cap:
            raise ValidationError(
                f"For limited crawl mode, maxPages must be between 1 and {max_pages_cap}"
            )
        return CrawlConfig(mode=crawl_mode, max_pages=max_pages)

    if has_pages:
        raise ValidationError("Deep crawl mode should not specify maxPages")
    if not has_depth:
        raise ValidationError("Deep crawl mode requires maxDepth to be specified")
    max_depth = _require_integer("maxDepth", data["maxDepth"])
    if max_depth > MAX_DEPTH_CEILING:
        raise ValidationError(
            f"maxDepth cannot exceed {MAX_DEPTH_CEILING} for security and performance reasons"
        )
    if max_depth not in ALLOWED_DEEP_DEPTHS:
        raise ValidationError("For deep crawl mode, maxDepth must be 2 or 3")
    return CrawlConfig(mode=crawl_mode, max_depth=max_depth)


@dataclass
class CrawlerSettings:
    """Configuration class for crawler settings"""
    # Basic crawling settings
    concurrency: int = 4
    request_timeout: float = 30.0
    max_retries: int = 3
    retry_backoff: float = 1.0
    user_agent: str = "Mozilla/5.0 (compatible; KnowledgeBaseBot/1.0)"
    max_pages_cap: int = MAX_PAGES_CAP

    # Overall wall-clock budget per crawl mode
    mode_timeouts: Dict[CrawlMode, float] = field(
        default_factory=lambda: dict(DEFAULT_MODE_TIMEOUTS)
    )

    # Content filtering
    max_url_length: int = 2000

    def timeout_for(self, mode: CrawlMode) -> float:
        return self.mode_timeouts.get(mode, DEFAULT_MODE_TIMEOUTS[mode])

    @classmethod
    def from_env(cls) -> "CrawlerSettings":
        return cls(
            concurrency=max(1, env_int("CRAWL_CONCURRENCY", 4)),
            request_timeout=env_float("CRAWL_REQUEST_TIMEOUT", 30.0),
            max_retries=max(0, env_int("CRAWL_MAX_RETRIES", 3)),
            retry_backoff=env_float("CRAWL_RETRY_BACKOFF", 1.0),
            user_agent=os.getenv("CRAWL_USER_AGENT", cls.user_agent),
            max_pages_cap=env_int("CRAWL_MAX_PAGES_CAP", MAX_PAGES_CAP),
            mode_timeouts={
                CrawlMode.SINGLE: env_float("CRAWL_TIMEOUT_SINGLE", 30.0),
                CrawlMode.LIMITED: env_float("CRAWL_TIMEOUT_LIMITED", 300.0),
                CrawlMode.DEEP: env_float("CRAWL_TIMEOUT_DEEP", 600.0),
            },
        )
