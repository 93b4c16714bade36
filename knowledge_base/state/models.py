"""
Crawl state models: RagUrlConfig rows and begin-crawl outcomes
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from knowledge_base.crawl.config import CrawlConfig, CrawlMode

ERROR_MESSAGE_MAX_LENGTH = 1000


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CrawlStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (CrawlStatus.SUCCESS, CrawlStatus.PARTIAL_SUCCESS, CrawlStatus.FAILED)


class BeginCrawlOutcome(str, Enum):
    OK = "ok"
    ALREADY_IN_PROGRESS = "already_in_progress"
    INACTIVE = "inactive"


@dataclass
class RagUrlConfig:
    """A URL registered for ingestion into a namespace"""
    id: int
    url: str
    namespace: str = "default"
    crawl_config: CrawlConfig = field(default_factory=lambda: CrawlConfig(mode=CrawlMode.SINGLE))
    is_active: bool = True
    crawl_status: CrawlStatus = CrawlStatus.PENDING
    pages_indexed: int = 0
    error_message: Optional[str] = None
    last_crawled: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def copy(self, **changes) -> "RagUrlConfig":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'url': self.url,
            'namespace': self.namespace,
            'crawlConfig': self.crawl_config.to_dict(),
            'isActive': self.is_active,
            'crawlStatus': self.crawl_status.value,
            'pagesIndexed': self.pages_indexed,
            'errorMessage': self.error_message,
            'lastCrawled': self.last_crawled.isoformat() if self.last_crawled else None,
            'createdAt': self.created_at.isoformat(),
            'updatedAt': self.updated_at.isoformat(),
        }


@dataclass
class BeginCrawlResult:
    outcome: BeginCrawlOutcome
    config: Optional[RagUrlConfig] = None
    previous_status: Optional[CrawlStatus] = None
    previous_error_message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome is BeginCrawlOutcome.OK


@dataclass
class CrawlOutcome:
    """Condensed crawl summary persisted onto a RagUrlConfig"""
    status: CrawlStatus
    pages_indexed: int
    error_message: Optional[str] = None

    @classmethod
    def classify(cls, pages_processed: int, failed_pages: int, errors=None,
                 timed_out: bool = False) -> "CrawlOutcome":
        """success: no failures; partial_success: some of each; failed: nothing indexed"""
        errors = list(errors or [])
        if pages_processed == 0:
            message = "Failed to crawl any pages"
            if errors:
                message += f". Errors: {'; '.join(errors[:3])}"
            return cls(CrawlStatus.FAILED, 0, condense(message))
        if failed_pages or timed_out:
            message = f"Partial success: {failed_pages} pages failed"
            if timed_out:
                message += " (crawl timed out)"
            return cls(CrawlStatus.PARTIAL_SUCCESS, pages_processed, condense(message))
        return cls(CrawlStatus.SUCCESS, pages_processed, None)


def condense(message: Optional[str]) -> Optional[str]:
    if message is None:
        return None
    if len(message) <= ERROR_MESSAGE_MAX_LENGTH:
        return message
    return message[:ERROR_MESSAGE_MAX_LENGTH - 3] + "..."
