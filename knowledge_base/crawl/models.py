"""
Data models for the crawler
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass
class Page:
    """Data structure for a fetched page"""
    url: str
    content: str
    title: Optional[str] = None
    depth: int = 0

    def to_dict(self) -> Dict:
        """Convert to dictionary for JSON serialization"""
        return {
            'url': self.url,
            'content': self.content,
            'title': self.title,
        }


@dataclass
class CrawlStats:
    """Per-run crawl statistics"""
    pages_found: int = 0
    pages_processed: int = 0
    failed_pages: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    total_tokens: int = 0
    crawl_duration: float = 0.0
    timed_out: bool = False

    def to_dict(self) -> Dict:
        return {
            'pagesFound': self.pages_found,
            'pagesProcessed': self.pages_processed,
            'failedPages': list(self.failed_pages),
            'errors': list(self.errors),
            'totalTokens': self.total_tokens,
            'crawlDuration': round(self.crawl_duration, 3),
            'timedOut': self.timed_out,
        }


@dataclass
class CrawlResult:
    pages: List[Page]
    stats: CrawlStats

    @property
    def has_successes(self) -> bool:
        return len(self.pages) > 0

    @property
    def has_failures(self) -> bool:
        return bool(self.stats.failed_pages) or self.stats.timed_out
