"""
Crawl module untuk knowledge base ingestion

Module ini berisi crawl policy validation, URL filtering, page fetching
dan crawl orchestrator dengan bounded concurrency.
"""

from .config import CrawlConfig, CrawlerSettings, CrawlMode, validate_crawl_config
from .crawler import CrawlOrchestrator, PageHandler
from .fetcher import FetchedPage, PageFetcher
from .models import CrawlResult, CrawlStats, Page
from .url_filter import UrlFilter, normalize_url

__all__ = [
    # Orchestrator
    'CrawlOrchestrator',
    'PageHandler',

    # Configuration
    'CrawlConfig',
    'CrawlerSettings',
    'CrawlMode',
    'validate_crawl_config',

    # Data models
    'Page',
    'CrawlStats',
    'CrawlResult',

    # Core components
    'PageFetcher',
    'FetchedPage',
    'UrlFilter',
    'normalize_url',
]
