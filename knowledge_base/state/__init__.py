"""
Crawl state module untuk RagUrlConfig lifecycle

Module ini berisi model status crawl, repository (in-memory dan
PostgreSQL) serta CrawlStateStore.
"""

from .models import (
    BeginCrawlOutcome,
    BeginCrawlResult,
    CrawlOutcome,
    CrawlStatus,
    RagUrlConfig,
)
from .repository import (
    InMemoryRagUrlRepository,
    PostgresRagUrlRepository,
    RagUrlRepository,
    create_repository,
)
from .store import CrawlStateStore

__all__ = [
    'CrawlStateStore',
    'CrawlStatus',
    'CrawlOutcome',
    'BeginCrawlOutcome',
    'BeginCrawlResult',
    'RagUrlConfig',
    'RagUrlRepository',
    'InMemoryRagUrlRepository',
    'PostgresRagUrlRepository',
    'create_repository',
]
