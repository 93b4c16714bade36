"""
CrawlStateStore: crawl lifecycle transitions for RagUrlConfig rows
"""

import asyncio
import logging
from typing import Optional

from knowledge_base.crawl.models import CrawlStats
from knowledge_base.exceptions import NotFoundError
from .models import (
    BeginCrawlResult,
    CrawlOutcome,
    CrawlStatus,
    RagUrlConfig,
    condense,
    utcnow,
)
from .repository import RagUrlRepository

logger = logging.getLogger(__name__)


class CrawlStateStore:
    """Guards against concurrent crawls of one row and records terminal status.

    Repository calls are blocking, so they run in worker threads.
    """

    def __init__(self, repository: RagUrlRepository):
        self.repository = repository

    async def get(self, config_id: int) -> RagUrlConfig:
        config = await asyncio.to_thread(self.repository.read_config, config_id)
        if config is None:
            raise NotFoundError(f"RAG URL config {config_id} not found")
        return config

    async def begin_crawl(self, config_id: int) -> BeginCrawlResult:
        """Move a row to in_progress; ``already_in_progress`` and ``inactive`` are normal outcomes"""
        result = await asyncio.to_thread(self.repository.try_begin, config_id)
        if result.ok:
            logger.info(f"Crawl started for config {config_id}")
        else:
            logger.info(f"Crawl not started for config {config_id}: {result.outcome.value}")
        return result

    async def complete_crawl(self, config_id: int, outcome: CrawlOutcome) -> RagUrlConfig:
        config = await asyncio.to_thread(
            self.repository.write_config,
            config_id,
            {
                "crawl_status": outcome.status,
                "pages_indexed": outcome.pages_indexed,
                "error_message": outcome.error_message,
                "last_crawled": utcnow(),
            },
        )
        logger.info(
            f"Crawl finished for config {config_id}: {outcome.status.value} "
            f"({outcome.pages_indexed} pages indexed)"
        )
        return config

    async def complete_from_stats(self, config_id: int, stats: CrawlStats) -> RagUrlConfig:
        outcome = CrawlOutcome.classify(
            stats.pages_processed, len(stats.failed_pages), stats.errors, stats.timed_out,
        )
        return await self.complete_crawl(config_id, outcome)

    async def fail_crawl(self, config_id: int, message: str) -> RagUrlConfig:
        """Terminal failure after an unhandled pipeline exception"""
        return await self.complete_crawl(
            config_id, CrawlOutcome(CrawlStatus.FAILED, 0, condense(message)),
        )

    async def abort_crawl(self, config_id: int, previous: Optional[CrawlStatus],
                          error_message: Optional[str] = None) -> RagUrlConfig:
        """Undo begin_crawl for a crawl rejected before any traversal.

        Restores the status and the error message that begin_crawl cleared.
        """
        status = previous or CrawlStatus.PENDING
        logger.info(f"Crawl aborted for config {config_id}; restoring status {status.value}")
        return await asyncio.to_thread(
            self.repository.write_config, config_id,
            {"crawl_status": status, "error_message": error_message},
        )

    async def can_modify(self, config_id: int) -> bool:
        """False while a crawl is running; callers reject edits and deletes then"""
        config = await self.get(config_id)
        return config.crawl_status is not CrawlStatus.IN_PROGRESS
