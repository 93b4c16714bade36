"""
Ingestion pipeline: crawl a URL, chunk and embed its pages, index the vectors
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import httpx

from knowledge_base.config import Settings
from knowledge_base.crawl import CrawlConfig, CrawlerSettings, CrawlOrchestrator, CrawlResult, Page
from knowledge_base.crawl.config import validate_crawl_config
from knowledge_base.crawl.models import CrawlStats
from knowledge_base.exceptions import (
    ConfigurationError,
    CrawlFailedError,
    CrawlTimeoutError,
    KnowledgeBaseError,
    ValidationError,
)
from knowledge_base.rag import (
    ChunkingOptions,
    DocumentProcessor,
    EmbeddingProvider,
    EmbeddingProviderAdapter,
    PGVectorIndex,
    VectorIndex,
    parse_provider,
)
from knowledge_base.ratelimit import RateLimiterService, RateLimitResult
from knowledge_base.state import BeginCrawlOutcome, CrawlOutcome, CrawlStateStore, CrawlStatus

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "default"
CANCELLED_MESSAGE = "Crawl was cancelled before completion"

EmbedderFactory = Callable[[EmbeddingProvider, Settings], EmbeddingProviderAdapter]
IndexFactory = Callable[[Settings, EmbeddingProviderAdapter, Dict[str, int]], VectorIndex]


def default_index_factory(settings: Settings, embedder: EmbeddingProviderAdapter,
                          namespace_dimensions: Dict[str, int]) -> VectorIndex:
    return PGVectorIndex(
        settings.vector_index_name,
        settings.vector_store_connection,
        embedder.embeddings,
        namespace_dimensions=namespace_dimensions,
    )


@dataclass
class CrawlResponse:
    """What a crawl trigger returns to its caller"""
    url: str
    namespace: str
    crawl_config: CrawlConfig
    status: CrawlStatus
    pages: List[Page] = field(default_factory=list)
    crawl_stats: Optional[CrawlStats] = None
    warning: Optional[str] = None
    url_config_id: Optional[int] = None
    embedding_provider: Optional[EmbeddingProvider] = None
    rate_limit: Optional[RateLimitResult] = None
    started: bool = True

    @property
    def message(self) -> str:
        if not self.started:
            return "Crawl already in progress for this URL"
        if self.status is CrawlStatus.PARTIAL_SUCCESS:
            return "Crawl completed with partial success"
        return "Crawl completed successfully"

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'url': self.url,
            'namespace': self.namespace,
            'status': self.status.value,
            'started': self.started,
            'crawlConfig': self.crawl_config.to_dict(),
            'pages': [page.to_dict() for page in self.pages],
            'crawlStats': self.crawl_stats.to_dict() if self.crawl_stats else None,
        }
        if self.url_config_id is not None:
            data['urlId'] = self.url_config_id
        if self.embedding_provider is not None:
            data['embeddingProvider'] = self.embedding_provider.value
        if self.warning:
            data['warning'] = self.warning
        return data


class IngestionService:
    """Runs the trigger-crawl operation for stored configs and ad hoc requests"""

    def __init__(self, settings: Settings, state_store: CrawlStateStore,
                 rate_limiter: Optional[RateLimiterService] = None,
                 crawler_settings: Optional[CrawlerSettings] = None,
                 embedder_factory: EmbedderFactory = EmbeddingProviderAdapter.from_settings,
                 index_factory: IndexFactory = default_index_factory,
                 http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self.state_store = state_store
        self.rate_limiter = rate_limiter
        self.crawler_settings = crawler_settings or CrawlerSettings.from_env()
        self.embedder_factory = embedder_factory
        self.index_factory = index_factory
        self.http_client = http_client
        self.chunking = ChunkingOptions.from_settings(settings)
        self._namespace_dimensions: Dict[str, int] = {}

    def build_processor(self, provider: EmbeddingProvider) -> DocumentProcessor:
        """Resolve embedder and vector index; raises ConfigurationError before any crawl"""
        if not self.settings.vector_index_name:
            raise ConfigurationError(
                "Vector index name is not configured. Please set VECTOR_INDEX_NAME in your environment variables."
            )
        embedder = self.embedder_factory(provider, self.settings)
        index = self.index_factory(self.settings, embedder, self._namespace_dimensions)
        return DocumentProcessor(index, embedder, self.chunking)

    async def _check_rate_limit(self, identity: Optional[str], config: CrawlConfig) -> Optional[RateLimitResult]:
        if self.rate_limiter is None or identity is None:
            return None
        return await self.rate_limiter.enforce_crawl(identity, config.mode)

    async def _run_crawl(self, url: str, namespace: str, config: CrawlConfig,
                         processor: Optional[DocumentProcessor]) -> CrawlResult:
        page_handler = None
        if processor is not None:
            async def page_handler(page: Page) -> int:
                return await processor.ingest_page(namespace, page)

        orchestrator = CrawlOrchestrator(
            self.crawler_settings, page_handler=page_handler, client=self.http_client,
        )
        return await orchestrator.crawl(url, config)

    @staticmethod
    def _raise_if_nothing_indexed(result: CrawlResult) -> None:
        if result.has_successes:
            return
        stats = result.stats
        if stats.timed_out:
            raise CrawlTimeoutError(
                "Crawl operation timed out. Please try with fewer pages or a simpler crawl mode."
            )
        if stats.errors:
            raise CrawlFailedError(
                f"Failed to crawl any pages. Errors: {'; '.join(stats.errors)}", stats.errors,
            )
        raise CrawlFailedError("Failed to crawl any pages from the specified URL.")

    @staticmethod
    def _warning(stats: CrawlStats) -> Optional[str]:
        parts = []
        if stats.failed_pages:
            parts.append(f"{len(stats.failed_pages)} pages failed to process")
        if stats.timed_out:
            parts.append("crawl timed out before completion; retry to index the remaining pages")
        return "; ".join(parts) or None

    async def crawl_url_config(self, config_id: int, identity: Optional[str] = None,
                               embedding_provider: Optional[str] = None) -> CrawlResponse:
        """Crawl and index a stored RagUrlConfig, recording its terminal status"""
        provider = parse_provider(embedding_provider or self.settings.default_embedding_provider)

        begin = await self.state_store.begin_crawl(config_id)
        url_config = begin.config
        if begin.outcome is BeginCrawlOutcome.INACTIVE:
            raise ValidationError("Cannot crawl inactive URL configuration")
        if begin.outcome is BeginCrawlOutcome.ALREADY_IN_PROGRESS:
            return CrawlResponse(
                url=url_config.url, namespace=url_config.namespace,
                crawl_config=url_config.crawl_config, status=CrawlStatus.IN_PROGRESS,
                url_config_id=config_id, started=False,
            )

        # From here on the row is in_progress and every exit must release it
        try:
            rate_limit = await self._check_rate_limit(identity, url_config.crawl_config)
        except (Exception, asyncio.CancelledError):
            await asyncio.shield(self.state_store.abort_crawl(
                config_id, begin.previous_status, begin.previous_error_message,
            ))
            raise

        try:
            processor = self.build_processor(provider)
            await processor.verify_namespace(url_config.namespace)
            result = await self._run_crawl(
                url_config.url, url_config.namespace, url_config.crawl_config, processor,
            )
        except KnowledgeBaseError as e:
            await self.state_store.fail_crawl(config_id, e.message)
            raise
        except asyncio.CancelledError:
            logger.warning(f"Crawl of config {config_id} was cancelled")
            await asyncio.shield(self.state_store.fail_crawl(config_id, CANCELLED_MESSAGE))
            raise
        except Exception as e:
            logger.exception(f"Crawl operation failed for config {config_id}")
            await self.state_store.fail_crawl(config_id, str(e) or "Crawl operation failed")
            raise KnowledgeBaseError(f"Crawl operation failed: {e}") from e

        stats = result.stats
        outcome = CrawlOutcome.classify(
            stats.pages_processed, len(stats.failed_pages), stats.errors, stats.timed_out,
        )
        await self.state_store.complete_crawl(config_id, outcome)
        self._raise_if_nothing_indexed(result)

        return CrawlResponse(
            url=url_config.url,
            namespace=url_config.namespace,
            crawl_config=url_config.crawl_config,
            status=outcome.status,
            pages=result.pages,
            crawl_stats=stats,
            warning=self._warning(stats),
            url_config_id=config_id,
            embedding_provider=provider,
            rate_limit=rate_limit,
        )

    async def crawl_ad_hoc(self, url: str, crawl_config: Any, identity: Optional[str] = None,
                           embedding_provider: Optional[str] = None,
                           namespace: Optional[str] = None,
                           dry_run: bool = False) -> CrawlResponse:
        """Crawl an arbitrary URL; with ``dry_run`` pages are fetched but not indexed"""
        if not url or not isinstance(url, str):
            raise ValidationError("URL is required")
        config = validate_crawl_config(crawl_config, max_pages_cap=self.crawler_settings.max_pages_cap)
        provider = parse_provider(embedding_provider or self.settings.default_embedding_provider)
        namespace = namespace or DEFAULT_NAMESPACE

        rate_limit = await self._check_rate_limit(identity, config)
        processor = None if dry_run else self.build_processor(provider)

        try:
            if processor is not None:
                await processor.verify_namespace(namespace)
            result = await self._run_crawl(url, namespace, config, processor)
        except KnowledgeBaseError:
            raise
        except Exception as e:
            logger.exception(f"Crawl operation failed for {url}")
            raise KnowledgeBaseError(f"Crawl operation failed: {e}") from e

        self._raise_if_nothing_indexed(result)
        stats = result.stats
        outcome = CrawlOutcome.classify(
            stats.pages_processed, len(stats.failed_pages), stats.errors, stats.timed_out,
        )
        return CrawlResponse(
            url=url,
            namespace=namespace,
            crawl_config=config,
            status=outcome.status,
            pages=result.pages,
            crawl_stats=stats,
            warning=self._warning(stats),
            embedding_provider=None if dry_run else provider,
            rate_limit=rate_limit,
        )
