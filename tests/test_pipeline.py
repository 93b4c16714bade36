"""
Test suite untuk IngestionService: crawl, index dan status lifecycle
"""

import asyncio

import pytest

from knowledge_base.config import Settings
from knowledge_base.crawl import CrawlConfig, CrawlerSettings, CrawlMode
from knowledge_base.exceptions import (
    ConfigurationError,
    CrawlFailedError,
    CrawlTimeoutError,
    KnowledgeBaseError,
    RateLimitExceeded,
    ValidationError,
)
from knowledge_base.pipeline import IngestionService
from knowledge_base.ratelimit import AdminAllowlist, RateLimiterService, RateLimitMode, RateLimitSettings
from knowledge_base.rag import EmbeddingProvider
from knowledge_base.state import CrawlStateStore, CrawlStatus, InMemoryRagUrlRepository

BASE = "https://docs.example.com"
LIMITED = CrawlConfig(mode=CrawlMode.LIMITED, max_pages=10)
SINGLE = CrawlConfig(mode=CrawlMode.SINGLE)


@pytest.fixture
def docs_site(site_factory, page_html):
    """Seed plus nine linked pages; pages 2, 5 and 7 return 404"""
    links = [f"/page/{i}" for i in range(9)]
    pages = {f"{BASE}/": page_html("Home", links=links)}
    for i in range(9):
        pages[f"{BASE}/page/{i}"] = page_html(f"Page {i}")
    return site_factory(pages, status={f"{BASE}/page/{i}": 404 for i in (2, 5, 7)})


@pytest.fixture
def make_service(crawler_settings, index_factory, adapter_factory):
    def build(site, rate_limiter=None, settings=None, embedder_factory=None, crawler=None):
        repository = InMemoryRagUrlRepository()
        index = index_factory()
        service = IngestionService(
            settings or Settings(vector_index_name="kb-index"),
            CrawlStateStore(repository),
            rate_limiter=rate_limiter,
            crawler_settings=crawler or crawler_settings,
            embedder_factory=embedder_factory or (lambda provider, settings: adapter_factory(provider)),
            index_factory=lambda settings, embedder, dimensions: index,
            http_client=site.client(),
        )
        return service, repository, index
    return build


@pytest.mark.integration
class TestCrawlUrlConfig:
    """Test cases untuk crawl_url_config"""

    @pytest.mark.asyncio
    async def test_partial_success(self, make_service, docs_site):
        service, repository, index = make_service(docs_site)
        row = repository.create(BASE, "kb", LIMITED)

        response = await service.crawl_url_config(row.id)

        assert response.status is CrawlStatus.PARTIAL_SUCCESS
        assert response.crawl_stats.pages_processed == 7
        assert response.warning == "3 pages failed to process"
        assert response.message == "Crawl completed with partial success"
        assert len(index.namespaces["kb"]) == 7

        stored = repository.read_config(row.id)
        assert stored.crawl_status is CrawlStatus.PARTIAL_SUCCESS
        assert stored.pages_indexed == 7
        assert stored.error_message == "Partial success: 3 pages failed"
        assert stored.last_crawled is not None

        data = response.to_dict()
        assert data['urlId'] == row.id
        assert data['status'] == "partial_success"
        assert data['embeddingProvider'] == "openai"

    @pytest.mark.asyncio
    async def test_success(self, make_service, docs_site):
        service, repository, index = make_service(docs_site)
        row = repository.create(BASE, "kb", SINGLE)

        response = await service.crawl_url_config(row.id)

        assert response.status is CrawlStatus.SUCCESS
        assert response.warning is None
        stored = repository.read_config(row.id)
        assert stored.crawl_status is CrawlStatus.SUCCESS
        assert stored.pages_indexed == 1
        assert stored.error_message is None

    @pytest.mark.asyncio
    async def test_all_pages_fail(self, make_service, site_factory):
        site = site_factory({}, status={f"{BASE}/": 500})
        service, repository, index = make_service(site)
        row = repository.create(BASE, "kb", SINGLE)

        with pytest.raises(CrawlFailedError) as exc_info:
            await service.crawl_url_config(row.id)

        assert exc_info.value.message.startswith("Failed to crawl any pages. Errors:")
        stored = repository.read_config(row.id)
        assert stored.crawl_status is CrawlStatus.FAILED
        assert stored.pages_indexed == 0
        assert stored.error_message.startswith("Failed to crawl any pages. Errors:")
        assert index.namespaces == {}

    @pytest.mark.asyncio
    async def test_already_in_progress(self, make_service, docs_site):
        service, repository, _ = make_service(docs_site)
        row = repository.create(BASE, "kb", LIMITED)
        repository.try_begin(row.id)

        response = await service.crawl_url_config(row.id)

        assert not response.started
        assert response.status is CrawlStatus.IN_PROGRESS
        assert response.message == "Crawl already in progress for this URL"
        assert docs_site.requested == []

    @pytest.mark.asyncio
    async def test_inactive(self, make_service, docs_site):
        service, repository, _ = make_service(docs_site)
        row = repository.create(BASE, "kb", LIMITED, is_active=False)

        with pytest.raises(ValidationError, match="Cannot crawl inactive URL configuration"):
            await service.crawl_url_config(row.id)
        assert docs_site.requested == []

    @pytest.mark.asyncio
    async def test_rate_limited_crawl_restores_status(self, make_service, docs_site, clock):
        limiter = RateLimiterService(
            RateLimitSettings(mode=RateLimitMode.MEMORY, crawl_limits={
                CrawlMode.SINGLE: 1, CrawlMode.LIMITED: 1, CrawlMode.DEEP: 1,
            }),
            admins=AdminAllowlist([]),
            clock=clock,
        )
        service, repository, _ = make_service(docs_site, rate_limiter=limiter)
        row = repository.create(BASE, "kb", LIMITED)

        first = await service.crawl_url_config(row.id, identity="u1")
        assert first.rate_limit.remaining == 0
        requests_before = len(docs_site.requested)

        with pytest.raises(RateLimitExceeded):
            await service.crawl_url_config(row.id, identity="u1")

        stored = repository.read_config(row.id)
        assert stored.crawl_status is CrawlStatus.PARTIAL_SUCCESS
        assert stored.error_message == "Partial success: 3 pages failed"
        assert len(docs_site.requested) == requests_before

    @pytest.mark.asyncio
    async def test_missing_index_name_fails_row(self, make_service, docs_site):
        service, repository, _ = make_service(docs_site, settings=Settings())
        row = repository.create(BASE, "kb", SINGLE)

        with pytest.raises(ConfigurationError, match="VECTOR_INDEX_NAME"):
            await service.crawl_url_config(row.id)

        stored = repository.read_config(row.id)
        assert stored.crawl_status is CrawlStatus.FAILED
        assert "VECTOR_INDEX_NAME" in stored.error_message
        assert docs_site.requested == []

    @pytest.mark.asyncio
    async def test_unexpected_error_is_wrapped(self, make_service, docs_site):
        def broken_factory(provider, settings):
            raise RuntimeError("client init exploded")

        service, repository, _ = make_service(docs_site, embedder_factory=broken_factory)
        row = repository.create(BASE, "kb", SINGLE)

        with pytest.raises(KnowledgeBaseError, match="Crawl operation failed: client init exploded"):
            await service.crawl_url_config(row.id)
        assert repository.read_config(row.id).crawl_status is CrawlStatus.FAILED

    @pytest.mark.asyncio
    async def test_invalid_provider_leaves_row_untouched(self, make_service, docs_site):
        service, repository, _ = make_service(docs_site)
        row = repository.create(BASE, "kb", SINGLE)

        with pytest.raises(ValidationError):
            await service.crawl_url_config(row.id, embedding_provider="cohere")
        assert repository.read_config(row.id).crawl_status is CrawlStatus.PENDING

    @pytest.mark.asyncio
    async def test_timeout_with_nothing_indexed(self, make_service, site_factory, page_html):
        site = site_factory({f"{BASE}/": page_html("Home")}, slow={f"{BASE}/"})
        crawler = CrawlerSettings(max_retries=0, retry_backoff=0.0,
                                  mode_timeouts={CrawlMode.SINGLE: 0.2})
        service, repository, _ = make_service(site, crawler=crawler)
        row = repository.create(BASE, "kb", SINGLE)

        with pytest.raises(CrawlTimeoutError):
            await service.crawl_url_config(row.id)
        assert repository.read_config(row.id).crawl_status is CrawlStatus.FAILED

    @pytest.mark.asyncio
    async def test_provider_mismatch_fails_before_fetching(self, make_service, docs_site):
        service, repository, index = make_service(docs_site)
        row = repository.create(BASE, "kb", SINGLE)
        await service.crawl_url_config(row.id)
        requests_before = len(docs_site.requested)

        with pytest.raises(ConfigurationError, match="1024-dimensional"):
            await service.crawl_url_config(row.id, embedding_provider="google")

        assert len(docs_site.requested) == requests_before
        stored = repository.read_config(row.id)
        assert stored.crawl_status is CrawlStatus.FAILED
        assert "1024-dimensional" in stored.error_message

    @pytest.mark.asyncio
    async def test_cancelled_crawl_releases_row(self, make_service, site_factory, page_html):
        site = site_factory({f"{BASE}/": page_html("Home")}, slow={f"{BASE}/"})
        service, repository, _ = make_service(site)
        row = repository.create(BASE, "kb", SINGLE)

        task = asyncio.create_task(service.crawl_url_config(row.id))
        while not site.requested:
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        stored = repository.read_config(row.id)
        assert stored.crawl_status is CrawlStatus.FAILED
        assert stored.error_message == "Crawl was cancelled before completion"
        assert (await service.state_store.begin_crawl(row.id)).ok


@pytest.mark.integration
class TestCrawlAdHoc:
    """Test cases untuk crawl_ad_hoc"""

    @pytest.mark.asyncio
    async def test_invalid_config_rejected_before_fetching(self, make_service, docs_site):
        service, _, _ = make_service(docs_site)

        with pytest.raises(ValidationError, match="maxDepth must be 2 or 3"):
            await service.crawl_ad_hoc(BASE, {"mode": "deep", "maxDepth": 4})
        assert docs_site.requested == []

    @pytest.mark.asyncio
    async def test_indexes_into_default_namespace(self, make_service, docs_site):
        service, _, index = make_service(docs_site)

        response = await service.crawl_ad_hoc(BASE, {"mode": "limited", "maxPages": 3})

        assert response.namespace == "default"
        assert response.status is CrawlStatus.SUCCESS
        assert len(index.namespaces["default"]) == 3

    @pytest.mark.asyncio
    async def test_google_provider(self, make_service, docs_site):
        service, _, index = make_service(docs_site)

        response = await service.crawl_ad_hoc(
            BASE, {"mode": "single"}, embedding_provider="google", namespace="kb-google",
        )

        assert response.embedding_provider is EmbeddingProvider.GOOGLE
        assert all(len(r.values) == 768 for r in index.namespaces["kb-google"].values())

    @pytest.mark.asyncio
    async def test_dry_run_does_not_index(self, make_service, docs_site):
        service, _, index = make_service(docs_site, settings=Settings())

        response = await service.crawl_ad_hoc(BASE, {"mode": "limited", "maxPages": 4}, dry_run=True)

        assert len(response.pages) == 4
        assert response.embedding_provider is None
        assert index.upsert_calls == 0

    @pytest.mark.asyncio
    async def test_rate_limit_applies_per_identity(self, make_service, docs_site, clock):
        limiter = RateLimiterService(
            RateLimitSettings(mode=RateLimitMode.MEMORY), admins=AdminAllowlist([]), clock=clock,
        )
        service, _, _ = make_service(docs_site, rate_limiter=limiter)

        response = await service.crawl_ad_hoc(BASE, {"mode": "single"}, identity="u1")

        assert response.rate_limit.allowed
        assert response.rate_limit.remaining == 29
        assert "crawl:single:u1" in limiter.backend.records

    @pytest.mark.asyncio
    async def test_all_pages_fail(self, make_service, site_factory):
        site = site_factory({}, status={f"{BASE}/": 503})
        service, _, _ = make_service(site)

        with pytest.raises(CrawlFailedError) as exc_info:
            await service.crawl_ad_hoc(BASE, {"mode": "single"})
        assert "HTTP 503" in exc_info.value.errors[0]
