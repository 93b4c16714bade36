"""
Test suite untuk CrawlStateStore dan outcome classification
"""

from unittest.mock import MagicMock, patch

import psycopg2
import pytest

from knowledge_base.crawl import CrawlConfig, CrawlMode, CrawlStats
from knowledge_base.exceptions import ConfigurationError, ExternalServiceError, NotFoundError
from knowledge_base.state import (
    BeginCrawlOutcome,
    CrawlOutcome,
    CrawlStateStore,
    CrawlStatus,
    InMemoryRagUrlRepository,
    PostgresRagUrlRepository,
    create_repository,
)
from knowledge_base.state.models import ERROR_MESSAGE_MAX_LENGTH, condense, utcnow

LIMITED = CrawlConfig(mode=CrawlMode.LIMITED, max_pages=10)


@pytest.mark.unit
class TestCrawlOutcome:

    def test_success(self):
        outcome = CrawlOutcome.classify(10, 0, [])
        assert outcome == CrawlOutcome(CrawlStatus.SUCCESS, 10, None)

    def test_partial_success(self):
        outcome = CrawlOutcome.classify(7, 3, ["a", "b", "c"])
        assert outcome.status is CrawlStatus.PARTIAL_SUCCESS
        assert outcome.pages_indexed == 7
        assert outcome.error_message == "Partial success: 3 pages failed"

    def test_timeout_without_failures_is_partial(self):
        outcome = CrawlOutcome.classify(4, 0, ["Crawl timed out"], timed_out=True)
        assert outcome.status is CrawlStatus.PARTIAL_SUCCESS
        assert "timed out" in outcome.error_message

    def test_failed(self):
        outcome = CrawlOutcome.classify(0, 2, ["HTTP 500", "HTTP 404"])
        assert outcome.status is CrawlStatus.FAILED
        assert outcome.pages_indexed == 0
        assert outcome.error_message == "Failed to crawl any pages. Errors: HTTP 500; HTTP 404"

    def test_condense_truncates(self):
        message = condense("x" * 5000)
        assert len(message) == ERROR_MESSAGE_MAX_LENGTH
        assert message.endswith("...")

    def test_terminal_statuses(self):
        assert not CrawlStatus.IN_PROGRESS.is_terminal
        assert not CrawlStatus.PENDING.is_terminal
        assert CrawlStatus.PARTIAL_SUCCESS.is_terminal


@pytest.mark.unit
class TestInMemoryRepository:

    def setup_method(self):
        self.repository = InMemoryRagUrlRepository()

    def test_create_and_list(self):
        first = self.repository.create("https://a.example.com", "kb", LIMITED)
        self.repository.create("https://b.example.com", "kb", LIMITED, is_active=False)

        assert first.id == 1
        assert first.crawl_status is CrawlStatus.PENDING
        assert [row.id for row in self.repository.list()] == [1, 2]
        assert [row.id for row in self.repository.list(active_only=True)] == [1]

    def test_duplicate_url_rejected(self):
        self.repository.create("https://a.example.com", "kb", LIMITED)
        with pytest.raises(ValueError):
            self.repository.create("https://a.example.com", "other", LIMITED)

    def test_write_rejects_unknown_fields(self):
        row = self.repository.create("https://a.example.com", "kb", LIMITED)
        with pytest.raises(ValueError, match="Unknown RagUrlConfig fields: id"):
            self.repository.write_config(row.id, {"id": 9})

    def test_write_missing_row(self):
        with pytest.raises(NotFoundError):
            self.repository.write_config(42, {"pages_indexed": 1})

    def test_read_returns_copies(self):
        row = self.repository.create("https://a.example.com", "kb", LIMITED)
        row.pages_indexed = 99
        assert self.repository.read_config(row.id).pages_indexed == 0

    def test_delete(self):
        row = self.repository.create("https://a.example.com", "kb", LIMITED)
        assert self.repository.delete(row.id)
        assert not self.repository.delete(row.id)
        assert self.repository.read_config(row.id) is None

    def test_create_repository_without_database(self):
        assert isinstance(create_repository(None), InMemoryRagUrlRepository)


@pytest.mark.unit
class TestCrawlStateStore:
    """Test cases untuk lifecycle transitions"""

    def setup_method(self):
        self.repository = InMemoryRagUrlRepository()
        self.store = CrawlStateStore(self.repository)
        self.row = self.repository.create("https://docs.example.com", "kb", LIMITED)

    @pytest.mark.asyncio
    async def test_begin_crawl(self):
        result = await self.store.begin_crawl(self.row.id)

        assert result.ok
        assert result.previous_status is CrawlStatus.PENDING
        assert (await self.store.get(self.row.id)).crawl_status is CrawlStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_second_begin_is_already_in_progress(self):
        await self.store.begin_crawl(self.row.id)

        result = await self.store.begin_crawl(self.row.id)

        assert result.outcome is BeginCrawlOutcome.ALREADY_IN_PROGRESS
        assert not result.ok

    @pytest.mark.asyncio
    async def test_inactive_row(self):
        self.repository.write_config(self.row.id, {"is_active": False})

        result = await self.store.begin_crawl(self.row.id)

        assert result.outcome is BeginCrawlOutcome.INACTIVE
        assert (await self.store.get(self.row.id)).crawl_status is CrawlStatus.PENDING

    @pytest.mark.asyncio
    async def test_begin_clears_previous_error(self):
        await self.store.begin_crawl(self.row.id)
        await self.store.fail_crawl(self.row.id, "boom")

        result = await self.store.begin_crawl(self.row.id)

        assert result.previous_status is CrawlStatus.FAILED
        assert result.config.error_message is None

    @pytest.mark.asyncio
    async def test_complete_crawl(self):
        await self.store.begin_crawl(self.row.id)

        row = await self.store.complete_crawl(self.row.id, CrawlOutcome.classify(7, 3, ["e"] * 3))

        assert row.crawl_status is CrawlStatus.PARTIAL_SUCCESS
        assert row.pages_indexed == 7
        assert row.error_message == "Partial success: 3 pages failed"
        assert row.last_crawled is not None

    @pytest.mark.asyncio
    async def test_complete_from_stats(self):
        await self.store.begin_crawl(self.row.id)
        stats = CrawlStats(pages_found=3, pages_processed=3)

        row = await self.store.complete_from_stats(self.row.id, stats)

        assert row.crawl_status is CrawlStatus.SUCCESS
        assert row.error_message is None

    @pytest.mark.asyncio
    async def test_fail_crawl_condenses_message(self):
        await self.store.begin_crawl(self.row.id)

        row = await self.store.fail_crawl(self.row.id, "x" * 2000)

        assert row.crawl_status is CrawlStatus.FAILED
        assert row.pages_indexed == 0
        assert len(row.error_message) == ERROR_MESSAGE_MAX_LENGTH

    @pytest.mark.asyncio
    async def test_abort_restores_previous_status(self):
        await self.store.begin_crawl(self.row.id)
        await self.store.complete_crawl(self.row.id, CrawlOutcome.classify(5, 0))
        begin = await self.store.begin_crawl(self.row.id)

        row = await self.store.abort_crawl(self.row.id, begin.previous_status)

        assert row.crawl_status is CrawlStatus.SUCCESS
        assert row.pages_indexed == 5

    @pytest.mark.asyncio
    async def test_abort_restores_previous_error_message(self):
        await self.store.begin_crawl(self.row.id)
        await self.store.complete_crawl(self.row.id, CrawlOutcome.classify(7, 3, ["e"] * 3))
        begin = await self.store.begin_crawl(self.row.id)
        assert begin.config.error_message is None

        row = await self.store.abort_crawl(self.row.id, begin.previous_status, begin.previous_error_message)

        assert row.crawl_status is CrawlStatus.PARTIAL_SUCCESS
        assert row.error_message == "Partial success: 3 pages failed"

    @pytest.mark.asyncio
    async def test_abort_without_previous_status_is_pending(self):
        await self.store.begin_crawl(self.row.id)
        row = await self.store.abort_crawl(self.row.id, None)
        assert row.crawl_status is CrawlStatus.PENDING

    @pytest.mark.asyncio
    async def test_can_modify(self):
        assert await self.store.can_modify(self.row.id)
        await self.store.begin_crawl(self.row.id)
        assert not await self.store.can_modify(self.row.id)

    @pytest.mark.asyncio
    async def test_missing_row(self):
        with pytest.raises(NotFoundError):
            await self.store.get(404)
        with pytest.raises(NotFoundError):
            await self.store.begin_crawl(404)

    def test_to_dict(self):
        data = self.row.to_dict()
        assert data['crawlConfig'] == {"mode": "limited", "maxPages": 10}
        assert data['crawlStatus'] == "pending"
        assert data['lastCrawled'] is None


def db_row(**overrides):
    row = {
        "id": 1,
        "url": "https://docs.example.com",
        "namespace": "kb",
        "crawl_config": {"mode": "limited", "maxPages": 10},
        "is_active": True,
        "crawl_status": "pending",
        "pages_indexed": 0,
        "error_message": None,
        "last_crawled": None,
        "created_at": utcnow(),
        "updated_at": utcnow(),
    }
    row.update(overrides)
    return row


@pytest.mark.unit
class TestPostgresRepository:
    """Test cases untuk PostgresRagUrlRepository dengan psycopg2 yang di-mock"""

    def setup_method(self):
        self.cursor = MagicMock()
        self.conn = MagicMock()
        self.conn.cursor.return_value.__enter__.return_value = self.cursor
        self.repository = PostgresRagUrlRepository("postgresql://localhost/kb")

    def connect(self):
        return patch("knowledge_base.state.repository.psycopg2.connect", return_value=self.conn)

    def test_requires_connection_string(self):
        with pytest.raises(ConfigurationError, match="DATABASE_URL not configured"):
            PostgresRagUrlRepository("")

    def test_read_config(self):
        self.cursor.fetchone.return_value = db_row(crawl_config='{"mode": "single"}')
        with self.connect():
            row = self.repository.read_config(1)

        assert row.crawl_config == CrawlConfig(mode=CrawlMode.SINGLE)
        assert row.crawl_status is CrawlStatus.PENDING
        self.conn.close.assert_called_once()

    def test_try_begin_locks_then_updates(self):
        self.cursor.fetchone.side_effect = [
            db_row(crawl_status="failed", error_message="boom"), db_row(crawl_status="in_progress"),
        ]
        with self.connect():
            result = self.repository.try_begin(1)

        assert result.ok
        assert result.previous_status is CrawlStatus.FAILED
        assert result.previous_error_message == "boom"
        assert result.config.crawl_status is CrawlStatus.IN_PROGRESS
        statements = [call.args[0] for call in self.cursor.execute.call_args_list]
        assert "FOR UPDATE" in statements[0]
        assert "crawl_status <> 'in_progress'" in statements[1]

    def test_try_begin_already_in_progress(self):
        self.cursor.fetchone.return_value = db_row(crawl_status="in_progress")
        with self.connect():
            result = self.repository.try_begin(1)

        assert result.outcome is BeginCrawlOutcome.ALREADY_IN_PROGRESS
        assert self.cursor.execute.call_count == 1

    def test_write_config_serializes_values(self):
        self.cursor.fetchone.return_value = db_row(crawl_status="failed", error_message="boom")
        with self.connect():
            row = self.repository.write_config(1, {"crawl_status": CrawlStatus.FAILED, "error_message": "boom"})

        sql, params = self.cursor.execute.call_args.args
        assert sql.startswith("UPDATE rag_urls SET crawl_status = %s, error_message = %s")
        assert params == ("failed", "boom", 1)
        assert row.error_message == "boom"

    def test_write_config_missing_row(self):
        self.cursor.fetchone.return_value = None
        with self.connect():
            with pytest.raises(NotFoundError):
                self.repository.write_config(7, {"pages_indexed": 1})

    def test_database_errors_are_wrapped(self):
        with patch("knowledge_base.state.repository.psycopg2.connect",
                   side_effect=psycopg2.OperationalError("connection refused")):
            with pytest.raises(ExternalServiceError, match="database"):
                self.repository.read_config(1)
