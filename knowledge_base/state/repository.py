"""
RagUrlConfig persistence: in-memory and PostgreSQL (psycopg2) repositories
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

import psycopg2
from psycopg2.extras import RealDictCursor

from knowledge_base.crawl.config import CrawlConfig
from knowledge_base.exceptions import ConfigurationError, ExternalServiceError, NotFoundError
from .models import BeginCrawlOutcome, BeginCrawlResult, CrawlStatus, RagUrlConfig, utcnow

logger = logging.getLogger(__name__)

MUTABLE_FIELDS = (
    "url", "namespace", "crawl_config", "is_active", "crawl_status",
    "pages_indexed", "error_message", "last_crawled",
)


def _check_patch(patch: Dict[str, Any]) -> None:
    unknown = [key for key in patch if key not in MUTABLE_FIELDS]
    if unknown:
        raise ValueError(f"Unknown RagUrlConfig fields: {', '.join(unknown)}")


class RagUrlRepository(ABC):
    """Configuration store contract for RagUrlConfig rows"""

    @abstractmethod
    def read_config(self, config_id: int) -> Optional[RagUrlConfig]:
        ...

    @abstractmethod
    def write_config(self, config_id: int, patch: Dict[str, Any]) -> RagUrlConfig:
        ...

    @abstractmethod
    def try_begin(self, config_id: int) -> BeginCrawlResult:
        """Atomically move a row to in_progress unless it is inactive or already running"""

    @abstractmethod
    def create(self, url: str, namespace: str, crawl_config: CrawlConfig,
               is_active: bool = True) -> RagUrlConfig:
        ...

    @abstractmethod
    def delete(self, config_id: int) -> bool:
        ...

    @abstractmethod
    def list(self, active_only: bool = False) -> List[RagUrlConfig]:
        ...


class InMemoryRagUrlRepository(RagUrlRepository):
    """Process-local rows; for development and tests"""

    def __init__(self):
        self._rows: Dict[int, RagUrlConfig] = {}
        self._next_id = 1
        self._lock = threading.Lock()

    def read_config(self, config_id: int) -> Optional[RagUrlConfig]:
        with self._lock:
            row = self._rows.get(config_id)
            return row.copy() if row else None

    def write_config(self, config_id: int, patch: Dict[str, Any]) -> RagUrlConfig:
        _check_patch(patch)
        with self._lock:
            row = self._rows.get(config_id)
            if row is None:
                raise NotFoundError(f"RAG URL config {config_id} not found")
            row = row.copy(**patch, updated_at=utcnow())
            self._rows[config_id] = row
            return row.copy()

    def try_begin(self, config_id: int) -> BeginCrawlResult:
        with self._lock:
            row = self._rows.get(config_id)
            if row is None:
                raise NotFoundError(f"RAG URL config {config_id} not found")
            if row.crawl_status is CrawlStatus.IN_PROGRESS:
                return BeginCrawlResult(BeginCrawlOutcome.ALREADY_IN_PROGRESS, row.copy(), row.crawl_status)
            if not row.is_active:
                return BeginCrawlResult(BeginCrawlOutcome.INACTIVE, row.copy(), row.crawl_status)
            previous = row
            row = row.copy(crawl_status=CrawlStatus.IN_PROGRESS, error_message=None, updated_at=utcnow())
            self._rows[config_id] = row
            return BeginCrawlResult(
                BeginCrawlOutcome.OK, row.copy(), previous.crawl_status, previous.error_message,
            )

    def create(self, url: str, namespace: str, crawl_config: CrawlConfig,
               is_active: bool = True) -> RagUrlConfig:
        with self._lock:
            if any(row.url == url for row in self._rows.values()):
                raise ValueError(f"URL already registered: {url}")
            row = RagUrlConfig(
                id=self._next_id, url=url, namespace=namespace,
                crawl_config=crawl_config, is_active=is_active,
            )
            self._rows[row.id] = row
            self._next_id += 1
            return row.copy()

    def delete(self, config_id: int) -> bool:
        with self._lock:
            return self._rows.pop(config_id, None) is not None

    def list(self, active_only: bool = False) -> List[RagUrlConfig]:
        with self._lock:
            rows = sorted(self._rows.values(), key=lambda row: row.id)
            return [row.copy() for row in rows if row.is_active or not active_only]


class PostgresRagUrlRepository(RagUrlRepository):
    """Rows in the ``rag_urls`` table, accessed with psycopg2"""

    SELECT_COLUMNS = (
        "id, url, namespace, crawl_config, is_active, crawl_status, pages_indexed, "
        "error_message, last_crawled, created_at, updated_at"
    )

    def __init__(self, connection_string: str):
        if not connection_string:
            raise ConfigurationError("DATABASE_URL not configured")
        self.connection_string = connection_string

    @contextmanager
    def _cursor(self):
        try:
            conn = psycopg2.connect(self.connection_string)
        except psycopg2.Error as e:
            logger.error(f"Database connection failed: {e}")
            raise ExternalServiceError("database", str(e)) from e
        try:
            with conn:
                with conn.cursor(cursor_factory=RealDictCursor) as cursor:
                    yield cursor
        except psycopg2.Error as e:
            logger.error(f"Database query failed: {e}")
            raise ExternalServiceError("database", str(e)) from e
        finally:
            conn.close()

    @staticmethod
    def _row_to_config(row: Dict[str, Any]) -> RagUrlConfig:
        crawl_config = row["crawl_config"]
        if isinstance(crawl_config, str):
            crawl_config = json.loads(crawl_config)
        return RagUrlConfig(
            id=row["id"],
            url=row["url"],
            namespace=row["namespace"] or "default",
            crawl_config=CrawlConfig.from_dict(crawl_config),
            is_active=bool(row["is_active"]),
            crawl_status=CrawlStatus(row["crawl_status"]),
            pages_indexed=row["pages_indexed"] or 0,
            error_message=row["error_message"],
            last_crawled=row["last_crawled"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def create_table(self) -> None:
        with self._cursor() as cursor:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS rag_urls (
                    id SERIAL PRIMARY KEY,
                    url TEXT NOT NULL UNIQUE,
                    namespace VARCHAR(100) DEFAULT 'default',
                    crawl_config JSONB NOT NULL DEFAULT '{}',
                    is_active BOOLEAN DEFAULT TRUE,
                    last_crawled TIMESTAMPTZ,
                    crawl_status VARCHAR(20) DEFAULT 'pending' CHECK (crawl_status IN
                        ('pending', 'success', 'failed', 'in_progress', 'partial_success')),
                    pages_indexed INTEGER DEFAULT 0,
                    error_message TEXT,
                    created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP
                );
            """)
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_rag_urls_namespace ON rag_urls(namespace);")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_rag_urls_status ON rag_urls(crawl_status);")
        logger.info("rag_urls table ready")

    def read_config(self, config_id: int) -> Optional[RagUrlConfig]:
        with self._cursor() as cursor:
            cursor.execute(f"SELECT {self.SELECT_COLUMNS} FROM rag_urls WHERE id = %s", (config_id,))
            row = cursor.fetchone()
        return self._row_to_config(row) if row else None

    def write_config(self, config_id: int, patch: Dict[str, Any]) -> RagUrlConfig:
        _check_patch(patch)
        assignments = []
        values: List[Any] = []
        for key, value in patch.items():
            if key == "crawl_config":
                value = json.dumps(value.to_dict())
            elif key == "crawl_status":
                value = CrawlStatus(value).value
            assignments.append(f"{key} = %s")
            values.append(value)
        assignments.append("updated_at = CURRENT_TIMESTAMP")

        with self._cursor() as cursor:
            cursor.execute(
                f"UPDATE rag_urls SET {', '.join(assignments)} WHERE id = %s "
                f"RETURNING {self.SELECT_COLUMNS}",
                (*values, config_id),
            )
            row = cursor.fetchone()
        if row is None:
            raise NotFoundError(f"RAG URL config {config_id} not found")
        return self._row_to_config(row)

    def try_begin(self, config_id: int) -> BeginCrawlResult:
        with self._cursor() as cursor:
            # Lock the row so the status read and the guarded update see the same state
            cursor.execute(
                f"SELECT {self.SELECT_COLUMNS} FROM rag_urls WHERE id = %s FOR UPDATE",
                (config_id,),
            )
            row = cursor.fetchone()
            if row is None:
                raise NotFoundError(f"RAG URL config {config_id} not found")
            current = self._row_to_config(row)
            if current.crawl_status is CrawlStatus.IN_PROGRESS:
                return BeginCrawlResult(BeginCrawlOutcome.ALREADY_IN_PROGRESS, current, current.crawl_status)
            if not current.is_active:
                return BeginCrawlResult(BeginCrawlOutcome.INACTIVE, current, current.crawl_status)

            cursor.execute(
                "UPDATE rag_urls SET crawl_status = 'in_progress', error_message = NULL, "
                "updated_at = CURRENT_TIMESTAMP "
                "WHERE id = %s AND crawl_status <> 'in_progress' AND is_active "
                f"RETURNING {self.SELECT_COLUMNS}",
                (config_id,),
            )
            updated = cursor.fetchone()
        if updated is None:
            return BeginCrawlResult(BeginCrawlOutcome.ALREADY_IN_PROGRESS, current, current.crawl_status)
        return BeginCrawlResult(
            BeginCrawlOutcome.OK, self._row_to_config(updated), current.crawl_status, current.error_message,
        )

    def create(self, url: str, namespace: str, crawl_config: CrawlConfig,
               is_active: bool = True) -> RagUrlConfig:
        with self._cursor() as cursor:
            cursor.execute(
                "INSERT INTO rag_urls (url, namespace, crawl_config, is_active) "
                f"VALUES (%s, %s, %s, %s) RETURNING {self.SELECT_COLUMNS}",
                (url, namespace, json.dumps(crawl_config.to_dict()), is_active),
            )
            row = cursor.fetchone()
        return self._row_to_config(row)

    def delete(self, config_id: int) -> bool:
        with self._cursor() as cursor:
            cursor.execute("DELETE FROM rag_urls WHERE id = %s", (config_id,))
            return cursor.rowcount > 0

    def list(self, active_only: bool = False) -> List[RagUrlConfig]:
        query = f"SELECT {self.SELECT_COLUMNS} FROM rag_urls"
        if active_only:
            query += " WHERE is_active"
        query += " ORDER BY id"
        with self._cursor() as cursor:
            cursor.execute(query)
            rows = cursor.fetchall()
        return [self._row_to_config(row) for row in rows]


def create_repository(database_url: Optional[str]) -> RagUrlRepository:
    if database_url:
        return PostgresRagUrlRepository(database_url)
    logger.warning("DATABASE_URL not set; using in-memory RAG URL repository (single instance only)")
    return InMemoryRagUrlRepository()
