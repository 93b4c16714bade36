"""
Shared fixtures: simulated sites, fake clock, recording vector index
"""

import asyncio
from typing import Callable, Dict, Iterable, List, Optional, Set

import httpx
import pytest
from langchain_core.embeddings import DeterministicFakeEmbedding

from knowledge_base.crawl import CrawlerSettings
from knowledge_base.rag import EmbeddingProvider, EmbeddingProviderAdapter, VectorIndex
from knowledge_base.rag.vector_store import QueryMatch, VectorRecord


def html_page(title: str, body: str = "", links: Iterable[str] = ()) -> str:
    anchors = "".join(f'<a href="{href}">{href}</a> ' for href in links)
    return (
        f"<html><head><title>{title}</title></head>"
        f"<body><h1>{title}</h1><p>{body or 'Content of ' + title}</p>{anchors}</body></html>"
    )


class SimulatedSite:
    """A tiny website served through httpx.MockTransport"""

    def __init__(self, pages: Dict[str, str], status: Optional[Dict[str, int]] = None,
                 slow: Optional[Set[str]] = None, delay: float = 10.0):
        self.pages = pages
        self.status = status or {}
        self.slow = slow or set()
        self.delay = delay
        self.requested: List[str] = []

    async def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requested.append(url)
        if url in self.slow:
            await asyncio.sleep(self.delay)
        if url in self.status:
            return httpx.Response(self.status[url], text="error")
        if url not in self.pages:
            return httpx.Response(404, text="not found")
        return httpx.Response(200, html=self.pages[url])

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


class FakeClock:
    def __init__(self, now: float = 1_000_020.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingIndex(VectorIndex):
    """In-memory VectorIndex that keeps every upserted record by id"""

    def __init__(self, fail_when: Optional[Callable[[List[VectorRecord]], bool]] = None,
                 delay: float = 0.0):
        super().__init__()
        self.namespaces: Dict[str, Dict[str, VectorRecord]] = {}
        self.upsert_calls = 0
        self.fail_when = fail_when
        self.delay = delay
        self.active_upserts = 0
        self.peak_upserts = 0

    async def upsert(self, namespace: str, vectors: List[VectorRecord]) -> None:
        self.upsert_calls += 1
        self.active_upserts += 1
        self.peak_upserts = max(self.peak_upserts, self.active_upserts)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if vectors:
                self.ensure_dimensions(namespace, len(vectors[0].values))
            if self.fail_when and self.fail_when(vectors):
                raise RuntimeError("vector store unavailable")
            bucket = self.namespaces.setdefault(namespace, {})
            for record in vectors:
                bucket[record.id] = record
        finally:
            self.active_upserts -= 1

    async def query(self, namespace: str, vector: List[float], top_k: int = 5) -> List[QueryMatch]:
        records = list(self.namespaces.get(namespace, {}).values())[:top_k]
        return [QueryMatch(text=r.text, metadata=r.metadata, score=1.0) for r in records]


def fake_adapter(provider: EmbeddingProvider = EmbeddingProvider.OPENAI) -> EmbeddingProviderAdapter:
    dimensions = 1024 if provider is EmbeddingProvider.OPENAI else 768
    return EmbeddingProviderAdapter(provider, DeterministicFakeEmbedding(size=dimensions), dimensions)


@pytest.fixture
def crawler_settings() -> CrawlerSettings:
    return CrawlerSettings(concurrency=4, request_timeout=5.0, max_retries=0, retry_backoff=0.0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def page_html() -> Callable[..., str]:
    return html_page


@pytest.fixture
def site_factory() -> Callable[..., SimulatedSite]:
    return SimulatedSite


@pytest.fixture
def index_factory() -> Callable[..., RecordingIndex]:
    return RecordingIndex


@pytest.fixture
def adapter_factory() -> Callable[..., EmbeddingProviderAdapter]:
    return fake_adapter
