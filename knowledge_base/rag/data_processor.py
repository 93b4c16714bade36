"""
Document processing: chunking, batched embedding and batched vector upsert
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from langchain_text_splitters import MarkdownTextSplitter, RecursiveCharacterTextSplitter

from knowledge_base.config import Settings
from knowledge_base.crawl.models import Page
from knowledge_base.exceptions import ConfigurationError, ExternalServiceError, ValidationError
from .embeddings import EmbeddingProviderAdapter
from .vector_store import VectorIndex, VectorRecord

logger = logging.getLogger(__name__)


class SplittingMethod(str, Enum):
    RECURSIVE = "recursive"
    MARKDOWN = "markdown"


@dataclass
class ChunkingOptions:
    method: SplittingMethod = SplittingMethod.RECURSIVE
    chunk_size: int = 1000
    chunk_overlap: int = 200
    batch_size: int = 10
    max_concurrent_upserts: int = 3

    def __post_init__(self):
        self.method = SplittingMethod(self.method)
        if self.chunk_size < 1:
            raise ConfigurationError("chunk_size must be positive")
        if not 0 <= self.chunk_overlap < self.chunk_size:
            raise ConfigurationError("chunk_overlap must be between 0 and chunk_size - 1")
        if self.batch_size < 1:
            raise ConfigurationError("upsert batch size must be positive")
        self.max_concurrent_upserts = max(1, self.max_concurrent_upserts)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ChunkingOptions":
        try:
            method = SplittingMethod(settings.splitting_method)
        except ValueError:
            raise ConfigurationError(
                f"Unknown splitting method '{settings.splitting_method}'. Use 'recursive' or 'markdown'."
            )
        return cls(
            method=method,
            chunk_size=settings.chunk_size,
            chunk_overlap=settings.chunk_overlap,
            batch_size=settings.upsert_batch_size,
            max_concurrent_upserts=settings.max_concurrent_upserts,
        )


def chunk_id(url: str, chunk_index: int) -> str:
    """Deterministic vector id, so re-crawling a URL overwrites its chunks"""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"{url}#{chunk_index}"))


@dataclass
class DocumentChunk:
    text: str
    metadata: Dict[str, Any]

    @property
    def id(self) -> str:
        return chunk_id(self.metadata['url'], self.metadata['chunk_index'])


@dataclass
class UpsertReport:
    """Outcome of upserting one page's chunks"""
    chunks: int = 0
    upserted: int = 0
    failed_batches: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failed_batches == 0


class DocumentProcessor:
    """Splits pages into chunks and writes their embeddings to a namespace"""

    def __init__(self, index: VectorIndex, embedder: Optional[EmbeddingProviderAdapter] = None,
                 options: Optional[ChunkingOptions] = None):
        self.index = index
        self.embedder = embedder
        self.options = options or ChunkingOptions()
        self.text_splitter = self._create_splitter()
        # One cap for every page this processor handles, not one per page
        self._upsert_slots = asyncio.Semaphore(self.options.max_concurrent_upserts)

    def _create_splitter(self):
        if self.options.method is SplittingMethod.MARKDOWN:
            return MarkdownTextSplitter(
                chunk_size=self.options.chunk_size,
                chunk_overlap=self.options.chunk_overlap,
            )
        return RecursiveCharacterTextSplitter(
            chunk_size=self.options.chunk_size,
            chunk_overlap=self.options.chunk_overlap,
            length_function=len,
        )

    def process(self, page: Page) -> List[DocumentChunk]:
        """Split a page into chunks carrying url, title and chunk index"""
        texts = [t for t in self.text_splitter.split_text(page.content) if t.strip()]
        chunks = []
        for chunk_index, text in enumerate(texts):
            chunks.append(DocumentChunk(
                text=text,
                metadata={
                    'url': page.url,
                    'title': page.title or f"Chunk {chunk_index + 1}",
                    'chunk_index': chunk_index,
                    'chunk': text,
                },
            ))
        return chunks

    async def upsert(self, namespace: str, chunks: List[DocumentChunk],
                     embedder: Optional[EmbeddingProviderAdapter] = None) -> UpsertReport:
        """Embed and upsert chunks in bounded batches.

        At most ``max_concurrent_upserts`` batches run at once across all
        concurrent calls on this processor. A failing batch is recorded in
        the report and does not stop its siblings.
        """
        if not namespace:
            raise ValidationError("Namespace is required")
        embedder = embedder or self.embedder
        if embedder is None:
            raise ConfigurationError("No embedding provider configured for document upsert")

        report = UpsertReport(chunks=len(chunks))
        if not chunks:
            return report

        batch_size = self.options.batch_size
        batches = [chunks[i:i + batch_size] for i in range(0, len(chunks), batch_size)]
        total_batches = len(batches)
        config_errors: List[ConfigurationError] = []

        async def run_batch(batch_number: int, batch: List[DocumentChunk]) -> None:
            async with self._upsert_slots:
                try:
                    vectors = await embedder.embed_batch([chunk.text for chunk in batch])
                    records = [
                        VectorRecord(id=chunk.id, values=vector, metadata=dict(chunk.metadata))
                        for chunk, vector in zip(batch, vectors)
                    ]
                    await self.index.upsert(namespace, records)
                except ConfigurationError as e:
                    config_errors.append(e)
                    return
                except Exception as e:
                    report.failed_batches += 1
                    report.errors.append(f"Batch {batch_number}/{total_batches} failed: {e}")
                    logger.error(f"Upsert batch {batch_number}/{total_batches} to {namespace} failed: {e}")
                    return
                report.upserted += len(batch)
                logger.info(f"Added batch {batch_number}/{total_batches} to namespace {namespace}")

        async with asyncio.TaskGroup() as group:
            for number, batch in enumerate(batches, start=1):
                group.create_task(run_batch(number, batch))

        # Dimension mismatches are a caller error, not a per-batch failure
        if config_errors:
            raise config_errors[0]
        return report

    async def verify_namespace(self, namespace: str) -> None:
        """Raise ConfigurationError if this processor's embeddings cannot go into ``namespace``"""
        if self.embedder is None:
            raise ConfigurationError("No embedding provider configured for document upsert")
        await self.index.verify_namespace(namespace, self.embedder.dimensions)

    async def ingest_page(self, namespace: str, page: Page) -> int:
        """Chunk, embed and upsert one page; returns its token count.

        Raises ExternalServiceError when any batch failed so the page is
        counted as failed by the crawl.
        """
        chunks = self.process(page)
        if not chunks:
            raise ValidationError(f"No content to index for {page.url}")

        report = await self.upsert(namespace, chunks)
        if not report.ok:
            service = self.embedder.service_name if self.embedder else "vector-store"
            raise ExternalServiceError(
                service,
                f"{report.failed_batches} chunk batch(es) failed for {page.url}: "
                + "; ".join(report.errors),
            )
        return sum(len(chunk.text) for chunk in chunks)
