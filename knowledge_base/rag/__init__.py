"""
RAG ingestion module untuk knowledge base

Module ini berisi embedding provider adapter, vector index client
dan document processor (chunking, embedding, batched upsert).
"""

from .data_processor import (
    ChunkingOptions,
    DocumentChunk,
    DocumentProcessor,
    SplittingMethod,
    UpsertReport,
    chunk_id,
)
from .embeddings import (
    EMBEDDING_DIMENSIONS,
    EmbeddingProvider,
    EmbeddingProviderAdapter,
    get_embedding_dimensions,
    parse_provider,
)
from .vector_store import PGVectorIndex, QueryMatch, VectorIndex, VectorRecord

__all__ = [
    # Embeddings
    'EmbeddingProvider',
    'EmbeddingProviderAdapter',
    'EMBEDDING_DIMENSIONS',
    'get_embedding_dimensions',
    'parse_provider',

    # Vector index
    'VectorIndex',
    'PGVectorIndex',
    'VectorRecord',
    'QueryMatch',

    # Document processing
    'DocumentProcessor',
    'DocumentChunk',
    'ChunkingOptions',
    'SplittingMethod',
    'UpsertReport',
    'chunk_id',
]
