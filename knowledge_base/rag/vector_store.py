"""
Namespaced vector index on top of PGVector
Each namespace is stored as its own collection, so one knowledge base
never sees another's embeddings.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from langchain_core.embeddings import Embeddings
from langchain_postgres import PGVector

from knowledge_base.exceptions import ConfigurationError, ExternalServiceError

logger = logging.getLogger(__name__)

VECTOR_STORE_SERVICE = "vector-store"


@dataclass
class VectorRecord:
    id: str
    values: List[float]
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return self.metadata.get('chunk', '')


@dataclass
class QueryMatch:
    text: str
    metadata: Dict[str, Any]
    score: float


class VectorIndex(ABC):
    """Vector index client contract: upsert and query by namespace"""

    def __init__(self, namespace_dimensions: Optional[Dict[str, int]] = None):
        # Shared between index instances so the guard spans providers
        self._namespace_dimensions = namespace_dimensions if namespace_dimensions is not None else {}

    def check_dimensions(self, namespace: str, dimensions: int) -> None:
        """Reject vectors whose size differs from what the namespace already holds"""
        known = self._namespace_dimensions.get(namespace)
        if known is not None and known != dimensions:
            raise ConfigurationError(
                f"Namespace '{namespace}' holds {known}-dimensional vectors; "
                f"refusing {dimensions}-dimensional vectors from a different embedding provider"
            )

    def ensure_dimensions(self, namespace: str, dimensions: int) -> None:
        self.check_dimensions(namespace, dimensions)
        self._namespace_dimensions[namespace] = dimensions

    async def verify_namespace(self, namespace: str, dimensions: int) -> None:
        """Fail fast, before any page is fetched, when ``dimensions`` cannot go into ``namespace``"""
        self.check_dimensions(namespace, dimensions)

    @abstractmethod
    async def upsert(self, namespace: str, vectors: List[VectorRecord]) -> None:
        ...

    @abstractmethod
    async def query(self, namespace: str, vector: List[float], top_k: int = 5) -> List[QueryMatch]:
        ...


class PGVectorIndex(VectorIndex):
    """PGVector-backed index; sync LangChain calls run in worker threads"""

    def __init__(self, index_name: str, connection: str, embeddings: Embeddings,
                 namespace_dimensions: Optional[Dict[str, int]] = None):
        super().__init__(namespace_dimensions)
        if not index_name:
            raise ConfigurationError("Vector index name is not configured. Set VECTOR_INDEX_NAME.")
        if not connection:
            raise ConfigurationError(
                "Vector store connection is not configured. Set VECTOR_STORE_CONNECTION."
            )
        self.index_name = index_name
        self.connection = connection
        self.embeddings = embeddings
        self._stores: Dict[str, PGVector] = {}

    def collection_name(self, namespace: str) -> str:
        return f"{self.index_name}__{namespace}"

    def _get_store(self, namespace: str, dimensions: Optional[int] = None) -> PGVector:
        """Initialize (once) the PGVector store for a namespace.

        langchain-postgres shares one embedding table between collections,
        so its vector column is left untyped and each collection records
        its own dimensionality in the collection metadata instead.
        """
        store = self._stores.get(namespace)
        if store is not None:
            return store

        collection_metadata = {"embedding_dimensions": dimensions} if dimensions else None
        store = PGVector(
            embeddings=self.embeddings,
            collection_name=self.collection_name(namespace),
            connection=self.connection,
            collection_metadata=collection_metadata,
            use_jsonb=True,
            pre_delete_collection=False,
            logger=logger,
        )
        self._verify_collection_dimensions(store, namespace, dimensions)
        self._stores[namespace] = store
        logger.info(f"Vector store initialized for collection: {self.collection_name(namespace)}")
        return store

    def _verify_collection_dimensions(self, store: PGVector, namespace: str,
                                      dimensions: Optional[int]) -> None:
        if not dimensions:
            return
        with store._make_sync_session() as session:
            collection = store.get_collection(session)
            stored = (collection.cmetadata or {}).get("embedding_dimensions") if collection else None
        if stored is not None and int(stored) != dimensions:
            raise ConfigurationError(
                f"Collection '{self.collection_name(namespace)}' was created with "
                f"{stored}-dimensional embeddings, got {dimensions}"
            )

    async def verify_namespace(self, namespace: str, dimensions: int) -> None:
        self.check_dimensions(namespace, dimensions)
        try:
            await asyncio.to_thread(self._get_store, namespace, dimensions)
        except ConfigurationError:
            raise
        except Exception as e:
            logger.error(f"Vector store unavailable for namespace {namespace}: {e}")
            raise ExternalServiceError(VECTOR_STORE_SERVICE, str(e)) from e
        self._namespace_dimensions[namespace] = dimensions

    async def upsert(self, namespace: str, vectors: List[VectorRecord]) -> None:
        """Insert or overwrite vectors by id"""
        if not vectors:
            return
        dimensions = len(vectors[0].values)
        for record in vectors:
            if len(record.values) != dimensions:
                raise ConfigurationError("Mixed vector dimensions within one upsert batch")
        self.ensure_dimensions(namespace, dimensions)

        def _upsert() -> None:
            store = self._get_store(namespace, dimensions)
            store.add_embeddings(
                texts=[record.text for record in vectors],
                embeddings=[record.values for record in vectors],
                metadatas=[record.metadata for record in vectors],
                ids=[record.id for record in vectors],
            )

        try:
            await asyncio.to_thread(_upsert)
        except ConfigurationError:
            raise
        except Exception as e:
            logger.error(f"Vector upsert failed for namespace {namespace}: {e}")
            raise ExternalServiceError(VECTOR_STORE_SERVICE, str(e)) from e

    async def query(self, namespace: str, vector: List[float], top_k: int = 5) -> List[QueryMatch]:
        """Nearest neighbours of ``vector`` within a namespace"""
        def _query():
            store = self._get_store(namespace, len(vector))
            return store.similarity_search_with_score_by_vector(vector, k=top_k)

        try:
            results = await asyncio.to_thread(_query)
        except ConfigurationError:
            raise
        except Exception as e:
            logger.error(f"Vector query failed for namespace {namespace}: {e}")
            raise ExternalServiceError(VECTOR_STORE_SERVICE, str(e)) from e

        return [
            QueryMatch(text=doc.page_content, metadata=dict(doc.metadata), score=float(score))
            for doc, score in results
        ]
