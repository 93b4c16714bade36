"""
Uniform embedding interface over multiple providers
"""

import logging
from enum import Enum
from typing import List, Optional

from langchain_core.embeddings import Embeddings
from langchain_google_genai import GoogleGenerativeAIEmbeddings
from langchain_openai import OpenAIEmbeddings

from knowledge_base.config import Settings
from knowledge_base.exceptions import ConfigurationError, ExternalServiceError, ValidationError

logger = logging.getLogger(__name__)


class EmbeddingProvider(str, Enum):
    OPENAI = "openai"
    GOOGLE = "google"


EMBEDDING_DIMENSIONS = {
    EmbeddingProvider.OPENAI: 1024,  # text-embedding-3-small, shortened
    EmbeddingProvider.GOOGLE: 768,   # embedding-001
}


def parse_provider(value: Optional[str]) -> EmbeddingProvider:
    """Parse a provider name, rejecting unknown values"""
    if value is None:
        return EmbeddingProvider.OPENAI
    try:
        return EmbeddingProvider(str(value).lower())
    except ValueError:
        allowed = ", ".join(p.value for p in EmbeddingProvider)
        raise ValidationError(f"Invalid embedding provider '{value}'. Must be one of: {allowed}")


def get_embedding_dimensions(provider: EmbeddingProvider = EmbeddingProvider.OPENAI) -> int:
    """Get the vector dimensionality produced by a provider"""
    return EMBEDDING_DIMENSIONS[EmbeddingProvider(provider)]


class EmbeddingProviderAdapter:
    """Wraps a LangChain embeddings model with provider-specific dimensionality checks"""

    def __init__(self, provider: EmbeddingProvider, embeddings: Embeddings,
                 dimensions: Optional[int] = None):
        self.provider = EmbeddingProvider(provider)
        self.embeddings = embeddings
        self.dimensions = dimensions or get_embedding_dimensions(self.provider)

    @property
    def service_name(self) -> str:
        return f"embedding:{self.provider.value}"

    @classmethod
    def from_settings(cls, provider: EmbeddingProvider, settings: Settings) -> "EmbeddingProviderAdapter":
        """Build the adapter for ``provider`` from API keys in settings"""
        provider = EmbeddingProvider(provider)
        dimensions = get_embedding_dimensions(provider)

        if provider is EmbeddingProvider.GOOGLE:
            if not settings.google_api_key:
                raise ConfigurationError("Google AI API key not configured. Set GOOGLE_API_KEY.")
            embeddings = GoogleGenerativeAIEmbeddings(
                model=settings.google_embedding_model,
                google_api_key=settings.google_api_key,
            )
        else:
            if not settings.openai_api_key:
                raise ConfigurationError("OpenAI API key not configured. Set OPENAI_API_KEY.")
            embeddings = OpenAIEmbeddings(
                model=settings.openai_embedding_model,
                dimensions=dimensions,
                api_key=settings.openai_api_key,
            )

        logger.info(f"Embedding provider: {provider.value} ({dimensions} dimensions)")
        return cls(provider, embeddings, dimensions)

    async def embed(self, text: str) -> List[float]:
        """Embed a single text"""
        try:
            vector = await self.embeddings.aembed_query(text)
        except Exception as e:
            logger.error(f"{self.service_name} request failed: {e}")
            raise ExternalServiceError(self.service_name, str(e)) from e
        self._check_dimensions(vector)
        return list(vector)

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Embed several texts in one provider call"""
        if not texts:
            return []
        try:
            vectors = await self.embeddings.aembed_documents(texts)
        except Exception as e:
            logger.error(f"{self.service_name} batch request failed: {e}")
            raise ExternalServiceError(self.service_name, str(e)) from e

        if len(vectors) != len(texts):
            raise ExternalServiceError(
                self.service_name,
                f"expected {len(texts)} embeddings, got {len(vectors)}",
            )
        for vector in vectors:
            self._check_dimensions(vector)
        return [list(v) for v in vectors]

    def _check_dimensions(self, vector: List[float]) -> None:
        if len(vector) != self.dimensions:
            raise ExternalServiceError(
                self.service_name,
                f"unexpected embedding size {len(vector)} (expected {self.dimensions})",
            )
