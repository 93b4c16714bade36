"""
Test suite untuk embedding provider adapter
"""

from unittest.mock import AsyncMock, Mock

import pytest
from langchain_core.embeddings import DeterministicFakeEmbedding
from langchain_openai import OpenAIEmbeddings

from knowledge_base.config import Settings
from knowledge_base.exceptions import ConfigurationError, ExternalServiceError, ValidationError
from knowledge_base.rag import (
    EmbeddingProvider,
    EmbeddingProviderAdapter,
    get_embedding_dimensions,
    parse_provider,
)


@pytest.mark.unit
class TestProviderSelection:

    @pytest.mark.parametrize("raw,expected", [
        (None, EmbeddingProvider.OPENAI),
        ("openai", EmbeddingProvider.OPENAI),
        ("Google", EmbeddingProvider.GOOGLE),
    ])
    def test_parse_provider(self, raw, expected):
        assert parse_provider(raw) is expected

    def test_unknown_provider(self):
        with pytest.raises(ValidationError, match="Must be one of: openai, google"):
            parse_provider("cohere")

    def test_dimensions(self):
        assert get_embedding_dimensions(EmbeddingProvider.OPENAI) == 1024
        assert get_embedding_dimensions(EmbeddingProvider.GOOGLE) == 768

    @pytest.mark.parametrize("provider", list(EmbeddingProvider))
    def test_missing_api_key(self, provider):
        with pytest.raises(ConfigurationError, match="API key not configured"):
            EmbeddingProviderAdapter.from_settings(provider, Settings())

    def test_openai_from_settings(self):
        adapter = EmbeddingProviderAdapter.from_settings(
            EmbeddingProvider.OPENAI, Settings(openai_api_key="sk-test"),
        )
        assert isinstance(adapter.embeddings, OpenAIEmbeddings)
        assert adapter.dimensions == 1024
        assert adapter.service_name == "embedding:openai"


@pytest.mark.unit
class TestEmbeddingProviderAdapter:
    """Test cases untuk embed dan embed_batch"""

    @pytest.mark.asyncio
    async def test_embed_batch(self):
        adapter = EmbeddingProviderAdapter(EmbeddingProvider.GOOGLE, DeterministicFakeEmbedding(size=768))

        vectors = await adapter.embed_batch(["a", "b", "a"])

        assert len(vectors) == 3
        assert all(len(v) == 768 for v in vectors)
        assert vectors[0] == vectors[2]

    @pytest.mark.asyncio
    async def test_empty_batch_skips_provider(self):
        embeddings = Mock()
        embeddings.aembed_documents = AsyncMock()
        adapter = EmbeddingProviderAdapter(EmbeddingProvider.OPENAI, embeddings)

        assert await adapter.embed_batch([]) == []
        embeddings.aembed_documents.assert_not_called()

    @pytest.mark.asyncio
    async def test_wrong_dimensions_rejected(self):
        adapter = EmbeddingProviderAdapter(EmbeddingProvider.OPENAI, DeterministicFakeEmbedding(size=10))

        with pytest.raises(ExternalServiceError, match="unexpected embedding size 10"):
            await adapter.embed("hello")

    @pytest.mark.asyncio
    async def test_provider_errors_are_wrapped(self):
        embeddings = Mock()
        embeddings.aembed_documents = AsyncMock(side_effect=RuntimeError("quota exceeded"))
        adapter = EmbeddingProviderAdapter(EmbeddingProvider.OPENAI, embeddings)

        with pytest.raises(ExternalServiceError) as exc_info:
            await adapter.embed_batch(["text"])

        assert exc_info.value.service == "embedding:openai"
        assert "quota exceeded" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_count_mismatch_rejected(self):
        embeddings = Mock()
        embeddings.aembed_documents = AsyncMock(return_value=[[0.0] * 1024])
        adapter = EmbeddingProviderAdapter(EmbeddingProvider.OPENAI, embeddings)

        with pytest.raises(ExternalServiceError, match="expected 2 embeddings, got 1"):
            await adapter.embed_batch(["a", "b"])
