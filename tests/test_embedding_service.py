"""
Tests for EmbeddingService.
"""
import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from journal_query.exceptions import EmbeddingError
from journal_query.services.embedding_service import EmbeddingService


@pytest.fixture
def mock_embeddings():
    embeddings = MagicMock()
    embeddings.aembed_query = AsyncMock(return_value=[0.1, 0.2, 0.3])
    return embeddings


class TestEmbeddingService:
    """Test embedding generation and failure mapping."""

    @pytest.mark.asyncio
    async def test_embed_returns_vector(self, mock_embeddings):
        service = EmbeddingService(embeddings=mock_embeddings)

        vector = await service.embed("work stress")

        assert vector == [0.1, 0.2, 0.3]
        mock_embeddings.aembed_query.assert_awaited_once_with("work stress")

    @pytest.mark.asyncio
    async def test_blank_text_is_rejected(self, mock_embeddings):
        service = EmbeddingService(embeddings=mock_embeddings)

        with pytest.raises(EmbeddingError):
            await service.embed("   ")
        mock_embeddings.aembed_query.assert_not_called()

    @pytest.mark.asyncio
    async def test_provider_failure(self, mock_embeddings):
        mock_embeddings.aembed_query.side_effect = RuntimeError("rate limited")
        service = EmbeddingService(embeddings=mock_embeddings)

        with pytest.raises(EmbeddingError, match="rate limited"):
            await service.embed("work stress")

    @pytest.mark.asyncio
    async def test_timeout(self, mock_embeddings):
        async def slow(text):
            await asyncio.sleep(1)
            return [0.1]

        mock_embeddings.aembed_query = slow
        service = EmbeddingService(embeddings=mock_embeddings, timeout_seconds=0.01)

        with pytest.raises(EmbeddingError, match="timed out"):
            await service.embed("work stress")

    @pytest.mark.asyncio
    async def test_empty_vector(self, mock_embeddings):
        mock_embeddings.aembed_query.return_value = []
        service = EmbeddingService(embeddings=mock_embeddings)

        with pytest.raises(EmbeddingError, match="empty vector"):
            await service.embed("work stress")
