import asyncio
import logging
from typing import List, Optional

from langchain_openai import OpenAIEmbeddings

from journal_query.exceptions import EmbeddingError

logger = logging.getLogger("embedding_service")


class EmbeddingService:
    """Thin wrapper over OpenAI embeddings with a per-call timeout."""

    def __init__(
        self,
        embeddings: Optional[OpenAIEmbeddings] = None,
        model: str = "text-embedding-3-small",
        api_key: Optional[str] = None,
        timeout_seconds: float = 15.0,
        semaphore: Optional[asyncio.Semaphore] = None
    ):
        self._embeddings = embeddings or OpenAIEmbeddings(model=model, api_key=api_key)
        self.timeout_seconds = timeout_seconds
        self._semaphore = semaphore or asyncio.Semaphore(8)

    async def embed(self, text: str) -> List[float]:
        """
        Generate an embedding vector for ``text``.

        Raises:
            EmbeddingError: On empty input, timeout or provider failure
        """
        if not text or not text.strip():
            raise EmbeddingError("Cannot embed empty search text")

        async with self._semaphore:
            try:
                vector = await asyncio.wait_for(
                    self._embeddings.aembed_query(text),
                    timeout=self.timeout_seconds
                )
            except asyncio.TimeoutError as e:
                raise EmbeddingError(f"Embedding request timed out after {self.timeout_seconds}s") from e
            except Exception as e:
                logger.error(f"Embedding generation failed: {e}")
                raise EmbeddingError(f"Embedding generation failed: {e}") from e

        if not vector:
            raise EmbeddingError("Embedding provider returned an empty vector")
        return vector
