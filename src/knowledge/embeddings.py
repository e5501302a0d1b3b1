"""Dense embedding generation for extracted knowledge chunks.

Chunks are embedded with OpenAI text-embedding-3-small in request-sized
batches. Rate limit handling uses exponential backoff on OpenAI API calls.
"""

from __future__ import annotations

import asyncio
import logging

from openai import AsyncOpenAI, RateLimitError

from src.knowledge.config import KnowledgeProcessingConfig

logger = logging.getLogger(__name__)


class EmbeddingService:
    """Generates dense embeddings for chunk indexing.

    Args:
        config: Processing configuration with API key and model settings.
        batch_size: Maximum texts sent in one embeddings request.
    """

    def __init__(self, config: KnowledgeProcessingConfig, batch_size: int = 100) -> None:
        self._openai = AsyncOpenAI(api_key=config.openai_api_key)
        self._model = config.embedding_model
        self._dimensions = config.embedding_dimensions
        self._batch_size = batch_size

    @property
    def dimensions(self) -> int:
        return self._dimensions

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed ``texts`` in order, splitting into request-sized batches."""
        vectors: list[list[float]] = []
        for start in range(0, len(texts), self._batch_size):
            vectors.extend(await self._embed_dense(texts[start : start + self._batch_size]))
        return vectors

    async def _embed_dense(
        self, texts: list[str], max_retries: int = 3
    ) -> list[list[float]]:
        """Generate dense embeddings via OpenAI with exponential backoff.

        Raises:
            RateLimitError: If all retries are exhausted.
        """
        for attempt in range(max_retries):
            try:
                response = await self._openai.embeddings.create(
                    input=texts,
                    model=self._model,
                    dimensions=self._dimensions,
                )
                return [item.embedding for item in response.data]
            except RateLimitError:
                if attempt == max_retries - 1:
                    raise
                wait_time = 2**attempt
                logger.warning(
                    "OpenAI rate limit hit, retrying in %ds (attempt %d/%d)",
                    wait_time,
                    attempt + 1,
                    max_retries,
                )
                await asyncio.sleep(wait_time)

        raise RuntimeError("Exhausted retries for dense embedding")  # pragma: no cover
