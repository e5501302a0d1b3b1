"""Vector index writer for extracted chunks.

IndexWriter is the seam the status consumer writes through. The Qdrant
implementation embeds every chunk and upserts it with the owning record's
ids in the payload. Point ids are derived from ``(content_id, chunk index)``,
so re-indexing the same artifact overwrites instead of duplicating.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any

from qdrant_client import QdrantClient
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    FilterSelector,
    MatchValue,
    PayloadSchemaType,
    PointStruct,
    VectorParams,
)

from src.knowledge.config import KnowledgeProcessingConfig
from src.knowledge.embeddings import EmbeddingService
from src.knowledge.processing.errors import IndexWriteError
from src.knowledge.schemas import ArtifactChunk, KnowledgeRead

logger = logging.getLogger(__name__)

DENSE_VECTOR = "dense"


def chunk_point_id(content_id: str, index: int) -> str:
    """Deterministic point id for the ``index``-th chunk of a record."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"{content_id}:{index}"))


class IndexWriter(ABC):
    """Destination for chunks of a successfully processed record."""

    @abstractmethod
    async def write(self, record: KnowledgeRead, chunks: list[ArtifactChunk]) -> int:
        """Store ``chunks`` for ``record``. Returns the number written.

        Raises:
            IndexWriteError: The chunks could not be stored.
        """
        ...

    async def remove(self, record_id: str) -> None:
        """Drop everything stored for ``record_id``. Optional."""
        return None


class QdrantIndexWriter(IndexWriter):
    """Qdrant-backed index writer.

    Args:
        config: Processing configuration (collection name, Qdrant location).
        embedding_service: Produces one dense vector per chunk text.
        client: Pre-built client. When omitted one is created from config:
            remote if ``qdrant_url`` is set, local file storage otherwise.
    """

    def __init__(
        self,
        config: KnowledgeProcessingConfig,
        embedding_service: EmbeddingService,
        client: QdrantClient | None = None,
    ) -> None:
        self._collection = config.collection_name
        self._dimensions = config.embedding_dimensions
        self._embeddings = embedding_service

        if client is not None:
            self._client = client
        elif config.qdrant_url:
            self._client = QdrantClient(url=config.qdrant_url, api_key=config.qdrant_api_key)
        else:
            self._client = QdrantClient(path=config.qdrant_path)

        self._collection_ready = False

    @property
    def client(self) -> QdrantClient:
        return self._client

    async def ensure_collection(self) -> None:
        """Create the chunk collection and its payload indexes if missing."""
        if self._collection_ready:
            return
        await asyncio.to_thread(self._create_collection)
        self._collection_ready = True

    def _create_collection(self) -> None:
        if not self._client.collection_exists(self._collection):
            self._client.create_collection(
                collection_name=self._collection,
                vectors_config={
                    DENSE_VECTOR: VectorParams(
                        size=self._dimensions,
                        distance=Distance.COSINE,
                    ),
                },
            )
            for field in ["knowledge_id", "project_id", "content_type"]:
                self._client.create_payload_index(
                    collection_name=self._collection,
                    field_name=field,
                    field_schema=PayloadSchemaType.KEYWORD,
                )
            logger.info("Created chunk collection %s", self._collection)

    async def write(self, record: KnowledgeRead, chunks: list[ArtifactChunk]) -> int:
        if not chunks:
            return 0

        try:
            await self.ensure_collection()
            vectors = await self._embeddings.embed_batch([c.text for c in chunks])
            content_id = str(record.id)

            points: list[PointStruct] = []
            for index, (chunk, vector) in enumerate(zip(chunks, vectors, strict=True)):
                payload: dict[str, Any] = {
                    "knowledge_id": content_id,
                    "project_id": str(record.project_id),
                    "content_type": record.type.wire_value,
                    "name": record.name,
                    "chunk_index": index,
                    "chunk_id": chunk.id,
                    "text": chunk.text,
                    "metadata": chunk.metadata,
                }
                points.append(
                    PointStruct(
                        id=chunk_point_id(content_id, index),
                        vector={DENSE_VECTOR: vector},
                        payload=payload,
                    )
                )

            await asyncio.to_thread(
                self._client.upsert,
                collection_name=self._collection,
                points=points,
                wait=True,
            )
        except IndexWriteError:
            raise
        except Exception as exc:
            raise IndexWriteError(
                f"Failed to index {len(chunks)} chunks for {record.id}: {exc}"
            ) from exc

        logger.info(
            "Indexed %d chunks for knowledge %s into %s",
            len(points),
            record.id,
            self._collection,
        )
        return len(points)

    async def remove(self, record_id: str) -> None:
        await asyncio.to_thread(self._remove, record_id)

    def _remove(self, record_id: str) -> None:
        if not self._client.collection_exists(self._collection):
            return
        self._client.delete(
            collection_name=self._collection,
            points_selector=FilterSelector(
                filter=Filter(
                    must=[
                        FieldCondition(
                            key="knowledge_id",
                            match=MatchValue(value=str(record_id)),
                        )
                    ]
                )
            ),
        )
        logger.info("Removed indexed chunks for knowledge %s", record_id)

    async def ping(self) -> None:
        """Verify the Qdrant backend answers."""
        await asyncio.to_thread(self._client.get_collections)

    def close(self) -> None:
        self._client.close()
