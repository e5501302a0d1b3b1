"""Object store for uploads and extraction artifacts.

Objects are addressed by ``(bucket, key)`` and stored on the local
filesystem at ``<root>/<bucket>/<key>``. The extraction worker writes each
artifact as a JSON array of chunk documents; the status consumer fetches,
indexes, then deletes it.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from src.knowledge.processing.errors import (
    ArtifactDeleteError,
    ArtifactNotFound,
    ArtifactReadError,
)
from src.knowledge.schemas import ArtifactChunk

logger = logging.getLogger(__name__)

_chunks_adapter: TypeAdapter[list[ArtifactChunk]] = TypeAdapter(list[ArtifactChunk])


class ArtifactStore(ABC):
    """Bucket/key object store used by the ingestion pipeline."""

    @abstractmethod
    async def put(self, bucket: str, key: str, data: bytes) -> None:
        """Store raw bytes at ``bucket/key``, replacing any existing object."""
        ...

    @abstractmethod
    async def fetch(self, bucket: str, key: str) -> list[ArtifactChunk]:
        """Read an extraction artifact and parse it into chunks.

        Raises:
            ArtifactNotFound: No object at ``bucket/key``.
            ArtifactReadError: Object unreadable or not a JSON chunk array.
        """
        ...

    @abstractmethod
    async def delete(self, bucket: str, key: str) -> None:
        """Remove an object. Deleting a missing object is not an error.

        Raises:
            ArtifactDeleteError: The object exists but could not be removed.
        """
        ...


class LocalArtifactStore(ArtifactStore):
    """Filesystem-backed store rooted at ``root``."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).resolve()
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def _path(self, bucket: str, key: str) -> Path:
        if not bucket or not key:
            raise ValueError("bucket and key are required")
        path = (self._root / bucket / key).resolve()
        # Keys must stay inside their bucket
        if not path.is_relative_to(self._root / bucket):
            raise ValueError(f"Object key escapes bucket: {bucket}/{key}")
        return path

    async def put(self, bucket: str, key: str, data: bytes) -> None:
        path = self._path(bucket, key)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_name(path.name + ".tmp")
            tmp.write_bytes(data)
            tmp.replace(path)

        await asyncio.to_thread(_write)
        logger.debug("Stored object %s/%s (%d bytes)", bucket, key, len(data))

    async def fetch(self, bucket: str, key: str) -> list[ArtifactChunk]:
        try:
            path = self._path(bucket, key)
        except ValueError as exc:
            raise ArtifactReadError(bucket, key, str(exc)) from exc

        try:
            raw = await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as exc:
            raise ArtifactNotFound(bucket, key, "object does not exist") from exc
        except OSError as exc:
            raise ArtifactReadError(bucket, key, str(exc)) from exc

        try:
            payload = json.loads(raw)
        except ValueError as exc:
            raise ArtifactReadError(bucket, key, f"invalid JSON: {exc}") from exc
        if isinstance(payload, dict) and "chunks" in payload:
            payload = payload["chunks"]

        try:
            return _chunks_adapter.validate_python(payload)
        except ValidationError as exc:
            raise ArtifactReadError(
                bucket, key, f"not a chunk array ({exc.error_count()} errors)"
            ) from exc

    async def delete(self, bucket: str, key: str) -> None:
        try:
            path = self._path(bucket, key)
        except ValueError as exc:
            raise ArtifactDeleteError(bucket, key, str(exc)) from exc

        try:
            await asyncio.to_thread(path.unlink, True)
        except OSError as exc:
            raise ArtifactDeleteError(bucket, key, str(exc)) from exc
        logger.debug("Deleted object %s/%s", bucket, key)
