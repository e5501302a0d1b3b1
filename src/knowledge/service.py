"""Knowledge submission service -- creates records and hands them to the worker.

Two entry points create knowledge:
- upload_file: stores the file in the upload bucket, then creates the record.
- create_web: validates the URL, then creates the record.

Both create the record at PROCESSING and publish a request event. If the
publish exhausts its retries the PublishError propagates to the caller and
the record stays PROCESSING, so a later out-of-band resend can still
resolve it.
"""

from __future__ import annotations

import uuid
from pathlib import PurePosixPath
from urllib.parse import urlparse

import structlog

from src.knowledge.index_writer import IndexWriter
from src.knowledge.processing.artifacts import ArtifactStore
from src.knowledge.processing.errors import (
    ArtifactDeleteError,
    KnowledgeNotFound,
    KnowledgeProcessingError,
)
from src.knowledge.processing.publisher import RequestPublisher
from src.knowledge.repository import KnowledgeRecordStore
from src.knowledge.schemas import ContentType, KnowledgeCreate, KnowledgeRead

logger = structlog.get_logger(__name__)

__all__ = [
    "InvalidWebUrl",
    "KnowledgeNotFound",
    "KnowledgeService",
    "UnsupportedFileType",
    "determine_content_type",
]

DOCUMENT_MIME_TYPES = frozenset(
    {
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/vnd.ms-powerpoint",
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
        "text/plain",
        "application/rtf",
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    }
)

UNKNOWN_FILE_NAME = "unknown_file"
WEB_FALLBACK_NAME = "web_resource"
WEB_MIME_TYPE = "text/html"


class UnsupportedFileType(KnowledgeProcessingError):
    """Uploaded file's MIME type cannot be processed."""


class InvalidWebUrl(KnowledgeProcessingError):
    """Submitted web URL is not an absolute http(s) URL."""


MAX_MIME_TYPE_LENGTH = 100


def _normalize_mime_type(mime_type: str) -> str:
    """Media type without parameters, lower-cased."""
    return mime_type.split(";", 1)[0].strip().lower()


def determine_content_type(mime_type: str | None) -> ContentType:
    """Map an upload's MIME type to IMAGE or DOCUMENT.

    Raises:
        UnsupportedFileType: For missing or unrecognised MIME types.
    """
    if not mime_type:
        raise UnsupportedFileType("File content type is required")
    normalized = _normalize_mime_type(mime_type)
    if normalized.startswith("image/"):
        return ContentType.IMAGE
    if normalized in DOCUMENT_MIME_TYPES:
        return ContentType.DOCUMENT
    raise UnsupportedFileType(f"Unsupported file type: {mime_type}")


def _file_name(filename: str | None) -> str:
    if not filename or not filename.strip():
        return UNKNOWN_FILE_NAME
    # Browsers may send a full client-side path
    return PurePosixPath(filename.replace("\\", "/")).name.strip()[:255] or UNKNOWN_FILE_NAME


def _validate_web_url(url: str) -> str:
    candidate = (url or "").strip()
    parsed = urlparse(candidate)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise InvalidWebUrl(f"Invalid web URL: {url}")
    return candidate


class KnowledgeService:
    """Create, list, read and remove knowledge records for a project.

    Args:
        repository: Knowledge record store.
        artifacts: Object store receiving uploaded files.
        publisher: Sends request events to the extraction worker.
        upload_bucket: Bucket that uploaded files are stored in.
        index_writer: When given, indexed chunks are removed on delete.
    """

    def __init__(
        self,
        repository: KnowledgeRecordStore,
        artifacts: ArtifactStore,
        publisher: RequestPublisher,
        upload_bucket: str,
        index_writer: IndexWriter | None = None,
    ) -> None:
        self._repository = repository
        self._artifacts = artifacts
        self._publisher = publisher
        self._upload_bucket = upload_bucket
        self._index_writer = index_writer

    async def upload_file(
        self,
        project_id: uuid.UUID,
        user_id: str | None,
        filename: str | None,
        mime_type: str | None,
        data: bytes,
    ) -> KnowledgeRead:
        """Store an uploaded file and submit it for processing.

        Raises:
            UnsupportedFileType: MIME type is neither an image nor a document.
            PublishError: The request event could not be published.
        """
        content_type = determine_content_type(mime_type)
        name = _file_name(filename)
        folder = "images" if content_type is ContentType.IMAGE else "documents"
        key = f"{folder}/{uuid.uuid4().hex}{PurePosixPath(name).suffix.lower()}"

        create = KnowledgeCreate(
            project_id=project_id,
            name=name,
            type=content_type,
            mime_type=_normalize_mime_type(mime_type)[:MAX_MIME_TYPE_LENGTH],
            size=len(data),
            source=f"{self._upload_bucket}/{key}",
        )

        await self._artifacts.put(self._upload_bucket, key, data)
        record = await self._repository.create(create)
        await self._publisher.publish_for_record(
            record, user_id=user_id, bucket=self._upload_bucket, key=key
        )

        logger.info(
            "file_knowledge_submitted",
            knowledge_id=str(record.id),
            project_id=str(project_id),
            content_type=content_type.value,
            size=len(data),
        )
        return record

    async def create_web(
        self, project_id: uuid.UUID, user_id: str | None, url: str
    ) -> KnowledgeRead:
        """Create a web knowledge record and submit it for processing.

        Raises:
            InvalidWebUrl: URL is not an absolute http(s) URL.
            PublishError: The request event could not be published.
        """
        web_url = _validate_web_url(url)
        name = urlparse(web_url).hostname or WEB_FALLBACK_NAME

        record = await self._repository.create(
            KnowledgeCreate(
                project_id=project_id,
                name=name,
                type=ContentType.WEB,
                mime_type=WEB_MIME_TYPE,
                size=None,
                source=web_url,
            )
        )
        await self._publisher.publish_for_record(record, user_id=user_id)

        logger.info(
            "web_knowledge_submitted",
            knowledge_id=str(record.id),
            project_id=str(project_id),
            url=web_url,
        )
        return record

    async def list_for_project(
        self, project_id: uuid.UUID, content_type: ContentType | None = None
    ) -> list[KnowledgeRead]:
        return await self._repository.list_for_project(project_id, content_type)

    async def get(self, project_id: uuid.UUID, knowledge_id: str) -> KnowledgeRead:
        record = await self._repository.get_for_project(project_id, knowledge_id)
        if record is None:
            raise KnowledgeNotFound(knowledge_id)
        return record

    async def delete(self, project_id: uuid.UUID, knowledge_id: str) -> None:
        """Deactivate a record, then best-effort remove its upload and chunks."""
        record = await self.get(project_id, knowledge_id)
        if not await self._repository.deactivate(project_id, record.id):
            raise KnowledgeNotFound(knowledge_id)

        if record.type is not ContentType.WEB and "/" in record.source:
            bucket, key = record.source.split("/", 1)
            try:
                await self._artifacts.delete(bucket, key)
            except ArtifactDeleteError as exc:
                logger.warning(
                    "uploaded_file_delete_failed",
                    knowledge_id=str(record.id),
                    source=record.source,
                    error=str(exc),
                )

        if self._index_writer is not None:
            try:
                await self._index_writer.remove(str(record.id))
            except Exception as exc:
                logger.warning(
                    "indexed_chunks_remove_failed",
                    knowledge_id=str(record.id),
                    error=str(exc),
                )

        logger.info("knowledge_deleted", knowledge_id=str(record.id), project_id=str(project_id))
