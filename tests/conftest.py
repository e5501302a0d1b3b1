"""Shared test doubles and factories for the knowledge pipeline.

Provides:
- InMemoryKnowledgeStore: KnowledgeRecordStore double with conditional updates
- make_record(): KnowledgeRead factory
- success_body() / failure_body(): wire-format inbound event bodies
- Fixtures for the store and an in-memory artifact store double
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Any

import pytest

from src.knowledge.processing.artifacts import ArtifactStore
from src.knowledge.processing.errors import ArtifactNotFound
from src.knowledge.repository import KnowledgeRecordStore, parse_record_id, truncate_error
from src.knowledge.schemas import (
    ArtifactChunk,
    ContentType,
    KnowledgeCreate,
    KnowledgeRead,
    ProcessingStatus,
)


# ── In-Memory Test Doubles ───────────────────────────────────────────────────


class InMemoryKnowledgeStore(KnowledgeRecordStore):
    """In-memory KnowledgeRecordStore for testing without a database."""

    def __init__(self) -> None:
        self.records: dict[uuid.UUID, KnowledgeRead] = {}
        self.cas_calls: list[tuple[str, ProcessingStatus, ProcessingStatus]] = []

    def add(self, record: KnowledgeRead) -> KnowledgeRead:
        self.records[record.id] = record
        return record

    async def create(self, data: KnowledgeCreate) -> KnowledgeRead:
        now = datetime.now(timezone.utc)
        record = KnowledgeRead(
            id=uuid.uuid4(),
            project_id=data.project_id,
            name=data.name,
            type=data.type,
            mime_type=data.mime_type,
            size=data.size,
            source=data.source,
            processing_status=ProcessingStatus.PROCESSING,
            created_at=now,
            updated_at=now,
        )
        return self.add(record)

    async def get(self, record_id: str | uuid.UUID) -> KnowledgeRead | None:
        rid = parse_record_id(record_id)
        return self.records.get(rid) if rid else None

    async def get_for_project(
        self, project_id: uuid.UUID, record_id: str | uuid.UUID
    ) -> KnowledgeRead | None:
        record = await self.get(record_id)
        if record and record.project_id == project_id and record.is_active:
            return record
        return None

    async def list_for_project(
        self, project_id: uuid.UUID, content_type: ContentType | None = None
    ) -> list[KnowledgeRead]:
        return [
            r
            for r in self.records.values()
            if r.project_id == project_id
            and r.is_active
            and (content_type is None or r.type == content_type)
        ]

    async def deactivate(self, project_id: uuid.UUID, record_id: str | uuid.UUID) -> bool:
        record = await self.get_for_project(project_id, record_id)
        if record is None:
            return False
        self.records[record.id] = record.model_copy(update={"is_active": False})
        return True

    async def compare_and_set_status(
        self,
        record_id: str | uuid.UUID,
        expected: ProcessingStatus,
        new: ProcessingStatus,
        error_details: str | None = None,
    ) -> bool:
        self.cas_calls.append((str(record_id), expected, new))
        record = await self.get(record_id)
        if record is None or record.processing_status != expected:
            return False
        self.records[record.id] = record.model_copy(
            update={
                "processing_status": new,
                "error_details": truncate_error(error_details),
                "updated_at": datetime.now(timezone.utc),
            }
        )
        return True


class InMemoryArtifactStore(ArtifactStore):
    """Dict-backed ArtifactStore that counts fetches and deletes."""

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str], bytes] = {}
        self.fetch_calls: list[tuple[str, str]] = []
        self.delete_calls: list[tuple[str, str]] = []

    def put_chunks(self, bucket: str, key: str, chunks: list[dict[str, Any]]) -> None:
        self.objects[(bucket, key)] = json.dumps(chunks).encode()

    async def put(self, bucket: str, key: str, data: bytes) -> None:
        self.objects[(bucket, key)] = data

    async def fetch(self, bucket: str, key: str) -> list[ArtifactChunk]:
        self.fetch_calls.append((bucket, key))
        raw = self.objects.get((bucket, key))
        if raw is None:
            raise ArtifactNotFound(bucket, key, "object does not exist")
        return [ArtifactChunk.model_validate(c) for c in json.loads(raw)]

    async def delete(self, bucket: str, key: str) -> None:
        self.delete_calls.append((bucket, key))
        self.objects.pop((bucket, key), None)


# ── Factories ────────────────────────────────────────────────────────────────

PROJECT_ID = uuid.UUID("11111111-1111-1111-1111-111111111111")


def make_record(
    status: ProcessingStatus = ProcessingStatus.PROCESSING,
    content_type: ContentType = ContentType.DOCUMENT,
    project_id: uuid.UUID = PROJECT_ID,
    **overrides: Any,
) -> KnowledgeRead:
    """Build a KnowledgeRead for a 2048-byte PDF unless overridden."""
    fields: dict[str, Any] = {
        "id": uuid.uuid4(),
        "project_id": project_id,
        "name": "report.pdf",
        "type": content_type,
        "mime_type": "application/pdf",
        "size": 2048,
        "source": "kontext-uploads/documents/report.pdf",
        "processing_status": status,
        "created_at": datetime.now(timezone.utc),
    }
    fields.update(overrides)
    return KnowledgeRead(**fields)


def make_chunks(count: int, content_id: str = "c-1") -> list[dict[str, Any]]:
    return [
        {"id": f"chunk-{i}", "text": f"Chunk number {i}", "metadata": {"contentId": content_id}}
        for i in range(count)
    ]


def success_body(
    content_id: str,
    chunk_count: int = 5,
    bucket: str = "kontext-artifacts",
    key: str = "processed/c-1.json",
    **overrides: Any,
) -> str:
    payload: dict[str, Any] = {
        "eventType": "content.process.success",
        "eventId": str(uuid.uuid4()),
        "timestamp": "2026-01-15T10:00:00.123",
        "contentId": content_id,
        "contentType": "document",
        "message": "Processed",
        "processingTimeMs": 1200,
        "chunkCount": chunk_count,
        "s3BucketName": bucket,
        "s3Key": key,
    }
    payload.update(overrides)
    return json.dumps(payload)


def failure_body(
    content_id: str,
    error_message: str | None = "unreadable file",
    error_code: str = "EXTRACTION_ERROR",
    **overrides: Any,
) -> str:
    payload: dict[str, Any] = {
        "eventType": "content.process.failed",
        "eventId": str(uuid.uuid4()),
        "timestamp": "2026-01-15T10:00:00.123",
        "contentId": content_id,
        "contentType": "document",
        "errorMessage": error_message,
        "errorCode": error_code,
        "stackTrace": None,
        "retryCount": 2,
        "failedStep": "extraction",
    }
    payload.update(overrides)
    return json.dumps(payload)


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def record_store() -> InMemoryKnowledgeStore:
    return InMemoryKnowledgeStore()


@pytest.fixture
def artifact_store() -> InMemoryArtifactStore:
    return InMemoryArtifactStore()
