"""Pydantic schemas for the knowledge ingestion domain.

Defines:
- Enums: ContentType, ProcessingStatus
- Record projections: KnowledgeCreate, KnowledgeRead
- Artifact payload: ArtifactChunk (one extracted chunk fetched from the object store)
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


# ── Enums ───────────────────────────────────────────────────────────────────


class ContentType(str, Enum):
    """Kind of content a knowledge record was created from."""

    IMAGE = "IMAGE"
    DOCUMENT = "DOCUMENT"
    WEB = "WEB"

    @property
    def wire_value(self) -> str:
        """Lowercase form used in queue messages ("document", "image", "web")."""
        return self.value.lower()


class ProcessingStatus(str, Enum):
    """Processing lifecycle of a knowledge record.

    PROCESSING is the only non-terminal state. SUCCESS and FAILED are terminal.
    """

    PROCESSING = "PROCESSING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self is not ProcessingStatus.PROCESSING


# ── Records ─────────────────────────────────────────────────────────────────


class KnowledgeCreate(BaseModel):
    """Fields supplied when creating a knowledge record."""

    project_id: uuid.UUID
    name: str = Field(max_length=255)
    type: ContentType
    mime_type: str | None = Field(default=None, max_length=100)
    size: int | None = None
    source: str = Field(max_length=2000)


class KnowledgeRead(BaseModel):
    """Projection of a persisted knowledge record."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    project_id: uuid.UUID
    name: str
    type: ContentType
    mime_type: str | None = None
    size: int | None = None
    source: str
    processing_status: ProcessingStatus = ProcessingStatus.PROCESSING
    error_details: str | None = None
    is_active: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None


# ── Artifacts ───────────────────────────────────────────────────────────────


class ArtifactChunk(BaseModel):
    """A single extracted chunk as written to the object store by the worker.

    The worker emits documents as ``{"id": ..., "text": ..., "metadata": {...}}``;
    ``content`` is accepted as an alternative key for the text.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str | None = None
    text: str = Field(validation_alias=AliasChoices("text", "content"))
    metadata: dict[str, Any] = Field(default_factory=dict)
