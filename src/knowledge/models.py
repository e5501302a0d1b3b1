"""Knowledge record persistence model.

One row per ingested piece of content. The processing_status column is the
single source of truth for the pipeline: it is written only through
conditional updates by the status consumer and read by every long-poll.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Index,
    String,
    Uuid,
    func,
    text,
)
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from src.app.core.database import Base
from src.knowledge.schemas import ContentType, ProcessingStatus


class KnowledgeModel(Base):
    """Knowledge record: identity, source location, and processing state."""

    __tablename__ = "knowledge"
    __table_args__ = (
        Index("ix_knowledge_project_active", "project_id", "is_active"),
        Index("ix_knowledge_processing_status", "processing_status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[ContentType] = mapped_column(
        SAEnum(ContentType, name="knowledge_type", native_enum=False, length=20),
        nullable=False,
    )
    mime_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    size: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    source: Mapped[str] = mapped_column(String(2000), nullable=False)
    processing_status: Mapped[ProcessingStatus] = mapped_column(
        SAEnum(ProcessingStatus, name="processing_status", native_enum=False, length=20),
        nullable=False,
        default=ProcessingStatus.PROCESSING,
    )
    error_details: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=text("true")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )
