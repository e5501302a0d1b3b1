"""Knowledge record store -- async persistence for knowledge records.

KnowledgeRecordStore is the interface the API, the status consumer and the
long-poll coordinator depend on. SqlKnowledgeRepository implements it with
the session_factory callable pattern.

Status changes go through compare_and_set_status, a single conditional
UPDATE guarded by the expected current status. Concurrent writers racing on
the same record therefore see exactly one winner.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator, Callable

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.knowledge.models import KnowledgeModel
from src.knowledge.schemas import (
    ContentType,
    KnowledgeCreate,
    KnowledgeRead,
    ProcessingStatus,
)

logger = structlog.get_logger(__name__)

ERROR_DETAILS_MAX_LENGTH = 1000


def parse_record_id(value: str | uuid.UUID) -> uuid.UUID | None:
    """Coerce a record id, returning None when it is not a valid UUID."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def truncate_error(details: str | None) -> str | None:
    if details is None:
        return None
    return details[:ERROR_DETAILS_MAX_LENGTH]


# ── Interface ───────────────────────────────────────────────────────────────


class KnowledgeRecordStore(ABC):
    """Persistence operations on knowledge records."""

    @abstractmethod
    async def create(self, data: KnowledgeCreate) -> KnowledgeRead:
        """Insert a new active record in PROCESSING state."""
        ...

    @abstractmethod
    async def get(self, record_id: str | uuid.UUID) -> KnowledgeRead | None:
        """Fetch a record by id regardless of project or active flag."""
        ...

    @abstractmethod
    async def get_for_project(
        self, project_id: uuid.UUID, record_id: str | uuid.UUID
    ) -> KnowledgeRead | None:
        """Fetch an active record belonging to ``project_id``."""
        ...

    @abstractmethod
    async def list_for_project(
        self, project_id: uuid.UUID, content_type: ContentType | None = None
    ) -> list[KnowledgeRead]:
        """List active records for a project, newest first."""
        ...

    @abstractmethod
    async def deactivate(self, project_id: uuid.UUID, record_id: str | uuid.UUID) -> bool:
        """Soft-delete a record. Returns False if no active record matched."""
        ...

    @abstractmethod
    async def compare_and_set_status(
        self,
        record_id: str | uuid.UUID,
        expected: ProcessingStatus,
        new: ProcessingStatus,
        error_details: str | None = None,
    ) -> bool:
        """Atomically move ``expected`` -> ``new``.

        Returns:
            True if this call changed the row, False if the record was not in
            ``expected`` (or does not exist).
        """
        ...


# ── SQL Implementation ──────────────────────────────────────────────────────


class SqlKnowledgeRepository(KnowledgeRecordStore):
    """SQLAlchemy-backed knowledge record store.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def create(self, data: KnowledgeCreate) -> KnowledgeRead:
        async for session in self._session_factory():
            model = KnowledgeModel(
                project_id=data.project_id,
                name=data.name,
                type=data.type,
                mime_type=data.mime_type,
                size=data.size,
                source=data.source,
                processing_status=ProcessingStatus.PROCESSING,
                is_active=True,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            logger.info(
                "knowledge_record_created",
                knowledge_id=str(model.id),
                project_id=str(model.project_id),
                type=model.type.value,
            )
            return KnowledgeRead.model_validate(model)

    async def get(self, record_id: str | uuid.UUID) -> KnowledgeRead | None:
        rid = parse_record_id(record_id)
        if rid is None:
            return None
        async for session in self._session_factory():
            model = await session.get(KnowledgeModel, rid)
            if model is None:
                return None
            return KnowledgeRead.model_validate(model)

    async def get_for_project(
        self, project_id: uuid.UUID, record_id: str | uuid.UUID
    ) -> KnowledgeRead | None:
        rid = parse_record_id(record_id)
        if rid is None:
            return None
        async for session in self._session_factory():
            stmt = select(KnowledgeModel).where(
                KnowledgeModel.id == rid,
                KnowledgeModel.project_id == project_id,
                KnowledgeModel.is_active.is_(True),
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return KnowledgeRead.model_validate(model)

    async def list_for_project(
        self, project_id: uuid.UUID, content_type: ContentType | None = None
    ) -> list[KnowledgeRead]:
        async for session in self._session_factory():
            stmt = select(KnowledgeModel).where(
                KnowledgeModel.project_id == project_id,
                KnowledgeModel.is_active.is_(True),
            )
            if content_type is not None:
                stmt = stmt.where(KnowledgeModel.type == content_type)
            stmt = stmt.order_by(KnowledgeModel.created_at.desc())
            result = await session.execute(stmt)
            return [KnowledgeRead.model_validate(m) for m in result.scalars().all()]

    async def deactivate(self, project_id: uuid.UUID, record_id: str | uuid.UUID) -> bool:
        rid = parse_record_id(record_id)
        if rid is None:
            return False
        async for session in self._session_factory():
            stmt = (
                update(KnowledgeModel)
                .where(
                    KnowledgeModel.id == rid,
                    KnowledgeModel.project_id == project_id,
                    KnowledgeModel.is_active.is_(True),
                )
                .values(is_active=False)
            )
            result = await session.execute(stmt)
            await session.commit()
            deactivated = result.rowcount == 1
            if deactivated:
                logger.info("knowledge_record_deactivated", knowledge_id=str(rid))
            return deactivated

    async def compare_and_set_status(
        self,
        record_id: str | uuid.UUID,
        expected: ProcessingStatus,
        new: ProcessingStatus,
        error_details: str | None = None,
    ) -> bool:
        rid = parse_record_id(record_id)
        if rid is None:
            return False
        async for session in self._session_factory():
            stmt = (
                update(KnowledgeModel)
                .where(
                    KnowledgeModel.id == rid,
                    KnowledgeModel.processing_status == expected,
                )
                .values(
                    processing_status=new,
                    error_details=truncate_error(error_details),
                )
            )
            result = await session.execute(stmt)
            await session.commit()
            applied = result.rowcount == 1
            logger.debug(
                "knowledge_status_cas",
                knowledge_id=str(rid),
                expected=expected.value,
                new=new.value,
                applied=applied,
            )
            return applied
