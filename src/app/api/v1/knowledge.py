"""REST API endpoints for project knowledge.

Provides upload/web submission, listing, reads, soft delete, and a
long-poll status check that waits for processing to finish. The caller's
identity arrives in the X-User-ID header set by the upstream gateway.
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import (
    APIRouter,
    Depends,
    File,
    HTTPException,
    Query,
    Request,
    UploadFile,
    status,
)
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from src.app.api.deps import get_knowledge_service, get_long_poll, get_user_id
from src.knowledge.processing.errors import PublishError, StatusCheckError
from src.knowledge.processing.long_poll import LongPollCoordinator
from src.knowledge.schemas import ContentType, KnowledgeRead
from src.knowledge.service import (
    InvalidWebUrl,
    KnowledgeNotFound,
    KnowledgeService,
    UnsupportedFileType,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/projects/{project_id}/knowledge", tags=["knowledge"])


# ── Response Schemas ─────────────────────────────────────────────────────────


class KnowledgeResponse(BaseModel):
    """Knowledge record projection."""

    id: str
    project_id: str
    name: str
    type: str
    mime_type: str | None = None
    size: int | None = None
    source: str
    processing_status: str
    error_details: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


class KnowledgeStatusResponse(BaseModel):
    """Long-poll result: current projection plus a human-readable phase message."""

    knowledge: KnowledgeResponse
    status: str
    message: str
    timed_out: bool = False
    elapsed_ms: int = 0


# ── Request Schemas ──────────────────────────────────────────────────────────


class CreateWebKnowledgeRequest(BaseModel):
    """Request body for adding a web page as knowledge."""

    web_url: str


# ── Conversion Helpers ───────────────────────────────────────────────────────


def _to_response(record: KnowledgeRead) -> KnowledgeResponse:
    return KnowledgeResponse(
        id=str(record.id),
        project_id=str(record.project_id),
        name=record.name,
        type=record.type.value,
        mime_type=record.mime_type,
        size=record.size,
        source=record.source,
        processing_status=record.processing_status.value,
        error_details=record.error_details,
        created_at=record.created_at.isoformat() if record.created_at else None,
        updated_at=record.updated_at.isoformat() if record.updated_at else None,
    )


def _not_found(knowledge_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Knowledge not found: {knowledge_id}",
    )


def _publish_failed(exc: PublishError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=f"Knowledge saved but processing could not be requested: {exc}",
    )


# ── Submission Endpoints ─────────────────────────────────────────────────────


@router.post("/upload", response_model=KnowledgeResponse, status_code=201)
async def upload_knowledge(
    project_id: uuid.UUID,
    file: UploadFile = File(...),
    user_id: str | None = Depends(get_user_id),
    service: KnowledgeService = Depends(get_knowledge_service),
) -> KnowledgeResponse:
    """Upload a document or image and submit it for processing."""
    data = await file.read()
    try:
        record = await service.upload_file(
            project_id=project_id,
            user_id=user_id,
            filename=file.filename,
            mime_type=file.content_type,
            data=data,
        )
    except UnsupportedFileType as exc:
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail=str(exc),
        ) from exc
    except PublishError as exc:
        raise _publish_failed(exc) from exc
    return _to_response(record)


@router.post("/web", response_model=KnowledgeResponse, status_code=201)
async def create_web_knowledge(
    project_id: uuid.UUID,
    body: CreateWebKnowledgeRequest,
    user_id: str | None = Depends(get_user_id),
    service: KnowledgeService = Depends(get_knowledge_service),
) -> KnowledgeResponse:
    """Add a web URL as knowledge and submit it for processing."""
    try:
        record = await service.create_web(project_id, user_id, body.web_url)
    except InvalidWebUrl as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        ) from exc
    except PublishError as exc:
        raise _publish_failed(exc) from exc
    return _to_response(record)


# ── Read / Delete Endpoints ──────────────────────────────────────────────────


@router.get("", response_model=list[KnowledgeResponse])
async def list_knowledge(
    project_id: uuid.UUID,
    content_type: ContentType | None = Query(default=None, alias="type"),
    service: KnowledgeService = Depends(get_knowledge_service),
) -> list[KnowledgeResponse]:
    """List active knowledge for a project, optionally filtered by type."""
    records = await service.list_for_project(project_id, content_type)
    return [_to_response(r) for r in records]


@router.get("/{knowledge_id}", response_model=KnowledgeResponse)
async def get_knowledge(
    project_id: uuid.UUID,
    knowledge_id: str,
    service: KnowledgeService = Depends(get_knowledge_service),
) -> KnowledgeResponse:
    """Get a single knowledge record."""
    try:
        record = await service.get(project_id, knowledge_id)
    except KnowledgeNotFound as exc:
        raise _not_found(knowledge_id) from exc
    return _to_response(record)


@router.delete("/{knowledge_id}", status_code=204)
async def delete_knowledge(
    project_id: uuid.UUID,
    knowledge_id: str,
    service: KnowledgeService = Depends(get_knowledge_service),
) -> None:
    """Soft-delete a knowledge record."""
    try:
        await service.delete(project_id, knowledge_id)
    except KnowledgeNotFound as exc:
        raise _not_found(knowledge_id) from exc


# ── Status Long-Poll ─────────────────────────────────────────────────────────


@router.get(
    "/{knowledge_id}/status",
    response_model=KnowledgeStatusResponse,
    responses={408: {"model": KnowledgeStatusResponse}},
)
async def get_knowledge_status(
    project_id: uuid.UUID,
    knowledge_id: str,
    request: Request,
    timeout_ms: int | None = Query(default=None, alias="timeoutMs", ge=0),
    coordinator: LongPollCoordinator = Depends(get_long_poll),
) -> KnowledgeStatusResponse | JSONResponse:
    """Wait for processing to finish, up to ``timeoutMs`` (server-clamped).

    Returns 200 once the record is SUCCESS or FAILED, and 408 with the
    still-PROCESSING projection when the wait times out.
    """
    try:
        result = await coordinator.await_resolution(
            project_id,
            knowledge_id,
            timeout_ms,
            should_stop=request.is_disconnected,
        )
    except KnowledgeNotFound as exc:
        raise _not_found(knowledge_id) from exc
    except StatusCheckError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Status check failed",
        ) from exc

    body = KnowledgeStatusResponse(
        knowledge=_to_response(result.record),
        status=result.status.value,
        message=result.message,
        timed_out=result.timed_out,
        elapsed_ms=result.elapsed_ms,
    )
    if result.timed_out:
        return JSONResponse(
            status_code=status.HTTP_408_REQUEST_TIMEOUT,
            content=body.model_dump(),
        )
    return body
