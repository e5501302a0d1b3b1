"""FastAPI dependency injection for knowledge pipeline components.

Components are built once in the application lifespan and stored on
``app.state``; these dependencies hand them to endpoints and answer 503
when a component failed to initialize.
"""

from __future__ import annotations

from fastapi import Header, HTTPException, Request, status

from src.knowledge.processing.long_poll import LongPollCoordinator
from src.knowledge.service import KnowledgeService


async def get_knowledge_service(request: Request) -> KnowledgeService:
    """Get the knowledge submission service from app.state."""
    service = getattr(request.app.state, "knowledge_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Knowledge service not initialized",
        )
    return service


async def get_long_poll(request: Request) -> LongPollCoordinator:
    """Get the long-poll coordinator from app.state."""
    coordinator = getattr(request.app.state, "long_poll", None)
    if coordinator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Status long-poll not initialized",
        )
    return coordinator


async def get_user_id(x_user_id: str | None = Header(default=None)) -> str | None:
    """Caller identity forwarded by the upstream gateway, if any."""
    return x_user_id.strip() if x_user_id and x_user_id.strip() else None

