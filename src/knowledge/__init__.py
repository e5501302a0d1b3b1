"""Knowledge ingestion domain.

Accepts uploaded files and web URLs as knowledge records, hands them to the
external extraction worker, and indexes the extracted chunks once the worker
reports success.
"""

from src.knowledge.config import KnowledgeProcessingConfig, get_processing_config
from src.knowledge.schemas import (
    ArtifactChunk,
    ContentType,
    KnowledgeCreate,
    KnowledgeRead,
    ProcessingStatus,
)

__all__ = [
    "ArtifactChunk",
    "ContentType",
    "KnowledgeCreate",
    "KnowledgeProcessingConfig",
    "KnowledgeRead",
    "ProcessingStatus",
    "get_processing_config",
]
