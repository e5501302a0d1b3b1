"""Error taxonomy for the knowledge processing pipeline.

Each error says what happened; the consumer decides from the type whether a
message is acknowledged (informational errors) or left for redelivery
(errors that would otherwise lose an unindexed artifact).
"""

from __future__ import annotations


class KnowledgeProcessingError(Exception):
    """Base class for all pipeline errors."""


class PublishError(KnowledgeProcessingError):
    """Request event could not be placed on the outbound queue.

    Raised after the retry budget is exhausted. Carries the number of
    attempts made so callers can report it.
    """

    def __init__(self, message: str, attempts: int = 0) -> None:
        super().__init__(message)
        self.attempts = attempts


class DecodeError(KnowledgeProcessingError):
    """Inbound message body is malformed or lacks a known event type."""


class UnknownContentId(KnowledgeProcessingError):
    """Event references a content id with no matching knowledge record."""

    def __init__(self, content_id: str) -> None:
        super().__init__(f"No knowledge record for content id '{content_id}'")
        self.content_id = content_id


class ArtifactFetchError(KnowledgeProcessingError):
    """Extraction artifact could not be retrieved from the object store."""

    def __init__(self, bucket: str, key: str, reason: str) -> None:
        super().__init__(f"Failed to fetch artifact {bucket}/{key}: {reason}")
        self.bucket = bucket
        self.key = key


class ArtifactNotFound(ArtifactFetchError):
    """No object exists at the referenced bucket/key."""


class ArtifactReadError(ArtifactFetchError):
    """Object exists but could not be read or parsed into chunks."""


class ArtifactDeleteError(KnowledgeProcessingError):
    """Consumed artifact could not be removed. Logged, never fatal."""

    def __init__(self, bucket: str, key: str, reason: str) -> None:
        super().__init__(f"Failed to delete artifact {bucket}/{key}: {reason}")
        self.bucket = bucket
        self.key = key


class IndexWriteError(KnowledgeProcessingError):
    """Index writer rejected or failed to store a batch of chunks."""


class ChunkCountMismatch(KnowledgeProcessingError):
    """Artifact chunk count differs from the count reported by the worker."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(
            f"Worker reported {expected} chunks but artifact contains {actual}"
        )
        self.expected = expected
        self.actual = actual


class IllegalTransition(KnowledgeProcessingError):
    """Requested status change is not permitted by the state machine."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Illegal status transition {current} -> {target}")
        self.current = current
        self.target = target


class StatusCheckError(KnowledgeProcessingError):
    """Long-poll could not read the record's current status."""


class KnowledgeNotFound(KnowledgeProcessingError):
    """No active knowledge record with this id exists in the project."""

    def __init__(self, record_id: str) -> None:
        super().__init__(f"Knowledge '{record_id}' not found")
        self.record_id = record_id
