"""Processing event schemas exchanged with the extraction worker.

Three event kinds form a closed tagged union discriminated by ``eventType``:

- ProcessRequestEvent (outbound): ask the worker to extract/embed content.
- ProcessSuccessEvent (inbound): extraction finished, chunks are in the object store.
- ProcessFailedEvent (inbound): extraction failed, with error details.

On the wire every event is a flat camelCase JSON document, e.g.::

    {"eventType": "content.process.success", "eventId": "...", "contentId": "...",
     "chunkCount": 5, "s3BucketName": "...", "s3Key": "...", ...}
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from src.knowledge.processing.errors import DecodeError


class EventType(str, Enum):
    """Discriminator values carried in ``eventType``."""

    PROCESS_REQUEST = "content.process.request"
    PROCESS_SUCCESS = "content.process.success"
    PROCESS_FAILED = "content.process.failed"


class _ProcessingEventBase(BaseModel):
    """Fields shared by every processing event."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    content_id: str = Field(min_length=1)
    content_type: str

    def to_message(self) -> str:
        """Serialize to the camelCase JSON body placed on a queue."""
        return self.model_dump_json(by_alias=True)


class ProcessRequestEvent(_ProcessingEventBase):
    """Outbound request for the worker to process a piece of content.

    File content is located by ``s3_bucket``/``s3_key``; web content by
    ``web_url``.
    """

    event_type: Literal["content.process.request"] = "content.process.request"
    name: str
    mime_type: str | None = None
    file_size: int | None = None
    s3_bucket: str | None = None
    s3_key: str | None = None
    web_url: str | None = None
    project_id: str
    user_id: str | None = None


class ProcessSuccessEvent(_ProcessingEventBase):
    """Inbound report that chunks were written to the object store."""

    event_type: Literal["content.process.success"] = "content.process.success"
    message: str | None = None
    processing_time_ms: int | None = None
    chunk_count: int = Field(ge=0)
    s3_bucket_name: str
    s3_key: str


class ProcessFailedEvent(_ProcessingEventBase):
    """Inbound report that the worker gave up on a piece of content."""

    event_type: Literal["content.process.failed"] = "content.process.failed"
    error_message: str | None = None
    error_code: str | None = None
    stack_trace: str | None = None
    retry_count: int | None = None
    failed_step: str | None = None


ProcessingEvent = Annotated[
    Union[ProcessRequestEvent, ProcessSuccessEvent, ProcessFailedEvent],
    Field(discriminator="event_type"),
]

_event_adapter: TypeAdapter[ProcessingEvent] = TypeAdapter(ProcessingEvent)


def decode_event(body: str | bytes | dict[str, Any]) -> ProcessingEvent:
    """Decode a queue message body into its concrete event type.

    Args:
        body: Raw JSON text/bytes, or an already-parsed mapping.

    Returns:
        The matching ProcessRequestEvent, ProcessSuccessEvent or ProcessFailedEvent.

    Raises:
        DecodeError: If the body is not JSON, has no/unknown ``eventType``,
            or fails field validation.
    """
    try:
        if isinstance(body, dict):
            payload = body
        else:
            payload = json.loads(body)
    except (TypeError, ValueError) as exc:
        raise DecodeError(f"Message body is not valid JSON: {exc}") from exc

    if not isinstance(payload, dict):
        raise DecodeError("Message body must be a JSON object")
    if not payload.get("eventType"):
        raise DecodeError("Message body has no eventType discriminator")

    try:
        return _event_adapter.validate_python(payload)
    except ValidationError as exc:
        raise DecodeError(
            f"Invalid {payload.get('eventType')} event: {exc.error_count()} validation error(s)"
        ) from exc
