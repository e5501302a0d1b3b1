"""Asynchronous processing pipeline between this service and the extraction worker.

Request events go out on the process stream; success/failure events come
back on the status stream and drive each knowledge record's status from
PROCESSING to SUCCESS or FAILED. Callers observe resolution by long-polling.

Exports:
    ProcessRequestEvent / ProcessSuccessEvent / ProcessFailedEvent: Wire events.
    decode_event: Decode a queue body into its concrete event type.
    BackoffPolicy: Publish retry schedule as plain data.
    RequestPublisher: Publishes request events with bounded retries.
    StatusConsumer: Receive-decode-dispatch loop on the status stream.
    LongPollCoordinator: Poll-with-deadline wait on a record's status.
"""

from __future__ import annotations

from src.knowledge.processing.backoff import BackoffPolicy
from src.knowledge.processing.events import (
    EventType,
    ProcessFailedEvent,
    ProcessingEvent,
    ProcessRequestEvent,
    ProcessSuccessEvent,
    decode_event,
)

__all__ = [
    "BackoffPolicy",
    "EventType",
    "LongPollCoordinator",
    "ProcessFailedEvent",
    "ProcessRequestEvent",
    "ProcessSuccessEvent",
    "ProcessingEvent",
    "RequestPublisher",
    "StatusConsumer",
    "decode_event",
]


def __getattr__(name: str):  # noqa: N807
    """Lazy-load publisher, consumer, and long-poll to avoid circular imports."""
    if name == "RequestPublisher":
        from src.knowledge.processing.publisher import RequestPublisher

        return RequestPublisher
    if name == "StatusConsumer":
        from src.knowledge.processing.consumer import StatusConsumer

        return StatusConsumer
    if name == "LongPollCoordinator":
        from src.knowledge.processing.long_poll import LongPollCoordinator

        return LongPollCoordinator
    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)
