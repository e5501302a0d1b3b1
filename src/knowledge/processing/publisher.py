"""Outbound publisher for processing request events.

Builds a ProcessRequestEvent from a freshly created knowledge record and
places it on the process stream, retrying transient Redis failures on the
BackoffPolicy schedule. A fresh event id is generated for every publish, so
re-publishing the same record yields a distinct event.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
)

from src.app.core.monitoring import knowledge_publish_attempts_total
from src.knowledge.processing.backoff import BackoffPolicy
from src.knowledge.processing.errors import PublishError
from src.knowledge.processing.events import ProcessRequestEvent
from src.knowledge.processing.queue import StreamQueue
from src.knowledge.schemas import ContentType, KnowledgeRead

logger = structlog.get_logger(__name__)

_TRANSIENT_ERRORS = (RedisConnectionError, RedisTimeoutError, ConnectionError, TimeoutError)


def build_request_event(
    record: KnowledgeRead,
    user_id: str | None = None,
    bucket: str | None = None,
    key: str | None = None,
) -> ProcessRequestEvent:
    """Map a knowledge record to the request event sent to the worker."""
    web_url = record.source if record.type is ContentType.WEB else None
    return ProcessRequestEvent(
        content_id=str(record.id),
        content_type=record.type.wire_value,
        name=record.name,
        mime_type=record.mime_type,
        file_size=record.size,
        s3_bucket=bucket,
        s3_key=key,
        web_url=web_url,
        project_id=str(record.project_id),
        user_id=user_id,
    )


class RequestPublisher:
    """Publishes request events with bounded exponential-backoff retries.

    Args:
        queue: Outbound process stream.
        policy: Retry schedule. Defaults to 3 retries at 1s, 2s, 4s.
        sleep: Awaitable sleep used between attempts (injectable for tests).
    """

    def __init__(
        self,
        queue: StreamQueue,
        policy: BackoffPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._queue = queue
        self._policy = policy or BackoffPolicy()
        self._sleep = sleep

    async def publish(self, event: ProcessRequestEvent) -> str:
        """Send one event. Returns the queue message id.

        Raises:
            PublishError: Every attempt failed with a transient error.
        """
        body = event.to_message()
        attempts = 0
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._policy.max_attempts),
            wait=self._policy.wait,
            retry=retry_if_exception_type(_TRANSIENT_ERRORS),
            sleep=self._sleep,
            reraise=False,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    try:
                        message_id = await self._queue.send(body)
                    except _TRANSIENT_ERRORS as exc:
                        knowledge_publish_attempts_total.labels(outcome="error").inc()
                        logger.warning(
                            "request_publish_attempt_failed",
                            content_id=event.content_id,
                            attempt=attempts,
                            max_attempts=self._policy.max_attempts,
                            error=str(exc),
                        )
                        raise
        except RetryError as exc:
            last = exc.last_attempt.exception()
            logger.error(
                "request_publish_exhausted",
                content_id=event.content_id,
                attempts=attempts,
                error=str(last),
            )
            raise PublishError(
                f"Failed to publish processing request for {event.content_id} "
                f"after {attempts} attempts: {last}",
                attempts=attempts,
            ) from last

        knowledge_publish_attempts_total.labels(outcome="success").inc()
        logger.info(
            "request_published",
            content_id=event.content_id,
            event_id=event.event_id,
            content_type=event.content_type,
            message_id=message_id,
            attempts=attempts,
        )
        return message_id

    async def publish_for_record(
        self,
        record: KnowledgeRead,
        user_id: str | None = None,
        bucket: str | None = None,
        key: str | None = None,
    ) -> ProcessRequestEvent:
        """Build and publish the request event for ``record``."""
        event = build_request_event(record, user_id=user_id, bucket=bucket, key=key)
        await self.publish(event)
        return event
