"""Status consumer: receive, decode, dispatch and acknowledge worker events.

Runs a receive loop on the inbound status stream. Each message is decoded
into a ProcessingEvent and handled on a bounded pool of concurrent tasks.

Acknowledgement rules:
- Success/failure applied, duplicate, unknown content id, illegal transition,
  chunk count mismatch: acknowledged.
- Decode failure, artifact fetch failure, index write failure, unexpected
  errors: not acknowledged; the queue redelivers after its visibility timeout
  and dead-letters after the max receive count.

Events for the same content id are serialized in-process, and every status
write is a compare-and-set against PROCESSING, so concurrent workers (in this
process or others) never both apply a transition.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog

from src.app.core.monitoring import (
    knowledge_events_total,
    knowledge_messages_in_flight,
    track_stage,
)
from src.knowledge.index_writer import IndexWriter
from src.knowledge.processing.artifacts import ArtifactStore
from src.knowledge.processing.errors import (
    ArtifactDeleteError,
    ArtifactFetchError,
    ChunkCountMismatch,
    DecodeError,
    IllegalTransition,
    IndexWriteError,
    UnknownContentId,
)
from src.knowledge.processing.events import (
    ProcessFailedEvent,
    ProcessingEvent,
    ProcessRequestEvent,
    ProcessSuccessEvent,
    decode_event,
)
from src.knowledge.processing.queue import QueueMessage, StreamQueue
from src.knowledge.processing.state_machine import target_status, transition
from src.knowledge.repository import KnowledgeRecordStore
from src.knowledge.schemas import KnowledgeRead, ProcessingStatus

logger = structlog.get_logger(__name__)

CHUNK_COUNT_MISMATCH_CODE = "CHUNK_COUNT_MISMATCH"
RECEIVE_ERROR_BACKOFF_SECONDS = 5.0


class StatusConsumer:
    """Long-running listener on the inbound status stream.

    Args:
        queue: Inbound status stream.
        repository: Knowledge record store.
        artifacts: Object store holding extraction artifacts.
        index_writer: Destination for extracted chunks.
        max_workers: Maximum messages handled concurrently.
        batch_size: Maximum messages per receive.
        wait_seconds: Receive long-poll wait.
    """

    def __init__(
        self,
        queue: StreamQueue,
        repository: KnowledgeRecordStore,
        artifacts: ArtifactStore,
        index_writer: IndexWriter,
        max_workers: int = 10,
        batch_size: int = 10,
        wait_seconds: int = 20,
    ) -> None:
        self._queue = queue
        self._repository = repository
        self._artifacts = artifacts
        self._index_writer = index_writer
        self._batch_size = batch_size
        self._wait_seconds = wait_seconds
        self._slots = asyncio.Semaphore(max_workers)
        self._in_flight: set[asyncio.Task[bool]] = set()
        self._locks: dict[str, tuple[asyncio.Lock, int]] = {}
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    # ── Receive Loop ────────────────────────────────────────────────────────

    async def run(self) -> None:
        """Receive and dispatch until stop() is called or the task is cancelled."""
        self._running = True
        logger.info(
            "status_consumer_started",
            stream=self._queue.stream,
            batch_size=self._batch_size,
            wait_seconds=self._wait_seconds,
        )
        try:
            while self._running:
                try:
                    messages = await self._queue.receive(
                        max_messages=self._batch_size,
                        wait_seconds=self._wait_seconds,
                    )
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    logger.error("status_receive_failed", error=str(exc), exc_info=True)
                    await asyncio.sleep(RECEIVE_ERROR_BACKOFF_SECONDS)
                    continue

                for message in messages:
                    await self._slots.acquire()
                    task = asyncio.create_task(self._handle_in_slot(message))
                    self._in_flight.add(task)
                    task.add_done_callback(self._in_flight.discard)
        finally:
            if self._in_flight:
                await asyncio.gather(*self._in_flight, return_exceptions=True)
            self._running = False
            logger.info("status_consumer_stopped", stream=self._queue.stream)

    def stop(self) -> None:
        """Signal the receive loop to stop after the current receive."""
        self._running = False

    async def _handle_in_slot(self, message: QueueMessage) -> bool:
        knowledge_messages_in_flight.inc()
        try:
            return await self.handle_message(message)
        finally:
            knowledge_messages_in_flight.dec()
            self._slots.release()

    # ── Per-message Handling ────────────────────────────────────────────────

    async def handle_message(self, message: QueueMessage) -> bool:
        """Decode and dispatch one message, acknowledging when safe.

        Returns:
            True if the message was acknowledged.
        """
        try:
            event = decode_event(message.body)
        except DecodeError as exc:
            knowledge_events_total.labels(event_type="unknown", outcome="decode_error").inc()
            logger.error(
                "status_event_decode_failed",
                message_id=message.message_id,
                receive_count=message.receive_count,
                error=str(exc),
            )
            return False

        log = logger.bind(
            message_id=message.message_id,
            event_id=event.event_id,
            event_type=event.event_type,
            content_id=event.content_id,
            receive_count=message.receive_count,
        )

        try:
            async with self._content_lock(event.content_id):
                should_ack = await self.dispatch(event)
        except Exception as exc:
            knowledge_events_total.labels(event_type=event.event_type, outcome="error").inc()
            log.error("status_event_handling_failed", error=str(exc), exc_info=True)
            return False

        if not should_ack:
            return False
        try:
            await self._queue.ack(message.message_id)
        except Exception as exc:
            # Handling is idempotent; redelivery is resolved as a duplicate
            log.error("status_message_ack_failed", error=str(exc))
            return False
        log.debug("status_message_acked")
        return True

    async def dispatch(self, event: ProcessingEvent) -> bool:
        """Route an event to its handler. Returns whether to acknowledge."""
        if isinstance(event, ProcessSuccessEvent):
            return await self._handle_success(event)
        if isinstance(event, ProcessFailedEvent):
            return await self._handle_failure(event)
        if isinstance(event, ProcessRequestEvent):
            knowledge_events_total.labels(event_type=event.event_type, outcome="ignored").inc()
            logger.warning(
                "request_event_on_status_stream",
                content_id=event.content_id,
                event_id=event.event_id,
            )
            return True
        raise DecodeError(f"Unhandled event type {type(event).__name__}")

    async def _handle_success(self, event: ProcessSuccessEvent) -> bool:
        log = logger.bind(content_id=event.content_id, event_id=event.event_id)

        record = await self._load_pending(event)
        if record is None:
            return True

        try:
            async with track_stage("artifact_fetch"):
                chunks = await self._artifacts.fetch(event.s3_bucket_name, event.s3_key)
        except ArtifactFetchError as exc:
            knowledge_events_total.labels(event_type=event.event_type, outcome="fetch_error").inc()
            log.error(
                "artifact_fetch_failed",
                bucket=event.s3_bucket_name,
                key=event.s3_key,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return False

        if len(chunks) != event.chunk_count:
            mismatch = ChunkCountMismatch(event.chunk_count, len(chunks))
            applied = await self._repository.compare_and_set_status(
                record.id,
                ProcessingStatus.PROCESSING,
                ProcessingStatus.FAILED,
                error_details=f"{CHUNK_COUNT_MISMATCH_CODE}: {mismatch}",
            )
            knowledge_events_total.labels(
                event_type=event.event_type, outcome="chunk_count_mismatch"
            ).inc()
            log.error(
                "chunk_count_mismatch",
                expected=mismatch.expected,
                actual=mismatch.actual,
                status_applied=applied,
                bucket=event.s3_bucket_name,
                key=event.s3_key,
            )
            return True

        try:
            async with track_stage("index_write"):
                written = await self._index_writer.write(record, chunks)
        except IndexWriteError as exc:
            knowledge_events_total.labels(event_type=event.event_type, outcome="index_error").inc()
            log.error("index_write_failed", chunk_count=len(chunks), error=str(exc))
            return False

        try:
            async with track_stage("artifact_delete"):
                await self._artifacts.delete(event.s3_bucket_name, event.s3_key)
        except ArtifactDeleteError as exc:
            log.warning(
                "artifact_delete_failed",
                bucket=event.s3_bucket_name,
                key=event.s3_key,
                error=str(exc),
            )

        applied = await self._repository.compare_and_set_status(
            record.id, ProcessingStatus.PROCESSING, ProcessingStatus.SUCCESS
        )
        if applied:
            knowledge_events_total.labels(event_type=event.event_type, outcome="applied").inc()
            log.info(
                "knowledge_processing_succeeded",
                chunk_count=written,
                processing_time_ms=event.processing_time_ms,
            )
        else:
            knowledge_events_total.labels(event_type=event.event_type, outcome="lost_race").inc()
            log.warning("status_update_not_applied", target=ProcessingStatus.SUCCESS.value)
        return True

    async def _handle_failure(self, event: ProcessFailedEvent) -> bool:
        log = logger.bind(content_id=event.content_id, event_id=event.event_id)

        record = await self._load_pending(event)
        if record is None:
            return True

        error_details = event.error_message or event.error_code
        applied = await self._repository.compare_and_set_status(
            record.id,
            ProcessingStatus.PROCESSING,
            ProcessingStatus.FAILED,
            error_details=error_details,
        )
        if applied:
            knowledge_events_total.labels(event_type=event.event_type, outcome="applied").inc()
            log.info(
                "knowledge_processing_failed",
                error_code=event.error_code,
                error_message=event.error_message,
                failed_step=event.failed_step,
                retry_count=event.retry_count,
            )
        else:
            knowledge_events_total.labels(event_type=event.event_type, outcome="lost_race").inc()
            log.warning("status_update_not_applied", target=ProcessingStatus.FAILED.value)
        return True

    async def _load_pending(
        self, event: ProcessSuccessEvent | ProcessFailedEvent
    ) -> KnowledgeRead | None:
        """Load the record an event refers to if it still awaits a result.

        Returns None (event should be acknowledged without side effects) when
        the record does not exist or is already terminal.
        """
        record = await self._repository.get(event.content_id)
        if record is None:
            knowledge_events_total.labels(event_type=event.event_type, outcome="unknown_content").inc()
            logger.warning(
                "unknown_content_id",
                content_id=event.content_id,
                event_id=event.event_id,
                error=str(UnknownContentId(event.content_id)),
            )
            return None

        try:
            must_apply = transition(record.processing_status, target_status(event))
        except IllegalTransition as exc:
            knowledge_events_total.labels(
                event_type=event.event_type, outcome="illegal_transition"
            ).inc()
            logger.error(
                "illegal_status_transition",
                content_id=event.content_id,
                event_id=event.event_id,
                current=exc.current,
                target=exc.target,
            )
            return None

        if not must_apply:
            knowledge_events_total.labels(event_type=event.event_type, outcome="duplicate").inc()
            logger.info(
                "duplicate_event_ignored",
                content_id=event.content_id,
                event_id=event.event_id,
                status=record.processing_status.value,
            )
            return None
        return record

    @asynccontextmanager
    async def _content_lock(self, content_id: str) -> AsyncIterator[None]:
        lock, waiters = self._locks.get(content_id, (asyncio.Lock(), 0))
        self._locks[content_id] = (lock, waiters + 1)
        try:
            async with lock:
                yield
        finally:
            lock, waiters = self._locks[content_id]
            if waiters <= 1:
                del self._locks[content_id]
            else:
                self._locks[content_id] = (lock, waiters - 1)
