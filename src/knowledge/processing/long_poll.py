"""Long-poll coordinator for knowledge processing status.

Lets a caller wait for a record to leave PROCESSING without busy-querying:
the coordinator re-reads the record from the store on a fixed interval until
it becomes terminal or the (server-clamped) deadline passes. Every read goes
to the record store; no status is cached between calls.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import structlog

from src.app.core.monitoring import knowledge_long_poll_duration_seconds
from src.knowledge.processing.errors import KnowledgeNotFound, StatusCheckError
from src.knowledge.repository import KnowledgeRecordStore
from src.knowledge.schemas import KnowledgeRead, ProcessingStatus

logger = structlog.get_logger(__name__)

MESSAGE_RETRIEVED = "Knowledge processing status retrieved"
MESSAGE_SUCCEEDED = "Knowledge processing completed successfully"
MESSAGE_FAILED = "Knowledge processing failed"
MESSAGE_TIMEOUT = "Processing status check timeout"
MESSAGE_CANCELLED = "Processing status check cancelled"


@dataclass
class PollResult:
    """Outcome of one long-poll."""

    record: KnowledgeRead
    message: str
    timed_out: bool = False
    cancelled: bool = False
    elapsed_ms: int = 0

    @property
    def status(self) -> ProcessingStatus:
        return self.record.processing_status


class LongPollCoordinator:
    """Waits for knowledge records to reach a terminal status.

    Args:
        repository: Knowledge record store read on every poll.
        poll_interval_ms: Sleep between reads.
        max_timeout_ms: Ceiling applied to every requested wait.
        default_timeout_ms: Wait used when the caller does not give one.
        clock: Monotonic clock in seconds (injectable for tests).
        sleep: Awaitable sleep in seconds (injectable for tests).
    """

    def __init__(
        self,
        repository: KnowledgeRecordStore,
        poll_interval_ms: int = 500,
        max_timeout_ms: int = 60000,
        default_timeout_ms: int = 20000,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._repository = repository
        self._poll_interval_ms = poll_interval_ms
        self._max_timeout_ms = max_timeout_ms
        self.default_timeout_ms = default_timeout_ms
        self._clock = clock
        self._sleep = sleep

    def clamp(self, max_wait_ms: int) -> int:
        return max(0, min(max_wait_ms, self._max_timeout_ms))

    async def await_resolution(
        self,
        project_id: uuid.UUID,
        record_id: str | uuid.UUID,
        max_wait_ms: int | None = None,
        should_stop: Callable[[], Awaitable[bool]] | None = None,
    ) -> PollResult:
        """Wait up to ``max_wait_ms`` for the record to become terminal.

        Args:
            project_id: Owning project.
            record_id: Knowledge record to watch.
            max_wait_ms: Requested wait, clamped to the configured maximum.
                Defaults to ``default_timeout_ms``.
            should_stop: Checked before each sleep; returning True ends the
                wait early (e.g. client disconnected).

        Returns:
            PollResult with the latest projection. ``timed_out`` is set when
            the deadline passed with the record still PROCESSING.

        Raises:
            KnowledgeNotFound: The record does not exist in the project.
            StatusCheckError: The store could not be read.
        """
        wait_ms = self.clamp(self.default_timeout_ms if max_wait_ms is None else max_wait_ms)
        started = self._clock()

        record = await self._read(project_id, record_id)
        if record.processing_status.is_terminal:
            return self._finish(record, MESSAGE_RETRIEVED, started, outcome="immediate")

        while True:
            elapsed_ms = self._elapsed_ms(started)
            remaining_ms = wait_ms - elapsed_ms
            if remaining_ms <= 0:
                logger.info(
                    "long_poll_timeout",
                    knowledge_id=str(record_id),
                    waited_ms=round(elapsed_ms),
                )
                return self._finish(
                    record, MESSAGE_TIMEOUT, started, outcome="timeout", timed_out=True
                )

            if should_stop is not None and await should_stop():
                logger.info("long_poll_cancelled", knowledge_id=str(record_id))
                return self._finish(
                    record, MESSAGE_CANCELLED, started, outcome="cancelled", cancelled=True
                )

            await self._sleep(min(self._poll_interval_ms, remaining_ms) / 1000)

            record = await self._read(project_id, record_id)
            if record.processing_status is ProcessingStatus.SUCCESS:
                return self._finish(record, MESSAGE_SUCCEEDED, started, outcome="success")
            if record.processing_status is ProcessingStatus.FAILED:
                return self._finish(record, MESSAGE_FAILED, started, outcome="failed")

    async def _read(self, project_id: uuid.UUID, record_id: str | uuid.UUID) -> KnowledgeRead:
        try:
            record = await self._repository.get_for_project(project_id, record_id)
        except Exception as exc:
            logger.error(
                "long_poll_status_read_failed",
                knowledge_id=str(record_id),
                error=str(exc),
            )
            raise StatusCheckError(f"Failed to check status of {record_id}: {exc}") from exc
        if record is None:
            raise KnowledgeNotFound(str(record_id))
        return record

    def _elapsed_ms(self, started: float) -> float:
        return (self._clock() - started) * 1000

    def _finish(
        self,
        record: KnowledgeRead,
        message: str,
        started: float,
        outcome: str,
        timed_out: bool = False,
        cancelled: bool = False,
    ) -> PollResult:
        elapsed_ms = self._elapsed_ms(started)
        knowledge_long_poll_duration_seconds.labels(outcome=outcome).observe(elapsed_ms / 1000)
        return PollResult(
            record=record,
            message=message,
            timed_out=timed_out,
            cancelled=cancelled,
            elapsed_ms=round(elapsed_ms),
        )
