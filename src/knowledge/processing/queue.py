"""Durable message queue over Redis Streams.

Each queue is one stream read by one consumer group. Semantics:

- ``send`` appends a message whose JSON body lives in a single ``body`` field.
- ``receive`` first reclaims messages left unacknowledged for longer than the
  visibility timeout (XAUTOCLAIM), then long-polls for new ones (XREADGROUP).
  Every returned message carries its delivery count from the pending list.
- A message delivered more than ``max_receive_count`` times is moved to the
  dead-letter stream instead of being returned.
- ``ack`` removes a message for good (XACK + XDEL). Unacknowledged messages
  are redelivered after the visibility timeout.
"""

from __future__ import annotations

from dataclasses import dataclass

import redis.asyncio as aioredis
import structlog

from src.knowledge.processing.dlq import DeadLetterQueue

logger = structlog.get_logger(__name__)

BODY_FIELD = "body"


@dataclass
class QueueMessage:
    """One delivery of a queued message."""

    message_id: str
    body: str
    receive_count: int = 1


class StreamQueue:
    """Redis Streams queue with redelivery and dead-lettering.

    Args:
        redis: Async Redis client (``decode_responses=True``).
        stream: Stream key.
        group: Consumer group. Only needed for receiving.
        consumer: Consumer name within the group.
        visibility_timeout_seconds: Idle time before an unacknowledged
            message is redelivered.
        max_receive_count: Deliveries allowed before dead-lettering.
        dlq: Dead-letter stream handler. Without one, messages are redelivered
            indefinitely.
        maxlen: Optional approximate cap on stream length.
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        stream: str,
        group: str | None = None,
        consumer: str | None = None,
        visibility_timeout_seconds: int = 300,
        max_receive_count: int = 5,
        dlq: DeadLetterQueue | None = None,
        maxlen: int | None = None,
    ) -> None:
        self._redis = redis
        self._stream = stream
        self._group = group
        self._consumer = consumer
        self._visibility_timeout_ms = visibility_timeout_seconds * 1000
        self._max_receive_count = max_receive_count
        self._dlq = dlq
        self._maxlen = maxlen
        self._group_ready = False

    @property
    def stream(self) -> str:
        return self._stream

    async def ensure_group(self) -> None:
        """Create the consumer group (and stream) if missing."""
        if self._group_ready:
            return
        if not self._group:
            raise ValueError(f"Queue '{self._stream}' has no consumer group")
        try:
            await self._redis.xgroup_create(self._stream, self._group, id="0", mkstream=True)
        except aioredis.ResponseError as exc:
            if "BUSYGROUP" not in str(exc):
                raise
        self._group_ready = True

    async def send(self, body: str) -> str:
        """Append a message. Returns its stream ID."""
        if self._maxlen:
            message_id = await self._redis.xadd(
                self._stream, {BODY_FIELD: body}, maxlen=self._maxlen, approximate=True
            )
        else:
            message_id = await self._redis.xadd(self._stream, {BODY_FIELD: body})
        logger.debug("queue_message_sent", stream=self._stream, message_id=message_id)
        return message_id

    async def receive(self, max_messages: int = 10, wait_seconds: int = 20) -> list[QueueMessage]:
        """Fetch up to ``max_messages`` deliveries, long-polling up to ``wait_seconds``.

        Expired in-flight messages are returned before new ones.
        """
        await self.ensure_group()

        entries = await self._reclaim_expired(max_messages)
        if not entries:
            entries = await self._read_new(max_messages, wait_seconds)

        messages: list[QueueMessage] = []
        for message_id, fields in entries:
            if fields is None:
                # Trimmed or deleted while pending
                await self._redis.xack(self._stream, self._group, message_id)
                continue

            receive_count = await self._receive_count(message_id)
            if receive_count > self._max_receive_count and self._dlq is not None:
                await self._dlq.send(
                    self._stream,
                    message_id,
                    fields,
                    reason="max_receive_count_exceeded",
                    receive_count=receive_count,
                )
                await self.ack(message_id)
                continue

            messages.append(
                QueueMessage(
                    message_id=message_id,
                    body=fields.get(BODY_FIELD, ""),
                    receive_count=receive_count,
                )
            )
        return messages

    async def ack(self, message_id: str) -> None:
        """Acknowledge and delete a message so it is never redelivered."""
        await self._redis.xack(self._stream, self._group, message_id)
        await self._redis.xdel(self._stream, message_id)

    async def _reclaim_expired(self, count: int) -> list[tuple[str, dict[str, str] | None]]:
        result = await self._redis.xautoclaim(
            self._stream,
            self._group,
            self._consumer,
            min_idle_time=self._visibility_timeout_ms,
            start_id="0-0",
            count=count,
        )
        if not result or len(result) < 2:
            return []
        reclaimed = list(result[1] or [])
        if reclaimed:
            logger.info(
                "queue_messages_reclaimed",
                stream=self._stream,
                count=len(reclaimed),
            )
        return reclaimed

    async def _read_new(
        self, count: int, wait_seconds: int
    ) -> list[tuple[str, dict[str, str] | None]]:
        block_ms = wait_seconds * 1000 if wait_seconds > 0 else None
        response = await self._redis.xreadgroup(
            groupname=self._group,
            consumername=self._consumer,
            streams={self._stream: ">"},
            count=count,
            block=block_ms,
        )
        entries: list[tuple[str, dict[str, str] | None]] = []
        for _stream_key, stream_messages in response or []:
            entries.extend(stream_messages)
        return entries

    async def _receive_count(self, message_id: str) -> int:
        pending = await self._redis.xpending_range(
            self._stream,
            self._group,
            min=message_id,
            max=message_id,
            count=1,
        )
        if not pending:
            return 1
        return int(pending[0].get("times_delivered", 1))
