"""Dead-letter stream for processing messages that keep failing.

A status message that is received more than ``max_receive_count`` times
without being acknowledged is moved here so it stops blocking redelivery.
Entries keep the original body plus ``_dlq_*`` metadata and can be replayed
into their source stream once the underlying problem is fixed.

DLQ key pattern: {source_stream}:dlq
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import redis.asyncio as aioredis
import structlog

from src.app.core.monitoring import knowledge_dead_lettered_total

logger = structlog.get_logger(__name__)


class DeadLetterQueue:
    """Dead-letter stream backed by Redis Streams.

    Args:
        redis: Async Redis client.
    """

    def __init__(self, redis: aioredis.Redis) -> None:
        self._redis = redis

    @staticmethod
    def dlq_key(stream: str) -> str:
        return f"{stream}:dlq"

    async def send(
        self,
        stream: str,
        message_id: str,
        fields: dict[str, str],
        reason: str,
        receive_count: int,
    ) -> str:
        """Copy a message into the dead-letter stream for ``stream``.

        The caller removes the original from the source stream.

        Returns:
            Message ID assigned in the dead-letter stream.
        """
        dlq_key = self.dlq_key(stream)
        dlq_fields: dict[str, str] = {
            **fields,
            "_dlq_source_stream": stream,
            "_dlq_source_id": message_id,
            "_dlq_reason": reason,
            "_dlq_receive_count": str(receive_count),
            "_dlq_timestamp": datetime.now(timezone.utc).isoformat(),
        }

        dlq_message_id = await self._redis.xadd(dlq_key, dlq_fields)
        knowledge_dead_lettered_total.labels(stream=stream).inc()

        logger.warning(
            "message_dead_lettered",
            dlq_key=dlq_key,
            source_stream=stream,
            source_id=message_id,
            reason=reason,
            receive_count=receive_count,
        )
        return dlq_message_id

    async def list_messages(
        self,
        stream: str,
        count: int = 50,
    ) -> list[tuple[str, dict[str, Any]]]:
        """Oldest-first ``(message_id, fields)`` pairs from the dead-letter stream."""
        return await self._redis.xrange(self.dlq_key(stream), count=count)

    async def depth(self, stream: str) -> int:
        return await self._redis.xlen(self.dlq_key(stream))

    async def replay(self, stream: str, dlq_message_id: str) -> str:
        """Move one dead-lettered message back into its source stream.

        Strips ``_dlq_*`` metadata so the message is redelivered as new with a
        fresh receive count.

        Returns:
            New message ID in the source stream.

        Raises:
            ValueError: If the dead-letter message does not exist.
        """
        dlq_key = self.dlq_key(stream)
        messages = await self._redis.xrange(
            dlq_key,
            min=dlq_message_id,
            max=dlq_message_id,
            count=1,
        )
        if not messages:
            msg = f"DLQ message '{dlq_message_id}' not found in {dlq_key}"
            raise ValueError(msg)

        _msg_id, fields = messages[0]
        replay_fields = {k: v for k, v in fields.items() if not k.startswith("_dlq_")}

        new_id = await self._redis.xadd(stream, replay_fields)
        await self._redis.xdel(dlq_key, dlq_message_id)

        logger.info(
            "message_replayed",
            stream=stream,
            dlq_message_id=dlq_message_id,
            new_message_id=new_id,
        )
        return new_id
