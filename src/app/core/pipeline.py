"""Assembly of knowledge pipeline components.

Shared by the API lifespan and the standalone consumer script so both run
the same wiring: record store, object store, queues, publisher, index
writer, status consumer, and long-poll coordinator.
"""

from __future__ import annotations

from dataclasses import dataclass

import redis.asyncio as aioredis

from src.app.core.database import get_session
from src.knowledge.config import KnowledgeProcessingConfig
from src.knowledge.embeddings import EmbeddingService
from src.knowledge.index_writer import QdrantIndexWriter
from src.knowledge.processing.artifacts import LocalArtifactStore
from src.knowledge.processing.backoff import BackoffPolicy
from src.knowledge.processing.consumer import StatusConsumer
from src.knowledge.processing.dlq import DeadLetterQueue
from src.knowledge.processing.long_poll import LongPollCoordinator
from src.knowledge.processing.publisher import RequestPublisher
from src.knowledge.processing.queue import StreamQueue
from src.knowledge.repository import SqlKnowledgeRepository
from src.knowledge.service import KnowledgeService


@dataclass
class PipelineComponents:
    repository: SqlKnowledgeRepository
    artifacts: LocalArtifactStore
    publisher: RequestPublisher
    index_writer: QdrantIndexWriter
    consumer: StatusConsumer
    dlq: DeadLetterQueue
    long_poll: LongPollCoordinator
    service: KnowledgeService


def build_pipeline(
    redis: aioredis.Redis, config: KnowledgeProcessingConfig
) -> PipelineComponents:
    """Wire every pipeline component from configuration."""
    repository = SqlKnowledgeRepository(session_factory=get_session)
    artifacts = LocalArtifactStore(config.object_store_root)
    dlq = DeadLetterQueue(redis)

    process_queue = StreamQueue(redis, config.process_stream)
    status_queue = StreamQueue(
        redis,
        config.status_stream,
        group=config.consumer_group,
        consumer=config.consumer_name,
        visibility_timeout_seconds=config.visibility_timeout_seconds,
        max_receive_count=config.max_receive_count,
        dlq=dlq,
    )

    publisher = RequestPublisher(
        process_queue,
        BackoffPolicy(
            max_retries=config.publish_max_retries,
            base_delay_seconds=config.publish_base_delay_seconds,
            multiplier=config.publish_backoff_multiplier,
        ),
    )
    index_writer = QdrantIndexWriter(config, EmbeddingService(config))

    consumer = StatusConsumer(
        status_queue,
        repository,
        artifacts,
        index_writer,
        max_workers=config.max_workers,
        batch_size=config.receive_batch_size,
        wait_seconds=config.receive_wait_seconds,
    )
    long_poll = LongPollCoordinator(
        repository,
        poll_interval_ms=config.long_poll_interval_ms,
        max_timeout_ms=config.long_poll_max_timeout_ms,
        default_timeout_ms=config.long_poll_default_timeout_ms,
    )
    service = KnowledgeService(
        repository,
        artifacts,
        publisher,
        upload_bucket=config.upload_bucket,
        index_writer=index_writer,
    )

    return PipelineComponents(
        repository=repository,
        artifacts=artifacts,
        publisher=publisher,
        index_writer=index_writer,
        consumer=consumer,
        dlq=dlq,
        long_poll=long_poll,
        service=service,
    )
