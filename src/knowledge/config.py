"""Knowledge processing configuration via Pydantic BaseSettings.

All settings load from environment variables with the KNOWLEDGE_ prefix.
For example, KNOWLEDGE_STATUS_STREAM sets status_stream.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class KnowledgeProcessingConfig(BaseSettings):
    """Configuration for the knowledge ingestion pipeline.

    Attributes:
        process_stream: Outbound stream carrying processing requests to the
            extraction worker.
        status_stream: Inbound stream carrying success/failure events back.
        consumer_group: Consumer group reading the status stream.
        consumer_name: Name of this consumer within the group.
        receive_wait_seconds: How long a receive blocks waiting for messages.
        receive_batch_size: Maximum messages fetched per receive.
        max_workers: Upper bound on concurrently handled messages.
        visibility_timeout_seconds: Idle time after which an unacknowledged
            message becomes eligible for redelivery.
        max_receive_count: Deliveries allowed before a message is moved to
            the dead-letter stream.
        publish_max_retries: Retries after the first failed publish attempt.
        publish_base_delay_seconds: Delay before the first retry.
        publish_backoff_multiplier: Growth factor between retry delays.
        long_poll_interval_ms: Sleep between status reads while long polling.
        long_poll_default_timeout_ms: Wait used when the caller gives none.
        long_poll_max_timeout_ms: Server-side ceiling on any long-poll wait.
        object_store_root: Filesystem root of the object store.
        upload_bucket: Bucket receiving uploaded source files.
        qdrant_path: Local filesystem path for Qdrant storage (dev mode).
        qdrant_url: Remote Qdrant server URL. Takes precedence over qdrant_path.
        qdrant_api_key: API key for remote Qdrant authentication.
        collection_name: Qdrant collection receiving extracted chunks.
        openai_api_key: OpenAI API key for embedding generation.
        embedding_model: OpenAI embedding model name.
        embedding_dimensions: Dimensionality of dense embeddings.
    """

    model_config = SettingsConfigDict(
        env_prefix="KNOWLEDGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Queues
    process_stream: str = "content:process"
    status_stream: str = "content:processing"
    consumer_group: str = "knowledge-status"
    consumer_name: str = "status-consumer-1"
    receive_wait_seconds: int = 20
    receive_batch_size: int = 10
    max_workers: int = 10
    visibility_timeout_seconds: int = 300
    max_receive_count: int = 5

    # Publisher retry policy
    publish_max_retries: int = 3
    publish_base_delay_seconds: float = 1.0
    publish_backoff_multiplier: float = 2.0

    # Long polling
    long_poll_interval_ms: int = 500
    long_poll_default_timeout_ms: int = 20000
    long_poll_max_timeout_ms: int = 60000

    # Object store
    object_store_root: str = "./object_store"
    upload_bucket: str = "kontext-uploads"

    # Qdrant
    qdrant_path: str = "./qdrant_data"
    qdrant_url: str | None = None
    qdrant_api_key: str | None = None
    collection_name: str = "knowledge_chunks"

    # Embedding
    openai_api_key: str = ""
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536


@lru_cache
def get_processing_config() -> KnowledgeProcessingConfig:
    """Singleton processing configuration."""
    return KnowledgeProcessingConfig()
