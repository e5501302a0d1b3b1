#!/usr/bin/env python3
"""Run the knowledge status consumer as a standalone process.

Usage:
    uv run python scripts/run_status_consumer.py
    uv run python scripts/run_status_consumer.py --consumer-name status-consumer-2
    uv run python scripts/run_status_consumer.py --list-dlq
    uv run python scripts/run_status_consumer.py --replay-dlq 1718000000000-0

Reads DATABASE_URL, REDIS_URL and KNOWLEDGE_* settings from environment or
.env file. Set CONSUMER_ENABLED=false on the API when the consumer runs here.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import signal
import sys

# Ensure project root is on sys.path so we can import src.app
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))


async def run(consumer_name: str | None) -> None:
    """Consume status events until SIGINT/SIGTERM."""
    import structlog

    from src.app.api.middleware.logging import configure_structlog
    from src.app.config import get_settings
    from src.app.core.database import close_db, init_db
    from src.app.core.monitoring import init_sentry
    from src.app.core.pipeline import build_pipeline
    from src.app.core.redis import close_redis, get_redis_pool
    from src.knowledge.config import get_processing_config

    configure_structlog()
    log = structlog.get_logger("run_status_consumer")
    settings = get_settings()
    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    config = get_processing_config()
    if consumer_name:
        config = config.model_copy(update={"consumer_name": consumer_name})

    await init_db()
    components = build_pipeline(get_redis_pool(), config)
    consumer = components.consumer

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, consumer.stop)

    log.info("standalone_consumer_starting", consumer_name=config.consumer_name)
    try:
        await consumer.run()
    finally:
        components.index_writer.close()
        await close_db()
        await close_redis()


async def list_dlq(count: int) -> None:
    """Print dead-lettered status messages."""
    from src.app.core.redis import close_redis, get_redis_pool
    from src.knowledge.config import get_processing_config
    from src.knowledge.processing.dlq import DeadLetterQueue

    config = get_processing_config()
    dlq = DeadLetterQueue(get_redis_pool())
    try:
        messages = await dlq.list_messages(config.status_stream, count=count)
        print(f"{len(messages)} dead-lettered message(s) on {config.status_stream}")
        for message_id, fields in messages:
            print(f"  {message_id}  reason={fields.get('_dlq_reason')}  "
                  f"receives={fields.get('_dlq_receive_count')}  body={fields.get('body')}")
    finally:
        await close_redis()


async def replay_dlq(message_id: str) -> None:
    """Move one dead-lettered message back onto the status stream."""
    from src.app.core.redis import close_redis, get_redis_pool
    from src.knowledge.config import get_processing_config
    from src.knowledge.processing.dlq import DeadLetterQueue

    config = get_processing_config()
    dlq = DeadLetterQueue(get_redis_pool())
    try:
        new_id = await dlq.replay(config.status_stream, message_id)
        print(f"Replayed {message_id} as {new_id}")
    finally:
        await close_redis()


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the knowledge status consumer")
    parser.add_argument("--consumer-name", help="Consumer name within the group")
    parser.add_argument("--list-dlq", action="store_true", help="List dead-lettered messages and exit")
    parser.add_argument("--count", type=int, default=50, help="Messages to list with --list-dlq")
    parser.add_argument("--replay-dlq", metavar="MESSAGE_ID", help="Replay a dead-lettered message and exit")
    args = parser.parse_args()

    if args.list_dlq:
        asyncio.run(list_dlq(args.count))
    elif args.replay_dlq:
        asyncio.run(replay_dlq(args.replay_dlq))
    else:
        asyncio.run(run(args.consumer_name))


if __name__ == "__main__":
    main()
