"""Tests for BackoffPolicy and RequestPublisher.

The queue is an AsyncMock and sleeping is replaced by a recorder, so retry
schedules are asserted exactly without waiting.
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from src.knowledge.processing.backoff import BackoffPolicy
from src.knowledge.processing.errors import PublishError
from src.knowledge.processing.publisher import RequestPublisher, build_request_event
from src.knowledge.schemas import ContentType

from tests.conftest import make_record


class SleepRecorder:
    """Awaitable sleep that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def sleep(self, seconds: float) -> None:
        self.delays.append(seconds)


def _make_publisher(send_side_effect=None, policy: BackoffPolicy | None = None):
    queue = AsyncMock()
    queue.send = AsyncMock(return_value="1718000000000-0", side_effect=send_side_effect)
    sleep = SleepRecorder()
    return RequestPublisher(queue, policy=policy, sleep=sleep.sleep), queue, sleep


# ── BackoffPolicy ────────────────────────────────────────────────────────────


class TestBackoffPolicy:
    """Exponential schedule with a fixed retry budget."""

    def test_default_schedule(self):
        policy = BackoffPolicy()
        assert policy.max_attempts == 4
        assert policy.delays() == [1.0, 2.0, 4.0]

    def test_custom_schedule(self):
        policy = BackoffPolicy(max_retries=4, base_delay_seconds=0.5, multiplier=3.0)
        assert policy.delays() == [0.5, 1.5, 4.5, 13.5]

    def test_no_delay_before_first_attempt(self):
        assert BackoffPolicy().delay_for(0) == 0.0

    def test_zero_retries(self):
        policy = BackoffPolicy(max_retries=0)
        assert policy.max_attempts == 1
        assert policy.delays() == []


# ── Event Construction ───────────────────────────────────────────────────────


class TestBuildRequestEvent:
    """Request events carry the record identity and source location."""

    def test_file_record(self):
        record = make_record()
        event = build_request_event(
            record, user_id="u-1", bucket="kontext-uploads", key="documents/a.pdf"
        )

        assert event.content_id == str(record.id)
        assert event.project_id == str(record.project_id)
        assert event.content_type == "document"
        assert event.name == "report.pdf"
        assert event.mime_type == "application/pdf"
        assert event.file_size == 2048
        assert event.s3_bucket == "kontext-uploads"
        assert event.s3_key == "documents/a.pdf"
        assert event.web_url is None
        assert event.user_id == "u-1"

    def test_web_record_carries_url(self):
        record = make_record(
            content_type=ContentType.WEB,
            source="https://example.com/docs",
            name="example.com",
            mime_type="text/html",
            size=None,
        )
        event = build_request_event(record)

        assert event.content_type == "web"
        assert event.web_url == "https://example.com/docs"
        assert event.s3_bucket is None
        assert event.s3_key is None


# ── Publishing ───────────────────────────────────────────────────────────────


class TestRequestPublisher:
    """Transient send failures are retried on the policy schedule."""

    async def test_publish_sends_camel_case_body(self):
        publisher, queue, sleep = _make_publisher()
        event = build_request_event(make_record(), bucket="b", key="k")

        message_id = await publisher.publish(event)

        assert message_id == "1718000000000-0"
        queue.send.assert_awaited_once()
        body = json.loads(queue.send.await_args.args[0])
        assert body["eventType"] == "content.process.request"
        assert body["contentId"] == event.content_id
        assert sleep.delays == []

    async def test_retries_then_succeeds(self):
        publisher, queue, sleep = _make_publisher(
            send_side_effect=[
                RedisConnectionError("down"),
                RedisTimeoutError("slow"),
                "1718000000000-1",
            ]
        )
        event = build_request_event(make_record())

        message_id = await publisher.publish(event)

        assert message_id == "1718000000000-1"
        assert queue.send.await_count == 3
        assert sleep.delays == [1.0, 2.0]

    async def test_exhausted_retries_raise_publish_error(self):
        publisher, queue, sleep = _make_publisher(
            send_side_effect=RedisConnectionError("connection refused")
        )
        event = build_request_event(make_record())

        with pytest.raises(PublishError) as exc_info:
            await publisher.publish(event)

        assert exc_info.value.attempts == 4
        assert queue.send.await_count == 4
        assert sleep.delays == [1.0, 2.0, 4.0]
        assert isinstance(exc_info.value.__cause__, RedisConnectionError)

    async def test_custom_policy_bounds_attempts(self):
        publisher, queue, sleep = _make_publisher(
            send_side_effect=ConnectionError("reset"),
            policy=BackoffPolicy(max_retries=1, base_delay_seconds=0.25),
        )

        with pytest.raises(PublishError):
            await publisher.publish(build_request_event(make_record()))

        assert queue.send.await_count == 2
        assert sleep.delays == [0.25]

    async def test_non_transient_error_is_not_retried(self):
        publisher, queue, sleep = _make_publisher(send_side_effect=ValueError("bad body"))

        with pytest.raises(ValueError, match="bad body"):
            await publisher.publish(build_request_event(make_record()))

        assert queue.send.await_count == 1
        assert sleep.delays == []

    async def test_publish_for_record_returns_event(self):
        publisher, queue, _ = _make_publisher()
        record = make_record()

        event = await publisher.publish_for_record(
            record, user_id="u-9", bucket="kontext-uploads", key="documents/x.pdf"
        )

        assert event.content_id == str(record.id)
        assert event.user_id == "u-9"
        queue.send.assert_awaited_once()

    async def test_republishing_yields_distinct_event_ids(self):
        publisher, queue, _ = _make_publisher()
        record = make_record()

        first = await publisher.publish_for_record(record)
        second = await publisher.publish_for_record(record)

        assert first.event_id != second.event_id
        assert queue.send.await_count == 2
