"""Tests for processing event schemas, decoding and the status state machine.

Covers the camelCase wire format, discriminated decoding of the three event
kinds, decode failures, and the PROCESSING -> SUCCESS/FAILED transitions.
"""

from __future__ import annotations

import json

import pytest

from src.knowledge.processing.errors import DecodeError, IllegalTransition
from src.knowledge.processing.events import (
    EventType,
    ProcessFailedEvent,
    ProcessRequestEvent,
    ProcessSuccessEvent,
    decode_event,
)
from src.knowledge.processing.state_machine import target_status, transition
from src.knowledge.schemas import ProcessingStatus

from tests.conftest import failure_body, success_body


# ── Wire Format ──────────────────────────────────────────────────────────────


class TestRequestEventWireFormat:
    """ProcessRequestEvent serializes to a flat camelCase document."""

    def test_to_message_uses_camel_case_keys(self):
        event = ProcessRequestEvent(
            content_id="c-1",
            content_type="document",
            name="report.pdf",
            mime_type="application/pdf",
            file_size=2048,
            s3_bucket="kontext-uploads",
            s3_key="documents/abc.pdf",
            project_id="p-1",
            user_id="u-1",
        )
        payload = json.loads(event.to_message())

        assert payload["eventType"] == EventType.PROCESS_REQUEST.value
        assert payload["contentId"] == "c-1"
        assert payload["contentType"] == "document"
        assert payload["mimeType"] == "application/pdf"
        assert payload["fileSize"] == 2048
        assert payload["s3Bucket"] == "kontext-uploads"
        assert payload["s3Key"] == "documents/abc.pdf"
        assert payload["projectId"] == "p-1"
        assert payload["userId"] == "u-1"
        assert payload["webUrl"] is None
        assert "content_id" not in payload

    def test_each_event_gets_a_fresh_id(self):
        a = ProcessRequestEvent(content_id="c-1", content_type="web", name="x", project_id="p")
        b = ProcessRequestEvent(content_id="c-1", content_type="web", name="x", project_id="p")
        assert a.event_id != b.event_id

    def test_request_round_trips_through_decoder(self):
        event = ProcessRequestEvent(
            content_id="c-1",
            content_type="web",
            name="example.com",
            web_url="https://example.com",
            project_id="p-1",
        )
        decoded = decode_event(event.to_message())
        assert isinstance(decoded, ProcessRequestEvent)
        assert decoded.web_url == "https://example.com"
        assert decoded.event_id == event.event_id


# ── Decoding ─────────────────────────────────────────────────────────────────


class TestDecodeEvent:
    """decode_event dispatches on eventType and rejects malformed bodies."""

    def test_decodes_success_event(self):
        event = decode_event(success_body("c-1", chunk_count=5))

        assert isinstance(event, ProcessSuccessEvent)
        assert event.content_id == "c-1"
        assert event.chunk_count == 5
        assert event.s3_bucket_name == "kontext-artifacts"
        assert event.s3_key == "processed/c-1.json"
        assert event.processing_time_ms == 1200

    def test_decodes_failed_event(self):
        event = decode_event(failure_body("c-2"))

        assert isinstance(event, ProcessFailedEvent)
        assert event.error_message == "unreadable file"
        assert event.error_code == "EXTRACTION_ERROR"
        assert event.failed_step == "extraction"
        assert event.retry_count == 2

    def test_accepts_bytes_and_dicts(self):
        raw = success_body("c-1")
        assert isinstance(decode_event(raw.encode()), ProcessSuccessEvent)
        assert isinstance(decode_event(json.loads(raw)), ProcessSuccessEvent)

    def test_unknown_fields_are_ignored(self):
        event = decode_event(success_body("c-1", workerVersion="2.3.1"))
        assert isinstance(event, ProcessSuccessEvent)

    def test_invalid_json_raises(self):
        with pytest.raises(DecodeError, match="not valid JSON"):
            decode_event("{not json")

    def test_non_object_raises(self):
        with pytest.raises(DecodeError, match="JSON object"):
            decode_event("[1, 2, 3]")

    def test_missing_event_type_raises(self):
        payload = json.loads(success_body("c-1"))
        del payload["eventType"]
        with pytest.raises(DecodeError, match="eventType"):
            decode_event(payload)

    def test_unknown_event_type_raises(self):
        with pytest.raises(DecodeError):
            decode_event(success_body("c-1", eventType="content.process.progress"))

    def test_missing_required_field_raises(self):
        payload = json.loads(success_body("c-1"))
        del payload["s3Key"]
        with pytest.raises(DecodeError, match="content.process.success"):
            decode_event(payload)

    def test_negative_chunk_count_raises(self):
        with pytest.raises(DecodeError):
            decode_event(success_body("c-1", chunk_count=-1))

    def test_empty_content_id_raises(self):
        with pytest.raises(DecodeError):
            decode_event(failure_body(""))


# ── State Machine ────────────────────────────────────────────────────────────


class TestTransition:
    """Status changes are monotonic: PROCESSING moves once to a terminal state."""

    @pytest.mark.parametrize("target", [ProcessingStatus.SUCCESS, ProcessingStatus.FAILED])
    def test_processing_to_terminal_applies(self, target):
        assert transition(ProcessingStatus.PROCESSING, target) is True

    @pytest.mark.parametrize("status", [ProcessingStatus.SUCCESS, ProcessingStatus.FAILED])
    def test_same_terminal_is_noop(self, status):
        assert transition(status, status) is False

    def test_success_to_failed_is_illegal(self):
        with pytest.raises(IllegalTransition) as exc_info:
            transition(ProcessingStatus.SUCCESS, ProcessingStatus.FAILED)
        assert exc_info.value.current == "SUCCESS"
        assert exc_info.value.target == "FAILED"

    def test_failed_to_success_is_illegal(self):
        with pytest.raises(IllegalTransition):
            transition(ProcessingStatus.FAILED, ProcessingStatus.SUCCESS)

    @pytest.mark.parametrize("current", list(ProcessingStatus))
    def test_back_to_processing_is_illegal(self, current):
        with pytest.raises(IllegalTransition):
            transition(current, ProcessingStatus.PROCESSING)

    def test_target_status_per_event(self):
        assert target_status(decode_event(success_body("c"))) is ProcessingStatus.SUCCESS
        assert target_status(decode_event(failure_body("c"))) is ProcessingStatus.FAILED
        request = ProcessRequestEvent(content_id="c", content_type="web", name="n", project_id="p")
        assert target_status(request) is None
