"""Tests for KnowledgeService submission, listing and deletion.

Record and object stores are in-memory doubles; the publisher is an
AsyncMock so each test asserts the exact request handed to the worker.
"""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.knowledge.processing.errors import ArtifactDeleteError, PublishError
from src.knowledge.schemas import ContentType, ProcessingStatus
from src.knowledge.service import (
    InvalidWebUrl,
    KnowledgeNotFound,
    KnowledgeService,
    UnsupportedFileType,
    determine_content_type,
)

from tests.conftest import PROJECT_ID, make_record

UPLOAD_BUCKET = "kontext-uploads"


def _make_service(record_store, artifact_store, index_writer=None):
    publisher = MagicMock()
    publisher.publish_for_record = AsyncMock()
    service = KnowledgeService(
        record_store,
        artifact_store,
        publisher,
        upload_bucket=UPLOAD_BUCKET,
        index_writer=index_writer,
    )
    return service, publisher


# ── Content Type Detection ───────────────────────────────────────────────────


class TestDetermineContentType:
    @pytest.mark.parametrize("mime", ["image/png", "image/jpeg", "IMAGE/WEBP"])
    def test_images(self, mime):
        assert determine_content_type(mime) is ContentType.IMAGE

    @pytest.mark.parametrize(
        "mime",
        [
            "application/pdf",
            "text/plain; charset=utf-8",
            "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        ],
    )
    def test_documents(self, mime):
        assert determine_content_type(mime) is ContentType.DOCUMENT

    @pytest.mark.parametrize("mime", [None, "", "application/zip", "video/mp4"])
    def test_unsupported(self, mime):
        with pytest.raises(UnsupportedFileType):
            determine_content_type(mime)


# ── File Upload ──────────────────────────────────────────────────────────────


class TestUploadFile:
    """Uploads are stored, recorded as PROCESSING, then published."""

    async def test_upload_document(self, record_store, artifact_store):
        service, publisher = _make_service(record_store, artifact_store)

        record = await service.upload_file(
            PROJECT_ID, "u-1", "Quarterly Report.PDF", "application/pdf", b"%PDF-1.7 body"
        )

        assert record.processing_status is ProcessingStatus.PROCESSING
        assert record.type is ContentType.DOCUMENT
        assert record.name == "Quarterly Report.PDF"
        assert record.size == len(b"%PDF-1.7 body")
        bucket, key = record.source.split("/", 1)
        assert bucket == UPLOAD_BUCKET
        assert key.startswith("documents/") and key.endswith(".pdf")
        assert artifact_store.objects[(bucket, key)] == b"%PDF-1.7 body"
        publisher.publish_for_record.assert_awaited_once_with(
            record, user_id="u-1", bucket=UPLOAD_BUCKET, key=key
        )

    async def test_upload_image_goes_to_images_folder(self, record_store, artifact_store):
        service, _ = _make_service(record_store, artifact_store)

        record = await service.upload_file(PROJECT_ID, None, "chart.png", "image/png", b"\x89PNG")

        assert record.type is ContentType.IMAGE
        assert record.source.startswith(f"{UPLOAD_BUCKET}/images/")

    async def test_missing_filename_uses_placeholder(self, record_store, artifact_store):
        service, _ = _make_service(record_store, artifact_store)

        record = await service.upload_file(PROJECT_ID, None, None, "text/plain", b"notes")

        assert record.name == "unknown_file"

    async def test_client_path_is_stripped(self, record_store, artifact_store):
        service, _ = _make_service(record_store, artifact_store)

        record = await service.upload_file(
            PROJECT_ID, None, "C:\\Users\\me\\notes.txt", "text/plain", b"notes"
        )

        assert record.name == "notes.txt"

    async def test_mime_parameters_are_dropped(self, record_store, artifact_store):
        service, _ = _make_service(record_store, artifact_store)
        mime = "Text/Plain; charset=utf-8; " + "; ".join(f"p{i}=v{i}" for i in range(40))

        record = await service.upload_file(PROJECT_ID, None, "notes.txt", mime, b"notes")

        assert record.mime_type == "text/plain"

    async def test_overlong_image_subtype_is_truncated(self, record_store, artifact_store):
        service, _ = _make_service(record_store, artifact_store)

        record = await service.upload_file(
            PROJECT_ID, None, "a.img", "image/" + "x" * 200, b"\x00"
        )

        assert record.type is ContentType.IMAGE
        assert len(record.mime_type) == 100
        assert len(artifact_store.objects) == 1

    async def test_unsupported_type_creates_nothing(self, record_store, artifact_store):
        service, publisher = _make_service(record_store, artifact_store)

        with pytest.raises(UnsupportedFileType):
            await service.upload_file(PROJECT_ID, None, "a.zip", "application/zip", b"PK")

        assert record_store.records == {}
        assert artifact_store.objects == {}
        publisher.publish_for_record.assert_not_awaited()

    async def test_publish_failure_leaves_record_processing(self, record_store, artifact_store):
        service, publisher = _make_service(record_store, artifact_store)
        publisher.publish_for_record.side_effect = PublishError("queue down", attempts=4)

        with pytest.raises(PublishError):
            await service.upload_file(PROJECT_ID, None, "a.pdf", "application/pdf", b"x")

        (stored,) = record_store.records.values()
        assert stored.processing_status is ProcessingStatus.PROCESSING


# ── Web Knowledge ────────────────────────────────────────────────────────────


class TestCreateWeb:
    async def test_create_web(self, record_store, artifact_store):
        service, publisher = _make_service(record_store, artifact_store)

        record = await service.create_web(PROJECT_ID, "u-1", " https://docs.example.com/guide ")

        assert record.type is ContentType.WEB
        assert record.name == "docs.example.com"
        assert record.source == "https://docs.example.com/guide"
        assert record.mime_type == "text/html"
        assert record.size is None
        assert artifact_store.objects == {}
        publisher.publish_for_record.assert_awaited_once_with(record, user_id="u-1")

    @pytest.mark.parametrize("url", ["", "ftp://example.com", "example.com/page", "https://"])
    async def test_invalid_url(self, record_store, artifact_store, url):
        service, publisher = _make_service(record_store, artifact_store)

        with pytest.raises(InvalidWebUrl):
            await service.create_web(PROJECT_ID, None, url)

        assert record_store.records == {}
        publisher.publish_for_record.assert_not_awaited()


# ── Read / Delete ────────────────────────────────────────────────────────────


class TestReadAndDelete:
    async def test_get_and_list(self, record_store, artifact_store):
        service, _ = _make_service(record_store, artifact_store)
        doc = record_store.add(make_record())
        record_store.add(make_record(content_type=ContentType.IMAGE, name="a.png"))
        record_store.add(make_record(project_id=uuid.uuid4()))

        assert (await service.get(PROJECT_ID, str(doc.id))).id == doc.id
        assert len(await service.list_for_project(PROJECT_ID)) == 2
        images = await service.list_for_project(PROJECT_ID, ContentType.IMAGE)
        assert [r.name for r in images] == ["a.png"]

    async def test_get_missing_raises(self, record_store, artifact_store):
        service, _ = _make_service(record_store, artifact_store)

        with pytest.raises(KnowledgeNotFound):
            await service.get(PROJECT_ID, str(uuid.uuid4()))

    async def test_delete_removes_upload_and_chunks(self, record_store, artifact_store):
        index_writer = MagicMock()
        index_writer.remove = AsyncMock()
        service, _ = _make_service(record_store, artifact_store, index_writer=index_writer)
        record = await service.upload_file(PROJECT_ID, None, "a.pdf", "application/pdf", b"x")

        await service.delete(PROJECT_ID, str(record.id))

        assert record_store.records[record.id].is_active is False
        bucket, key = record.source.split("/", 1)
        assert artifact_store.delete_calls == [(bucket, key)]
        index_writer.remove.assert_awaited_once_with(str(record.id))
        with pytest.raises(KnowledgeNotFound):
            await service.get(PROJECT_ID, str(record.id))

    async def test_delete_web_skips_object_store(self, record_store, artifact_store):
        service, _ = _make_service(record_store, artifact_store)
        record = await service.create_web(PROJECT_ID, None, "https://example.com")

        await service.delete(PROJECT_ID, str(record.id))

        assert artifact_store.delete_calls == []

    async def test_delete_tolerates_cleanup_failures(self, record_store, artifact_store):
        index_writer = MagicMock()
        index_writer.remove = AsyncMock(side_effect=RuntimeError("qdrant down"))
        service, _ = _make_service(record_store, artifact_store, index_writer=index_writer)
        record = record_store.add(make_record())
        artifact_store.delete = AsyncMock(side_effect=ArtifactDeleteError("b", "k", "denied"))

        await service.delete(PROJECT_ID, str(record.id))

        assert record_store.records[record.id].is_active is False

    async def test_delete_missing_raises(self, record_store, artifact_store):
        service, _ = _make_service(record_store, artifact_store)

        with pytest.raises(KnowledgeNotFound):
            await service.delete(PROJECT_ID, str(uuid.uuid4()))
