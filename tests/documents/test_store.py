"""Tests for the document status store."""

from datetime import timedelta
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from doculens.core.errors import DocumentError, ErrorKind
from doculens.documents.models import (
    AnalysisResult,
    OCRResult,
    ProcessingMethod,
    RiskLevel,
)
from doculens.documents.store import StatusStore, result_projection, status_projection
from doculens.integrations.storage import BlobStore, document_key
from doculens.models.base import as_utc, utcnow
from doculens.models.document import ProcessingStatus


def _result() -> AnalysisResult:
    return AnalysisResult(
        form_type="W2",
        confidence=0.9,
        extracted_fields={"wages": 52340.0},
        detected_issues=[],
        simplified_summary="W-2 for 2024",
        completeness_score=0.8,
        risk_level=RiskLevel.LOW,
        processing_method=ProcessingMethod.AI,
        processed_at=utcnow(),
    )


@pytest.mark.asyncio
async def test_create_starts_pending(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    async with session_factory() as session:
        store = StatusStore(session)
        document = await store.create(
            "doc-1", file_name="w2.pdf", file_size=42, file_type="application/pdf"
        )
        await session.commit()

    assert document.status == ProcessingStatus.PENDING
    assert document.progress == 0
    assert document.stage == "uploaded"
    assert document.result is None
    assert document.error is None


@pytest.mark.asyncio
async def test_create_rejects_existing_id(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    async with session_factory() as session:
        store = StatusStore(session)
        await store.create("doc-1", file_name="w2.pdf", file_size=1, file_type="application/pdf")
        await session.commit()

        with pytest.raises(DocumentError) as exc_info:
            await store.create(
                "doc-1", file_name="other.pdf", file_size=1, file_type="application/pdf"
            )

    assert exc_info.value.kind == ErrorKind.ALREADY_EXISTS


@pytest.mark.asyncio
async def test_get_missing_raises_not_found(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    async with session_factory() as session:
        with pytest.raises(DocumentError) as exc_info:
            await StatusStore(session).get("missing")

    assert exc_info.value.kind == ErrorKind.NOT_FOUND


@pytest.mark.asyncio
async def test_update_status_tracks_progress_and_bumps_updated_at(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    async with session_factory() as session:
        store = StatusStore(session)
        document = await store.create(
            "doc-1", file_name="w2.pdf", file_size=1, file_type="application/pdf"
        )
        created = as_utc(document.updated_at)

        await store.update_status("doc-1", ProcessingStatus.PROCESSING, progress=10)
        await store.update_status(
            "doc-1", ProcessingStatus.PROCESSING, progress=30, stage="stored"
        )
        await session.commit()

    assert document.status == ProcessingStatus.PROCESSING
    assert document.progress == 30
    assert document.stage == "stored"
    assert as_utc(document.updated_at) >= created


@pytest.mark.asyncio
async def test_update_status_rejects_backwards_progress(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    async with session_factory() as session:
        store = StatusStore(session)
        await store.create("doc-1", file_name="w2.pdf", file_size=1, file_type="application/pdf")
        await store.update_status("doc-1", ProcessingStatus.PROCESSING, progress=70)

        with pytest.raises(DocumentError) as exc_info:
            await store.update_status("doc-1", ProcessingStatus.PROCESSING, progress=20)

        document = await store.get("doc-1")

    assert exc_info.value.kind == ErrorKind.CONFLICT
    assert document.progress == 70


@pytest.mark.asyncio
async def test_completed_requires_result(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    async with session_factory() as session:
        store = StatusStore(session)
        await store.create("doc-1", file_name="w2.pdf", file_size=1, file_type="application/pdf")
        await store.update_status("doc-1", ProcessingStatus.PROCESSING)

        with pytest.raises(DocumentError) as exc_info:
            await store.update_status("doc-1", ProcessingStatus.COMPLETED)

    assert exc_info.value.kind == ErrorKind.CONFLICT


@pytest.mark.asyncio
async def test_store_result_completes_record(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    async with session_factory() as session:
        store = StatusStore(session)
        await store.create("doc-1", file_name="w2.pdf", file_size=1, file_type="application/pdf")
        await store.update_status("doc-1", ProcessingStatus.PROCESSING, progress=70)
        await store.store_result("doc-1", _result())
        await session.commit()

    async with session_factory() as session:
        document = await StatusStore(session).get("doc-1")

    assert document.status == ProcessingStatus.COMPLETED
    assert document.progress == 100
    assert document.result["form_type"] == "W2"
    assert document.processing_method == "ai"
    assert document.error is None


@pytest.mark.asyncio
async def test_failed_keeps_result_empty_and_stores_error(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    async with session_factory() as session:
        store = StatusStore(session)
        await store.create("doc-1", file_name="w2.pdf", file_size=1, file_type="application/pdf")
        await store.update_status("doc-1", ProcessingStatus.PROCESSING, progress=30)
        document = await store.update_status(
            "doc-1", ProcessingStatus.FAILED, error="Storage unavailable"
        )

    assert document.status == ProcessingStatus.FAILED
    assert document.error == "Storage unavailable"
    assert document.result is None
    assert document.progress == 30


@pytest.mark.asyncio
async def test_completed_record_cannot_fail(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    async with session_factory() as session:
        store = StatusStore(session)
        await store.create("doc-1", file_name="w2.pdf", file_size=1, file_type="application/pdf")
        await store.update_status("doc-1", ProcessingStatus.PROCESSING)
        await store.store_result("doc-1", _result())

        with pytest.raises(DocumentError) as exc_info:
            await store.update_status("doc-1", ProcessingStatus.FAILED, error="late")
        document = await store.get("doc-1")

    assert exc_info.value.kind == ErrorKind.CONFLICT
    assert document.status == ProcessingStatus.COMPLETED
    assert document.error is None


@pytest.mark.asyncio
async def test_store_ocr_result_persists_text(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    async with session_factory() as session:
        store = StatusStore(session)
        await store.create("doc-1", file_name="w2.png", file_size=1, file_type="image/png")
        await store.store_ocr_result(
            "doc-1",
            OCRResult(text="Form W-2", confidence=0.8, method="tesseract_ocr", page_count=1),
        )
        await session.commit()

    async with session_factory() as session:
        document = await StatusStore(session).get("doc-1")

    assert document.ocr_result["text"] == "Form W-2"
    assert document.ocr_result["quality"]["is_valid"] is True


@pytest.mark.asyncio
async def test_delete_removes_record_and_blob(
    session_factory: async_sessionmaker[AsyncSession],
    blob_store: BlobStore,
) -> None:
    key = document_key("doc-1", "w2.pdf")
    await blob_store.put(b"%PDF-1.4", key)

    async with session_factory() as session:
        store = StatusStore(session, blob_store)
        await store.create("doc-1", file_name="w2.pdf", file_size=8, file_type="application/pdf")
        await store.set_storage_key("doc-1", key)
        await session.commit()

        assert await store.delete("doc-1") is True
        await session.commit()

        with pytest.raises(DocumentError) as exc_info:
            await store.get("doc-1")
        assert await store.delete("doc-1") is False

    assert exc_info.value.kind == ErrorKind.NOT_FOUND
    assert await blob_store.exists(key) is False


@pytest.mark.asyncio
async def test_delete_survives_blob_failure(
    session_factory: async_sessionmaker[AsyncSession],
    tmp_path: Path,
) -> None:
    class BrokenBlobStore(BlobStore):
        async def delete(self, key: str) -> bool:
            raise OSError("bucket unreachable")

    async with session_factory() as session:
        store = StatusStore(session, BrokenBlobStore(str(tmp_path / "blobs")))
        await store.create("doc-1", file_name="w2.pdf", file_size=8, file_type="application/pdf")
        await store.set_storage_key("doc-1", document_key("doc-1", "w2.pdf"))

        assert await store.delete("doc-1") is True
        assert await store.find("doc-1") is None


@pytest.mark.asyncio
async def test_status_projection_shape(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    async with session_factory() as session:
        store = StatusStore(session)
        await store.create("doc-1", file_name="w2.pdf", file_size=1, file_type="application/pdf")
        document = await store.update_status(
            "doc-1", ProcessingStatus.PROCESSING, progress=20, stage="loaded"
        )

    projection = status_projection(document)

    assert set(projection) == {
        "document_id",
        "status",
        "progress",
        "stage",
        "message",
        "error",
        "created_at",
        "updated_at",
        "processed_at",
    }
    assert projection["status"] == "processing"
    assert projection["progress"] == 20
    assert projection["message"] == "Reading document"
    assert projection["processed_at"] is None


@pytest.mark.asyncio
async def test_failed_projection_uses_error_as_message(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    async with session_factory() as session:
        store = StatusStore(session)
        await store.create("doc-1", file_name="w2.pdf", file_size=1, file_type="application/pdf")
        document = await store.update_status("doc-1", ProcessingStatus.FAILED, error="Bad scan")

    assert status_projection(document)["message"] == "Bad scan"
    with pytest.raises(DocumentError) as exc_info:
        result_projection(document)
    assert exc_info.value.kind == ErrorKind.CONFLICT


@pytest.mark.asyncio
async def test_list_by_status_filters(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    async with session_factory() as session:
        store = StatusStore(session)
        for document_id in ("a", "b", "c"):
            await store.create(
                document_id, file_name="w2.pdf", file_size=1, file_type="application/pdf"
            )
        await store.update_status("b", ProcessingStatus.PROCESSING)
        await session.commit()

        processing = await store.list_by_status(ProcessingStatus.PROCESSING)

    assert [document.id for document in processing] == ["b"]


def test_as_utc_attaches_timezone() -> None:
    naive = utcnow().replace(tzinfo=None)
    assert as_utc(naive).utcoffset() == timedelta(0)
