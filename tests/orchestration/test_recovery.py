"""Tests for recovery of interrupted processing runs."""

from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from doculens.documents.store import StatusStore
from doculens.models.base import utcnow
from doculens.models.document import Document, ProcessingStatus
from doculens.orchestration.recovery import (
    INTERRUPTED_MESSAGE,
    demote_if_stale,
    is_stale,
    recover_interrupted_documents,
)
from doculens.orchestration.scheduler import ProcessingScheduler


def _document(status: ProcessingStatus, updated_minutes_ago: int) -> Document:
    now = utcnow()
    return Document(
        id="doc-1",
        file_name="w2.pdf",
        file_size=1,
        file_type="application/pdf",
        uploaded_at=now,
        status=status,
        progress=30,
        stage="stored",
        created_at=now - timedelta(minutes=updated_minutes_ago),
        updated_at=now - timedelta(minutes=updated_minutes_ago),
    )


@pytest.mark.asyncio
async def test_startup_sweep_fails_processing_records(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    async with session_factory() as session:
        store = StatusStore(session)
        for document_id in ("running", "waiting"):
            await store.create(
                document_id, file_name="w2.pdf", file_size=1, file_type="application/pdf"
            )
        await store.update_status("running", ProcessingStatus.PROCESSING, progress=30)
        await session.commit()

    assert await recover_interrupted_documents(session_factory) == 1

    async with session_factory() as session:
        store = StatusStore(session)
        running = await store.get("running")
        waiting = await store.get("waiting")

    assert running.status == ProcessingStatus.FAILED
    assert running.error == INTERRUPTED_MESSAGE
    assert running.progress == 30
    assert waiting.status == ProcessingStatus.PENDING


@pytest.mark.asyncio
async def test_startup_sweep_with_nothing_to_recover(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    assert await recover_interrupted_documents(session_factory) == 0


class TestIsStale:
    """Tests for stale run detection."""

    def test_old_untracked_processing_record_is_stale(self) -> None:
        document = _document(ProcessingStatus.PROCESSING, updated_minutes_ago=30)

        assert is_stale(document, ProcessingScheduler(), timedelta(minutes=15))

    def test_recent_record_is_not_stale(self) -> None:
        document = _document(ProcessingStatus.PROCESSING, updated_minutes_ago=1)

        assert not is_stale(document, ProcessingScheduler(), timedelta(minutes=15))

    def test_tracked_record_is_not_stale(self) -> None:
        document = _document(ProcessingStatus.PROCESSING, updated_minutes_ago=30)
        scheduler = ProcessingScheduler()
        scheduler.reserve(document.id)

        assert not is_stale(document, scheduler, timedelta(minutes=15))

    def test_other_statuses_are_never_stale(self) -> None:
        document = _document(ProcessingStatus.PENDING, updated_minutes_ago=30)

        assert not is_stale(document, None, timedelta(minutes=15))


@pytest.mark.asyncio
async def test_demote_if_stale_fails_record(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    async with session_factory() as session:
        store = StatusStore(session)
        await store.create("doc-1", file_name="w2.pdf", file_size=1, file_type="application/pdf")
        document = await store.update_status("doc-1", ProcessingStatus.PROCESSING, progress=20)

        demoted = await demote_if_stale(
            store, document, ProcessingScheduler(), stale_after=timedelta(seconds=-1)
        )

    assert demoted.status == ProcessingStatus.FAILED
    assert demoted.error == INTERRUPTED_MESSAGE


@pytest.mark.asyncio
async def test_demote_if_stale_leaves_live_run_alone(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    scheduler = ProcessingScheduler()
    scheduler.reserve("doc-1")
    async with session_factory() as session:
        store = StatusStore(session)
        await store.create("doc-1", file_name="w2.pdf", file_size=1, file_type="application/pdf")
        document = await store.update_status("doc-1", ProcessingStatus.PROCESSING, progress=20)

        result = await demote_if_stale(
            store, document, scheduler, stale_after=timedelta(seconds=-1)
        )

    assert result.status == ProcessingStatus.PROCESSING
    assert result.error is None
