"""Recovery of documents whose processing run was lost.

Pipeline runs live only in the scheduler of the process that accepted them.
When that process stops mid-run, the record stays `processing` forever
unless something demotes it. Two sweeps do that:

- at startup every `processing` record is demoted, since nothing can be in
  flight before the scheduler has started;
- on status reads, a `processing` record that the local scheduler is not
  running and that has not moved for `stale_processing_seconds` is demoted.

Demoted records are `failed` and can be retried through the process route.
"""

from datetime import timedelta

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from doculens.core.config import settings
from doculens.documents.store import StatusStore
from doculens.models.base import as_utc, utcnow
from doculens.models.document import Document, ProcessingStatus
from doculens.orchestration.scheduler import ProcessingScheduler

logger = structlog.get_logger()

INTERRUPTED_MESSAGE = "Processing was interrupted; retry the document"


async def recover_interrupted_documents(
    session_factory: async_sessionmaker[AsyncSession],
) -> int:
    """Mark every `processing` record failed. Returns the number demoted."""
    async with session_factory() as session:
        store = StatusStore(session)
        documents = await store.list_by_status(ProcessingStatus.PROCESSING)
        for document in documents:
            await store.update_status(
                document.id, ProcessingStatus.FAILED, error=INTERRUPTED_MESSAGE
            )
        await session.commit()

    if documents:
        logger.warning(
            "interrupted_documents_recovered",
            count=len(documents),
            document_ids=[document.id for document in documents],
        )
    return len(documents)


def is_stale(
    document: Document,
    scheduler: ProcessingScheduler | None,
    stale_after: timedelta | None = None,
) -> bool:
    """True when a `processing` record has no live run behind it."""
    if document.status != ProcessingStatus.PROCESSING:
        return False
    if scheduler is not None and scheduler.is_tracked(document.id):
        return False
    stale_after = stale_after or timedelta(seconds=settings.stale_processing_seconds)
    updated_at = as_utc(document.updated_at) or as_utc(document.created_at)
    return updated_at is not None and utcnow() - updated_at > stale_after


async def demote_if_stale(
    store: StatusStore,
    document: Document,
    scheduler: ProcessingScheduler | None,
    stale_after: timedelta | None = None,
) -> Document:
    """Fail a stale `processing` record in place; other records pass through."""
    if not is_stale(document, scheduler, stale_after):
        return document
    logger.warning(
        "stale_document_demoted",
        document_id=document.id,
        updated_at=document.updated_at,
    )
    return await store.update_status(
        document.id, ProcessingStatus.FAILED, error=INTERRUPTED_MESSAGE
    )
