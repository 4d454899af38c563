"""Persistence of document processing records.

`StatusStore` is the only writer of `Document` rows. Status changes go
through `ProcessingStateMachine`, so the result/error invariants hold no
matter which caller drives the record. Methods flush but never commit;
the caller owns the transaction.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from doculens.core.errors import DocumentError, ErrorKind, conflict, not_found
from doculens.core.logging import get_logger
from doculens.documents.models import AnalysisResult, OCRResult
from doculens.integrations.storage import BlobStore, document_key
from doculens.models.base import as_utc, utcnow
from doculens.models.document import Document, ProcessingStatus
from doculens.orchestration.state_machine import (
    ProcessingStateMachine,
    TransitionNotAllowed,
)

logger = get_logger(__name__)

STATUS_MESSAGES = {
    ProcessingStatus.PENDING: "Document uploaded, waiting to process",
    ProcessingStatus.PROCESSING: "Analyzing your document",
    ProcessingStatus.COMPLETED: "Analysis complete",
}

STAGE_MESSAGES = {
    "accepted": "Queued for analysis",
    "loaded": "Reading document",
    "stored": "Document stored, analyzing content",
    "analyzed": "Finalizing results",
}


class StatusStore:
    """Record store for uploaded documents.

    Example:
        store = StatusStore(session, blob_store)
        await store.create(document_id, file_name="w2.pdf", file_size=1024,
                           file_type="application/pdf")
        await session.commit()
    """

    def __init__(self, session: AsyncSession, blob_store: BlobStore | None = None):
        self.session = session
        self.blob_store = blob_store

    async def create(
        self,
        document_id: str,
        *,
        file_name: str,
        file_size: int,
        file_type: str,
        temp_file_path: str | None = None,
        uploaded_at: datetime | None = None,
    ) -> Document:
        """Insert a new pending record.

        Raises:
            DocumentError: ALREADY_EXISTS if a record with this id exists.
        """
        if await self.find(document_id) is not None:
            raise DocumentError(
                ErrorKind.ALREADY_EXISTS,
                "Document already exists",
                {"document_id": document_id},
            )

        now = utcnow()
        document = Document(
            id=document_id,
            file_name=file_name,
            file_size=file_size,
            file_type=file_type,
            temp_file_path=temp_file_path,
            uploaded_at=uploaded_at or now,
            status=ProcessingStatus.PENDING,
            progress=0,
            stage="uploaded",
            created_at=now,
            updated_at=now,
        )
        self.session.add(document)
        await self.session.flush()
        logger.info("document_created", document_id=document_id, file_name=file_name)
        return document

    async def find(self, document_id: str) -> Document | None:
        return await self.session.get(Document, document_id)

    async def get(self, document_id: str) -> Document:
        """Load a record or raise NOT_FOUND."""
        document = await self.find(document_id)
        if document is None:
            raise not_found(document_id)
        return document

    async def refresh(self, document_id: str) -> Document:
        """Reload a record from the database, discarding unflushed state."""
        document = await self.get(document_id)
        await self.session.refresh(document)
        return document

    async def update_status(
        self,
        document_id: str,
        status: ProcessingStatus,
        progress: int | None = None,
        error: str | None = None,
        stage: str | None = None,
    ) -> Document:
        """Move a record to `status`.

        `processing` either starts a run (from pending or failed) or advances
        progress on a running one. `failed` stores `error` and leaves the
        result alone. `completed` is reached only through `store_result`.

        Raises:
            DocumentError: NOT_FOUND for a missing id, CONFLICT for an illegal
                transition or a progress value that would move backwards.
        """
        document = await self.get(document_id)
        machine = ProcessingStateMachine(document)
        current = document.status

        try:
            if status == ProcessingStatus.PROCESSING:
                if current == ProcessingStatus.PROCESSING:
                    target = document.progress if progress is None else progress
                    machine.advance(progress=target, stage=stage or document.stage)
                else:
                    machine.start(
                        progress=10 if progress is None else progress,
                        stage=stage or "accepted",
                    )
            elif status == ProcessingStatus.FAILED:
                machine.fail(reason=error or "Processing failed")
            elif status == ProcessingStatus.COMPLETED:
                raise conflict(
                    "A completed status requires a result",
                    document_id=document_id,
                )
            else:
                raise conflict(
                    f"Cannot move document back to {status.value}",
                    document_id=document_id,
                    status=current.value,
                )
        except TransitionNotAllowed as exc:
            raise conflict(
                f"Cannot move document from {current.value} to {status.value}",
                document_id=document_id,
                status=current.value,
                progress=document.progress,
            ) from exc

        await self.session.flush()
        return document

    async def store_result(
        self,
        document_id: str,
        result: AnalysisResult | dict[str, Any],
    ) -> Document:
        """Store the analysis result and complete the record."""
        document = await self.get(document_id)
        payload = (
            result.model_dump(mode="json")
            if isinstance(result, AnalysisResult)
            else result
        )
        machine = ProcessingStateMachine(document)
        try:
            machine.complete(result=payload, method=payload.get("processing_method"))
        except TransitionNotAllowed as exc:
            raise conflict(
                f"Cannot complete document in status {document.status.value}",
                document_id=document_id,
            ) from exc

        await self.session.flush()
        logger.info("analysis_result_stored", document_id=document_id)
        return document

    async def store_ocr_result(self, document_id: str, ocr: OCRResult) -> Document:
        document = await self.get(document_id)
        document.ocr_result = ocr.model_dump(mode="json")
        document.updated_at = utcnow()
        await self.session.flush()
        logger.info(
            "ocr_result_stored",
            document_id=document_id,
            confidence=ocr.confidence,
        )
        return document

    async def set_storage_key(self, document_id: str, key: str) -> Document:
        document = await self.get(document_id)
        document.storage_key = key
        document.updated_at = utcnow()
        await self.session.flush()
        return document

    async def delete(self, document_id: str) -> bool:
        """Delete a record and its stored blob.

        Returns False when the record does not exist. Blob removal failures
        are logged and do not stop the record from being deleted.
        """
        document = await self.find(document_id)
        if document is None:
            return False

        if self.blob_store is not None:
            key = document.storage_key or document_key(document_id, document.file_name)
            try:
                await self.blob_store.delete(key)
            except Exception as e:
                logger.warning(
                    "blob_delete_failed",
                    document_id=document_id,
                    key=key,
                    error=str(e),
                )

        await self.session.delete(document)
        await self.session.flush()
        logger.info("document_deleted", document_id=document_id)
        return True

    async def list_by_status(self, status: ProcessingStatus) -> list[Document]:
        result = await self.session.execute(
            select(Document)
            .where(Document.status == status)
            .order_by(Document.created_at)
        )
        return list(result.scalars().all())


def status_projection(document: Document) -> dict[str, Any]:
    """Public status view of a record."""
    if document.status == ProcessingStatus.FAILED:
        message = document.error or "Processing failed"
    elif document.status == ProcessingStatus.PROCESSING:
        message = STAGE_MESSAGES.get(
            document.stage, STATUS_MESSAGES[ProcessingStatus.PROCESSING]
        )
    else:
        message = STATUS_MESSAGES[document.status]

    return {
        "document_id": document.id,
        "status": document.status.value,
        "progress": document.progress,
        "stage": document.stage,
        "message": message,
        "error": document.error,
        "created_at": as_utc(document.created_at),
        "updated_at": as_utc(document.updated_at),
        "processed_at": as_utc(document.processed_at),
    }


def result_projection(document: Document) -> dict[str, Any]:
    """Public result view of a completed record.

    Raises:
        DocumentError: CONFLICT when the record has not completed.
    """
    if document.status != ProcessingStatus.COMPLETED or document.result is None:
        raise conflict(
            "Document processing not completed",
            document_id=document.id,
            status=document.status.value,
        )
    return {
        "document_id": document.id,
        "status": document.status.value,
        "processed_at": as_utc(document.processed_at),
        "results": document.result,
    }
