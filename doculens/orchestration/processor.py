"""Document processing pipeline.

`DocumentProcessor.submit` runs in the request path: it validates the
record, reserves a scheduler entry and moves the record to processing.
`DocumentProcessor.run` executes on a scheduler worker:

    load file (20) -> store blob (30) -> analyze (70) -> normalize -> complete

Analysis goes through the provider circuit breaker. Any provider failure,
including a timeout or an open circuit, switches to OCR plus the rule-based
extractor. Unrecovered errors mark the record failed; they never escape
`run`. The local temp file is removed in every case.
"""

import asyncio
import mimetypes
import os
import time
from pathlib import Path

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from doculens.core.config import settings
from doculens.core.errors import DocumentError, conflict, provider_error, validation_error
from doculens.core.logging import document_id_ctx
from doculens.documents.analyzer import AnalysisProvider
from doculens.documents.models import DocumentAnalysis, DocumentMetadata, ProcessingMethod
from doculens.documents.ocr import OCRProvider
from doculens.documents.results import normalize_analysis
from doculens.documents.rules import analyze_text
from doculens.documents.store import StatusStore
from doculens.integrations.storage import BlobStore, document_key
from doculens.models.base import as_utc
from doculens.models.document import Document, ProcessingStatus
from doculens.orchestration.circuit_breaker import ProviderCircuitBreaker
from doculens.orchestration.scheduler import ProcessingQueueEntry, ProcessingScheduler

logger = structlog.get_logger()

DEFAULT_MIME_TYPE = "application/octet-stream"


def resolve_mime_type(file_type: str | None, file_name: str) -> str:
    """Record MIME type, then a guess from the file name, then octet-stream."""
    if file_type and file_type != DEFAULT_MIME_TYPE:
        return file_type
    guessed, _ = mimetypes.guess_type(file_name)
    return guessed or DEFAULT_MIME_TYPE


class DocumentProcessor:
    """Runs uploaded documents through analysis.

    Usage:
        scheduler = ProcessingScheduler(concurrency=2, queue_limit=50)
        processor = DocumentProcessor(
            session_factory, scheduler, blob_store, analysis_provider, ocr_provider
        )
        scheduler.start()
        await processor.submit(document_id, temp_path)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        scheduler: ProcessingScheduler,
        blob_store: BlobStore | None,
        analysis_provider: AnalysisProvider,
        ocr_provider: OCRProvider,
        breaker: ProviderCircuitBreaker | None = None,
        analysis_timeout: float | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.scheduler = scheduler
        self.blob_store = blob_store
        self.analysis_provider = analysis_provider
        self.ocr_provider = ocr_provider
        self.breaker = breaker
        self.analysis_timeout = (
            analysis_timeout
            if analysis_timeout is not None
            else settings.analysis_timeout_seconds
        )
        if scheduler.handler is None:
            scheduler.handler = self.run

    async def submit(self, document_id: str, file_path: str | None = None) -> bool:
        """Accept a document for processing.

        Returns:
            True when a run was scheduled, False when the document is
            already queued.

        Raises:
            DocumentError: NOT_FOUND, CONFLICT when the document is running
                or completed, CAPACITY when the scheduler is saturated.
        """
        async with self.session_factory() as session:
            store = StatusStore(session, self.blob_store)
            document = await store.get(document_id)
            if document.status == ProcessingStatus.PROCESSING:
                raise conflict(
                    "Document processing already in progress",
                    document_id=document_id,
                )
            if document.status == ProcessingStatus.COMPLETED:
                raise conflict(
                    "Document has already been processed",
                    document_id=document_id,
                )

            path = file_path or document.temp_file_path
            if not self.scheduler.reserve(document_id, path):
                return False

            try:
                await store.update_status(
                    document_id, ProcessingStatus.PROCESSING, progress=10, stage="accepted"
                )
                await session.commit()
            except Exception:
                self.scheduler.release(document_id)
                raise

        self.scheduler.dispatch(document_id)
        return True

    async def run(self, entry: ProcessingQueueEntry) -> None:
        """Execute the pipeline for one admitted document. Never raises."""
        document_id = entry.document_id
        token = document_id_ctx.set(document_id)
        logger.info("document_processing_run_started", document_id=document_id)
        try:
            async with self.session_factory() as session:
                store = StatusStore(session, self.blob_store)
                try:
                    await self._pipeline(store, session, entry)
                except Exception as exc:
                    await session.rollback()
                    await self._mark_failed(store, session, entry, exc)
        finally:
            self._cleanup_temp_file(entry.file_path)
            document_id_ctx.reset(token)

    async def _pipeline(
        self,
        store: StatusStore,
        session: AsyncSession,
        entry: ProcessingQueueEntry,
    ) -> None:
        document_id = entry.document_id
        started = time.monotonic()
        document = await store.get(document_id)
        if document.status != ProcessingStatus.PROCESSING:
            logger.warning(
                "document_run_skipped",
                document_id=document_id,
                status=document.status.value,
            )
            return

        content = await self._load_content(document, entry.file_path)
        mime_type = resolve_mime_type(document.file_type, document.file_name)
        await store.update_status(
            document_id, ProcessingStatus.PROCESSING, progress=20, stage="loaded"
        )
        await session.commit()

        if self.blob_store is not None:
            key = document_key(document_id, document.file_name)
            entry.storage_key = key
            await self.blob_store.put(content, key)
            await store.set_storage_key(document_id, key)
        await store.update_status(
            document_id, ProcessingStatus.PROCESSING, progress=30, stage="stored"
        )
        await session.commit()

        analysis, method = await self._analyze(store, session, document, content, mime_type)
        await store.update_status(
            document_id, ProcessingStatus.PROCESSING, progress=70, stage="analyzed"
        )
        await session.commit()

        result = normalize_analysis(
            analysis,
            method,
            metadata=DocumentMetadata(
                file_name=document.file_name,
                file_size=document.file_size,
                file_type=mime_type,
                uploaded_at=as_utc(document.uploaded_at),
            ),
            processing_time_ms=int((time.monotonic() - started) * 1000),
        )
        await store.store_result(document_id, result)
        await session.commit()
        logger.info(
            "document_processing_completed",
            document_id=document_id,
            method=method.value,
            form_type=result.form_type,
        )

    async def _load_content(self, document: Document, file_path: str | None) -> bytes:
        """Read the temp upload, or the stored blob when the temp file is gone."""
        path = file_path or document.temp_file_path
        if path and os.path.exists(path):
            return await asyncio.to_thread(Path(path).read_bytes)
        if document.storage_key and self.blob_store is not None:
            logger.info(
                "document_loaded_from_storage",
                document_id=document.id,
                key=document.storage_key,
            )
            return await self.blob_store.read(document.storage_key)
        raise validation_error(
            "Document file is no longer available; upload it again",
            document_id=document.id,
        )

    async def _analyze(
        self,
        store: StatusStore,
        session: AsyncSession,
        document: Document,
        content: bytes,
        mime_type: str,
    ) -> tuple[DocumentAnalysis, ProcessingMethod]:
        try:
            analysis = await self._call_provider(content, mime_type, document.file_name)
            return analysis, ProcessingMethod.AI
        except Exception as e:
            logger.warning(
                "analysis_fallback",
                document_id=document.id,
                error=str(e),
            )

        ocr = await self.ocr_provider.extract(content, mime_type)
        await store.store_ocr_result(document.id, ocr)
        await session.commit()
        return analyze_text(ocr.text), ProcessingMethod.OCR_FALLBACK

    async def _call_provider(
        self, content: bytes, mime_type: str, file_name: str
    ) -> DocumentAnalysis:
        async def analyze() -> DocumentAnalysis:
            call = self.analysis_provider.analyze(content, mime_type, file_name)
            if not self.analysis_timeout:
                return await call
            try:
                return await asyncio.wait_for(call, timeout=self.analysis_timeout)
            except TimeoutError as exc:
                raise provider_error(
                    "analysis",
                    f"AI analysis timed out after {self.analysis_timeout}s",
                ) from exc

        if self.breaker is None:
            return await analyze()
        return await self.breaker.call(analyze)

    async def _mark_failed(
        self,
        store: StatusStore,
        session: AsyncSession,
        entry: ProcessingQueueEntry,
        exc: Exception,
    ) -> None:
        document_id = entry.document_id
        reason = exc.message if isinstance(exc, DocumentError) else str(exc)
        reason = reason or type(exc).__name__
        try:
            document = await store.find(document_id)
            if document is None:
                # Deleted mid-run: the delete could not see a blob written after it.
                logger.warning(
                    "document_deleted_during_processing",
                    document_id=document_id,
                    error=reason,
                )
                await self._discard_blob(entry)
                return
            logger.error(
                "document_processing_failed",
                document_id=document_id,
                error=reason,
                exc_info=exc,
            )
            if document.status.is_terminal:
                return
            await store.update_status(document_id, ProcessingStatus.FAILED, error=reason)
            await session.commit()
        except Exception as e:
            logger.error(
                "document_failure_not_recorded",
                document_id=document_id,
                error=str(e),
            )

    async def _discard_blob(self, entry: ProcessingQueueEntry) -> None:
        if not entry.storage_key or self.blob_store is None:
            return
        try:
            await self.blob_store.delete(entry.storage_key)
        except Exception as e:
            logger.warning(
                "orphan_blob_cleanup_failed",
                document_id=entry.document_id,
                key=entry.storage_key,
                error=str(e),
            )

    def _cleanup_temp_file(self, file_path: str | None) -> None:
        if not file_path:
            return
        try:
            if os.path.exists(file_path):
                os.remove(file_path)
                logger.debug("temp_file_removed", path=file_path)
        except OSError as e:
            logger.warning("temp_file_cleanup_failed", path=file_path, error=str(e))
