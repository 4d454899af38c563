"""Bounded worker pool for document processing jobs.

The scheduler owns the queue entries of every admitted document. Admission
is a check-and-insert with no await in between, which on a single event loop
makes it atomic: a document id can hold at most one entry, so at most one
pipeline run per id is ever in flight.

Usage:
    scheduler = ProcessingScheduler(processor.run, concurrency=2, queue_limit=50)
    scheduler.start()
    if scheduler.reserve(document_id, file_path):
        scheduler.dispatch(document_id)
    ...
    await scheduler.stop()
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable

import structlog

from doculens.core.errors import DocumentError, ErrorKind
from doculens.models.base import utcnow

logger = structlog.get_logger()


@dataclass
class ProcessingQueueEntry:
    """A document admitted for processing."""

    document_id: str
    file_path: str | None = None
    enqueued_at: datetime = field(default_factory=utcnow)
    started_at: datetime | None = None
    storage_key: str | None = None
    """Blob key written by the run, once the upload has been stored."""


JobHandler = Callable[[ProcessingQueueEntry], Awaitable[None]]


class ProcessingScheduler:
    """Fixed pool of worker tasks fed by an asyncio queue.

    Entries are inserted by `reserve` and removed unconditionally when the
    job settles, whether it succeeded, failed or was cancelled.
    """

    def __init__(
        self,
        handler: JobHandler | None = None,
        concurrency: int = 2,
        queue_limit: int = 50,
    ) -> None:
        if concurrency < 1 or queue_limit < 1:
            raise ValueError("concurrency and queue_limit must be >= 1")
        self.handler = handler
        self.concurrency = concurrency
        self.queue_limit = queue_limit
        self._entries: dict[str, ProcessingQueueEntry] = {}
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._workers: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return bool(self._workers)

    def is_tracked(self, document_id: str) -> bool:
        return document_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def reserve(self, document_id: str, file_path: str | None = None) -> bool:
        """Admit a document.

        Returns:
            False if the document already holds an entry.

        Raises:
            DocumentError: CAPACITY when the scheduler is saturated.
        """
        if document_id in self._entries:
            logger.warning("document_already_queued", document_id=document_id)
            return False
        if len(self._entries) >= self.queue_limit:
            logger.warning(
                "processing_queue_full",
                document_id=document_id,
                queue_limit=self.queue_limit,
            )
            raise DocumentError(
                ErrorKind.CAPACITY,
                "Processing queue is full; try again later",
                {"queue_limit": self.queue_limit},
            )
        self._entries[document_id] = ProcessingQueueEntry(document_id, file_path)
        return True

    def release(self, document_id: str) -> None:
        self._entries.pop(document_id, None)

    def dispatch(self, document_id: str) -> None:
        """Hand a reserved document to the worker pool."""
        if document_id not in self._entries:
            raise DocumentError(
                ErrorKind.CONFLICT,
                "Document was not reserved for processing",
                {"document_id": document_id},
            )
        self._queue.put_nowait(document_id)
        logger.info(
            "document_enqueued",
            document_id=document_id,
            queue_length=len(self._entries),
        )

    def start(self) -> None:
        if self.handler is None:
            raise RuntimeError("ProcessingScheduler.start() requires a job handler")
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(index), name=f"doculens-worker-{index}")
            for index in range(self.concurrency)
        ]
        logger.info("scheduler_started", concurrency=self.concurrency)

    async def stop(self) -> None:
        """Cancel workers. Entries of cancelled jobs are released."""
        workers, self._workers = self._workers, []
        for worker in workers:
            worker.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        logger.info("scheduler_stopped", abandoned=len(self._entries))
        self._entries.clear()

    async def join(self) -> None:
        """Wait until every dispatched job has settled."""
        await self._queue.join()

    def snapshot(self) -> dict[str, Any]:
        """Queue view for monitoring."""
        return {
            "queue_length": len(self._entries),
            "waiting": self._queue.qsize(),
            "concurrency": self.concurrency,
            "queue_limit": self.queue_limit,
            "documents": [
                {
                    "document_id": entry.document_id,
                    "enqueued_at": entry.enqueued_at,
                    "started_at": entry.started_at,
                }
                for entry in self._entries.values()
            ],
        }

    async def _worker(self, index: int) -> None:
        while True:
            document_id = await self._queue.get()
            entry = self._entries.get(document_id)
            try:
                if entry is None:
                    continue
                entry.started_at = utcnow()
                await self.handler(entry)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(
                    "processing_job_crashed",
                    worker=index,
                    document_id=document_id,
                    error=str(e),
                )
            finally:
                self.release(document_id)
                self._queue.task_done()
