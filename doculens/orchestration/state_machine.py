"""Processing state machine for document records.

Provides declarative transitions over `Document.status` with callbacks that
keep `progress`, `error` and `result` consistent with the current state.
"""

from typing import Any

import structlog
from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from doculens.models.base import utcnow
from doculens.models.document import Document, ProcessingStatus

logger = structlog.get_logger()


class ProcessingStateMachine(StateMachine):
    """State machine bound to a `Document` through its `status` column.

    States:
    - pending: uploaded, not yet accepted for processing
    - processing: a pipeline run owns the record
    - completed: result stored (final)
    - failed: error stored; not final so a manual retry can restart it

    Transitions:
    - start: pending/failed -> processing (clears result and error)
    - advance: processing -> processing (progress may only move forward)
    - complete: processing -> completed
    - fail: processing/pending -> failed
    """

    pending = State(initial=True, value=ProcessingStatus.PENDING)
    processing = State(value=ProcessingStatus.PROCESSING)
    completed = State(final=True, value=ProcessingStatus.COMPLETED)
    failed = State(value=ProcessingStatus.FAILED)

    start = pending.to(processing) | failed.to(processing)
    advance = processing.to.itself(cond="moves_forward")
    complete = processing.to(completed)
    fail = processing.to(failed) | pending.to(failed)

    def __init__(self, document: Document) -> None:
        self.document = document
        super().__init__(model=document, state_field="status")

    def _touch(self) -> None:
        self.document.updated_at = utcnow()

    def moves_forward(self, progress: int) -> bool:
        return self.document.progress <= progress <= 100

    def on_start(self, progress: int = 10, stage: str = "accepted") -> None:
        self.document.progress = progress
        self.document.stage = stage
        self.document.error = None
        self.document.result = None
        self.document.ocr_result = None
        self.document.processing_method = None
        self.document.processed_at = None
        self._touch()
        logger.info(
            "document_processing_started",
            document_id=self.document.id,
            progress=progress,
        )

    def on_advance(self, progress: int, stage: str) -> None:
        self.document.progress = progress
        self.document.stage = stage
        self._touch()
        logger.debug(
            "document_progress",
            document_id=self.document.id,
            progress=progress,
            stage=stage,
        )

    def on_complete(self, result: dict[str, Any], method: str | None = None) -> None:
        now = utcnow()
        self.document.result = result
        self.document.progress = 100
        self.document.stage = "completed"
        self.document.error = None
        self.document.processing_method = method
        self.document.processed_at = now
        self.document.updated_at = now
        logger.info(
            "document_completed",
            document_id=self.document.id,
            method=method,
        )

    def on_fail(self, reason: str) -> None:
        self.document.error = reason or "Processing failed"
        self.document.stage = "failed"
        self._touch()
        logger.warning(
            "document_failed",
            document_id=self.document.id,
            reason=reason,
        )


__all__ = [
    "ProcessingStateMachine",
    "TransitionNotAllowed",
]
