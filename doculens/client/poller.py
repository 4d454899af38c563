"""Client-side polling of a document's processing status.

Example:
    poller = StatusPoller(client.get_status)
    final = await poller.poll(document_id, on_update=print, max_attempts=60, interval=2.0)
"""

from __future__ import annotations

import asyncio
import inspect
from datetime import datetime
from typing import Any, Awaitable, Callable

import structlog
from pydantic import BaseModel

from doculens.core.errors import PollingTimeoutError

logger = structlog.get_logger()

TERMINAL_STATUSES = frozenset({"completed", "failed"})


class StatusSnapshot(BaseModel):
    """One observation of a document's status projection."""

    document_id: str
    status: str
    progress: int = 0
    stage: str | None = None
    message: str | None = None
    error: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    processed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


FetchStatus = Callable[[str], Awaitable[StatusSnapshot]]
OnUpdate = Callable[[StatusSnapshot], Any]


class StatusPoller:
    """Polls status at a fixed interval until the document is terminal.

    At most one loop runs per document id. A loop stops when the document
    reaches completed or failed, when `cancel` is called, or when
    `max_attempts` status checks pass without a terminal status.
    """

    def __init__(self, fetch_status: FetchStatus) -> None:
        self._fetch_status = fetch_status
        self._active: dict[str, asyncio.Event] = {}

    def is_polling(self, document_id: str) -> bool:
        return document_id in self._active

    def cancel(self, document_id: str) -> bool:
        """Stop the loop for `document_id`. Returns False if none is running."""
        cancelled = self._active.pop(document_id, None)
        if cancelled is None:
            return False
        cancelled.set()
        logger.info("status_polling_cancelled", document_id=document_id)
        return True

    async def poll(
        self,
        document_id: str,
        on_update: OnUpdate,
        max_attempts: int = 60,
        interval: float = 2.0,
    ) -> StatusSnapshot | None:
        """Poll until terminal and return the terminal snapshot.

        `on_update` (sync or async) receives every snapshot observed, the
        terminal one included, and is never called after cancellation.

        Returns:
            The completed or failed snapshot, or None when the loop was
            cancelled or another loop for this id is already running.

        Raises:
            PollingTimeoutError: after `max_attempts` non-terminal snapshots.
        """
        if document_id in self._active:
            logger.warning("status_polling_already_active", document_id=document_id)
            return None

        cancelled = asyncio.Event()
        self._active[document_id] = cancelled
        last_status: str | None = None
        try:
            for attempt in range(1, max_attempts + 1):
                snapshot = await self._fetch_status(document_id)
                if cancelled.is_set():
                    logger.debug("status_response_discarded", document_id=document_id)
                    return None

                last_status = snapshot.status
                outcome = on_update(snapshot)
                if inspect.isawaitable(outcome):
                    await outcome

                if snapshot.is_terminal:
                    logger.info(
                        "status_polling_finished",
                        document_id=document_id,
                        status=snapshot.status,
                        attempts=attempt,
                    )
                    return snapshot

                if attempt == max_attempts:
                    break
                try:
                    await asyncio.wait_for(cancelled.wait(), timeout=interval)
                except TimeoutError:
                    continue
                return None

            logger.warning(
                "status_polling_timed_out",
                document_id=document_id,
                attempts=max_attempts,
                last_status=last_status,
            )
            raise PollingTimeoutError(document_id, max_attempts, last_status)
        finally:
            if self._active.get(document_id) is cancelled:
                del self._active[document_id]
