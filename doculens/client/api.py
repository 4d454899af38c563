"""HTTP client for the DocuLens API."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import httpx

from doculens.client.poller import OnUpdate, StatusPoller, StatusSnapshot
from doculens.core.errors import DocumentError, ErrorKind


class DocuLensClient:
    """Async client for uploading documents and waiting for their analysis."""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        *,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = http_client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._owns_client = http_client is None
        self.poller = StatusPoller(self.get_status)

    async def __aenter__(self) -> DocuLensClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def upload(
        self,
        source: str | Path | bytes,
        file_name: str | None = None,
        content_type: str = "application/octet-stream",
    ) -> dict[str, Any]:
        """Upload a file path or raw bytes; returns the upload response."""
        if isinstance(source, bytes):
            content = source
            name = file_name or "document"
        else:
            path = Path(source)
            content = path.read_bytes()
            name = file_name or path.name
        response = await self._client.post(
            "/api/documents/upload",
            files={"document": (name, content, content_type)},
        )
        return _json_or_raise(response)

    async def get_status(self, document_id: str) -> StatusSnapshot:
        response = await self._client.get(f"/api/documents/{document_id}/status")
        return StatusSnapshot.model_validate(_json_or_raise(response))

    async def get_results(self, document_id: str) -> dict[str, Any] | None:
        """Completed results, or None while the document is still processing."""
        response = await self._client.get(f"/api/documents/{document_id}/results")
        if response.status_code == httpx.codes.ACCEPTED:
            return None
        return _json_or_raise(response)

    async def process(self, document_id: str) -> dict[str, Any]:
        response = await self._client.post(f"/api/documents/{document_id}/process")
        return _json_or_raise(response)

    async def delete(self, document_id: str) -> dict[str, Any]:
        response = await self._client.delete(f"/api/documents/{document_id}")
        return _json_or_raise(response)

    async def wait_for_results(
        self,
        document_id: str,
        on_update: OnUpdate | None = None,
        max_attempts: int = 120,
        interval: float = 2.0,
    ) -> dict[str, Any] | None:
        """Poll until terminal, then fetch results.

        Returns None when polling was cancelled.

        Raises:
            PollingTimeoutError: the document did not finish in time.
            DocumentError: CONFLICT when processing failed.
        """
        final = await self.poller.poll(
            document_id,
            on_update or (lambda snapshot: None),
            max_attempts=max_attempts,
            interval=interval,
        )
        if final is None:
            return None
        if final.status == "failed":
            raise DocumentError(
                ErrorKind.CONFLICT,
                "Document processing failed",
                {"document_id": document_id, "error": final.error},
            )
        return await self.get_results(document_id)


def _json_or_raise(response: httpx.Response) -> dict[str, Any]:
    """Decode a success body or turn an error body back into DocumentError."""
    if response.is_success:
        return response.json()

    try:
        body = response.json()
    except ValueError:
        body = {}

    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("kind") in ErrorKind._value2member_map_:
        raise DocumentError(
            ErrorKind(error["kind"]),
            error.get("message") or response.reason_phrase,
            error.get("details") or {},
        )
    if response.status_code == httpx.codes.UNPROCESSABLE_ENTITY:
        raise DocumentError(
            ErrorKind.VALIDATION,
            "Request validation failed",
            {"errors": body.get("detail") if isinstance(body, dict) else None},
        )
    response.raise_for_status()
    return body
