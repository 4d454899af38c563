"""Document upload, status, results and report endpoints."""

import asyncio
import os
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Literal

import orjson
from fastapi import APIRouter, Depends, File, Query, Response, UploadFile, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from doculens.api.deps import get_blob_store, get_processor, get_scheduler, get_store
from doculens.core.config import settings
from doculens.core.errors import DocumentError, ErrorKind, conflict, not_found, validation_error
from doculens.core.logging import get_logger
from doculens.documents.store import StatusStore, result_projection, status_projection
from doculens.integrations.storage import BlobStore
from doculens.models.base import as_utc
from doculens.models.document import Document, ProcessingStatus
from doculens.orchestration.processor import DocumentProcessor
from doculens.orchestration.recovery import demote_if_stale
from doculens.orchestration.scheduler import ProcessingScheduler

logger = get_logger(__name__)

router = APIRouter(prefix="/api/documents", tags=["documents"])

# Leading bytes of each accepted format
_SIGNATURES: tuple[tuple[bytes, str], ...] = (
    (b"%PDF", "application/pdf"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
)

_EXTENSION_TYPES = {
    ".pdf": "application/pdf",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
}

SUPPORTED_TAX_FORMS = [
    "W-2 (Wage and Tax Statement)",
    "1099-MISC (Miscellaneous Income)",
    "1099-INT (Interest Income)",
    "1040 (Individual Income Tax Return)",
    "Schedule C (Profit or Loss from Business)",
    "Schedule D (Capital Gains and Losses)",
]


class UploadResponse(BaseModel):
    """Accepted upload."""

    document_id: str
    file_name: str
    file_size: int
    file_type: str
    status: str
    queued: bool


class StatusResponse(BaseModel):
    """Processing status of a document."""

    document_id: str
    status: str
    progress: int
    stage: str
    message: str
    error: str | None
    created_at: datetime | None
    updated_at: datetime | None
    processed_at: datetime | None


class DocumentResponse(BaseModel):
    """Document record details."""

    id: str
    file_name: str
    file_size: int
    file_type: str
    uploaded_at: datetime | None
    status: str
    progress: int
    stage: str
    error: str | None
    processing_method: str | None
    storage_key: str | None
    url: str | None
    created_at: datetime | None
    updated_at: datetime | None
    processed_at: datetime | None


class ProcessResponse(BaseModel):
    """Manual processing request accepted."""

    document_id: str
    status: str
    queued: bool


def sniff_mime_type(content: bytes, file_name: str) -> str | None:
    """Detect the MIME type from magic bytes, then from the extension."""
    for signature, mime_type in _SIGNATURES:
        if content.startswith(signature):
            return mime_type
    return _EXTENSION_TYPES.get(Path(file_name).suffix.lower())


def _to_document_response(document: Document, blob_store: BlobStore | None) -> DocumentResponse:
    url = None
    if document.storage_key and blob_store is not None:
        try:
            url = blob_store.url(document.storage_key)
        except Exception as e:
            logger.warning("document_url_failed", document_id=document.id, error=str(e))
    return DocumentResponse(
        id=document.id,
        file_name=document.file_name,
        file_size=document.file_size,
        file_type=document.file_type,
        uploaded_at=as_utc(document.uploaded_at),
        status=document.status.value,
        progress=document.progress,
        stage=document.stage,
        error=document.error,
        processing_method=document.processing_method,
        storage_key=document.storage_key,
        url=url,
        created_at=as_utc(document.created_at),
        updated_at=as_utc(document.updated_at),
        processed_at=as_utc(document.processed_at),
    )


async def _write_temp_file(document_id: str, file_name: str, content: bytes) -> str:
    directory = Path(settings.upload_dir)
    path = directory / f"{document_id}{Path(file_name).suffix.lower()}"

    def _write() -> None:
        directory.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)

    await asyncio.to_thread(_write)
    return str(path)


def _remove_file(path: str | None) -> None:
    if path and os.path.exists(path):
        try:
            os.remove(path)
        except OSError as e:
            logger.warning("temp_file_cleanup_failed", path=path, error=str(e))


@router.post("/upload", response_model=UploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_document(
    document: UploadFile = File(...),
    store: StatusStore = Depends(get_store),
    processor: DocumentProcessor = Depends(get_processor),
) -> UploadResponse:
    """Accept a tax document and schedule it for analysis."""
    file_name = os.path.basename(document.filename or "") or "document"
    content = await document.read()

    if not content:
        raise validation_error("No file uploaded", field="document")
    if len(content) > settings.max_upload_bytes:
        raise validation_error(
            f"File too large. Maximum size is {settings.max_upload_bytes // (1024 * 1024)}MB",
            file_size=len(content),
            max_upload_bytes=settings.max_upload_bytes,
        )

    file_type = sniff_mime_type(content, file_name)
    if file_type is None or file_type not in settings.allowed_upload_types:
        raise validation_error(
            f"File type {file_type or 'unknown'} not allowed",
            allowed_types=settings.allowed_upload_types,
        )

    document_id = str(uuid.uuid4())
    temp_path = await _write_temp_file(document_id, file_name, content)
    try:
        await store.create(
            document_id,
            file_name=file_name,
            file_size=len(content),
            file_type=file_type,
            temp_file_path=temp_path,
        )
        await store.session.commit()
    except Exception:
        _remove_file(temp_path)
        raise

    try:
        queued = await processor.submit(document_id, temp_path)
    except DocumentError as exc:
        if exc.kind != ErrorKind.CAPACITY:
            raise
        # Rejected uploads leave nothing behind; the client uploads again later.
        await store.delete(document_id)
        await store.session.commit()
        _remove_file(temp_path)
        raise

    logger.info(
        "document_uploaded",
        document_id=document_id,
        file_name=file_name,
        file_size=len(content),
    )
    return UploadResponse(
        document_id=document_id,
        file_name=file_name,
        file_size=len(content),
        file_type=file_type,
        status=ProcessingStatus.PROCESSING.value if queued else ProcessingStatus.PENDING.value,
        queued=queued,
    )


@router.get("/supported-formats")
async def supported_formats() -> dict[str, Any]:
    """Accepted file types and recognized tax forms."""
    max_size = f"{settings.max_upload_bytes // (1024 * 1024)}MB"
    formats = [
        {"extension": extension.lstrip("."), "mime_type": mime_type, "max_size": max_size}
        for extension, mime_type in _EXTENSION_TYPES.items()
        if mime_type in settings.allowed_upload_types
    ]
    return {
        "images": [item for item in formats if item["mime_type"].startswith("image/")],
        "documents": [item for item in formats if not item["mime_type"].startswith("image/")],
        "supported_tax_forms": SUPPORTED_TAX_FORMS,
    }


@router.get("/queue")
async def processing_queue(
    scheduler: ProcessingScheduler | None = Depends(get_scheduler),
) -> dict[str, Any]:
    """Documents currently admitted to the processing scheduler."""
    if scheduler is None:
        return {"queue_length": 0, "waiting": 0, "documents": []}
    return scheduler.snapshot()


@router.get("/{document_id}", response_model=DocumentResponse)
async def get_document(
    document_id: str,
    store: StatusStore = Depends(get_store),
    blob_store: BlobStore | None = Depends(get_blob_store),
) -> DocumentResponse:
    document = await store.get(document_id)
    return _to_document_response(document, blob_store)


@router.get("/{document_id}/status", response_model=StatusResponse)
async def get_status(
    document_id: str,
    store: StatusStore = Depends(get_store),
    scheduler: ProcessingScheduler | None = Depends(get_scheduler),
) -> StatusResponse:
    """Current processing status; stale runs are reported as failed."""
    document = await store.get(document_id)
    document = await demote_if_stale(store, document, scheduler)
    return StatusResponse(**status_projection(document))


@router.post(
    "/{document_id}/process",
    response_model=ProcessResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def process_document(
    document_id: str,
    processor: DocumentProcessor = Depends(get_processor),
) -> ProcessResponse:
    """Start (or retry) processing of a pending or failed document."""
    queued = await processor.submit(document_id)
    return ProcessResponse(
        document_id=document_id,
        status=ProcessingStatus.PROCESSING.value,
        queued=queued,
    )


@router.get("/{document_id}/results")
async def get_results(
    document_id: str,
    store: StatusStore = Depends(get_store),
) -> JSONResponse:
    """Analysis results, or 202 while the document is still being processed."""
    document = await store.get(document_id)

    if document.status in (ProcessingStatus.PENDING, ProcessingStatus.PROCESSING):
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content={
                "document_id": document.id,
                "status": document.status.value,
                "progress": document.progress,
                "message": "Processing still in progress",
            },
        )
    if document.status == ProcessingStatus.FAILED:
        raise conflict(
            "Document processing failed",
            document_id=document.id,
            error=document.error,
        )

    return JSONResponse(
        content=orjson.loads(orjson.dumps(result_projection(document))),
    )


@router.get("/{document_id}/report")
async def download_report(
    document_id: str,
    format: Literal["json"] = Query(default="json"),
    store: StatusStore = Depends(get_store),
) -> Response:
    """Downloadable analysis report."""
    document = await store.get(document_id)
    report = result_projection(document)
    return Response(
        content=orjson.dumps(report, option=orjson.OPT_INDENT_2),
        media_type="application/json",
        headers={
            "Content-Disposition": f'attachment; filename="doculens-report-{document_id}.{format}"'
        },
    )


@router.delete("/{document_id}")
async def delete_document(
    document_id: str,
    store: StatusStore = Depends(get_store),
    scheduler: ProcessingScheduler | None = Depends(get_scheduler),
) -> dict[str, Any]:
    """Delete a document, its stored file and any leftover upload."""
    document = await store.find(document_id)
    if document is None:
        raise not_found(document_id)

    temp_path = document.temp_file_path
    await store.delete(document_id)
    if scheduler is None or not scheduler.is_tracked(document_id):
        _remove_file(temp_path)

    return {"document_id": document_id, "deleted": True}
