"""Mapping of domain errors to HTTP responses."""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from doculens.core.errors import DocumentError, ErrorKind
from doculens.core.logging import get_logger

logger = get_logger(__name__)

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.ALREADY_EXISTS: status.HTTP_409_CONFLICT,
    ErrorKind.PROVIDER: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.CAPACITY: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.TIMEOUT: status.HTTP_504_GATEWAY_TIMEOUT,
}


def status_for(kind: ErrorKind) -> int:
    return STATUS_BY_KIND[kind]


def error_body(error: DocumentError) -> dict:
    return {"error": error.to_dict()}


async def document_error_handler(request: Request, exc: DocumentError) -> JSONResponse:
    code = status_for(exc.kind)
    log = logger.warning if code < 500 else logger.error
    log(
        "request_failed",
        path=request.url.path,
        kind=exc.kind.value,
        error=exc.message,
        status_code=code,
    )
    headers = {"Retry-After": "5"} if exc.kind == ErrorKind.CAPACITY else None
    return JSONResponse(status_code=code, content=error_body(exc), headers=headers)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DocumentError, document_error_handler)
