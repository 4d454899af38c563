"""Error taxonomy shared by the API, the orchestrator and the client poller.

Every failure the service reports is a `DocumentError` carrying an explicit
`ErrorKind` discriminant. The HTTP boundary maps kinds to status codes from a
single table instead of inspecting exception subclasses.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Discriminant for `DocumentError`."""

    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    ALREADY_EXISTS = "already_exists"
    PROVIDER = "provider"
    CAPACITY = "capacity"
    TIMEOUT = "timeout"


class DocumentError(Exception):
    """Domain error with a kind, a human-readable message and optional details."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.kind = kind
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"DocumentError(kind={self.kind.value!r}, message={self.message!r})"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "details": self.details,
        }


class PollingTimeoutError(DocumentError):
    """Raised by the client poller when it gives up waiting.

    This says nothing about the backend: the document may still finish.
    """

    def __init__(self, document_id: str, attempts: int, last_status: str | None) -> None:
        super().__init__(
            ErrorKind.TIMEOUT,
            f"Gave up waiting for document {document_id} after {attempts} status checks",
            {"document_id": document_id, "attempts": attempts, "last_status": last_status},
        )
        self.document_id = document_id
        self.attempts = attempts
        self.last_status = last_status


def validation_error(message: str, **details: Any) -> DocumentError:
    return DocumentError(ErrorKind.VALIDATION, message, details)


def not_found(document_id: str) -> DocumentError:
    return DocumentError(
        ErrorKind.NOT_FOUND, "Document not found", {"document_id": document_id}
    )


def conflict(message: str, **details: Any) -> DocumentError:
    return DocumentError(ErrorKind.CONFLICT, message, details)


def provider_error(provider: str, message: str, **details: Any) -> DocumentError:
    return DocumentError(ErrorKind.PROVIDER, message, {"provider": provider, **details})


__all__ = [
    "DocumentError",
    "ErrorKind",
    "PollingTimeoutError",
    "conflict",
    "not_found",
    "provider_error",
    "validation_error",
]
