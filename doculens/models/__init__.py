"""SQLAlchemy models for DocuLens."""

from doculens.models.base import Base, TimestampMixin, as_utc, utcnow
from doculens.models.document import Document, ProcessingStatus

__all__ = [
    "Base",
    "Document",
    "ProcessingStatus",
    "TimestampMixin",
    "as_utc",
    "utcnow",
]
