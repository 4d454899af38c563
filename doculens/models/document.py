"""Document processing record."""

import enum
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Enum, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from doculens.models.base import Base, TimestampMixin


class ProcessingStatus(str, enum.Enum):
    """Lifecycle states of an uploaded document."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ProcessingStatus.COMPLETED, ProcessingStatus.FAILED)


class Document(Base, TimestampMixin):
    """An uploaded tax document and its processing state.

    `result` is set only while `status` is completed and `error` only while
    `status` is failed; all status changes go through
    `doculens.orchestration.state_machine.ProcessingStateMachine`.
    """

    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    file_type: Mapped[str] = mapped_column(
        String(100), nullable=False, default="application/octet-stream"
    )
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    temp_file_path: Mapped[str | None] = mapped_column(String(500))
    storage_key: Mapped[str | None] = mapped_column(String(500))

    status: Mapped[ProcessingStatus] = mapped_column(
        Enum(
            ProcessingStatus,
            name="processing_status",
            values_callable=lambda members: [member.value for member in members],
        ),
        default=ProcessingStatus.PENDING,
        nullable=False,
        index=True,
    )
    progress: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    stage: Mapped[str] = mapped_column(String(50), default="uploaded", nullable=False)
    error: Mapped[str | None] = mapped_column(Text)
    result: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    ocr_result: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    processing_method: Mapped[str | None] = mapped_column(String(50))
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
