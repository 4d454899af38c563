"""Pydantic models for tax document analysis results.

This module defines:
- DocumentAnalysis: the loosely-typed shape an analysis provider returns
- AnalysisResult: the normalized shape stored on a completed record
- OCRResult: text extracted by the OCR fallback
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class RiskLevel(str, Enum):
    """Overall review risk for a document."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Severity(str, Enum):
    """Severity of a single detected issue."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ProcessingMethod(str, Enum):
    """Which pipeline branch produced a result."""

    AI = "ai"
    OCR_FALLBACK = "ocr_fallback"


class Coordinates(BaseModel):
    """Bounding box of an issue or word on the page, in pixels."""

    x: float
    y: float
    width: float
    height: float


class DetectedIssue(BaseModel):
    """A problem found on the document."""

    type: str = Field(default="unknown", description="missing_field, inconsistent_data, ...")
    severity: Severity = Severity.MEDIUM
    field: str = "general"
    description: str = "Issue detected"
    suggestion: str = "Manual review recommended"
    coordinates: Coordinates | None = None

    @field_validator("severity", mode="before")
    @classmethod
    def coerce_severity(cls, value: object) -> object:
        """Accept any casing and fall back to medium for unknown labels."""
        if value is None:
            return Severity.MEDIUM
        if isinstance(value, str):
            normalized = value.strip().lower()
            return normalized if normalized in Severity._value2member_map_ else Severity.MEDIUM
        return value


class DocumentAnalysis(BaseModel):
    """Structured output requested from the analysis provider.

    Every field is optional: providers routinely omit some of them, and
    `doculens.documents.results.normalize_analysis` fills the gaps.
    """

    form_type: str | None = Field(
        default=None, description="W2, 1099, 1040, Schedule C, or unknown"
    )
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    extracted_fields: dict[str, Any] | None = Field(
        default=None, description="Key/value pairs of detected tax fields"
    )
    detected_issues: list[DetectedIssue] | None = None
    simplified_summary: str | None = Field(
        default=None, description="Plain-English explanation of the document"
    )
    completeness_score: float | None = Field(default=None, ge=0.0, le=1.0)
    risk_level: RiskLevel | None = None


class DocumentMetadata(BaseModel):
    """Upload metadata attached to every stored result."""

    file_name: str
    file_size: int
    file_type: str
    uploaded_at: datetime | None = None


class AnalysisResult(BaseModel):
    """Normalized analysis stored on a completed document."""

    form_type: str
    confidence: float
    extracted_fields: dict[str, Any]
    detected_issues: list[DetectedIssue]
    simplified_summary: str
    completeness_score: float
    risk_level: RiskLevel
    processing_method: ProcessingMethod
    processed_at: datetime
    processing_time_ms: int | None = None
    document_metadata: DocumentMetadata | None = None


class WordBox(BaseModel):
    """A recognized word or line with its bounding box."""

    type: str = "word"
    text: str
    confidence: float
    bbox: Coordinates


class OCRQuality(BaseModel):
    """Heuristic quality assessment of extracted text."""

    is_valid: bool = True
    issues: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


class OCRResult(BaseModel):
    """Text extracted by the OCR provider."""

    text: str
    confidence: float
    method: str
    page_count: int | None = None
    coordinates: list[WordBox] = Field(default_factory=list)
    quality: OCRQuality = Field(default_factory=OCRQuality)
