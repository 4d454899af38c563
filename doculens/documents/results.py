"""Normalization of analysis output into the stored result shape."""

from __future__ import annotations

from datetime import datetime

from doculens.documents.models import (
    AnalysisResult,
    DocumentAnalysis,
    DocumentMetadata,
    ProcessingMethod,
    RiskLevel,
)
from doculens.models.base import utcnow

DEFAULT_FORM_TYPE = "unknown"
DEFAULT_CONFIDENCE = 0.5
DEFAULT_COMPLETENESS = 0.5
DEFAULT_RISK_LEVEL = RiskLevel.MEDIUM
DEFAULT_SUMMARY = "Analysis completed"


def normalize_analysis(
    analysis: DocumentAnalysis,
    method: ProcessingMethod,
    metadata: DocumentMetadata | None = None,
    processed_at: datetime | None = None,
    processing_time_ms: int | None = None,
) -> AnalysisResult:
    """Fill missing fields with defaults so every result has the same shape.

    Zero is a legitimate score, so only missing values (None) are replaced.

    Args:
        analysis: Output of the analysis provider or the rule-based extractor.
        method: Branch of the pipeline that produced `analysis`.
        metadata: Upload metadata to attach for display.
        processed_at: Completion time; defaults to now.
        processing_time_ms: Wall time of the pipeline run, when measured.

    Returns:
        AnalysisResult with no missing fields.
    """
    form_type = (analysis.form_type or "").strip() or DEFAULT_FORM_TYPE
    return AnalysisResult(
        form_type=form_type,
        confidence=_default(analysis.confidence, DEFAULT_CONFIDENCE),
        extracted_fields=dict(analysis.extracted_fields or {}),
        detected_issues=list(analysis.detected_issues or []),
        simplified_summary=analysis.simplified_summary or DEFAULT_SUMMARY,
        completeness_score=_default(analysis.completeness_score, DEFAULT_COMPLETENESS),
        risk_level=analysis.risk_level or DEFAULT_RISK_LEVEL,
        processing_method=method,
        processed_at=processed_at or utcnow(),
        processing_time_ms=processing_time_ms,
        document_metadata=metadata,
    )


def _default(value: float | None, default: float) -> float:
    return default if value is None else value
