"""Document analysis: AI provider, OCR fallback, rules and record storage."""

from doculens.documents.models import (
    AnalysisResult,
    DetectedIssue,
    DocumentAnalysis,
    OCRResult,
    ProcessingMethod,
    RiskLevel,
)

__all__ = [
    "AnalysisResult",
    "DetectedIssue",
    "DocumentAnalysis",
    "OCRResult",
    "ProcessingMethod",
    "RiskLevel",
]
