"""Rule-based analysis of OCR text.

Used when the analysis provider is unavailable. Detection is intentionally
shallow: keyword form-type matching plus regex scans for identifier, money
and date shaped substrings.
"""

from __future__ import annotations

import re

from doculens.documents.models import (
    DetectedIssue,
    DocumentAnalysis,
    RiskLevel,
    Severity,
)

FIELD_PATTERNS: dict[str, re.Pattern[str]] = {
    "ssn": re.compile(r"\b\d{3}-\d{2}-\d{4}\b"),
    "ein": re.compile(r"\b\d{2}-\d{7}\b"),
    "amounts": re.compile(r"\$[\d,]+(?:\.\d+)?"),
    "dates": re.compile(r"\b\d{1,2}/\d{1,2}/\d{4}\b"),
}

# Checked in order; the first keyword hit wins.
FORM_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("W2", ("W-2", "WAGE AND TAX STATEMENT")),
    ("1099", ("1099",)),
    ("1040", ("1040",)),
)

BASE_CONFIDENCE = 0.3
KEYWORD_CONFIDENCE = 0.7
FALLBACK_SUMMARY = (
    "Document processed using basic text analysis. Manual review recommended."
)


def detect_form_type(text: str) -> str:
    """Return the form type suggested by keywords in `text`, or "unknown"."""
    upper = text.upper()
    for form_type, keywords in FORM_KEYWORDS:
        if any(keyword in upper for keyword in keywords):
            return form_type
    return "unknown"


def extract_fields(text: str) -> dict[str, list[str]]:
    """Collect regex matches per field; fields without matches are omitted."""
    fields: dict[str, list[str]] = {}
    for name, pattern in FIELD_PATTERNS.items():
        matches = pattern.findall(text)
        if matches:
            fields[name] = matches
    return fields


def detect_issues(fields: dict[str, list[str]]) -> list[DetectedIssue]:
    """Flag expected fields that the text scan did not find."""
    issues: list[DetectedIssue] = []
    if not fields.get("ssn"):
        issues.append(
            DetectedIssue(
                type="missing_field",
                severity=Severity.HIGH,
                field="ssn",
                description="No Social Security Number detected",
                suggestion="Ensure SSN is clearly visible and not redacted",
            )
        )
    if not fields.get("amounts"):
        issues.append(
            DetectedIssue(
                type="missing_field",
                severity=Severity.MEDIUM,
                field="amounts",
                description="No monetary amounts detected",
                suggestion="Verify that dollar amounts are clearly visible",
            )
        )
    return issues


def risk_for_issue_count(count: int) -> RiskLevel:
    """0 issues -> low, 1-2 -> medium, more -> high."""
    if count > 2:
        return RiskLevel.HIGH
    if count > 0:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def analyze_text(text: str) -> DocumentAnalysis:
    """Run the rule-based extractor over OCR text.

    Args:
        text: Plain text of the document.

    Returns:
        DocumentAnalysis with every field populated.
    """
    form_type = detect_form_type(text)
    fields = extract_fields(text)
    issues = detect_issues(fields)

    return DocumentAnalysis(
        form_type=form_type,
        confidence=KEYWORD_CONFIDENCE if form_type != "unknown" else BASE_CONFIDENCE,
        extracted_fields=fields,
        detected_issues=issues,
        simplified_summary=FALLBACK_SUMMARY,
        completeness_score=min(len(fields) / len(FIELD_PATTERNS), 1.0),
        risk_level=risk_for_issue_count(len(issues)),
    )
