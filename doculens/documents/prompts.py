"""Analysis prompts for tax documents.

Prompts live apart from the provider code so they can be tuned and tested
without touching the API plumbing.
"""

TAX_ANALYSIS_PROMPT = """You are an expert tax document reviewer. Analyze the attached document.

**IDENTIFY THE FORM:**
- form_type: one of "W2", "1099", "1040", "Schedule C", "Schedule D", or "unknown"
- confidence: how sure you are of the form type, from 0.0 to 1.0

**EXTRACT FIELDS:**
- extracted_fields: key/value pairs for every value you can read, for example
  employer_name, employee_ssn, wages, federal_tax_withheld
- Format SSNs as XXX-XX-XXXX and EINs as XX-XXXXXXX
- Report money as plain numbers without currency symbols

**DETECT ISSUES:**
For each problem add an entry to detected_issues with:
- type: missing_field, inconsistent_data, formatting_error, or calculation_error
- severity: low, medium, or high
- field: the affected field name, or "general"
- description: a one-sentence, non-technical explanation
- suggestion: an actionable fix
- coordinates: the bounding box on the page (x, y, width, height) when you can locate it

Check for missing required fields, totals that do not add up, values that
disagree across boxes, and anything a preparer would flag.

**SUMMARIZE:**
- simplified_summary: plain-English explanation of what the document is and any critical issues
- completeness_score: share of expected fields present, from 0.0 to 1.0
- risk_level: low, medium, or high

Document filename: {filename}"""


def build_analysis_prompt(filename: str) -> str:
    """Render the analysis prompt for a document."""
    return TAX_ANALYSIS_PROMPT.format(filename=filename or "unknown")


__all__ = [
    "TAX_ANALYSIS_PROMPT",
    "build_analysis_prompt",
]
