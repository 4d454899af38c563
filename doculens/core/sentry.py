"""Sentry error tracking integration."""

import re
from typing import Any

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

from doculens.core.config import settings

_SSN_PATTERN = re.compile(r"\b\d{3}-?\d{2}-?\d{4}\b")
_EIN_PATTERN = re.compile(r"\b\d{2}-\d{7}\b")


def scrub_identifiers(text: str) -> str:
    """Mask SSN- and EIN-shaped substrings in free text."""
    text = _SSN_PATTERN.sub("[ssn]", text)
    return _EIN_PATTERN.sub("[ein]", text)


def _before_send(event: dict[str, Any], hint: dict[str, Any]) -> dict[str, Any]:
    """Strip taxpayer identifiers from exception values before upload."""
    for exception in event.get("exception", {}).get("values", []):
        value = exception.get("value")
        if isinstance(value, str):
            exception["value"] = scrub_identifiers(value)
    message = event.get("message")
    if isinstance(message, str):
        event["message"] = scrub_identifiers(message)
    return event


def init_sentry() -> bool:
    """Initialize Sentry error tracking if a DSN is configured.

    Returns:
        True when the SDK was initialized.
    """
    if not settings.sentry_dsn:
        return False

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.environment,
        traces_sample_rate=0.1,
        send_default_pii=False,  # uploaded tax documents carry taxpayer PII
        before_send=_before_send,
        integrations=[
            StarletteIntegration(transaction_style="endpoint"),
            FastApiIntegration(
                transaction_style="endpoint",
                failed_request_status_codes={*range(500, 600)},
            ),
        ],
    )
    return True
