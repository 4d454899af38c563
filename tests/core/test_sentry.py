"""Tests for Sentry initialization and event scrubbing."""

from unittest.mock import patch

from doculens.core import sentry
from doculens.core.config import settings


def test_scrub_identifiers_masks_ssn_and_ein() -> None:
    text = "SSN 123-45-6789 / 123456789, EIN 12-3456789"

    assert sentry.scrub_identifiers(text) == "SSN [ssn] / [ssn], EIN [ein]"


def test_before_send_scrubs_exception_values_and_message() -> None:
    event = {
        "message": "failed for 123-45-6789",
        "exception": {"values": [{"type": "ValueError", "value": "bad ein 12-3456789"}]},
    }

    scrubbed = sentry._before_send(event, {})

    assert scrubbed["message"] == "failed for [ssn]"
    assert scrubbed["exception"]["values"][0]["value"] == "bad ein [ein]"


def test_init_skipped_without_dsn(monkeypatch) -> None:
    monkeypatch.setattr(settings, "sentry_dsn", None)

    with patch("sentry_sdk.init") as mock_init:
        assert sentry.init_sentry() is False

    mock_init.assert_not_called()


def test_init_with_dsn(monkeypatch) -> None:
    monkeypatch.setattr(settings, "sentry_dsn", "https://key@example.ingest.sentry.io/1")

    with patch("sentry_sdk.init") as mock_init:
        assert sentry.init_sentry() is True

    kwargs = mock_init.call_args.kwargs
    assert kwargs["send_default_pii"] is False
    assert kwargs["before_send"] is sentry._before_send
