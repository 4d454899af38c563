"""Document analysis through a vision LLM.

Uses Instructor to get a validated `DocumentAnalysis` back from Anthropic
(default) or OpenAI vision models. Any failure, whether transport, auth,
timeout or output that does not validate, surfaces as a single
`DocumentError` of kind PROVIDER so the orchestrator can fall back to OCR.

Example:
    >>> provider = VisionAnalysisProvider()
    >>> analysis = await provider.analyze(pdf_bytes, "application/pdf", "w2.pdf")
    >>> analysis.form_type
    'W2'
"""

from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Any, Final, Protocol

import instructor
import structlog
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from doculens.core.config import settings
from doculens.core.errors import DocumentError, provider_error
from doculens.documents.models import DocumentAnalysis
from doculens.documents.prompts import build_analysis_prompt

logger = structlog.get_logger()

SUPPORTED_MEDIA_TYPES = frozenset(
    {"image/jpeg", "image/png", "image/gif", "image/webp", "application/pdf"}
)
MAX_RESPONSE_TOKENS = 4096

_DEFAULT_ANTHROPIC_MODEL: Final[str] = "claude-sonnet-4-5"
_DEFAULT_OPENAI_MODEL: Final[str] = "gpt-4o"

_MODEL_ALIASES: Final[dict[str, tuple[str, str]]] = {
    "sonnet": ("anthropic", _DEFAULT_ANTHROPIC_MODEL),
    "claude": ("anthropic", _DEFAULT_ANTHROPIC_MODEL),
    "claude-sonnet": ("anthropic", _DEFAULT_ANTHROPIC_MODEL),
    "gpt": ("openai", _DEFAULT_OPENAI_MODEL),
    "gpt-4o": ("openai", _DEFAULT_OPENAI_MODEL),
}


class AnalysisProvider(Protocol):
    """Contract for document analysis backends."""

    async def analyze(
        self, content: bytes, mime_type: str, filename: str
    ) -> DocumentAnalysis:
        """Analyze document bytes; raise DocumentError(PROVIDER) on failure."""


@dataclass(frozen=True)
class AnalysisModelSpec:
    """Resolved provider/model pair."""

    provider: str
    model: str


def resolve_analysis_model(model_name: str | None) -> AnalysisModelSpec:
    """Resolve a configured model name or alias to a provider/model pair.

    Unknown names keep their provider prefix (`claude*` or `gpt*`); anything
    else falls back to the default Anthropic model.
    """
    normalized = (model_name or "").strip().lower().replace("_", "-").replace(" ", "-")
    if not normalized:
        return AnalysisModelSpec("anthropic", _DEFAULT_ANTHROPIC_MODEL)

    if normalized in _MODEL_ALIASES:
        provider, model = _MODEL_ALIASES[normalized]
        return AnalysisModelSpec(provider, model)
    if normalized.startswith("claude"):
        return AnalysisModelSpec("anthropic", normalized)
    if normalized.startswith(("gpt", "o1", "o3", "o4")):
        return AnalysisModelSpec("openai", normalized)

    logger.warning(
        "analysis_model_fallback",
        requested_model=model_name,
        resolved_model=_DEFAULT_ANTHROPIC_MODEL,
    )
    return AnalysisModelSpec("anthropic", _DEFAULT_ANTHROPIC_MODEL)


class VisionAnalysisProvider:
    """Analysis provider backed by a vision LLM through Instructor."""

    def __init__(self, model_name: str | None = None, client: Any | None = None) -> None:
        """Create a provider.

        Args:
            model_name: Model or alias; defaults to settings.analysis_model.
            client: Pre-built AsyncAnthropic/AsyncOpenAI client (tests).
        """
        self.model_spec = resolve_analysis_model(model_name or settings.analysis_model)
        self._client = client

    @property
    def name(self) -> str:
        return self.model_spec.provider

    def is_configured(self) -> bool:
        """True when credentials for the resolved provider are present."""
        if self._client is not None:
            return True
        if self.model_spec.provider == "openai":
            return bool(settings.openai_api_key)
        return bool(settings.anthropic_api_key)

    async def analyze(
        self, content: bytes, mime_type: str, filename: str
    ) -> DocumentAnalysis:
        if mime_type not in SUPPORTED_MEDIA_TYPES:
            raise provider_error(
                self.name,
                f"Unsupported media type for analysis: {mime_type}",
            )

        try:
            result = await self._create(content, mime_type, filename)
        except DocumentError:
            raise
        except Exception as exc:
            raise provider_error(self.name, f"AI analysis failed: {exc}") from exc

        logger.info(
            "document_analysis_completed",
            provider=self.name,
            model=self.model_spec.model,
            form_type=result.form_type,
        )
        return result

    def _get_client(self) -> Any:
        if self._client is None:
            if self.model_spec.provider == "openai":
                if not settings.openai_api_key:
                    raise provider_error(
                        self.name, "OPENAI_API_KEY is required for OpenAI analysis models"
                    )
                self._client = AsyncOpenAI(api_key=settings.openai_api_key)
            elif settings.anthropic_api_key:
                self._client = AsyncAnthropic(api_key=settings.anthropic_api_key)
            else:
                self._client = AsyncAnthropic()
        return self._client

    async def _create(
        self, content: bytes, mime_type: str, filename: str
    ) -> DocumentAnalysis:
        client = self._get_client()
        prompt = build_analysis_prompt(filename)
        data = base64.b64encode(content).decode("utf-8")

        if self.model_spec.provider == "openai":
            instructor_client = instructor.from_openai(client)
            return await instructor_client.chat.completions.create(
                model=self.model_spec.model,
                max_tokens=MAX_RESPONSE_TOKENS,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": prompt},
                            _openai_attachment(mime_type, data, filename),
                        ],
                    }
                ],
                response_model=DocumentAnalysis,
            )

        instructor_client = instructor.from_anthropic(client)
        return await instructor_client.messages.create(
            model=self.model_spec.model,
            max_tokens=MAX_RESPONSE_TOKENS,
            messages=[
                {
                    "role": "user",
                    "content": [
                        _anthropic_attachment(mime_type, data),
                        {"type": "text", "text": prompt},
                    ],
                }
            ],
            response_model=DocumentAnalysis,
        )


def _anthropic_attachment(mime_type: str, data: str) -> dict[str, Any]:
    """PDFs go in a document block; everything else is an image block."""
    block_type = "document" if mime_type == "application/pdf" else "image"
    return {
        "type": block_type,
        "source": {"type": "base64", "media_type": mime_type, "data": data},
    }


def _openai_attachment(mime_type: str, data: str, filename: str) -> dict[str, Any]:
    url = f"data:{mime_type};base64,{data}"
    if mime_type == "application/pdf":
        return {"type": "file", "file": {"filename": filename, "file_data": url}}
    return {"type": "image_url", "image_url": {"url": url}}
