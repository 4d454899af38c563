"""Application configuration using Pydantic Settings."""

import json
from pathlib import Path
from typing import Annotated

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


DEFAULT_ALLOWED_UPLOAD_TYPES = [
    "application/pdf",
    "image/jpeg",
    "image/png",
    "image/jpg",
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database
    database_url: str = "postgresql+asyncpg://doculens@localhost:5432/doculens"
    """Document record database URL (asyncpg in production, aiosqlite in tests)."""

    # Redis
    redis_url: str = "redis://localhost:6379/0"
    """Redis connection URL for circuit breaker state."""

    # Error Tracking
    sentry_dsn: str | None = None
    """Sentry DSN for error tracking. Optional."""

    anthropic_api_key: str | None = None
    """Anthropic API key for document analysis."""

    openai_api_key: str | None = None
    """OpenAI API key, used only when `analysis_model` resolves to OpenAI."""

    analysis_model: str = "claude-sonnet"
    """Vision model used for document analysis.

    Aliases are resolved by `resolve_analysis_model`:
    - `claude-sonnet` (or `sonnet`) -> Anthropic
    - `gpt-4o` (or `gpt`) -> OpenAI
    """

    analysis_timeout_seconds: float | None = 120.0
    """Upper bound for one analysis call. None disables the timeout."""

    # Environment
    environment: str = "development"
    """Current environment (development, staging, production)."""

    debug: bool = False
    """Enable debug mode."""

    log_format: str | None = None
    """Logging format override (json or console). Defaults by environment."""

    # Storage
    storage_url: str = "/tmp/doculens/storage"
    """Blob storage root for processed documents (file://, s3://, gs://, or local)."""

    upload_dir: str = "/tmp/doculens/uploads"
    """Local directory for temporary upload files."""

    max_upload_bytes: int = 50 * 1024 * 1024
    """Maximum upload size in bytes."""

    # NoDecode prevents pydantic-settings from forcing JSON parsing at the
    # env-source layer, so we can accept either JSON arrays or CSV strings.
    allowed_upload_types: Annotated[list[str], NoDecode] = DEFAULT_ALLOWED_UPLOAD_TYPES
    """Allowed content types for uploads."""

    # Processing
    processing_concurrency: int = 2
    """Number of scheduler workers processing documents concurrently."""

    processing_queue_limit: int = 50
    """Max documents admitted (queued or running) before uploads are rejected."""

    stale_processing_seconds: int = 15 * 60
    """Age after which an untracked `processing` record is demoted to failed."""

    circuit_fail_max: int = 5
    """Consecutive analysis failures before the provider circuit opens."""

    circuit_reset_timeout: int = 30
    """Seconds the provider circuit stays open before a half-open probe."""

    @field_validator("allowed_upload_types", mode="before")
    @classmethod
    def parse_allowed_upload_types(cls, value: object) -> list[str]:
        """Accept a list, a JSON array string or a comma-separated string."""
        if isinstance(value, str):
            value = _split_upload_types(value)
        if not isinstance(value, (list, tuple, set)):
            raise ValueError(
                "ALLOWED_UPLOAD_TYPES must be a JSON array or comma-separated string."
            )
        types = [str(item).strip().strip("'\"").lower() for item in value]
        return list(dict.fromkeys(t for t in types if t)) or DEFAULT_ALLOWED_UPLOAD_TYPES.copy()

    @field_validator("processing_concurrency", "processing_queue_limit")
    @classmethod
    def require_positive(cls, value: int) -> int:
        """Scheduler sizes must be at least one."""
        if value < 1:
            raise ValueError("processing sizes must be >= 1")
        return value


def _split_upload_types(raw: str) -> object:
    text = raw.strip()
    if text.startswith(("[", "{", '"')):
        try:
            decoded = json.loads(text)
        except json.JSONDecodeError:
            decoded = text
        if not isinstance(decoded, str):
            return decoded
        text = decoded
    return text.split(",")


try:
    settings = Settings()
except Exception as exc:
    env_file = Path(".env")
    suggestions = [
        "Check DATABASE_URL and REDIS_URL.",
        "PROCESSING_CONCURRENCY and PROCESSING_QUEUE_LIMIT must be positive integers.",
        "ALLOWED_UPLOAD_TYPES accepts a JSON array or a comma-separated list, e.g.",
        "  application/pdf,image/jpeg,image/png",
    ]

    raise RuntimeError(
        "Failed to initialize DocuLens settings. "
        f"Check environment variables in {env_file.resolve() if env_file.exists() else '.env'}.\n"
        + f"Error: {exc}\n"
        + "\n".join(suggestions)
    ) from exc
