"""Configuration schema and validation using Pydantic.

``SpanLabelerSettings`` validates and coerces values coming from the
environment, an optional ``.env`` file and programmatic overrides into typed
fields with defaults. Variables use the ``SPAN_`` prefix; the vendor key
variables (``GROQ_API_KEY`` and friends) are accepted as well.
"""

from typing import Any

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from span_labeler.constants import (
    DEFAULT_GROQ_BASE_URL,
    DEFAULT_MAX_SPANS,
    DEFAULT_MIN_CONFIDENCE,
    DEFAULT_OPENAI_BASE_URL,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_TEMPERATURE,
    DEFAULT_TEMPLATE_VERSION,
    MAX_SPANS_ABSOLUTE_LIMIT,
)

SETTINGS_FIELDS = (
    "provider",
    "model",
    "gemini_api_key",
    "groq_api_key",
    "openai_api_key",
    "groq_base_url",
    "openai_base_url",
    "template_version",
    "max_spans",
    "min_confidence",
    "enable_repair",
    "track_nlp_metrics",
    "request_timeout",
    "temperature",
)

SECRET_FIELDS = frozenset({"gemini_api_key", "groq_api_key", "openai_api_key"})


class SpanLabelerSettings(BaseSettings):
    """Pydantic settings schema for span labeling configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SPAN_",
        env_file=None,  # Only used when explicitly requested
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # --- Provider selection ---

    provider: str | None = Field(
        default=None,
        validation_alias=AliasChoices("SPAN_LABELING_PROVIDER", "SPAN_PROVIDER"),
        description="Span labeling provider (groq, qwen, openai, gemini)",
    )

    model: str | None = Field(
        default=None,
        description="Model identifier; also used to detect the provider",
    )

    # --- Credentials ---

    gemini_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("SPAN_GEMINI_API_KEY", "GEMINI_API_KEY"),
        description="Google Gemini API key",
    )

    groq_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("SPAN_GROQ_API_KEY", "GROQ_API_KEY"),
        description="Groq API key (also used for Groq-hosted Qwen)",
    )

    openai_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("SPAN_OPENAI_API_KEY", "OPENAI_API_KEY"),
        description="OpenAI API key",
    )

    groq_base_url: str = Field(
        default=DEFAULT_GROQ_BASE_URL,
        description="Base URL of the Groq chat-completions API",
        min_length=1,
    )

    openai_base_url: str = Field(
        default=DEFAULT_OPENAI_BASE_URL,
        description="Base URL of the OpenAI chat-completions API",
        min_length=1,
    )

    # --- Request shaping ---

    template_version: str = Field(
        default=DEFAULT_TEMPLATE_VERSION,
        description="Prompt template version stamped into meta.version",
        min_length=1,
    )

    max_spans: int = Field(
        default=DEFAULT_MAX_SPANS,
        description="Default cap on spans per request",
        ge=1,
        le=MAX_SPANS_ABSOLUTE_LIMIT,
    )

    min_confidence: float = Field(
        default=DEFAULT_MIN_CONFIDENCE,
        description="Default confidence floor for returned spans",
        ge=0.0,
        le=1.0,
    )

    enable_repair: bool = Field(
        default=False,
        description="Ask the model to repair strict validation failures",
    )

    track_nlp_metrics: bool = Field(
        default=False,
        description="Record NLP fallback span counts in meta",
    )

    request_timeout: float = Field(
        default=DEFAULT_REQUEST_TIMEOUT,
        description="Per-request timeout in seconds",
        gt=0,
    )

    temperature: float = Field(
        default=DEFAULT_TEMPERATURE,
        description="Sampling temperature for span labeling calls",
        ge=0.0,
        le=2.0,
    )

    # --- Validation Rules ---

    @field_validator("provider", "model", mode="before")
    @classmethod
    def normalize_identifier(cls, v: Any) -> Any:
        """Strip identifiers and treat blank strings as unset."""
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    @field_validator("provider")
    @classmethod
    def lowercase_provider(cls, v: str | None) -> str | None:
        """Provider names are case-insensitive."""
        return v.lower() if v else v

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dictionary keyed by field name."""
        return {name: getattr(self, name) for name in SETTINGS_FIELDS}
