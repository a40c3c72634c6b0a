"""Configuration data types, following the resolve-once, freeze-then-flow pattern.

``ResolvedConfig`` is the merged result of every source plus an origin map
for auditing. ``FrozenConfig`` is what the factory, the client and the model
services receive.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Literal, NamedTuple

from span_labeler.config.settings import SECRET_FIELDS, SETTINGS_FIELDS
from span_labeler.constants import (
    DEFAULT_GROQ_BASE_URL,
    DEFAULT_MAX_SPANS,
    DEFAULT_MIN_CONFIDENCE,
    DEFAULT_OPENAI_BASE_URL,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_TEMPERATURE,
    DEFAULT_TEMPLATE_VERSION,
)

# --- Source Tracking Types ---

ConfigOrigin = Literal["programmatic", "env", "file", "default"]
SourceMap = Mapping[str, ConfigOrigin]

# Providers that authenticate with another provider's key
_KEY_PROVIDER = {"qwen": "groq"}


def _redacted_fields(obj: object) -> str:
    parts = []
    for name in SETTINGS_FIELDS:
        value = getattr(obj, name)
        if name in SECRET_FIELDS and value:
            value = "[REDACTED]"
        parts.append(f"{name}={value!r}")
    return ", ".join(parts)


class ResolvedConfig(NamedTuple):
    """Configuration after resolution from all sources, before freezing."""

    provider: str | None
    model: str | None
    gemini_api_key: str | None
    groq_api_key: str | None
    openai_api_key: str | None
    groq_base_url: str
    openai_base_url: str
    template_version: str
    max_spans: int
    min_confidence: float
    enable_repair: bool
    track_nlp_metrics: bool
    request_timeout: float
    temperature: float

    # Where each field value came from
    origin: SourceMap

    def __str__(self) -> str:
        """String representation with redacted API keys for safe logging."""
        return f"ResolvedConfig({_redacted_fields(self)}, origin={dict(self.origin)!r})"

    def __repr__(self) -> str:
        """Repr with redacted API keys for safe debugging."""
        return self.__str__()

    def to_frozen(self) -> "FrozenConfig":
        """Drop the audit metadata and return the immutable pipeline config."""
        return FrozenConfig(**{name: getattr(self, name) for name in SETTINGS_FIELDS})

    def with_overrides(self, **overrides: object) -> "ResolvedConfig":
        """Return a copy with overrides applied and marked ``programmatic``.

        Unknown fields are ignored.
        """
        new_values = self._asdict()
        new_origin = dict(self.origin)
        for field, value in overrides.items():
            if field in SETTINGS_FIELDS:
                new_values[field] = value
                new_origin[field] = "programmatic"
        new_values["origin"] = new_origin
        return ResolvedConfig(**new_values)

    def audit(self) -> str:
        """Return one ``field: origin:value`` line per field, secrets redacted."""
        lines = []
        for field in SETTINGS_FIELDS:
            origin = self.origin.get(field, "default")
            value = getattr(self, field)
            if field in SECRET_FIELDS:
                display = f"{origin}:None" if value is None else f"{origin}:[REDACTED]"
            elif origin == "env":
                display = f"env:SPAN_{field.upper()}={value}"
            else:
                display = f"{origin}:{value}"
            lines.append(f"{field}: {display}")
        return "\n".join(lines)


@dataclass(frozen=True)
class FrozenConfig:
    """Immutable configuration handed to the factory, client and services."""

    provider: str | None = None
    model: str | None = None
    gemini_api_key: str | None = None
    groq_api_key: str | None = None
    openai_api_key: str | None = None
    groq_base_url: str = DEFAULT_GROQ_BASE_URL
    openai_base_url: str = DEFAULT_OPENAI_BASE_URL
    template_version: str = DEFAULT_TEMPLATE_VERSION
    max_spans: int = DEFAULT_MAX_SPANS
    min_confidence: float = DEFAULT_MIN_CONFIDENCE
    enable_repair: bool = False
    track_nlp_metrics: bool = False
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    temperature: float = DEFAULT_TEMPERATURE

    def api_key_for(self, provider: str) -> str | None:
        """Return the API key used to call ``provider``, if configured."""
        key_provider = _KEY_PROVIDER.get(provider, provider)
        return getattr(self, f"{key_provider}_api_key", None)

    def __str__(self) -> str:
        """String representation with redacted API keys for safe logging."""
        return f"FrozenConfig({_redacted_fields(self)})"

    def __repr__(self) -> str:
        """Representation with redacted API keys for safe debugging."""
        return self.__str__()
