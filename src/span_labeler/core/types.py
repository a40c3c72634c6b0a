"""Core data types that flow through the span labeling pipeline.

Spans arrive as untrusted JSON, so they stay plain dictionaries (typed with
``Span``) until the validator has cleaned them. Everything that the pipeline
itself produces (request options, validation results, model responses) is a
small immutable dataclass.
"""

from __future__ import annotations

from collections.abc import Mapping
import dataclasses
from types import MappingProxyType
import typing

from span_labeler.constants import (
    DEFAULT_MAX_SPANS,
    DEFAULT_MIN_CONFIDENCE,
    DEFAULT_NON_TECHNICAL_WORD_LIMIT,
    DEFAULT_TEMPLATE_VERSION,
    MAX_SPANS_ABSOLUTE_LIMIT,
)

if typing.TYPE_CHECKING:
    from span_labeler.invocation import AIService
    from span_labeler.validation.position_cache import SubstringPositionCache

# --- Minimal guard helpers ---

T = typing.TypeVar("T")


def _freeze_mapping(
    m: dict[str, T] | Mapping[str, T] | None,
) -> Mapping[str, T]:
    """Return an immutable mapping view (empty when None)."""
    if m is None:
        return MappingProxyType({})
    if isinstance(m, MappingProxyType):
        return m
    return MappingProxyType(dict(m))


def _require(
    *,
    condition: bool,
    message: str,
    exc: type[Exception] = ValueError,
    field_name: str | None = None,
) -> None:
    """Centralized validation with optional field context for clearer errors."""
    if not condition:
        if field_name:
            raise exc(f"{field_name}: {message}")
        raise exc(message)


def coerce_number(value: object) -> float | None:
    """Return ``value`` as a float when it is numeric or a numeric string."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


# --- Result Monad ---
# Parsing helpers return a Result instead of raising so that the caller decides
# whether a failure is fatal (primary parse) or recoverable (stream noise).

TSuccess = typing.TypeVar("TSuccess")
TFailure = typing.TypeVar("TFailure", bound=Exception)


@dataclasses.dataclass(frozen=True, slots=True)
class Success[TSuccess]:
    """A successful result."""

    value: TSuccess


@dataclasses.dataclass(frozen=True, slots=True)
class Failure[TFailure]:
    """A failed result, containing the error."""

    error: TFailure


Result = Success[TSuccess] | Failure[TFailure]

# --- Span payloads ---


class Span(typing.TypedDict, total=False):
    """A labeled substring of the source prompt."""

    text: str
    role: str
    confidence: float
    start: int
    end: int
    category: str
    _originalConfidence: float


SpanMeta = dict[str, typing.Any]


@dataclasses.dataclass(frozen=True, slots=True)
class LabelSpansResult:
    """Validated spans plus response metadata."""

    spans: list[Span]
    meta: SpanMeta
    is_adversarial: bool = False
    analysis_trace: str | None = None

    def to_dict(self) -> dict[str, typing.Any]:
        """Return the JSON-shaped representation used by HTTP callers."""
        payload: dict[str, typing.Any] = {
            "spans": [dict(span) for span in self.spans],
            "meta": dict(self.meta),
        }
        if self.is_adversarial:
            payload["isAdversarial"] = True
        if self.analysis_trace is not None:
            payload["analysisTrace"] = self.analysis_trace
        return payload


@dataclasses.dataclass(frozen=True, slots=True)
class ValidationResult:
    """Outcome of validating spans at a given attempt number."""

    ok: bool
    errors: tuple[str, ...]
    result: LabelSpansResult


# --- Model invocation ---


@dataclasses.dataclass(frozen=True, slots=True)
class ModelResponse:
    """Text returned by one model call plus provider metadata.

    Known metadata keys: ``average_confidence``, ``logprobs``,
    ``optimizations``, ``provider`` and ``raw``.
    """

    text: str
    metadata: Mapping[str, typing.Any] = dataclasses.field(
        default_factory=lambda: MappingProxyType({})
    )

    def __post_init__(self) -> None:
        """Validate and freeze fields."""
        _require(
            condition=isinstance(self.text, str),
            message="must be str",
            field_name="text",
            exc=TypeError,
        )
        object.__setattr__(self, "metadata", _freeze_mapping(self.metadata))

    @classmethod
    def coerce(cls, raw: object) -> ModelResponse:
        """Build a ModelResponse from whatever an AI service returned.

        Accepts a ModelResponse, a mapping with ``text`` or ``content``, or a
        bare string. Missing text becomes an empty string.
        """
        if isinstance(raw, ModelResponse):
            return raw
        if isinstance(raw, str):
            return cls(text=raw)
        if isinstance(raw, Mapping):
            text = raw.get("text")
            if not isinstance(text, str):
                content = raw.get("content")
                text = content if isinstance(content, str) else ""
            metadata = raw.get("metadata")
            return cls(
                text=text,
                metadata=metadata if isinstance(metadata, Mapping) else None,
            )
        return cls(text="")

    @property
    def average_confidence(self) -> float | None:
        """Mean token probability reported by the provider, when available."""
        value = self.metadata.get("average_confidence")
        return coerce_number(value)


@dataclasses.dataclass(frozen=True, slots=True)
class ProviderRequestOptions:
    """Capability flags a provider profile contributes to each request."""

    enable_bookending: bool = False
    use_few_shot: bool = False
    use_seed_from_config: bool = True
    enable_logprobs: bool = False
    developer_message: str | None = None
    provider_name: str | None = None

    def with_overrides(self, **overrides: typing.Any) -> ProviderRequestOptions:
        """Return a copy with the given fields replaced."""
        return dataclasses.replace(self, **overrides)


# --- Validation inputs ---


@dataclasses.dataclass(frozen=True, slots=True)
class ValidationPolicy:
    """Span-level rules applied by the validator."""

    non_technical_word_limit: int = DEFAULT_NON_TECHNICAL_WORD_LIMIT
    allow_overlap: bool = False

    @classmethod
    def sanitize(
        cls, raw: ValidationPolicy | Mapping[str, typing.Any] | None = None
    ) -> ValidationPolicy:
        """Build a policy from loose input, falling back to defaults.

        A word limit of ``0`` disables the limit; negative or non-numeric
        limits revert to the default.
        """
        if isinstance(raw, ValidationPolicy):
            return raw
        data = dict(raw or {})
        limit = coerce_number(
            data.get("non_technical_word_limit", data.get("nonTechnicalWordLimit"))
        )
        allow_overlap = data.get("allow_overlap", data.get("allowOverlap"))
        return cls(
            non_technical_word_limit=(
                int(limit)
                if limit is not None and limit >= 0
                else DEFAULT_NON_TECHNICAL_WORD_LIMIT
            ),
            allow_overlap=allow_overlap is True,
        )

    def to_dict(self) -> dict[str, typing.Any]:
        """Return the camelCase form embedded in model payloads."""
        return {
            "nonTechnicalWordLimit": self.non_technical_word_limit,
            "allowOverlap": self.allow_overlap,
        }


@dataclasses.dataclass(frozen=True, slots=True)
class ProcessingOptions:
    """Per-request limits for span output."""

    max_spans: int = DEFAULT_MAX_SPANS
    min_confidence: float = DEFAULT_MIN_CONFIDENCE
    template_version: str = DEFAULT_TEMPLATE_VERSION

    @classmethod
    def sanitize(
        cls, raw: ProcessingOptions | Mapping[str, typing.Any] | None = None
    ) -> ProcessingOptions:
        """Build options from loose input, clamping to supported ranges."""
        if isinstance(raw, ProcessingOptions):
            return raw
        data = dict(raw or {})
        max_spans = coerce_number(data.get("max_spans", data.get("maxSpans")))
        min_conf = coerce_number(data.get("min_confidence", data.get("minConfidence")))
        version = data.get("template_version", data.get("templateVersion"))
        return cls(
            max_spans=(
                min(int(max_spans), MAX_SPANS_ABSOLUTE_LIMIT)
                if max_spans is not None and max_spans >= 1
                else DEFAULT_MAX_SPANS
            ),
            min_confidence=(
                min_conf
                if min_conf is not None and 0.0 <= min_conf <= 1.0
                else DEFAULT_MIN_CONFIDENCE
            ),
            template_version=str(version) if version else DEFAULT_TEMPLATE_VERSION,
        )


@dataclasses.dataclass(slots=True)
class LlmSpanParams:
    """Inputs to a single span labeling request."""

    text: str
    ai_service: AIService
    policy: ValidationPolicy = dataclasses.field(default_factory=ValidationPolicy)
    options: ProcessingOptions | None = None
    enable_repair: bool | None = None
    cache: SubstringPositionCache | None = None
    nlp_spans_attempted: int | None = None

    def __post_init__(self) -> None:
        """Validate the source text and normalize loose policy/options input.

        ``options`` and ``enable_repair`` stay None when omitted so the client
        can fill in its configured defaults.
        """
        _require(
            condition=isinstance(self.text, str) and self.text.strip() != "",
            message="must be a non-empty str",
            field_name="text",
        )
        self.policy = ValidationPolicy.sanitize(self.policy)
        if self.options is not None:
            self.options = ProcessingOptions.sanitize(self.options)
