"""Provider profiles: the per-vendor knobs the orchestration client consults.

A profile is plain data plus a few optional hooks. It shapes requests and
post-processes responses; it never changes validation semantics. Adding a
provider means adding a profile, not subclassing the client.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
import dataclasses
from typing import Any

from span_labeler.core.types import (
    LabelSpansResult,
    ProviderRequestOptions,
    Result,
)
from span_labeler.parsing import parse_json

type PostProcessor = Callable[[LabelSpansResult, Mapping[str, Any]], LabelSpansResult]
type ResponseTextParser = Callable[[str], Result[Any, Exception]]
type ResponseNormalizer = Callable[[Any], Any]


def passthrough_result(
    result: LabelSpansResult,
    metadata: Mapping[str, Any],  # noqa: ARG001
) -> LabelSpansResult:
    """Post-processor that leaves the result untouched."""
    return result


def passthrough_value(value: Any) -> Any:
    """Normalizer that leaves the parsed response untouched."""
    return value


@dataclasses.dataclass(frozen=True, slots=True)
class ProviderProfile:
    """Capability set and hooks for one model vendor.

    Attributes:
        name: Provider identifier (``groq``, ``openai``, ``gemini``...).
        client_label: Stamped into ``meta._clientType`` by post-processors.
        request_options: Flags applied to every request.
        supports_schema: Send the provider-shaped JSON schema with requests.
        supports_developer_role: The API accepts ``developer`` messages.
        supports_streaming: ``stream_spans`` is available.
        send_raw_text: Send the bare source text as the user message instead
            of the JSON payload.
        max_tokens: Fixed output budget; None derives it from ``max_spans``.
        disable_word_limit: Validate without the non-technical word limit.
        min_confidence_ceiling: Upper bound applied to the caller's
            ``min_confidence`` during validation.
        verbose_debug: Log span samples and per-stage summaries.
        post_process: Adjusts the validated result using response metadata.
        parse_response_text: Turns raw text into a ``Result``.
        normalize: Folds vendor field variants before validation.
    """

    name: str
    client_label: str
    request_options: ProviderRequestOptions = dataclasses.field(
        default_factory=ProviderRequestOptions
    )
    supports_schema: bool = False
    supports_developer_role: bool = False
    supports_streaming: bool = False
    send_raw_text: bool = False
    max_tokens: int | None = None
    disable_word_limit: bool = False
    min_confidence_ceiling: float | None = None
    verbose_debug: bool = False
    post_process: PostProcessor = passthrough_result
    parse_response_text: ResponseTextParser = parse_json
    normalize: ResponseNormalizer = passthrough_value

    def __post_init__(self) -> None:
        """Stamp the provider name into the request options."""
        if self.request_options.provider_name != self.name:
            object.__setattr__(
                self,
                "request_options",
                self.request_options.with_overrides(provider_name=self.name),
            )
