"""Built-in provider profiles."""

from __future__ import annotations

from collections.abc import Mapping
import dataclasses
import logging
from typing import Any

from span_labeler.constants import GEMINI_MAX_TOKENS, GEMINI_MIN_CONFIDENCE_CEILING
from span_labeler.core.types import (
    LabelSpansResult,
    ProviderRequestOptions,
    Span,
    coerce_number,
)
from span_labeler.parsing import normalize_span_fields, parse_with_recovery
from span_labeler.providers.base import ProviderProfile

logger = logging.getLogger(__name__)


def _with_provider_meta(
    result: LabelSpansResult,
    client_label: str,
    optimizations: dict[str, Any],
    spans: list[Span] | None = None,
) -> LabelSpansResult:
    meta = {
        **result.meta,
        "_clientType": client_label,
        "_providerOptimizations": optimizations,
    }
    return dataclasses.replace(
        result, spans=result.spans if spans is None else spans, meta=meta
    )


# --- Groq ---


def cap_confidence_with_logprobs(
    result: LabelSpansResult, metadata: Mapping[str, Any]
) -> LabelSpansResult:
    """Cap each span's confidence at the response's mean token probability.

    Confidence only ever goes down; a capped span keeps its self-reported
    value in ``_originalConfidence``.
    """
    average = coerce_number(metadata.get("average_confidence"))
    adjust = average is not None and bool(result.spans)
    spans = result.spans
    if adjust:
        spans = []
        for span in result.spans:
            confidence = span.get("confidence")
            if isinstance(confidence, int | float) and confidence > average:
                capped: Span = {
                    **span,
                    "confidence": average,
                    "_originalConfidence": confidence,
                }
                spans.append(capped)
            else:
                spans.append(span)
        logger.debug("Capped span confidence at logprobs average %.3f", average)
    return _with_provider_meta(
        result,
        "GroqLlmClient",
        {"provider": "groq", "logprobsAdjustment": adjust},
        spans,
    )


def _qwen_post_process(
    result: LabelSpansResult,
    metadata: Mapping[str, Any],  # noqa: ARG001
) -> LabelSpansResult:
    return _with_provider_meta(
        result, "QwenLlmClient", {"provider": "qwen", "strictSchema": True}
    )


# --- OpenAI ---


def _openai_post_process(
    result: LabelSpansResult,
    metadata: Mapping[str, Any],  # noqa: ARG001
) -> LabelSpansResult:
    return _with_provider_meta(
        result,
        "OpenAILlmClient",
        {"provider": "openai", "strictSchema": True, "logprobsAdjustment": False},
    )


# --- Gemini ---


def _gemini_post_process(
    result: LabelSpansResult,
    metadata: Mapping[str, Any],  # noqa: ARG001
) -> LabelSpansResult:
    return _with_provider_meta(
        result, "GeminiLlmClient", {"provider": "gemini", "recoveryParsing": True}
    )


DEFAULT_PROFILE = ProviderProfile(name="unknown", client_label="RobustLlmClient")

GROQ_PROFILE = ProviderProfile(
    name="groq",
    client_label="GroqLlmClient",
    request_options=ProviderRequestOptions(
        enable_bookending=True,
        use_few_shot=True,
        use_seed_from_config=True,
        enable_logprobs=True,
    ),
    supports_schema=True,
    post_process=cap_confidence_with_logprobs,
)

QWEN_PROFILE = ProviderProfile(
    name="qwen",
    client_label="QwenLlmClient",
    request_options=ProviderRequestOptions(use_seed_from_config=True),
    supports_schema=True,
    post_process=_qwen_post_process,
)

OPENAI_PROFILE = ProviderProfile(
    name="openai",
    client_label="OpenAILlmClient",
    request_options=ProviderRequestOptions(
        enable_bookending=True,
        use_seed_from_config=True,
    ),
    supports_schema=True,
    supports_developer_role=True,
    post_process=_openai_post_process,
)

GEMINI_PROFILE = ProviderProfile(
    name="gemini",
    client_label="GeminiLlmClient",
    request_options=ProviderRequestOptions(use_seed_from_config=False),
    supports_streaming=True,
    send_raw_text=True,
    max_tokens=GEMINI_MAX_TOKENS,
    disable_word_limit=True,
    min_confidence_ceiling=GEMINI_MIN_CONFIDENCE_CEILING,
    verbose_debug=True,
    post_process=_gemini_post_process,
    parse_response_text=parse_with_recovery,
    normalize=normalize_span_fields,
)

PROFILES: Mapping[str, ProviderProfile] = {
    profile.name: profile
    for profile in (GROQ_PROFILE, QWEN_PROFILE, OPENAI_PROFILE, GEMINI_PROFILE)
}


def get_profile(name: str | None) -> ProviderProfile:
    """Return the profile registered under ``name``, or the default profile."""
    if not name:
        return DEFAULT_PROFILE
    return PROFILES.get(name.strip().lower(), DEFAULT_PROFILE)
