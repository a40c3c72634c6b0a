"""
Turning raw model text into JSON values the validator can consume
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from span_labeler.core.exceptions import ResponseParseError
from span_labeler.core.types import Failure, Result, Success
from span_labeler.recovery.scanner import recover_spans

logger = logging.getLogger(__name__)

_LEADING_FENCE_RE = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_TRAILING_FENCE_RE = re.compile(r"\s*```$")


def clean_json_envelope(value: object) -> str:
    """Strip whitespace and a surrounding markdown code fence"""
    if not isinstance(value, str):
        return ""
    trimmed = value.strip()
    if trimmed.startswith("```"):
        trimmed = _LEADING_FENCE_RE.sub("", trimmed)
        trimmed = _TRAILING_FENCE_RE.sub("", trimmed)
    return trimmed.strip()


def parse_json(text: object) -> Result[Any, ResponseParseError]:
    """Parse model output strictly, after removing a code fence"""
    try:
        return Success(json.loads(clean_json_envelope(text)))
    except ValueError as e:
        return Failure(ResponseParseError(f"Invalid JSON: {e}"))


def parse_with_recovery(text: object) -> Result[Any, ResponseParseError]:
    """Parse strictly, falling back to span recovery on failure.

    A successful recovery is reported as ``{"spans": [...]}``; top-level
    fields such as ``meta`` are lost on that path and later filled in by the
    defensive meta step.
    """
    direct = parse_json(text)
    if isinstance(direct, Success):
        return direct

    spans = recover_spans(text) if isinstance(text, str) else []
    if spans:
        logger.debug("Recovered %d spans from malformed output", len(spans))
        return Success({"spans": spans})
    return Failure(
        ResponseParseError(f"{direct.error} (no recoverable spans in response)")
    )


def _normalize_span(span: Any) -> Any:
    if not isinstance(span, dict):
        return span
    if "category" not in span:
        return span
    normalized = {key: value for key, value in span.items() if key != "category"}
    role = span.get("role")
    if not isinstance(role, str) or not role.strip():
        normalized["role"] = span["category"]
    return normalized


def normalize_span_fields(value: Any) -> Any:
    """Fold vendor field variants into the canonical response shape.

    - a bare list of spans is wrapped as ``{"spans": [...]}``
    - ``category`` becomes ``role`` unless a non-empty ``role`` exists,
      and is removed either way
    - ``is_adversarial`` becomes ``isAdversarial``

    Applying it twice gives the same result as applying it once.
    """
    if isinstance(value, list):
        value = {"spans": value}
    if not isinstance(value, dict):
        return value

    normalized = dict(value)
    spans = normalized.get("spans")
    if isinstance(spans, list):
        normalized["spans"] = [_normalize_span(span) for span in spans]
    if "is_adversarial" in normalized:
        flag = normalized.pop("is_adversarial")
        normalized.setdefault("isAdversarial", flag)
    return normalized


def build_user_payload(
    *,
    task: str,
    policy: dict[str, Any],
    text: str,
    template_version: str,
    validation: dict[str, Any] | None = None,
) -> str:
    """Serialize the user message sent alongside the system prompt.

    The source text is wrapped in ``<user_input>`` tags so instructions
    embedded in it read as data.
    """
    payload: dict[str, Any] = {
        "task": task,
        "policy": policy,
        "text": f"<user_input>\n{text}\n</user_input>",
        "templateVersion": template_version,
    }
    if validation is not None:
        payload["validation"] = validation
    return json.dumps(payload, ensure_ascii=False)


def format_validation_errors(errors: list[str] | tuple[str, ...]) -> str:
    """Number validation errors one per line."""
    return "\n".join(f"{index}. {error}" for index, error in enumerate(errors, 1))
