"""Domain validation of model-proposed spans.

``validate_spans`` runs at one of two strictness levels selected by the
``attempt`` number:

- attempt 1 (strict): a span whose text is missing or absent from the source,
  whose role is not a taxonomy identifier, or which exceeds the word limit
  produces an error and the result is not ``ok``.
- attempt 2 (lenient): the same problems drop the span with a note. An
  unknown role degrades to its parent category when it has a known one;
  otherwise the span is dropped and the error is still reported.

Anything accepted at attempt 1 is accepted unchanged at attempt 2.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
import logging
import re
from typing import Any

from span_labeler.constants import DEFAULT_SPAN_CONFIDENCE
from span_labeler.core.types import (
    LabelSpansResult,
    ProcessingOptions,
    Span,
    ValidationPolicy,
    ValidationResult,
)
from span_labeler.taxonomy import (
    TECHNICAL_CATEGORIES,
    is_valid_taxonomy_id,
    parent_category,
    resolve_taxonomy_id,
)
from span_labeler.validation.position_cache import SubstringPositionCache

logger = logging.getLogger(__name__)

STRICT_ATTEMPT = 1
LENIENT_ATTEMPT = 2

ADVERSARIAL_NOTE = "adversarial input detected; spans suppressed"

_WORD_RE = re.compile(r"\b[\w'-]+\b")


def word_count(text: str) -> int:
    """Count words the way the non-technical limit measures them."""
    return len(_WORD_RE.findall(text)) if text else 0


def clamp_confidence(value: object) -> float:
    """Clamp a reported confidence into [0, 1], defaulting when not numeric."""
    if isinstance(value, bool) or not isinstance(value, int | float):
        return DEFAULT_SPAN_CONFIDENCE
    if value != value:  # NaN
        return DEFAULT_SPAN_CONFIDENCE
    return min(1.0, max(0.0, float(value)))


def _span_key(span: Span) -> str:
    return f"{span['start']}|{span['end']}|{span['text']}"


def _by_position(span: Span) -> tuple[int, int]:
    return span["start"], span["end"]


class _Collector:
    """Errors and notes gathered while validating one response."""

    __slots__ = ("errors", "notes", "strict")

    def __init__(self, *, strict: bool) -> None:
        self.strict = strict
        self.errors: list[str] = []
        self.notes: list[str] = []

    def reject(self, error: str, note: str) -> None:
        if self.strict:
            self.errors.append(error)
        else:
            self.notes.append(note)


def _resolve_role(
    label: str, role: object, collector: _Collector
) -> str | None:
    if is_valid_taxonomy_id(role):
        return resolve_taxonomy_id(role)  # type: ignore[arg-type]

    if not collector.strict:
        parent = parent_category(role)
        if parent is not None:
            collector.notes.append(
                f'{label} role "{role}" degraded to parent category "{parent}"'
            )
            return parent
    collector.errors.append(f'{label} role "{role}" is not a valid taxonomy ID')
    return None


def _sanitize(
    raw_spans: Sequence[Any],
    text: str,
    policy: ValidationPolicy,
    cache: SubstringPositionCache,
    collector: _Collector,
) -> tuple[list[Span], list[str]]:
    sanitized: list[Span] = []
    fix_notes: list[str] = []
    seen: set[str] = set()

    for index, candidate in enumerate(raw_spans):
        label = f"span[{index}]"
        span = dict(candidate) if isinstance(candidate, Mapping) else {}

        span_text = span.get("text")
        if not isinstance(span_text, str) or not span_text:
            collector.reject(f"{label} missing text", f"{label} dropped: missing text")
            continue

        reported_start = span.get("start")
        reported_end = span.get("end")
        preferred = reported_start if isinstance(reported_start, int) else 0
        match = cache.find_best_match(
            text, span_text, preferred, exact_only=collector.strict
        )
        if match is None:
            collector.reject(
                f'{label} text "{span_text}" not found in source',
                f"{label} dropped: text not found in source",
            )
            continue

        start, end = match
        if text[start:end] != span_text:
            fix_notes.append(
                f'{label} text "{span_text}" matched approximately; '
                f'using "{text[start:end]}"'
            )
            span_text = text[start:end]
        elif (reported_start, reported_end) != (start, end):
            fix_notes.append(
                f"{label} indices auto-adjusted from "
                f"{reported_start}-{reported_end} to {start}-{end}"
            )

        role = span.get("role")
        if role is None and "category" in span:
            role = span["category"]
        resolved_role = _resolve_role(label, role, collector)
        if resolved_role is None:
            continue

        limit = policy.non_technical_word_limit
        if (
            limit > 0
            and parent_category(resolved_role) not in TECHNICAL_CATEGORIES
            and word_count(span_text) > limit
        ):
            collector.reject(
                f"{label} exceeds non-technical word limit ({limit} words)",
                f"{label} dropped: exceeds non-technical word limit",
            )
            continue

        normalized: Span = {
            "text": span_text,
            "start": start,
            "end": end,
            "role": resolved_role,
            "confidence": clamp_confidence(span.get("confidence")),
        }
        key = _span_key(normalized)
        if key in seen:
            collector.notes.append(f"{label} ignored: duplicate span")
            continue
        seen.add(key)
        sanitized.append(normalized)

    sanitized.sort(key=_by_position)
    return sanitized, fix_notes


def _resolve_overlaps(spans: list[Span]) -> tuple[list[Span], list[str]]:
    resolved: list[Span] = []
    notes: list[str] = []
    for span in spans:
        if not resolved or span["start"] >= resolved[-1]["end"]:
            resolved.append(span)
            continue
        last = resolved[-1]
        winner = span if span["confidence"] > last["confidence"] else last
        notes.append(
            f'Overlap between "{last["text"]}" ({last["start"]}-{last["end"]}, '
            f'conf={last["confidence"]:.2f}) and "{span["text"]}" '
            f'({span["start"]}-{span["end"]}, conf={span["confidence"]:.2f}); '
            f'kept "{winner["text"]}".'
        )
        resolved[-1] = winner
    return resolved, notes


def _filter_confidence(
    spans: list[Span], min_confidence: float
) -> tuple[list[Span], list[str]]:
    kept: list[Span] = []
    notes: list[str] = []
    for span in spans:
        if span["confidence"] >= min_confidence:
            kept.append(span)
            continue
        notes.append(
            f'Dropped "{span["text"]}" at {span["start"]}-{span["end"]} '
            f'(confidence {span["confidence"]:.2f} below threshold {min_confidence}).'
        )
    return kept, notes


def _truncate(spans: list[Span], max_spans: int) -> tuple[list[Span], list[str]]:
    if len(spans) <= max_spans:
        return spans, []
    ranked = sorted(spans, key=lambda s: (-s["confidence"], s["start"]))
    keep = {_span_key(span) for span in ranked[:max_spans]}
    kept = sorted((s for s in spans if _span_key(s) in keep), key=_by_position)
    return kept, [
        f"Truncated spans to maxSpans={max_spans}; "
        f"removed {len(spans) - len(kept)} spans."
    ]


def _meta_notes(meta: Mapping[str, Any]) -> list[str]:
    notes = meta.get("notes")
    if isinstance(notes, str):
        return [notes] if notes else []
    if isinstance(notes, list):
        return [str(note) for note in notes if note]
    return []


def validate_spans(
    *,
    spans: Sequence[Any],
    text: str,
    policy: ValidationPolicy | Mapping[str, Any] | None = None,
    options: ProcessingOptions | Mapping[str, Any] | None = None,
    meta: Mapping[str, Any] | None = None,
    attempt: int = STRICT_ATTEMPT,
    cache: SubstringPositionCache | None = None,
    is_adversarial: bool = False,
    analysis_trace: str | None = None,
) -> ValidationResult:
    """Validate, correct and rank spans against the source text.

    Args:
        spans: Raw spans from the parsed model response.
        text: Source prompt the spans must come from.
        policy: Word limit and overlap rules.
        options: Confidence floor, span cap and template version.
        meta: Response metadata; unknown keys are carried through.
        attempt: ``1`` for strict validation, ``2`` or more for lenient.
        cache: Offset lookup cache, shared across calls for the same text.
        is_adversarial: Flag the result and note the suppression.
        analysis_trace: Model reasoning to carry into the result.

    Returns:
        ValidationResult whose ``result`` is always populated, even when
        ``ok`` is False.
    """
    policy = ValidationPolicy.sanitize(policy)
    options = ProcessingOptions.sanitize(options)
    meta = meta if isinstance(meta, Mapping) else {}
    cache = cache if cache is not None else SubstringPositionCache()
    collector = _Collector(strict=attempt <= STRICT_ATTEMPT)

    sanitized, fix_notes = _sanitize(
        spans if isinstance(spans, Sequence) else [], text, policy, cache, collector
    )
    overlap_notes: list[str] = []
    if not policy.allow_overlap:
        sanitized, overlap_notes = _resolve_overlaps(sanitized)
    filtered, confidence_notes = _filter_confidence(sanitized, options.min_confidence)
    final, truncation_notes = _truncate(filtered, options.max_spans)

    notes = [
        *_meta_notes(meta),
        *collector.notes,
        *fix_notes,
        *overlap_notes,
        *confidence_notes,
        *truncation_notes,
    ]
    if is_adversarial:
        notes.append(ADVERSARIAL_NOTE)

    version = meta.get("version")
    result_meta = dict(meta)
    result_meta["version"] = (
        version.strip()
        if isinstance(version, str) and version.strip()
        else options.template_version
    )
    result_meta["notes"] = " | ".join(notes)

    if collector.errors:
        logger.debug(
            "Span validation failed at attempt %d with %d errors",
            attempt,
            len(collector.errors),
        )
    return ValidationResult(
        ok=not collector.errors,
        errors=tuple(collector.errors),
        result=LabelSpansResult(
            spans=final,
            meta=result_meta,
            is_adversarial=is_adversarial,
            analysis_trace=analysis_trace if isinstance(analysis_trace, str) else None,
        ),
    )
