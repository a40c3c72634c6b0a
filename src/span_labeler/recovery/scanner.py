"""Recover span objects from noisy model output.

Strict ``json.loads`` is the first line of defense. When it fails, this module
scans the text with a three-state lexer (``NORMAL``, ``IN_STRING``,
``ESCAPED``) and an integer depth counter, cutting out every balanced top-level
``{...}`` object while treating braces inside string literals as opaque. Each
candidate is repaired and parsed independently, so one broken object does not
sink the rest.
"""

from __future__ import annotations

from collections.abc import Iterator
from enum import Enum
import json
import logging
import re
from typing import Any

from span_labeler.core.types import Span
from span_labeler.recovery.repair import attempt_json_repair

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json|JSON)?")
_SPANS_KEY_RE = re.compile(r'"spans"\s*:\s*\[')
_CLOSERS = {"[": "]", "{": "}"}


class ScanState(Enum):
    """Lexer states for escape-aware scanning."""

    NORMAL = "normal"
    IN_STRING = "in_string"
    ESCAPED = "escaped"


class JsonScanner:
    """Track whether the cursor sits inside a JSON string literal."""

    __slots__ = ("state",)

    def __init__(self) -> None:
        self.state = ScanState.NORMAL

    def step(self, ch: str) -> bool:
        """Advance over ``ch``; return True when it is structural."""
        if self.state is ScanState.ESCAPED:
            self.state = ScanState.IN_STRING
            return False
        if self.state is ScanState.IN_STRING:
            if ch == "\\":
                self.state = ScanState.ESCAPED
            elif ch == '"':
                self.state = ScanState.NORMAL
            return False
        if ch == '"':
            self.state = ScanState.IN_STRING
            return False
        return True


def strip_code_fences(text: str) -> str:
    """Remove markdown fences and anything before the first ``{`` or ``[``.

    Returns an empty string when the text contains neither.
    """
    cleaned = _FENCE_RE.sub("", text)
    starts = [i for i in (cleaned.find("{"), cleaned.find("[")) if i != -1]
    if not starts:
        return ""
    return cleaned[min(starts) :].strip()


def find_matching_bracket(text: str, start: int) -> int:
    """Return the index closing the bracket at ``start``, or -1.

    Only the bracket kind found at ``start`` is counted; brackets inside
    string literals are ignored.
    """
    if start < 0 or start >= len(text) or text[start] not in _CLOSERS:
        return -1
    opener = text[start]
    closer = _CLOSERS[opener]
    scanner = JsonScanner()
    depth = 0
    for index in range(start, len(text)):
        ch = text[index]
        if not scanner.step(ch):
            continue
        if ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return index
    return -1


def iter_object_substrings(text: str) -> Iterator[str]:
    """Yield each balanced top-level ``{...}`` substring, in order."""
    scanner = JsonScanner()
    depth = 0
    start = -1
    for index, ch in enumerate(text):
        if not scanner.step(ch):
            continue
        if ch == "{":
            if depth == 0:
                start = index
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1
            if depth == 0:
                yield text[start : index + 1]


def isolate_span_array(text: str, *, allow_unterminated: bool = True) -> str | None:
    """Return the body of the span array, without its brackets.

    Looks for a ``"spans"`` key first, then for a top-level array. Text with
    neither is returned whole. An array that never closes yields the rest of
    the string when ``allow_unterminated`` is set (partial streaming output)
    and None otherwise.
    """
    match = _SPANS_KEY_RE.search(text)
    if match is not None:
        open_index = match.end() - 1
    elif text.startswith("["):
        open_index = 0
    else:
        return text

    close_index = find_matching_bracket(text, open_index)
    if close_index == -1:
        if not allow_unterminated:
            return None
        logger.debug("Span array is unterminated; scanning the remainder")
        return text[open_index + 1 :]
    return text[open_index + 1 : close_index]


def coerce_span(candidate: Any) -> Span | None:
    """Accept a parsed object as a span when it has text and role/category.

    ``category`` is folded into ``role`` (an existing ``role`` wins).
    """
    if not isinstance(candidate, dict):
        return None
    text = candidate.get("text")
    role = candidate.get("role")
    category = candidate.get("category")
    if not isinstance(text, str):
        return None
    if not isinstance(role, str):
        if not isinstance(category, str):
            return None
        role = category
    span = {key: value for key, value in candidate.items() if key != "category"}
    span["role"] = role
    return span  # type: ignore[return-value]


def recover_spans(text: str, *, allow_unterminated: bool = True) -> list[Span]:
    """Extract every well-formed span object from ``text``.

    Args:
        text: Raw model output, possibly fenced, prefixed with prose,
            truncated, or carrying trailing commas.
        allow_unterminated: Scan past an opening ``[`` that never closes.

    Returns:
        Spans in source order. Empty when nothing usable was found.
    """
    trimmed = strip_code_fences(text)
    if not trimmed:
        return []

    body = isolate_span_array(trimmed, allow_unterminated=allow_unterminated)
    if body is None:
        return []

    spans = _parse_candidates(body)
    if not spans and body != trimmed:
        # A bracketed aside such as "[note]" can masquerade as the array
        spans = _parse_candidates(trimmed)
    return spans


def _parse_candidates(body: str) -> list[Span]:
    spans: list[Span] = []
    for candidate in iter_object_substrings(body):
        outcome = attempt_json_repair(candidate)
        try:
            parsed = json.loads(outcome.repaired)
        except ValueError:
            logger.debug("Discarding unparseable candidate: %.80s", candidate)
            continue
        span = coerce_span(parsed)
        if span is not None:
            spans.append(span)
    return spans
