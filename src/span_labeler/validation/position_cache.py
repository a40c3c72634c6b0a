"""Substring offset lookup shared across the spans of one request."""

from __future__ import annotations

from bisect import bisect_left
from difflib import SequenceMatcher
import logging
import re
import unicodedata

logger = logging.getLogger(__name__)

_QUOTES_RE = re.compile(r"[`\"'“”]")
_WHITESPACE_RE = re.compile(r"\s+")

# Fuzzy matches need at least this similarity after normalisation
FUZZY_MIN_RATIO = 0.65
_MAX_FUZZY_CANDIDATES = 120
_FUZZY_ANCHOR_CHARS = 6


def _clean_for_match(value: str) -> str:
    decomposed = unicodedata.normalize("NFD", value)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    stripped = _QUOTES_RE.sub("", stripped).replace("**", "")
    return _WHITESPACE_RE.sub(" ", stripped).lower().strip()


class SubstringPositionCache:
    """Find where a span's text sits in the source prompt.

    Occurrence lists are cached per substring for the current source text and
    dropped as soon as a different text is looked up. Lookups try an exact
    match first, then a case-insensitive one, then a fuzzy one anchored on
    the first few characters.

    Not thread-safe; one instance serves one in-flight request.
    """

    def __init__(self) -> None:
        self._occurrences: dict[str, list[int]] = {}
        self._current_text: str | None = None
        self.telemetry: dict[str, int] = {}
        self.reset_telemetry()

    def reset_telemetry(self) -> None:
        """Zero the match counters."""
        self.telemetry = {
            "exact_matches": 0,
            "case_insensitive_matches": 0,
            "fuzzy_matches": 0,
            "failures": 0,
            "total_requests": 0,
        }

    def clear(self) -> None:
        """Drop cached occurrences."""
        self._occurrences.clear()
        self._current_text = None

    def occurrences(self, text: str, substring: str) -> list[int]:
        """Return every start offset of ``substring`` in ``text``, ascending."""
        if self._current_text != text:
            self._occurrences.clear()
            self._current_text = text
        cached = self._occurrences.get(substring)
        if cached is not None:
            return cached

        found: list[int] = []
        index = text.find(substring)
        while index != -1:
            found.append(index)
            index = text.find(substring, index + 1)
        self._occurrences[substring] = found
        return found

    def find_best_match(
        self,
        text: str,
        substring: str,
        preferred_start: int = 0,
        *,
        exact_only: bool = False,
    ) -> tuple[int, int] | None:
        """Locate ``substring`` in ``text``.

        Args:
            text: Source prompt.
            substring: Span text reported by the model.
            preferred_start: Offset the model reported; among several exact
                occurrences the closest one wins.
            exact_only: Skip the case-insensitive and fuzzy fallbacks.

        Returns:
            ``(start, end)`` or None when nothing matched.
        """
        if not substring:
            return None
        self.telemetry["total_requests"] += 1

        found = self.occurrences(text, substring)
        if found:
            self.telemetry["exact_matches"] += 1
            start = self._closest(found, preferred_start)
            return start, start + len(substring)
        if exact_only:
            self.telemetry["failures"] += 1
            return None

        index = text.lower().find(substring.lower())
        if index != -1:
            self.telemetry["case_insensitive_matches"] += 1
            return index, index + len(substring)

        match = self._fuzzy_find(text, substring)
        if match is None:
            self.telemetry["failures"] += 1
            logger.debug("No match found for substring %.50r", substring)
        else:
            self.telemetry["fuzzy_matches"] += 1
        return match

    @staticmethod
    def _closest(found: list[int], preferred: int) -> int:
        position = bisect_left(found, preferred)
        if position == 0:
            return found[0]
        if position == len(found):
            return found[-1]
        before, after = found[position - 1], found[position]
        return after if after - preferred < preferred - before else before

    def _fuzzy_find(self, text: str, substring: str) -> tuple[int, int] | None:
        target = _clean_for_match(substring)
        if not target:
            return None

        lowered = text.lower()
        anchor = target[:_FUZZY_ANCHOR_CHARS]
        starts: list[int] = []
        index = lowered.find(anchor)
        while index != -1 and len(starts) < _MAX_FUZZY_CANDIDATES:
            starts.append(max(0, index - _FUZZY_ANCHOR_CHARS))
            index = lowered.find(anchor, index + len(anchor))
        if not starts:
            step = max(4, len(target) // 2)
            starts = list(range(0, max(len(text) - len(target), 0) + 1, step))
            starts = starts[:_MAX_FUZZY_CANDIDATES]

        best: tuple[float, int] | None = None
        for start in starts:
            window = _clean_for_match(text[start : start + len(target) + 10])
            if not window:
                continue
            ratio = SequenceMatcher(None, target, window).ratio()
            if best is None or ratio > best[0]:
                best = (ratio, start)

        if best is None or best[0] < FUZZY_MIN_RATIO:
            return None
        start = best[1]
        return start, min(len(text), start + max(len(substring), len(target)))
