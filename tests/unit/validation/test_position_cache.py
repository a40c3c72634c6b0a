import pytest

from span_labeler.validation import SubstringPositionCache

pytestmark = pytest.mark.unit


@pytest.fixture
def cache():
    return SubstringPositionCache()


def test_occurrences_are_ascending(cache):
    assert cache.occurrences("abcabcabc", "abc") == [0, 3, 6]
    assert cache.occurrences("aaaa", "aa") == [0, 1, 2]


def test_occurrences_are_cached_per_text(cache):
    first = cache.occurrences("one two one", "one")
    assert cache.occurrences("one two one", "one") is first

    assert cache.occurrences("no match here", "one") == []


def test_exact_match_prefers_closest_occurrence(cache):
    text = "the cat and the cat"
    assert cache.find_best_match(text, "cat", 0) == (4, 7)
    assert cache.find_best_match(text, "cat", 14) == (16, 19)
    assert cache.telemetry["exact_matches"] == 2


def test_exact_only_skips_fallbacks(cache):
    assert cache.find_best_match("Neon Lights", "neon lights", exact_only=True) is None
    assert cache.telemetry["failures"] == 1


def test_case_insensitive_fallback(cache):
    assert cache.find_best_match("Neon Lights glow", "neon lights") == (0, 11)
    assert cache.telemetry["case_insensitive_matches"] == 1


def test_fuzzy_fallback_tolerates_typos(cache):
    text = "A golden retriever runs along the shore"
    match = cache.find_best_match(text, "golden retreiver")

    assert match is not None
    start, end = match
    assert start <= text.index("golden") < end
    assert cache.telemetry["fuzzy_matches"] == 1


def test_unrelated_text_does_not_match(cache):
    assert cache.find_best_match("a quiet lake", "quantum chromodynamics") is None
    assert cache.telemetry["failures"] == 1


def test_empty_substring_is_not_counted(cache):
    assert cache.find_best_match("text", "") is None
    assert cache.telemetry["total_requests"] == 0


def test_clear_and_reset(cache):
    cache.find_best_match("abc", "b")
    cache.clear()
    cache.reset_telemetry()
    assert cache.telemetry["total_requests"] == 0
    assert cache.occurrences("abc", "b") == [1]
