"""Recovery of structured spans from malformed model output."""

from span_labeler.recovery.repair import JsonRepairOutcome, attempt_json_repair
from span_labeler.recovery.scanner import (
    JsonScanner,
    ScanState,
    coerce_span,
    find_matching_bracket,
    isolate_span_array,
    iter_object_substrings,
    recover_spans,
    strip_code_fences,
)

__all__ = [
    "JsonRepairOutcome",
    "JsonScanner",
    "ScanState",
    "attempt_json_repair",
    "coerce_span",
    "find_matching_bracket",
    "isolate_span_array",
    "iter_object_substrings",
    "recover_spans",
    "strip_code_fences",
]
