"""Structural and domain validation of parsed span responses."""

from span_labeler.validation.position_cache import SubstringPositionCache
from span_labeler.validation.schema import (
    SPAN_RESPONSE_SCHEMA,
    build_span_schema,
    validate_schema_or_throw,
)
from span_labeler.validation.spans import (
    LENIENT_ATTEMPT,
    STRICT_ATTEMPT,
    validate_spans,
)

__all__ = [
    "LENIENT_ATTEMPT",
    "SPAN_RESPONSE_SCHEMA",
    "STRICT_ATTEMPT",
    "SubstringPositionCache",
    "build_span_schema",
    "validate_schema_or_throw",
    "validate_spans",
]
