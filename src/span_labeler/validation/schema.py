"""JSON schemas for span responses and the structural check built on them."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
import logging
from typing import Any

from jsonschema import Draft7Validator

from span_labeler.core.exceptions import SchemaValidationError
from span_labeler.taxonomy import VALID_TAXONOMY_IDS

logger = logging.getLogger(__name__)

SCHEMA_NAME = "span_labeling_response"

SPAN_RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["spans"],
    "properties": {
        "spans": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["text", "role"],
                "properties": {
                    "text": {"type": "string"},
                    "role": {"type": "string"},
                    "confidence": {"type": "number", "minimum": 0, "maximum": 1},
                    "start": {"type": "integer", "minimum": 0},
                    "end": {"type": "integer", "minimum": 0},
                },
            },
        },
        "meta": {
            "type": "object",
            "properties": {
                "version": {"type": "string"},
                "notes": {"type": "string"},
            },
        },
        "isAdversarial": {"type": "boolean"},
        "analysis_trace": {"type": ["string", "null"]},
    },
}


def _strict_schema(taxonomy_ids: Iterable[str]) -> dict[str, Any]:
    return {
        "type": "object",
        "required": ["analysis_trace", "spans", "meta", "isAdversarial"],
        "additionalProperties": False,
        "properties": {
            "analysis_trace": {"type": "string"},
            "spans": {
                "type": "array",
                "items": {
                    "type": "object",
                    "required": ["text", "role", "confidence"],
                    "additionalProperties": False,
                    "properties": {
                        "text": {"type": "string"},
                        "role": {"type": "string", "enum": sorted(taxonomy_ids)},
                        "confidence": {"type": "number", "minimum": 0, "maximum": 1},
                    },
                },
            },
            # Diagnostic keys (NLP metrics) are added after parsing
            "meta": {
                "type": "object",
                "required": ["version", "notes"],
                "properties": {
                    "version": {"type": "string"},
                    "notes": {"type": "string"},
                },
            },
            "isAdversarial": {"type": "boolean"},
        },
    }


def build_span_schema(
    provider: str, taxonomy_ids: Iterable[str] | None = None
) -> dict[str, Any]:
    """Return the response schema to request from ``provider``.

    Groq, Qwen and OpenAI get the strict shape with a closed role enum. Any
    other provider gets the lenient shape that only requires ``spans``.
    """
    ids = VALID_TAXONOMY_IDS if taxonomy_ids is None else taxonomy_ids
    if provider in ("groq", "qwen", "openai"):
        return _strict_schema(ids)
    return SPAN_RESPONSE_SCHEMA


def _format_error(error: Any) -> str:
    location = error.json_path if error.path else "$"
    return f"{location}: {error.message}"


def validate_schema_or_throw(
    value: Any, schema: Mapping[str, Any] | None = None
) -> None:
    """Check a parsed response against ``schema``.

    Every violation is collected before raising. Without a schema only the
    basic shape is checked: an object whose ``spans``, when present, is a
    list.

    Raises:
        SchemaValidationError: On any structural violation.
    """
    if schema is None:
        if not isinstance(value, dict):
            raise SchemaValidationError(
                "Schema validation failed: response is not a JSON object",
                errors=("$: response is not a JSON object",),
            )
        if "spans" in value and not isinstance(value["spans"], list):
            raise SchemaValidationError(
                "Schema validation failed: spans must be an array",
                errors=("$.spans: must be an array",),
            )
        return

    validator = Draft7Validator(schema)
    found = sorted(validator.iter_errors(value), key=lambda e: [str(p) for p in e.path])
    errors = tuple(_format_error(error) for error in found)
    if errors:
        logger.debug("Schema validation found %d errors", len(errors))
        raise SchemaValidationError(
            "Schema validation failed:\n" + "\n".join(errors), errors=errors
        )
