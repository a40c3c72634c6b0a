"""Exceptions raised by the span labeling pipeline."""

from __future__ import annotations

from collections.abc import Iterable


class SpanLabelerError(Exception):
    """Base exception for span labeling errors."""


class ConfigurationError(SpanLabelerError):
    """Raised when configuration is invalid or incomplete."""


class ResponseParseError(SpanLabelerError):
    """Raised when model output cannot be turned into structured data."""


class SchemaValidationError(SpanLabelerError):
    """Raised when a parsed payload violates the response schema.

    Attributes:
        errors: Individual schema violations, in document order.
    """

    def __init__(self, message: str, errors: Iterable[str] = ()) -> None:
        super().__init__(message)
        self.errors: tuple[str, ...] = tuple(errors)


class RepairFailedError(SpanLabelerError):
    """Raised when the single repair round-trip still fails span validation."""

    def __init__(self, message: str, errors: Iterable[str] = ()) -> None:
        super().__init__(message)
        self.errors: tuple[str, ...] = tuple(errors)


class APIError(SpanLabelerError):
    """Raised when a model provider returns an error response."""

    def __init__(
        self, message: str, status_code: int | None = None, *, retryable: bool = False
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class ProviderTimeoutError(SpanLabelerError):
    """Raised when a provider request exceeds its timeout"""  # noqa: D415


class StreamingNotSupportedError(SpanLabelerError):
    """Raised when streaming is requested from a provider without it"""  # noqa: D415
