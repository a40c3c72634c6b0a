"""LLM span labeling with recovery, validation and repair."""

import importlib.metadata
import logging

from span_labeler.client import RobustLlmClient
from span_labeler.config import (
    FrozenConfig,
    ResolvedConfig,
    load_config,
    resolve_config,
)
from span_labeler.core.exceptions import (
    APIError,
    ConfigurationError,
    ProviderTimeoutError,
    RepairFailedError,
    ResponseParseError,
    SchemaValidationError,
    SpanLabelerError,
    StreamingNotSupportedError,
)
from span_labeler.core.types import (
    Failure,
    LabelSpansResult,
    LlmSpanParams,
    ModelResponse,
    ProcessingOptions,
    Result,
    Span,
    Success,
    ValidationPolicy,
)
from span_labeler.invocation import AIService, StreamingAIService
from span_labeler.providers import ProviderProfile, get_profile
from span_labeler.providers.factory import (
    create_llm_client,
    detect_provider,
    get_current_span_provider,
)
from span_labeler.services import build_ai_service
from span_labeler.telemetry import TelemetryContext, TelemetryReporter
from span_labeler.validation import SubstringPositionCache

# Version handling
try:
    __version__ = importlib.metadata.version("span-labeler")
except importlib.metadata.PackageNotFoundError:
    __version__ = "development"

# Libraries stay silent unless the application configures logging
logging.getLogger(__name__).addHandler(logging.NullHandler())

# Public API
__all__ = [  # noqa: RUF022
    # Client
    "RobustLlmClient",
    "create_llm_client",
    "detect_provider",
    "get_current_span_provider",
    # Providers and services
    "ProviderProfile",
    "get_profile",
    "AIService",
    "StreamingAIService",
    "build_ai_service",
    # Configuration
    "FrozenConfig",
    "ResolvedConfig",
    "load_config",
    "resolve_config",
    # Telemetry (extension points)
    "TelemetryContext",
    "TelemetryReporter",
    # Core Types
    "LabelSpansResult",
    "LlmSpanParams",
    "ModelResponse",
    "ProcessingOptions",
    "Span",
    "SubstringPositionCache",
    "ValidationPolicy",
    "Result",
    "Success",
    "Failure",
    # Exceptions
    "SpanLabelerError",
    "ConfigurationError",
    "ResponseParseError",
    "SchemaValidationError",
    "RepairFailedError",
    "APIError",
    "ProviderTimeoutError",
    "StreamingNotSupportedError",
]
