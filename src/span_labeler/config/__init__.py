"""Configuration for the span labeling pipeline.

Resolve once at startup, freeze, and pass the ``FrozenConfig`` explicitly::

    config = load_config(provider="gemini")
    client = create_llm_client(config)
"""

from span_labeler.config.resolver import ConfigResolver, load_config, resolve_config
from span_labeler.config.settings import SpanLabelerSettings
from span_labeler.config.types import (
    ConfigOrigin,
    FrozenConfig,
    ResolvedConfig,
    SourceMap,
)

__all__ = [
    "ConfigOrigin",
    "ConfigResolver",
    "FrozenConfig",
    "ResolvedConfig",
    "SourceMap",
    "SpanLabelerSettings",
    "load_config",
    "resolve_config",
]
