"""Provider selection and client construction."""

from __future__ import annotations

import logging

from span_labeler.client import RobustLlmClient
from span_labeler.config import FrozenConfig, load_config
from span_labeler.providers.profiles import DEFAULT_PROFILE, PROFILES
from span_labeler.telemetry import TelemetryContextProtocol

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER = "groq"

_OPENAI_MODEL_PREFIXES = ("gpt-", "o1", "o3", "o4", "chatgpt")
_GROQ_MODEL_MARKERS = ("llama", "mixtral", "gemma", "deepseek", "kimi")


def detect_provider(model: str | None) -> str | None:
    """Infer the provider from a model identifier, or None if unrecognized."""
    if not model:
        return None
    name = model.strip().lower()
    if "gemini" in name:
        return "gemini"
    if "qwen" in name:
        return "qwen"
    if name.startswith(_OPENAI_MODEL_PREFIXES):
        return "openai"
    if any(marker in name for marker in _GROQ_MODEL_MARKERS):
        return "groq"
    return None


def get_current_span_provider(config: FrozenConfig) -> str:
    """Resolve the provider: explicit setting, then model name, then Groq."""
    if config.provider:
        return config.provider
    detected = detect_provider(config.model)
    if detected is not None:
        logger.debug("Detected provider %s from model %s", detected, config.model)
        return detected
    return DEFAULT_PROVIDER


def create_llm_client(
    config: FrozenConfig | None = None,
    *,
    provider: str | None = None,
    telemetry: TelemetryContextProtocol | None = None,
) -> RobustLlmClient:
    """Build a span labeling client for the configured provider.

    Args:
        config: Frozen configuration; resolved from the environment when
            omitted.
        provider: Overrides the configured provider.
        telemetry: Passed through to the client.

    Returns:
        A ``RobustLlmClient`` carrying the provider's profile. Unknown
        providers get the default profile.
    """
    config = config if config is not None else load_config()
    name = (provider or get_current_span_provider(config)).strip().lower()
    profile = PROFILES.get(name)
    if profile is None:
        logger.warning("Unknown span labeling provider %r; using defaults", name)
        profile = DEFAULT_PROFILE
    return RobustLlmClient(profile, config=config, telemetry=telemetry)
