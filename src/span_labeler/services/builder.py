"""Builds the model invocation service for the configured provider."""

from __future__ import annotations

import logging

from span_labeler.config import FrozenConfig
from span_labeler.constants import DEFAULT_MODELS
from span_labeler.core.exceptions import ConfigurationError
from span_labeler.providers.factory import get_current_span_provider
from span_labeler.services.gemini import GeminiAIService
from span_labeler.services.openai_compatible import OpenAICompatibleAIService

logger = logging.getLogger(__name__)

_KEY_ENV_VARS = {
    "gemini": "GEMINI_API_KEY",
    "groq": "GROQ_API_KEY",
    "qwen": "GROQ_API_KEY",
    "openai": "OPENAI_API_KEY",
}


def build_ai_service(
    config: FrozenConfig, *, provider: str | None = None
) -> GeminiAIService | OpenAICompatibleAIService:
    """Create the ``AIService`` that talks to ``provider``.

    Raises:
        ConfigurationError: If the provider is unknown or has no API key.
    """
    name = (provider or get_current_span_provider(config)).strip().lower()
    if name not in _KEY_ENV_VARS:
        raise ConfigurationError(f"No model service available for provider {name!r}")

    api_key = config.api_key_for(name)
    if not api_key:
        raise ConfigurationError(
            f"No API key configured for provider {name!r}. "
            f"Set {_KEY_ENV_VARS[name]} or SPAN_{_KEY_ENV_VARS[name]}."
        )

    model = config.model or DEFAULT_MODELS[name]
    logger.debug("Building %s service for model %s", name, model)
    if name == "gemini":
        return GeminiAIService(
            model=model, api_key=api_key, timeout=config.request_timeout
        )
    base_url = config.openai_base_url if name == "openai" else config.groq_base_url
    return OpenAICompatibleAIService(
        provider="groq" if name == "qwen" else name,
        api_key=api_key,
        model=model,
        base_url=base_url,
        timeout=config.request_timeout,
    )
