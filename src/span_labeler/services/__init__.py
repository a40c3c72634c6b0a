"""Model invocation services implementing the ``AIService`` protocol."""

from span_labeler.services.builder import build_ai_service
from span_labeler.services.gemini import GeminiAIService
from span_labeler.services.openai_compatible import (
    OpenAICompatibleAIService,
    average_token_probability,
    seed_for_prompt,
)

__all__ = [
    "GeminiAIService",
    "OpenAICompatibleAIService",
    "average_token_probability",
    "build_ai_service",
    "seed_for_prompt",
]
