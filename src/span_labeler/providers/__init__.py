"""Provider profiles.

The factory lives in ``span_labeler.providers.factory``; it depends on the
client, which in turn depends on these profiles.
"""

from span_labeler.providers.base import ProviderProfile
from span_labeler.providers.profiles import (
    DEFAULT_PROFILE,
    GEMINI_PROFILE,
    GROQ_PROFILE,
    OPENAI_PROFILE,
    PROFILES,
    QWEN_PROFILE,
    cap_confidence_with_logprobs,
    get_profile,
)

__all__ = [
    "DEFAULT_PROFILE",
    "GEMINI_PROFILE",
    "GROQ_PROFILE",
    "OPENAI_PROFILE",
    "PROFILES",
    "QWEN_PROFILE",
    "ProviderProfile",
    "cap_confidence_with_logprobs",
    "get_profile",
]
