import pytest

from span_labeler.config import FrozenConfig
from span_labeler.core.exceptions import ConfigurationError
from span_labeler.invocation import AIService, StreamingAIService
from span_labeler.services import (
    GeminiAIService,
    OpenAICompatibleAIService,
    build_ai_service,
)

pytestmark = pytest.mark.unit


def test_groq_is_the_default_service():
    service = build_ai_service(FrozenConfig(groq_api_key="gsk"))

    assert isinstance(service, OpenAICompatibleAIService)
    assert service.provider == "groq"
    assert service.model == "llama-3.1-8b-instant"
    assert isinstance(service, StreamingAIService)


def test_qwen_runs_on_groq_with_groq_key():
    service = build_ai_service(FrozenConfig(provider="qwen", groq_api_key="gsk"))

    assert service.provider == "groq"
    assert service.model == "qwen/qwen3-32b"


def test_openai_uses_its_own_endpoint():
    config = FrozenConfig(
        provider="openai",
        openai_api_key="sk",
        openai_base_url="https://proxy.test/v1",
        model="gpt-4o-mini",
    )
    service = build_ai_service(config)

    assert service.provider == "openai"
    assert service.model == "gpt-4o-mini"
    assert service._endpoint == "https://proxy.test/v1/chat/completions"


def test_gemini_model_selects_gemini_service():
    service = build_ai_service(
        FrozenConfig(model="gemini-2.0-pro", gemini_api_key="g-key")
    )

    assert isinstance(service, GeminiAIService)
    assert service.model == "gemini-2.0-pro"
    assert isinstance(service, AIService)


def test_provider_argument_overrides_config():
    service = build_ai_service(
        FrozenConfig(provider="groq", openai_api_key="sk"), provider="OpenAI"
    )
    assert service.provider == "openai"


def test_missing_key_names_the_variables():
    with pytest.raises(ConfigurationError, match="Set GROQ_API_KEY or SPAN_GROQ_API_KEY"):
        build_ai_service(FrozenConfig(provider="qwen"))


def test_unknown_provider_is_rejected():
    with pytest.raises(ConfigurationError, match="No model service available"):
        build_ai_service(FrozenConfig(provider="mistral", groq_api_key="gsk"))
