"""Concrete services and test fakes honor the model-service protocols."""

from types import SimpleNamespace

import pytest

from span_labeler.invocation import AIService, StreamingAIService
from span_labeler.services import GeminiAIService, OpenAICompatibleAIService

pytestmark = pytest.mark.contract


def test_gemini_service_streams():
    service = GeminiAIService(model="gemini-2.5-flash", client=SimpleNamespace())
    assert isinstance(service, StreamingAIService)


def test_openai_compatible_service_streams():
    service = OpenAICompatibleAIService(
        provider="groq", api_key="k", model="m", base_url="https://llm.test/v1"
    )
    assert isinstance(service, StreamingAIService)


def test_fakes_match_the_services_they_stand_in_for(
    fake_service, fake_streaming_service
):
    plain = fake_service()
    assert isinstance(plain, AIService)
    assert not isinstance(plain, StreamingAIService)
    assert isinstance(fake_streaming_service([]), StreamingAIService)
