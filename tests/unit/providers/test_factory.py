"""Provider selection in ``create_llm_client``."""

import os
from unittest.mock import patch

import pytest

from span_labeler.client import RobustLlmClient
from span_labeler.config import FrozenConfig
from span_labeler.core.types import LlmSpanParams
from span_labeler.providers import DEFAULT_PROFILE, GEMINI_PROFILE, GROQ_PROFILE
from span_labeler.providers.factory import (
    DEFAULT_PROVIDER,
    create_llm_client,
    detect_provider,
    get_current_span_provider,
)
from span_labeler.telemetry import InMemoryReporter, TelemetryContext

pytestmark = pytest.mark.unit


@pytest.mark.parametrize(
    ("model", "expected"),
    [
        ("gemini-2.0-pro", "gemini"),
        ("qwen/qwen3-32b", "qwen"),
        ("gpt-4o-mini", "openai"),
        ("o3-mini", "openai"),
        ("llama-3.1-8b-instant", "groq"),
        ("moonshotai/kimi-k2-instruct", "groq"),
        ("claude-something", None),
        (None, None),
    ],
)
def test_detect_provider(model, expected):
    assert detect_provider(model) == expected


def test_explicit_provider_wins_over_model():
    config = FrozenConfig(provider="openai", model="gemini-2.5-flash")
    assert get_current_span_provider(config) == "openai"


def test_unrecognized_model_falls_back_to_default():
    assert get_current_span_provider(FrozenConfig(model="mystery")) == DEFAULT_PROVIDER


class TestCreateLlmClient:
    def test_default_environment_selects_groq(self):
        client = create_llm_client()

        assert isinstance(client, RobustLlmClient)
        assert client.profile is GROQ_PROFILE

    def test_gemini_model_from_environment(self):
        with patch.dict(os.environ, {"SPAN_MODEL": "gemini-2.0-pro"}):
            client = create_llm_client()

        assert client.profile is GEMINI_PROFILE

    def test_labeling_provider_environment_override(self):
        with patch.dict(
            os.environ,
            {"SPAN_LABELING_PROVIDER": "gemini", "SPAN_MODEL": "llama-3.1-8b-instant"},
        ):
            client = create_llm_client()

        assert client.provider_name == "gemini"

    def test_unknown_provider_gets_default_profile(self, caplog):
        with caplog.at_level("WARNING", logger="span_labeler.providers.factory"):
            client = create_llm_client(FrozenConfig(provider="mistral"))

        assert client.profile is DEFAULT_PROFILE
        assert client.client_label == "RobustLlmClient"
        assert "Unknown span labeling provider 'mistral'" in caplog.text

    def test_provider_argument_overrides_config(self):
        client = create_llm_client(FrozenConfig(provider="groq"), provider="Gemini")
        assert client.profile is GEMINI_PROFILE

    @pytest.mark.asyncio
    async def test_config_and_telemetry_reach_the_client(self, fake_service):
        reporter = InMemoryReporter()
        client = create_llm_client(
            FrozenConfig(provider="gemini", temperature=0.4),
            telemetry=TelemetryContext(reporter),
        )
        service = fake_service('[{"text": "dog", "role": "subject.identity"}]')

        await client.get_spans(LlmSpanParams(text="a dog", ai_service=service))

        assert service.requests[0]["temperature"] == 0.4
        assert "span_labeling" in reporter.timings
