"""Unit tests for configuration resolution.

These tests verify the core behaviors of the configuration module:
- Loading settings from ``SPAN_*`` and vendor environment variables.
- Layering programmatic overrides above the environment and ``.env`` files.
- Tracking where each value came from, with secrets redacted in output.
"""

import os
from unittest.mock import patch

import pytest

from span_labeler.config import FrozenConfig, load_config, resolve_config
from span_labeler.core.exceptions import ConfigurationError

pytestmark = pytest.mark.unit


class TestEnvironmentResolution:
    """Reading configuration from the process environment."""

    def test_defaults_without_environment(self):
        resolved = resolve_config()

        assert resolved.provider is None
        assert resolved.model is None
        assert resolved.max_spans == 60
        assert resolved.enable_repair is False
        assert set(resolved.origin.values()) == {"default"}

    def test_prefixed_variables_are_read(self):
        with patch.dict(
            os.environ,
            {
                "SPAN_MODEL": "llama-3.1-8b-instant",
                "SPAN_MAX_SPANS": "25",
                "SPAN_ENABLE_REPAIR": "true",
                "SPAN_MIN_CONFIDENCE": "0.3",
            },
        ):
            resolved = resolve_config()

        assert resolved.model == "llama-3.1-8b-instant"
        assert resolved.max_spans == 25
        assert resolved.enable_repair is True
        assert resolved.min_confidence == 0.3
        assert resolved.origin["max_spans"] == "env"

    def test_labeling_provider_alias_wins(self):
        """``SPAN_LABELING_PROVIDER`` is checked before ``SPAN_PROVIDER``."""
        with patch.dict(
            os.environ,
            {"SPAN_LABELING_PROVIDER": " Gemini ", "SPAN_PROVIDER": "groq"},
        ):
            resolved = resolve_config()

        assert resolved.provider == "gemini"

    def test_vendor_key_variables_are_accepted(self):
        with patch.dict(
            os.environ, {"GROQ_API_KEY": "gsk-vendor", "SPAN_OPENAI_API_KEY": "sk-1"}
        ):
            resolved = resolve_config()

        assert resolved.groq_api_key == "gsk-vendor"
        assert resolved.openai_api_key == "sk-1"
        assert resolved.origin["groq_api_key"] == "env"

    def test_blank_model_is_unset(self):
        with patch.dict(os.environ, {"SPAN_MODEL": "   "}):
            assert resolve_config().model is None

    def test_invalid_environment_value_raises(self):
        with (
            patch.dict(os.environ, {"SPAN_MAX_SPANS": "500"}),
            pytest.raises(ConfigurationError, match="Environment configuration error"),
        ):
            resolve_config()


class TestPrecedence:
    """Defaults < .env file < environment < programmatic."""

    def test_programmatic_overrides_environment(self):
        with patch.dict(os.environ, {"SPAN_MODEL": "env-model"}):
            resolved = resolve_config({"model": "explicit-model", "unknown": 1})

        assert resolved.model == "explicit-model"
        assert resolved.origin["model"] == "programmatic"
        assert "unknown" not in resolved.origin

    def test_env_file_sits_beneath_environment(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text(
            "SPAN_MODEL=file-model\nSPAN_TEMPLATE_VERSION=v8\nGEMINI_API_KEY=file-key\n"
        )

        with patch.dict(os.environ, {"SPAN_MODEL": "env-model"}):
            resolved = resolve_config(env_file=env_file)

        assert resolved.model == "env-model"
        assert resolved.origin["model"] == "env"
        assert resolved.template_version == "v8"
        assert resolved.origin["template_version"] == "file"
        assert resolved.gemini_api_key == "file-key"

    def test_missing_env_file_raises(self, tmp_path):
        with pytest.raises(ConfigurationError, match="Environment file not found"):
            resolve_config(env_file=tmp_path / "missing.env")

    def test_invalid_override_raises(self):
        with pytest.raises(ConfigurationError, match="Configuration validation failed"):
            resolve_config({"temperature": 5})

    def test_with_overrides_marks_programmatic(self):
        resolved = resolve_config().with_overrides(provider="openai", bogus=True)

        assert resolved.provider == "openai"
        assert resolved.origin["provider"] == "programmatic"

    def test_load_config_returns_frozen(self):
        config = load_config(provider="gemini", max_spans=10)

        assert isinstance(config, FrozenConfig)
        assert config.provider == "gemini"
        assert config.max_spans == 10
        with pytest.raises(AttributeError):
            config.max_spans = 20  # type: ignore[misc]


class TestSecrets:
    """API keys never appear in string output."""

    def test_resolved_config_redacts_keys(self):
        resolved = resolve_config({"groq_api_key": "gsk-secret"})

        assert "gsk-secret" not in str(resolved)
        assert "gsk-secret" not in repr(resolved)
        assert "[REDACTED]" in str(resolved)

    def test_frozen_config_redacts_keys(self):
        config = FrozenConfig(openai_api_key="sk-secret")
        assert "sk-secret" not in repr(config)

    def test_audit_lists_origins(self):
        with patch.dict(os.environ, {"SPAN_MODEL": "env-model"}):
            resolved = resolve_config({"gemini_api_key": "key"})

        audit = resolved.audit().splitlines()
        assert "model: env:SPAN_MODEL=env-model" in audit
        assert "gemini_api_key: programmatic:[REDACTED]" in audit
        assert "groq_api_key: default:None" in audit
        assert "max_spans: default:60" in audit

    @pytest.mark.parametrize(
        ("provider", "expected"),
        [("groq", "g"), ("qwen", "g"), ("openai", "o"), ("gemini", None)],
    )
    def test_api_key_for_provider(self, provider, expected):
        config = FrozenConfig(groq_api_key="g", openai_api_key="o")
        assert config.api_key_for(provider) == expected
