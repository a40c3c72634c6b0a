"""
Global test configuration and shared fakes.
"""

from collections.abc import Callable, Iterable
import logging
import os
from typing import Any

import pytest

from span_labeler.core.types import ModelResponse

_VENDOR_KEY_VARS = ("GEMINI_API_KEY", "GROQ_API_KEY", "OPENAI_API_KEY")


def pytest_configure(config):
    """Configure custom markers for test organization."""
    markers = [
        "unit: Fast, isolated unit tests",
        "contract: Protocol and interface conformance tests",
        "integration: Component integration tests with fake model services",
        "allow_env_pollution: Keep the real SPAN_* environment for this test",
    ]
    for marker in markers:
        config.addinivalue_line("markers", marker)


# --- Environment Isolation (Autouse) ---
@pytest.fixture(autouse=True)
def isolate_span_env(request, monkeypatch):
    """Ensure a clean SPAN_* environment for each test.

    Removes SPAN_* variables, the vendor API key variables and the telemetry
    toggles. Mark a test with @pytest.mark.allow_env_pollution to keep the
    current environment.
    """
    if request.node.get_closest_marker("allow_env_pollution"):
        return

    for key in list(os.environ.keys()):
        if key.startswith("SPAN_"):
            monkeypatch.delenv(key, raising=False)
    for key in _VENDOR_KEY_VARS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.delenv("DEBUG", raising=False)


# --- Fake model services ---


class FakeAIService:
    """Scripted ``AIService`` that records every request.

    Each ``execute`` call consumes the next scripted reply. A reply may be a
    string, a mapping, a ``ModelResponse`` or an exception to raise.
    """

    def __init__(self, replies: Iterable[Any]):
        self._replies = list(replies)
        self.calls: list[tuple[str, dict[str, Any]]] = []

    @property
    def requests(self) -> list[dict[str, Any]]:
        return [request for _, request in self.calls]

    async def execute(self, operation: str, request: dict[str, Any]) -> Any:
        self.calls.append((operation, dict(request)))
        if not self._replies:
            raise AssertionError("FakeAIService ran out of scripted replies")
        reply = self._replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class FakeStreamingAIService(FakeAIService):
    """Fake service whose ``stream`` pushes scripted chunks, then optionally fails."""

    def __init__(
        self,
        chunks: Iterable[str],
        *,
        error: Exception | None = None,
        replies: Iterable[Any] = (),
    ):
        super().__init__(replies)
        self.chunks = list(chunks)
        self.error = error
        self.stream_calls: list[tuple[str, dict[str, Any]]] = []

    async def stream(self, operation: str, request: dict[str, Any]) -> None:
        self.stream_calls.append((operation, dict(request)))
        for chunk in self.chunks:
            request["on_chunk"](chunk)
        if self.error is not None:
            raise self.error


@pytest.fixture
def fake_service() -> Callable[..., FakeAIService]:
    """Factory for scripted AI services: ``fake_service(reply1, reply2, ...)``."""

    def _make(*replies: Any) -> FakeAIService:
        return FakeAIService(replies)

    return _make


@pytest.fixture
def fake_streaming_service() -> Callable[..., FakeStreamingAIService]:
    """Factory for streaming fakes: ``fake_streaming_service(chunks, error=...)``."""

    def _make(
        chunks: Iterable[str], *, error: Exception | None = None
    ) -> FakeStreamingAIService:
        return FakeStreamingAIService(chunks, error=error)

    return _make


@pytest.fixture
def model_response() -> Callable[..., ModelResponse]:
    """Build a ``ModelResponse`` with optional metadata."""

    def _make(text: str, **metadata: Any) -> ModelResponse:
        return ModelResponse(text=text, metadata=metadata)

    return _make


# --- Logging Fixtures ---
@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Sets the log level for noisy external libraries to WARNING."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
