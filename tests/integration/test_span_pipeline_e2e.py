"""Configuration, client and HTTP service wired together over a mock transport."""

import json

import httpx
import pytest

from span_labeler import LlmSpanParams, create_llm_client, load_config
from span_labeler.core.exceptions import APIError
from span_labeler.services import OpenAICompatibleAIService

pytestmark = pytest.mark.integration

SOURCE = "A red car drives through neon rain at night"


def _answer(*spans, adversarial=False):
    return json.dumps(
        {
            "analysis_trace": "vehicle is the subject; weather sets the mood",
            "spans": [
                {"text": text, "role": role, "confidence": 0.9}
                for text, role in spans
            ],
            "meta": {"version": "v3", "notes": ""},
            "isAdversarial": adversarial,
        }
    )


def _completion(content):
    return httpx.Response(
        200,
        json={
            "choices": [
                {
                    "message": {"role": "assistant", "content": content},
                    "finish_reason": "stop",
                }
            ],
            "usage": {"total_tokens": 42},
        },
    )


class _ScriptedEndpoint:
    def __init__(self, *responses):
        self._responses = list(responses)
        self.bodies = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.bodies.append(json.loads(request.content))
        return self._responses.pop(0)


def _wire(config, endpoint):
    client = create_llm_client(config)
    service = OpenAICompatibleAIService(
        provider=client.provider_name,
        api_key="test-key",
        model=config.model,
        base_url="https://llm.test/v1",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(endpoint)),
    )
    return client, service


@pytest.mark.asyncio
async def test_groq_request_round_trip():
    config = load_config(model="llama-3.1-8b-instant", groq_api_key="test-key")
    endpoint = _ScriptedEndpoint(
        _completion(
            _answer(("red car", "subject.identity"), ("neon rain", "environment.weather"))
        )
    )
    client, service = _wire(config, endpoint)

    result = await client.get_spans(LlmSpanParams(text=SOURCE, ai_service=service))

    assert [(s["text"], s["start"], s["end"]) for s in result.spans] == [
        ("red car", 2, 9),
        ("neon rain", 25, 34),
    ]
    (body,) = endpoint.bodies
    assert body["model"] == "llama-3.1-8b-instant"
    assert body["response_format"]["type"] == "json_schema"
    assert body["logprobs"] is True
    assert client.last_response_metadata["usage"] == {"total_tokens": 42}


@pytest.mark.asyncio
async def test_openai_repair_round_trip():
    config = load_config(
        provider="openai", model="gpt-4o", openai_api_key="k", enable_repair=True
    )
    endpoint = _ScriptedEndpoint(
        _completion(_answer(("blue bus", "subject.identity"))),
        _completion(_answer(("red car", "subject.identity"))),
    )
    client, service = _wire(config, endpoint)

    result = await client.get_spans(LlmSpanParams(text=SOURCE, ai_service=service))

    assert [s["text"] for s in result.spans] == ["red car"]
    assert len(endpoint.bodies) == 2
    repair_payload = json.loads(endpoint.bodies[1]["messages"][-1]["content"])
    assert repair_payload["validation"]["errors"] == [
        'span[0] text "blue bus" not found in source'
    ]


@pytest.mark.asyncio
async def test_provider_errors_propagate():
    config = load_config(model="llama-3.1-8b-instant")
    endpoint = _ScriptedEndpoint(httpx.Response(503, text="overloaded"))
    client, service = _wire(config, endpoint)

    with pytest.raises(APIError, match="503") as exc_info:
        await client.get_spans(LlmSpanParams(text=SOURCE, ai_service=service))
    assert exc_info.value.retryable is True
