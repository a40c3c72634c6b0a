"""Chat-completions transport for Groq, Groq-hosted Qwen and OpenAI."""

from __future__ import annotations

import hashlib
import json
import logging
import math
from typing import Any

import httpx

from span_labeler.constants import DEFAULT_REQUEST_TIMEOUT, RETRYABLE_STATUS_CODES
from span_labeler.core.exceptions import APIError, ProviderTimeoutError
from span_labeler.core.types import ModelResponse
from span_labeler.invocation import ChatMessage, ModelRequest, StreamRequest
from span_labeler.validation.schema import SCHEMA_NAME

logger = logging.getLogger(__name__)

_SSE_DATA_PREFIX = "data:"
_SSE_DONE = "[DONE]"
_ERROR_BODY_PREVIEW_CHARS = 200


def seed_for_prompt(system_prompt: str) -> int:
    """Stable sampling seed derived from the system prompt."""
    digest = hashlib.sha256(system_prompt.encode("utf-8")).hexdigest()
    return int(digest[:8], 16)


def average_token_probability(logprobs: Any) -> float | None:
    """Mean of ``exp(logprob)`` over the response tokens, or None if absent."""
    if not isinstance(logprobs, dict):
        return None
    tokens = logprobs.get("content")
    if not isinstance(tokens, list):
        return None
    values = [
        token["logprob"]
        for token in tokens
        if isinstance(token, dict) and isinstance(token.get("logprob"), int | float)
    ]
    if not values:
        return None
    return sum(math.exp(value) for value in values) / len(values)


class OpenAICompatibleAIService:
    """``AIService`` for any OpenAI-style ``/chat/completions`` endpoint.

    Groq requests in JSON mode are prefilled with an assistant ``{`` instead
    of ``response_format``; the brace is restored on the returned text.
    """

    def __init__(
        self,
        *,
        provider: str,
        api_key: str,
        model: str,
        base_url: str,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.provider = provider
        self.model = model
        self._endpoint = f"{base_url.rstrip('/')}/chat/completions"
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        """Close the HTTP client if this service created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> OpenAICompatibleAIService:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # --- Request building ---

    def _uses_prefill(self, request: ModelRequest) -> bool:
        return self.provider == "groq" and request["json_mode"]

    def _messages(self, request: ModelRequest) -> list[ChatMessage]:
        if "messages" in request:
            messages = list(request["messages"])
        else:
            messages = [
                {"role": "system", "content": request["system_prompt"]},
                {"role": "user", "content": request.get("user_message", "")},
            ]
        if request.get("developer_message"):
            developer: ChatMessage = {
                "role": "developer",
                "content": request["developer_message"],
            }
            messages.insert(1, developer)
        if self._uses_prefill(request):
            messages.append({"role": "assistant", "content": "{"})
        return messages

    def _body(self, request: ModelRequest) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self.model,
            "messages": self._messages(request),
            "temperature": request["temperature"],
        }
        if self.provider == "openai":
            body["max_completion_tokens"] = request["max_tokens"]
        else:
            body["max_tokens"] = request["max_tokens"]
        if request["use_seed"]:
            body["seed"] = seed_for_prompt(request["system_prompt"])
        if request["logprobs"]:
            body["logprobs"] = True
        if "schema" in request:
            body["response_format"] = {
                "type": "json_schema",
                "json_schema": {
                    "name": SCHEMA_NAME,
                    "schema": request["schema"],
                    "strict": self.provider == "openai",
                },
            }
        elif request["json_mode"] and not self._uses_prefill(request):
            body["response_format"] = {"type": "json_object"}
        return body

    def _optimizations(self, request: ModelRequest) -> list[str]:
        applied = []
        if "messages" in request:
            applied.append("few_shot")
        if request.get("developer_message"):
            applied.append("developer_role")
        if self._uses_prefill(request):
            applied.append("json_prefill")
        if request["use_seed"]:
            applied.append("seed")
        if request["logprobs"]:
            applied.append("logprobs")
        if "schema" in request:
            applied.append("json_schema")
        return applied

    # --- Transport ---

    def _raise_for_status(self, response: httpx.Response) -> None:
        if response.status_code < 400:
            return
        preview = response.text[:_ERROR_BODY_PREVIEW_CHARS]
        raise APIError(
            f"{self.provider} API error {response.status_code}: {preview}",
            status_code=response.status_code,
            retryable=response.status_code in RETRYABLE_STATUS_CODES,
        )

    async def execute(self, operation: str, request: ModelRequest) -> ModelResponse:
        """Send one chat-completions request."""
        body = self._body(request)
        logger.debug(
            "%s request for %s (model=%s, max_tokens=%s)",
            self.provider,
            operation,
            self.model,
            request["max_tokens"],
        )
        try:
            response = await self._client.post(
                self._endpoint, headers=self._headers, json=body
            )
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(f"{self.provider} request timed out") from e
        except httpx.HTTPError as e:
            raise APIError(
                f"{self.provider} request failed: {e}", retryable=True
            ) from e
        self._raise_for_status(response)

        try:
            data = response.json()
            choice = data["choices"][0]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise APIError(f"{self.provider} returned a malformed completion") from e

        text = (choice.get("message") or {}).get("content") or ""
        if self._uses_prefill(request) and not text.lstrip().startswith("{"):
            text = "{" + text

        metadata: dict[str, Any] = {
            "provider": self.provider,
            "optimizations": self._optimizations(request),
            "finishReason": choice.get("finish_reason"),
            "usage": data.get("usage") or {},
        }
        average = average_token_probability(choice.get("logprobs"))
        if average is not None:
            metadata["average_confidence"] = average
        return ModelResponse(text=text, metadata=metadata)

    async def stream(self, operation: str, request: StreamRequest) -> None:
        """Stream a completion, passing each content delta to ``on_chunk``."""
        body = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": request["system_prompt"]},
                {"role": "user", "content": request["user_message"]},
            ],
            "temperature": request["temperature"],
            "max_tokens": request["max_tokens"],
            "stream": True,
        }
        on_chunk = request["on_chunk"]
        logger.debug("%s streaming request for %s", self.provider, operation)
        try:
            async with self._client.stream(
                "POST", self._endpoint, headers=self._headers, json=body
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    self._raise_for_status(response)
                async for line in response.aiter_lines():
                    if not line.startswith(_SSE_DATA_PREFIX):
                        continue
                    payload = line[len(_SSE_DATA_PREFIX) :].strip()
                    if payload == _SSE_DONE:
                        break
                    try:
                        event = json.loads(payload)
                    except ValueError:
                        logger.debug("Skipping malformed SSE event: %.80s", payload)
                        continue
                    for choice in event.get("choices") or []:
                        delta = (choice.get("delta") or {}).get("content")
                        if delta:
                            on_chunk(delta)
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(f"{self.provider} stream timed out") from e
        except httpx.HTTPError as e:
            raise APIError(f"{self.provider} stream failed: {e}", retryable=True) from e
