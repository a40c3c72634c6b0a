"""Gemini transport built on the google-genai SDK"""  # noqa: D415

from __future__ import annotations

import logging
from typing import Any

from google import genai
from google.genai import errors, types
import httpx

from span_labeler.constants import DEFAULT_REQUEST_TIMEOUT, RETRYABLE_STATUS_CODES
from span_labeler.core.exceptions import APIError, ProviderTimeoutError
from span_labeler.core.types import ModelResponse
from span_labeler.invocation import ChatMessage, ModelRequest, StreamRequest

logger = logging.getLogger(__name__)

# Chat roles mapped onto Gemini content roles
_CONTENT_ROLES = {"user": "user", "assistant": "model"}


def _split_messages(
    messages: list[ChatMessage],
) -> tuple[list[str], list[types.Content]]:
    """Separate system/developer text from the conversational turns."""
    instructions: list[str] = []
    contents: list[types.Content] = []
    for message in messages:
        role = _CONTENT_ROLES.get(message["role"])
        if role is None:
            instructions.append(message["content"])
        else:
            contents.append(
                types.Content(role=role, parts=[types.Part(text=message["content"])])
            )
    return instructions, contents


def _usage(response: Any) -> dict[str, Any]:
    usage = getattr(response, "usage_metadata", None)
    if usage is None:
        return {}
    return {
        "prompt_tokens": getattr(usage, "prompt_token_count", None),
        "completion_tokens": getattr(usage, "candidates_token_count", None),
        "total_tokens": getattr(usage, "total_token_count", None),
    }


def _finish_reason(response: Any) -> str | None:
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return None
    reason = getattr(candidates[0], "finish_reason", None)
    return getattr(reason, "name", reason)


class GeminiAIService:
    """``AIService`` backed by ``client.aio.models`` of google-genai.

    A pre-built ``genai.Client`` may be injected; otherwise one is created
    from ``api_key`` with the request timeout applied.
    """

    def __init__(
        self,
        *,
        model: str,
        api_key: str | None = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        client: genai.Client | None = None,
    ) -> None:
        self.model = model
        self._client = client or genai.Client(
            api_key=api_key,
            http_options=types.HttpOptions(timeout=int(timeout * 1000)),
        )

    def _config(
        self,
        *,
        system_instruction: str,
        max_tokens: int,
        temperature: float,
        json_mode: bool = False,
        schema: dict[str, Any] | None = None,
    ) -> types.GenerateContentConfig:
        config = types.GenerateContentConfig(
            system_instruction=system_instruction,
            max_output_tokens=max_tokens,
            temperature=temperature,
        )
        if schema is not None:
            config.response_mime_type = "application/json"
            config.response_json_schema = schema
        elif json_mode:
            config.response_mime_type = "application/json"
        return config

    def _contents(self, request: ModelRequest) -> tuple[str, list[types.Content]]:
        instructions = [request["system_prompt"]]
        if "messages" in request:
            extra, contents = _split_messages(request["messages"])
            instructions.extend(
                text for text in extra if text != request["system_prompt"]
            )
        else:
            contents = [
                types.Content(
                    role="user",
                    parts=[types.Part(text=request.get("user_message", ""))],
                )
            ]
        if request.get("developer_message"):
            instructions.append(request["developer_message"])
        return "\n\n".join(instructions), contents

    def _wrap_error(self, error: Exception) -> Exception:
        if isinstance(error, httpx.TimeoutException):
            return ProviderTimeoutError("gemini request timed out")
        if isinstance(error, errors.APIError):
            code = error.code if isinstance(error.code, int) else None
            return APIError(
                f"gemini API error {code}: {error.message or error}",
                status_code=code,
                retryable=code in RETRYABLE_STATUS_CODES,
            )
        return APIError(f"gemini request failed: {error}")

    async def execute(self, operation: str, request: ModelRequest) -> ModelResponse:
        """Run one ``generate_content`` call."""
        system_instruction, contents = self._contents(request)
        config = self._config(
            system_instruction=system_instruction,
            max_tokens=request["max_tokens"],
            temperature=request["temperature"],
            json_mode=request["json_mode"],
            schema=request.get("schema"),
        )
        logger.debug("gemini request for %s (model=%s)", operation, self.model)
        try:
            response = await self._client.aio.models.generate_content(
                model=self.model, contents=contents, config=config
            )
        except (errors.APIError, httpx.HTTPError) as e:
            raise self._wrap_error(e) from e

        return ModelResponse(
            text=response.text or "",
            metadata={
                "provider": "gemini",
                "finishReason": _finish_reason(response),
                "usage": _usage(response),
            },
        )

    async def stream(self, operation: str, request: StreamRequest) -> None:
        """Stream ``generate_content`` output into ``on_chunk``."""
        config = self._config(
            system_instruction=request["system_prompt"],
            max_tokens=request["max_tokens"],
            temperature=request["temperature"],
        )
        on_chunk = request["on_chunk"]
        logger.debug(
            "gemini streaming request for %s (model=%s)", operation, self.model
        )
        try:
            stream = await self._client.aio.models.generate_content_stream(
                model=self.model, contents=request["user_message"], config=config
            )
            async for chunk in stream:
                if chunk.text:
                    on_chunk(chunk.text)
        except (errors.APIError, httpx.HTTPError) as e:
            raise self._wrap_error(e) from e
