"""Model invocation steps shared by every provider.

The orchestration client composes these: a single-pass or two-pass model
call, defensive metadata injection on the parsed response, and the one-shot
repair round-trip.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
import dataclasses
import json
import logging
import math
from typing import Any, NotRequired, Protocol, TypedDict, runtime_checkable

from span_labeler import prompts
from span_labeler.constants import (
    DEFAULT_TEMPERATURE,
    MAX_TOKEN_RESPONSE_LIMIT,
    SPAN_LABELING_OPERATION,
    TOKEN_ESTIMATION_BASE,
    TOKEN_ESTIMATION_PER_SPAN,
    TWO_PASS_REASONING_SHARE,
    TWO_PASS_STRUCTURING_SHARE,
)
from span_labeler.core.exceptions import RepairFailedError
from span_labeler.core.types import (
    Failure,
    LabelSpansResult,
    ModelResponse,
    ProcessingOptions,
    ProviderRequestOptions,
    Result,
    ValidationPolicy,
)
from span_labeler.parsing import (
    build_user_payload,
    format_validation_errors,
    parse_json,
)
from span_labeler.validation.position_cache import SubstringPositionCache
from span_labeler.validation.schema import validate_schema_or_throw
from span_labeler.validation.spans import LENIENT_ATTEMPT, validate_spans

logger = logging.getLogger(__name__)


# --- Service interface ---


class ChatMessage(TypedDict):
    """One entry of a chat-style message list."""

    role: str
    content: str


class ModelRequest(TypedDict):
    """Fields sent to ``AIService.execute``."""

    system_prompt: str
    max_tokens: int
    temperature: float
    json_mode: bool
    use_seed: bool
    logprobs: bool
    user_message: NotRequired[str]
    messages: NotRequired[list[ChatMessage]]
    schema: NotRequired[dict[str, Any]]
    developer_message: NotRequired[str]


class StreamRequest(TypedDict):
    """Fields sent to ``StreamingAIService.stream``."""

    system_prompt: str
    user_message: str
    max_tokens: int
    temperature: float
    on_chunk: Callable[[str], None]


@runtime_checkable
class AIService(Protocol):
    """Performs one model call for a named operation."""

    async def execute(  # noqa: D102
        self, operation: str, request: ModelRequest
    ) -> ModelResponse | Mapping[str, Any]: ...


@runtime_checkable
class StreamingAIService(AIService, Protocol):
    """An ``AIService`` that can also deliver output incrementally."""

    async def stream(self, operation: str, request: StreamRequest) -> None: ...  # noqa: D102


def estimate_max_tokens(max_spans: int) -> int:
    """Output token budget for a request allowing ``max_spans`` spans."""
    estimate = TOKEN_ESTIMATION_BASE + TOKEN_ESTIMATION_PER_SPAN * max_spans
    return min(estimate, MAX_TOKEN_RESPONSE_LIMIT)


# --- Single call ---


def _few_shot_messages(system_prompt: str, user_payload: str) -> list[ChatMessage]:
    try:
        payload = json.loads(user_payload)
    except ValueError as e:
        raise ValueError(
            f"Few-shot prompting requires a JSON user payload: {e}"
        ) from e
    if not isinstance(payload, dict):
        raise ValueError("Few-shot prompting requires a JSON object user payload")

    messages: list[ChatMessage] = [{"role": "system", "content": system_prompt}]
    for example_text, example_response in prompts.FEW_SHOT_EXAMPLES:
        example_payload = {
            **payload,
            "text": f"<user_input>\n{example_text}\n</user_input>",
        }
        messages.append(
            {"role": "user", "content": json.dumps(example_payload, ensure_ascii=False)}
        )
        messages.append({"role": "assistant", "content": json.dumps(example_response)})
    messages.append({"role": "user", "content": user_payload})
    return messages


async def call_model(
    *,
    system_prompt: str,
    user_payload: str,
    ai_service: AIService,
    max_tokens: int,
    provider_options: ProviderRequestOptions,
    schema: dict[str, Any] | None = None,
    temperature: float = DEFAULT_TEMPERATURE,
) -> ModelResponse:
    """Send one request and normalize whatever the service returns.

    Raises:
        ValueError: If few-shot prompting is requested with a user payload
            that is not a JSON object.
    """
    if provider_options.enable_bookending:
        system_prompt = prompts.bookend(system_prompt)

    request: ModelRequest = {
        "system_prompt": system_prompt,
        "max_tokens": max_tokens,
        "temperature": temperature,
        "json_mode": schema is None,
        "use_seed": provider_options.use_seed_from_config,
        "logprobs": provider_options.enable_logprobs,
    }
    if provider_options.use_few_shot:
        request["messages"] = _few_shot_messages(system_prompt, user_payload)
    else:
        request["user_message"] = user_payload
    if schema is not None:
        request["schema"] = schema
    if provider_options.developer_message:
        request["developer_message"] = provider_options.developer_message

    raw = await ai_service.execute(SPAN_LABELING_OPERATION, request)
    return ModelResponse.coerce(raw)


async def two_pass_extraction(
    *,
    system_prompt: str,
    user_payload: str,
    ai_service: AIService,
    max_tokens: int,
    provider_options: ProviderRequestOptions,
    supports_developer_role: bool,
    schema: dict[str, Any] | None = None,
    temperature: float = DEFAULT_TEMPERATURE,
) -> ModelResponse:
    """Reason in free text first, then structure that reasoning as JSON.

    The reasoning pass gets 60% of the token budget and no schema. The
    structuring pass gets the rest plus the schema. Providers with a
    developer role keep the original system prompt and receive the reasoning
    in the user payload; others receive it inside the system prompt.
    """
    reasoning = await call_model(
        system_prompt=prompts.build_reasoning_prompt(system_prompt),
        user_payload=user_payload,
        ai_service=ai_service,
        max_tokens=math.floor(max_tokens * TWO_PASS_REASONING_SHARE),
        provider_options=provider_options,
        temperature=temperature,
    )
    logger.debug("Two-pass reasoning produced %d chars", len(reasoning.text))

    structuring_options = provider_options.with_overrides(enable_bookending=True)
    if supports_developer_role:
        structuring_options = structuring_options.with_overrides(
            developer_message=prompts.STRUCTURING_DEVELOPER_MESSAGE
        )
        structuring_system = system_prompt
        structuring_payload = json.dumps(
            {"analysis": reasoning.text, "request": user_payload}, ensure_ascii=False
        )
    else:
        structuring_system = prompts.build_structuring_prompt(
            system_prompt, reasoning.text
        )
        structuring_payload = user_payload

    return await call_model(
        system_prompt=structuring_system,
        user_payload=structuring_payload,
        ai_service=ai_service,
        max_tokens=math.floor(max_tokens * TWO_PASS_STRUCTURING_SHARE),
        provider_options=structuring_options,
        schema=schema,
        temperature=temperature,
    )


# --- Response shaping ---


def inject_defensive_meta(
    value: Any,
    options: ProcessingOptions,
    nlp_spans_attempted: int | None = None,
    *,
    track_nlp_metrics: bool = True,
) -> None:
    """Fill in ``analysis_trace`` and ``meta`` when the model left them out.

    Mutates ``value`` in place. Valid existing fields are never overwritten;
    a non-string ``version`` or ``notes`` is replaced. Non-dict values are
    ignored.
    """
    if not value or not isinstance(value, dict):
        return

    if not isinstance(value.get("analysis_trace"), str):
        value["analysis_trace"] = ""

    meta = value.get("meta")
    if not isinstance(meta, dict):
        meta = {}
        value["meta"] = meta
    version = meta.get("version")
    if not isinstance(version, str) or not version.strip():
        meta["version"] = options.template_version
    if not isinstance(meta.get("notes"), str):
        meta["notes"] = ""

    if track_nlp_metrics and nlp_spans_attempted is not None:
        meta["nlpAttempted"] = True
        meta["nlpSpansFound"] = nlp_spans_attempted


def is_adversarial_response(value: Any) -> bool:
    """True when the response flags the input as an injection attempt."""
    if not isinstance(value, dict):
        return False
    return value.get("isAdversarial") is True or value.get("is_adversarial") is True


def response_spans(value: Any) -> list[Any]:
    """Span list of a parsed response; empty when absent or malformed."""
    spans = value.get("spans") if isinstance(value, dict) else None
    return spans if isinstance(spans, list) else []


# --- Repair ---


@dataclasses.dataclass(frozen=True, slots=True)
class RepairOutcome:
    """Validated result of the repair round-trip and its response metadata."""

    result: LabelSpansResult
    metadata: Mapping[str, Any]


def _identity(value: Any) -> Any:
    return value


async def attempt_repair(
    *,
    base_payload: Mapping[str, Any],
    validation_errors: tuple[str, ...] | list[str],
    original_response: Any,
    text: str,
    system_prompt: str,
    policy: ValidationPolicy,
    options: ProcessingOptions,
    ai_service: AIService,
    max_tokens: int,
    provider_options: ProviderRequestOptions,
    cache: SubstringPositionCache | None = None,
    schema: dict[str, Any] | None = None,
    parse_response_text: Callable[[str], Result[Any, Exception]] = parse_json,
    normalize: Callable[[Any], Any] = _identity,
    nlp_spans_attempted: int | None = None,
    track_nlp_metrics: bool = True,
    temperature: float = DEFAULT_TEMPERATURE,
) -> RepairOutcome:
    """Ask the model once to fix its own validation errors.

    The repaired response goes through parse, normalize, defensive meta,
    schema validation and lenient span validation.

    Raises:
        ResponseParseError: If the repaired text cannot be parsed.
        SchemaValidationError: If it violates the schema.
        RepairFailedError: If lenient validation still reports errors.
    """
    payload = build_user_payload(
        task=base_payload["task"],
        policy=base_payload["policy"],
        text=text,
        template_version=base_payload["template_version"],
        validation={
            "errors": list(validation_errors),
            "originalResponse": original_response,
            "instructions": prompts.REPAIR_INSTRUCTIONS,
        },
    )
    logger.debug("Requesting repair for %d validation errors", len(validation_errors))
    response = await call_model(
        system_prompt=f"{system_prompt}\n\n{prompts.REPAIR_SYSTEM_SUFFIX}",
        user_payload=payload,
        ai_service=ai_service,
        max_tokens=max_tokens,
        provider_options=provider_options,
        schema=schema,
        temperature=temperature,
    )

    parsed = parse_response_text(response.text)
    if isinstance(parsed, Failure):
        raise parsed.error
    value = normalize(parsed.value)
    inject_defensive_meta(
        value, options, nlp_spans_attempted, track_nlp_metrics=track_nlp_metrics
    )
    validate_schema_or_throw(value, schema)

    validation = validate_spans(
        spans=response_spans(value),
        meta=value.get("meta") if isinstance(value, dict) else None,
        text=text,
        policy=policy,
        options=options,
        attempt=LENIENT_ATTEMPT,
        cache=cache,
        is_adversarial=is_adversarial_response(value),
        analysis_trace=(value.get("analysis_trace") or None)
        if isinstance(value, dict)
        else None,
    )
    if not validation.ok:
        raise RepairFailedError(
            "Repair attempt failed validation:\n"
            + format_validation_errors(validation.errors),
            errors=validation.errors,
        )
    return RepairOutcome(result=validation.result, metadata=response.metadata)
