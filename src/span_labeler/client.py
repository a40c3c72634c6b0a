"""Orchestration client: try, validate, repair.

``RobustLlmClient`` runs one span labeling request through a fixed sequence:
build the request from the provider profile, call the model (single or
two-pass), parse, fill in defensive metadata, validate against the schema
and then against the span rules. A request ends in one of four ways:

- strict success: the first validation passes;
- lenient fallback: strict validation fails, repair is off, and the lenient
  pass returns whatever survives;
- repair success: one repair round-trip passes lenient validation;
- fatal error: unparseable output, a schema violation, or a failed repair.

The provider profile's post-processor runs on every non-fatal outcome.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Mapping
import dataclasses
import logging
from typing import Any

from span_labeler import prompts
from span_labeler.config.types import FrozenConfig
from span_labeler.constants import (
    NOTES_PREVIEW_CHARS,
    SPAN_LABELING_OPERATION,
    SPAN_SAMPLE_TEXT_CHARS,
)
from span_labeler.core.exceptions import StreamingNotSupportedError
from span_labeler.core.types import (
    Failure,
    LabelSpansResult,
    LlmSpanParams,
    ModelResponse,
    ProcessingOptions,
    Span,
    ValidationPolicy,
)
from span_labeler.invocation import (
    StreamingAIService,
    StreamRequest,
    attempt_repair,
    call_model,
    estimate_max_tokens,
    inject_defensive_meta,
    is_adversarial_response,
    response_spans,
    two_pass_extraction,
)
from span_labeler.parsing import build_user_payload
from span_labeler.providers.base import ProviderProfile
from span_labeler.providers.profiles import DEFAULT_PROFILE
from span_labeler.streaming import ChunkChannel, stream_spans_from
from span_labeler.telemetry import TelemetryContext, TelemetryContextProtocol
from span_labeler.validation.schema import build_span_schema, validate_schema_or_throw
from span_labeler.validation.spans import (
    LENIENT_ATTEMPT,
    STRICT_ATTEMPT,
    validate_spans,
)

logger = logging.getLogger(__name__)

_SAMPLE_SIZE = 3


def uses_two_pass(model: str | None) -> bool:
    """True for "mini" models that struggle to reason and structure at once."""
    if not model:
        return False
    name = model.lower()
    return "gpt-4o-mini" in name or ("mini" in name and "gemini" not in name)


@dataclasses.dataclass(frozen=True, slots=True)
class _PreparedRequest:
    policy: ValidationPolicy
    options: ProcessingOptions
    schema: dict[str, Any] | None
    system_prompt: str
    base_payload: dict[str, Any]
    user_payload: str
    max_tokens: int


class RobustLlmClient:
    """Span labeling client parameterized by a provider profile.

    Args:
        profile: Vendor capabilities and hooks; the default profile sends
            plain JSON-mode requests with no provider-specific handling.
        config: Frozen configuration supplying the model name, sampling
            temperature and request defaults.
        telemetry: Telemetry context; defaults to ``TelemetryContext()``.
    """

    def __init__(
        self,
        profile: ProviderProfile | None = None,
        *,
        config: FrozenConfig | None = None,
        telemetry: TelemetryContextProtocol | None = None,
    ):
        self._profile = profile or DEFAULT_PROFILE
        self._config = config or FrozenConfig()
        self._telemetry = telemetry if telemetry is not None else TelemetryContext()
        self._last_response_metadata: dict[str, Any] = {}

    @property
    def profile(self) -> ProviderProfile:
        """Provider profile driving request shaping and post-processing."""
        return self._profile

    @property
    def provider_name(self) -> str:
        """Name of the provider this client talks to."""
        return self._profile.name

    @property
    def client_label(self) -> str:
        """Label stamped into ``meta._clientType`` (e.g. ``GroqLlmClient``)."""
        return self._profile.client_label

    @property
    def last_response_metadata(self) -> Mapping[str, Any]:
        """Metadata of the most recent model response (repair wins over primary)."""
        return self._last_response_metadata

    def __repr__(self) -> str:
        return (
            f"RobustLlmClient(provider={self.provider_name!r}, "
            f"model={self._config.model!r})"
        )

    # --- Request preparation ---

    def _prepare(
        self, params: LlmSpanParams, *, streaming: bool = False
    ) -> _PreparedRequest:
        profile = self._profile
        policy = params.policy
        options = params.options or ProcessingOptions.sanitize(
            {
                "max_spans": self._config.max_spans,
                "min_confidence": self._config.min_confidence,
                "template_version": self._config.template_version,
            }
        )
        if profile.disable_word_limit:
            policy = dataclasses.replace(policy, non_technical_word_limit=0)
        if profile.min_confidence_ceiling is not None:
            ceiling = profile.min_confidence_ceiling
            options = dataclasses.replace(
                options, min_confidence=min(options.min_confidence, ceiling)
            )

        schema = (
            build_span_schema(profile.name)
            if profile.supports_schema and not streaming
            else None
        )
        system_prompt = prompts.build_system_prompt(
            provider=profile.name,
            has_schema=schema is not None,
            template_version=options.template_version,
        )
        if streaming:
            system_prompt = prompts.build_streaming_prompt(system_prompt)

        base_payload = {
            "task": prompts.build_task_description(options.max_spans, policy),
            "policy": policy.to_dict(),
            "template_version": options.template_version,
        }
        user_payload = (
            params.text
            if profile.send_raw_text
            else build_user_payload(text=params.text, **base_payload)
        )
        return _PreparedRequest(
            policy=policy,
            options=options,
            schema=schema,
            system_prompt=system_prompt,
            base_payload=base_payload,
            user_payload=user_payload,
            max_tokens=profile.max_tokens or estimate_max_tokens(options.max_spans),
        )

    # --- Logging helpers ---

    def _log_raw_sample(self, value: Any) -> None:
        spans = response_spans(value)
        missing_text = sum(
            1 for s in spans if not isinstance(s, dict) or not s.get("text")
        )
        missing_role = sum(
            1 for s in spans if not isinstance(s, dict) or not s.get("role")
        )
        samples = [
            {
                "text": str(s.get("text", ""))[:SPAN_SAMPLE_TEXT_CHARS],
                "role": s.get("role"),
                "confidence": s.get("confidence"),
            }
            for s in spans[:_SAMPLE_SIZE]
            if isinstance(s, dict)
        ]
        logger.debug(
            "%s parsed %d raw spans (missing text: %d, missing role: %d); sample=%s",
            self.client_label,
            len(spans),
            missing_text,
            missing_role,
            samples,
        )

    def _log_stage(self, stage: str, raw_count: int, result: LabelSpansResult) -> None:
        notes = str(result.meta.get("notes", ""))
        logger.debug(
            "%s %s: raw=%d final=%d notes=%s",
            self.client_label,
            stage,
            raw_count,
            len(result.spans),
            notes[:NOTES_PREVIEW_CHARS],
            extra={"provider": self.provider_name, "stage": stage},
        )

    # --- Public API ---

    async def _invoke(
        self, params: LlmSpanParams, request: _PreparedRequest
    ) -> ModelResponse:
        provider_options = self._profile.request_options
        if uses_two_pass(self._config.model) and request.schema is not None:
            logger.debug("Using two-pass extraction for model %s", self._config.model)
            return await two_pass_extraction(
                system_prompt=request.system_prompt,
                user_payload=request.user_payload,
                ai_service=params.ai_service,
                max_tokens=request.max_tokens,
                provider_options=provider_options,
                supports_developer_role=self._profile.supports_developer_role,
                schema=request.schema,
                temperature=self._config.temperature,
            )
        return await call_model(
            system_prompt=request.system_prompt,
            user_payload=request.user_payload,
            ai_service=params.ai_service,
            max_tokens=request.max_tokens,
            provider_options=provider_options,
            schema=request.schema,
            temperature=self._config.temperature,
        )

    async def get_spans(self, params: LlmSpanParams) -> LabelSpansResult:
        """Label spans in ``params.text``.

        Returns:
            The validated (possibly lenient or repaired) result after the
            provider's post-processing.

        Raises:
            ResponseParseError: If the primary or repair response cannot be
                parsed.
            SchemaValidationError: If a parsed response violates the schema.
            RepairFailedError: If the repair response still fails validation.
        """
        profile = self._profile
        request = self._prepare(params)
        enable_repair = (
            params.enable_repair
            if params.enable_repair is not None
            else self._config.enable_repair
        )

        with self._telemetry("span_labeling", provider=profile.name) as tele:
            with tele("primary"):
                response = await self._invoke(params, request)
            self._last_response_metadata = dict(response.metadata)

            parsed = profile.parse_response_text(response.text)
            if isinstance(parsed, Failure):
                logger.warning(
                    "%s could not parse model output (%d chars)",
                    self.client_label,
                    len(response.text),
                )
                raise parsed.error
            value = profile.normalize(parsed.value)
            if profile.verbose_debug:
                self._log_raw_sample(value)

            inject_defensive_meta(
                value,
                request.options,
                params.nlp_spans_attempted,
                track_nlp_metrics=self._config.track_nlp_metrics,
            )
            validate_schema_or_throw(value, request.schema)

            raw_spans = response_spans(value)
            meta = value.get("meta") if isinstance(value, dict) else None
            analysis_trace = (
                (value.get("analysis_trace") or None)
                if isinstance(value, dict)
                else None
            )
            tele.metric("raw_span_count", len(raw_spans))
            validation_args: dict[str, Any] = {
                "meta": meta,
                "text": params.text,
                "policy": request.policy,
                "options": request.options,
                "cache": params.cache,
                "analysis_trace": analysis_trace,
            }

            if is_adversarial_response(value):
                outcome = "adversarial"
                validation = validate_spans(
                    spans=[],
                    attempt=STRICT_ATTEMPT,
                    is_adversarial=True,
                    **validation_args,
                )
                result = validation.result
            else:
                validation = validate_spans(
                    spans=raw_spans, attempt=STRICT_ATTEMPT, **validation_args
                )
                result = validation.result
                outcome = "strict"
                if not validation.ok and not enable_repair:
                    outcome = "lenient"
                    result = validate_spans(
                        spans=raw_spans, attempt=LENIENT_ATTEMPT, **validation_args
                    ).result
                elif not validation.ok:
                    outcome = "repair"
                    logger.info(
                        "%s strict validation failed with %d errors; attempting repair",
                        self.client_label,
                        len(validation.errors),
                    )
                    with tele("repair"):
                        repaired = await attempt_repair(
                            base_payload=request.base_payload,
                            validation_errors=validation.errors,
                            original_response=value,
                            text=params.text,
                            system_prompt=request.system_prompt,
                            policy=request.policy,
                            options=request.options,
                            ai_service=params.ai_service,
                            max_tokens=request.max_tokens,
                            provider_options=profile.request_options,
                            cache=params.cache,
                            schema=request.schema,
                            parse_response_text=profile.parse_response_text,
                            normalize=profile.normalize,
                            nlp_spans_attempted=params.nlp_spans_attempted,
                            track_nlp_metrics=self._config.track_nlp_metrics,
                            temperature=self._config.temperature,
                        )
                    self._last_response_metadata = dict(repaired.metadata)
                    result = repaired.result

            self._log_stage(outcome, len(raw_spans), result)
            result = profile.post_process(result, self._last_response_metadata)
            tele.metric("final_span_count", len(result.spans))
            tele.metric("outcome", outcome)
            return result

    def stream_spans(self, params: LlmSpanParams) -> AsyncIterator[Span]:
        """Stream spans as the model emits them, one NDJSON line at a time.

        Streamed spans are parsed but not validated against the source text.

        Raises:
            StreamingNotSupportedError: Immediately, if the profile or the
                AI service cannot stream.
        """
        service = params.ai_service
        if not self._profile.supports_streaming:
            raise StreamingNotSupportedError(
                f"{self.client_label} does not support streaming"
            )
        if not isinstance(service, StreamingAIService):
            raise StreamingNotSupportedError(
                f"{type(service).__name__} does not implement stream()"
            )
        request = self._prepare(params, streaming=True)

        async def produce(channel: ChunkChannel) -> None:
            stream_request: StreamRequest = {
                "system_prompt": request.system_prompt,
                "user_message": request.user_payload,
                "max_tokens": request.max_tokens,
                "temperature": self._config.temperature,
                "on_chunk": channel.push,
            }
            await service.stream(SPAN_LABELING_OPERATION, stream_request)

        return stream_spans_from(produce)
