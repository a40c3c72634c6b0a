"""Tests for model call composition, defensive meta and the repair round-trip."""

import json

import pytest

from span_labeler import prompts
from span_labeler.constants import SPAN_LABELING_OPERATION
from span_labeler.core.exceptions import (
    RepairFailedError,
    ResponseParseError,
    SchemaValidationError,
)
from span_labeler.core.types import (
    ModelResponse,
    ProcessingOptions,
    ProviderRequestOptions,
    ValidationPolicy,
)
from span_labeler.invocation import (
    attempt_repair,
    call_model,
    estimate_max_tokens,
    inject_defensive_meta,
    is_adversarial_response,
    response_spans,
    two_pass_extraction,
)
from span_labeler.parsing import build_user_payload

pytestmark = pytest.mark.unit

SOURCE = "A red car drives through neon rain"
PAYLOAD = build_user_payload(
    task="label", policy={}, text=SOURCE, template_version="v3"
)


def test_token_estimate_is_capped():
    assert estimate_max_tokens(10) == 650
    assert estimate_max_tokens(1000) == 4000


class TestCallModel:
    @pytest.mark.asyncio
    async def test_plain_request_uses_json_mode(self, fake_service):
        service = fake_service({"text": "{}", "metadata": {"provider": "x"}})

        response = await call_model(
            system_prompt="sys",
            user_payload=PAYLOAD,
            ai_service=service,
            max_tokens=100,
            provider_options=ProviderRequestOptions(),
        )

        operation, request = service.calls[0]
        assert operation == SPAN_LABELING_OPERATION
        assert request["json_mode"] is True
        assert request["user_message"] == PAYLOAD
        assert "schema" not in request
        assert response == ModelResponse(text="{}", metadata={"provider": "x"})

    @pytest.mark.asyncio
    async def test_schema_disables_json_mode(self, fake_service):
        service = fake_service("{}")
        await call_model(
            system_prompt="sys",
            user_payload=PAYLOAD,
            ai_service=service,
            max_tokens=100,
            provider_options=ProviderRequestOptions(
                enable_logprobs=True, developer_message="be strict"
            ),
            schema={"type": "object"},
        )
        request = service.requests[0]
        assert request["json_mode"] is False
        assert request["schema"] == {"type": "object"}
        assert request["logprobs"] is True
        assert request["developer_message"] == "be strict"

    @pytest.mark.asyncio
    async def test_bookending_repeats_rules(self, fake_service):
        service = fake_service("{}")
        await call_model(
            system_prompt="sys",
            user_payload=PAYLOAD,
            ai_service=service,
            max_tokens=100,
            provider_options=ProviderRequestOptions(enable_bookending=True),
        )
        assert service.requests[0]["system_prompt"] == prompts.bookend("sys")

    @pytest.mark.asyncio
    async def test_few_shot_builds_message_list(self, fake_service):
        service = fake_service("{}")
        await call_model(
            system_prompt="sys",
            user_payload=PAYLOAD,
            ai_service=service,
            max_tokens=100,
            provider_options=ProviderRequestOptions(use_few_shot=True),
        )
        messages = service.requests[0]["messages"]
        assert messages[0] == {"role": "system", "content": "sys"}
        assert messages[-1] == {"role": "user", "content": PAYLOAD}
        assert len(messages) == 2 + 2 * len(prompts.FEW_SHOT_EXAMPLES)
        assert "user_message" not in service.requests[0]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", ["raw prompt text", "[1, 2]"])
    async def test_few_shot_rejects_non_object_payload(self, fake_service, payload):
        with pytest.raises(ValueError, match="Few-shot prompting requires"):
            await call_model(
                system_prompt="sys",
                user_payload=payload,
                ai_service=fake_service(),
                max_tokens=100,
                provider_options=ProviderRequestOptions(use_few_shot=True),
            )


class TestTwoPass:
    @pytest.mark.asyncio
    async def test_budget_split_and_developer_role(self, fake_service):
        service = fake_service("the dog is the subject", '{"spans": []}')

        response = await two_pass_extraction(
            system_prompt="sys",
            user_payload=PAYLOAD,
            ai_service=service,
            max_tokens=1000,
            provider_options=ProviderRequestOptions(),
            supports_developer_role=True,
            schema={"type": "object"},
        )

        reasoning, structuring = service.requests
        assert reasoning["max_tokens"] == 600
        assert "schema" not in reasoning
        assert prompts.REASONING_MARKER in reasoning["system_prompt"]
        assert structuring["max_tokens"] == 400
        assert structuring["schema"] == {"type": "object"}
        assert structuring["developer_message"] == prompts.STRUCTURING_DEVELOPER_MESSAGE
        assert structuring["system_prompt"] == prompts.bookend("sys")
        assert json.loads(structuring["user_message"]) == {
            "analysis": "the dog is the subject",
            "request": PAYLOAD,
        }
        assert response.text == '{"spans": []}'

    @pytest.mark.asyncio
    async def test_reasoning_goes_into_system_prompt_without_developer_role(
        self, fake_service
    ):
        service = fake_service("reasoning text", '{"spans": []}')
        await two_pass_extraction(
            system_prompt="sys",
            user_payload=PAYLOAD,
            ai_service=service,
            max_tokens=1000,
            provider_options=ProviderRequestOptions(),
            supports_developer_role=False,
        )
        structuring = service.requests[1]
        assert "developer_message" not in structuring
        assert "reasoning text" in structuring["system_prompt"]
        assert structuring["user_message"] == PAYLOAD


class TestDefensiveMeta:
    def test_missing_fields_are_filled(self):
        value = {"spans": []}
        inject_defensive_meta(value, ProcessingOptions(template_version="v5"))
        assert value == {
            "spans": [],
            "analysis_trace": "",
            "meta": {"version": "v5", "notes": ""},
        }

    def test_valid_fields_are_kept(self):
        value = {"analysis_trace": "t", "meta": {"version": "v1", "notes": "n"}}
        inject_defensive_meta(value, ProcessingOptions())
        assert value["meta"] == {"version": "v1", "notes": "n"}
        assert value["analysis_trace"] == "t"

    def test_malformed_fields_are_replaced(self):
        value = {"meta": {"version": 3, "notes": ["x"]}}
        inject_defensive_meta(value, ProcessingOptions())
        assert value["meta"] == {"version": "v3", "notes": ""}

    def test_nlp_metrics_are_tracked(self):
        value = {"spans": []}
        inject_defensive_meta(value, ProcessingOptions(), 4)
        assert value["meta"]["nlpAttempted"] is True
        assert value["meta"]["nlpSpansFound"] == 4

        untracked = {"spans": []}
        inject_defensive_meta(
            untracked, ProcessingOptions(), 4, track_nlp_metrics=False
        )
        assert "nlpAttempted" not in untracked["meta"]

    @pytest.mark.parametrize("value", [None, [], "text", {}])
    def test_non_dict_or_empty_values_are_ignored(self, value):
        inject_defensive_meta(value, ProcessingOptions())
        assert value in (None, [], "text", {})


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ({"isAdversarial": True}, True),
        ({"is_adversarial": True}, True),
        ({"isAdversarial": "true"}, False),
        ([], False),
    ],
)
def test_is_adversarial_response(value, expected):
    assert is_adversarial_response(value) is expected


def test_response_spans_tolerates_malformed_values():
    assert response_spans({"spans": [1]}) == [1]
    assert response_spans({"spans": "x"}) == []
    assert response_spans(None) == []


class TestAttemptRepair:
    @staticmethod
    async def _repair(service, errors=("span[0] text \"bus\" not found in source",)):
        return await attempt_repair(
            base_payload={"task": "label", "policy": {}, "template_version": "v3"},
            validation_errors=errors,
            original_response={"spans": [{"text": "bus", "role": "subject"}]},
            text=SOURCE,
            system_prompt="sys",
            policy=ValidationPolicy(),
            options=ProcessingOptions(),
            ai_service=service,
            max_tokens=500,
            provider_options=ProviderRequestOptions(),
        )

    @pytest.mark.asyncio
    async def test_repaired_response_is_validated(self, fake_service, model_response):
        service = fake_service(
            model_response(
                '{"spans": [{"text": "red car", "role": "subject.identity"}]}',
                provider="fake",
            )
        )

        outcome = await self._repair(service)

        assert [span["text"] for span in outcome.result.spans] == ["red car"]
        assert outcome.metadata == {"provider": "fake"}
        request = service.requests[0]
        assert request["system_prompt"].endswith(prompts.REPAIR_SYSTEM_SUFFIX)
        validation = json.loads(request["user_message"])["validation"]
        assert validation["errors"] == ['span[0] text "bus" not found in source']
        assert validation["originalResponse"]["spans"][0]["text"] == "bus"

    @pytest.mark.asyncio
    async def test_still_invalid_response_raises(self, fake_service):
        service = fake_service('{"spans": [{"text": "red car", "role": "vehicle"}]}')

        with pytest.raises(RepairFailedError) as exc_info:
            await self._repair(service)

        assert str(exc_info.value) == (
            "Repair attempt failed validation:\n"
            '1. span[0] role "vehicle" is not a valid taxonomy ID'
        )
        assert exc_info.value.errors == (
            'span[0] role "vehicle" is not a valid taxonomy ID',
        )

    @pytest.mark.asyncio
    async def test_unparseable_repair_raises_parse_error(self, fake_service):
        with pytest.raises(ResponseParseError):
            await self._repair(fake_service("still not json"))

    @pytest.mark.asyncio
    async def test_non_object_repair_raises_schema_error(self, fake_service):
        with pytest.raises(SchemaValidationError):
            await self._repair(fake_service("[1, 2]"))
