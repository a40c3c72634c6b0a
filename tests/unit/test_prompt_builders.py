import json

import pytest

from span_labeler import prompts
from span_labeler.core.types import ValidationPolicy
from span_labeler.validation import build_span_schema, validate_schema_or_throw
from span_labeler.validation.spans import validate_spans

pytestmark = pytest.mark.unit


def test_task_description_mentions_word_limit_only_when_enabled():
    limited = prompts.build_task_description(10, ValidationPolicy())
    unlimited = prompts.build_task_description(
        10, ValidationPolicy(non_technical_word_limit=0)
    )

    assert "at most 6 words" in limited
    assert "words" not in unlimited
    assert "up to 10 labeled spans" in unlimited


@pytest.mark.parametrize(
    ("provider", "has_schema", "marker"),
    [
        ("groq", True, "provided schema"),
        ("gemini", False, "No markdown fences"),
        ("unknown", False, "must start with {"),
    ],
)
def test_output_instructions_depend_on_provider(provider, has_schema, marker):
    prompt = prompts.build_system_prompt(
        provider=provider, has_schema=has_schema, template_version="v3"
    )
    assert marker in prompt
    assert "subject.identity" in prompt
    assert prompt.endswith("Template version: v3.")


def test_streaming_prompt_asks_for_ndjson():
    prompt = prompts.build_streaming_prompt("base")
    assert prompt.startswith("base\n\n")
    assert "newline-delimited JSON" in prompt


def test_structuring_prompt_carries_reasoning():
    prompt = prompts.build_structuring_prompt("base", "dog is the subject")
    assert prompts.STRUCTURING_MARKER in prompt
    assert prompt.endswith("dog is the subject")


@pytest.mark.parametrize(("text", "response"), prompts.FEW_SHOT_EXAMPLES)
def test_few_shot_examples_pass_strict_validation(text, response):
    validate_schema_or_throw(json.loads(json.dumps(response)), build_span_schema("groq"))
    outcome = validate_spans(
        spans=response["spans"],
        text=text,
        is_adversarial=response["isAdversarial"],
    )
    assert outcome.ok, outcome.errors
