"""
Tests for final-output parsing and validation.
"""

import pytest
from pydantic import BaseModel

from agentloop.agent.context import RunContext
from agentloop.exceptions import ModelRetry, OutputValidationError
from agentloop.runtime.output import OutputSchema, OutputValidator, extract_json_from_text


class Answer(BaseModel):
    value: int
    unit: str = "none"


def _ctx() -> RunContext:
    return RunContext(deps=None, run_id="r")


@pytest.mark.parametrize(
    "text, expected",
    [
        ('{"a": 1}', '{"a": 1}'),
        ('Sure!\n```json\n{"a": 1}\n```\nDone.', '{"a": 1}'),
        ('The result is {"a": {"b": 2}} as requested.', '{"a": {"b": 2}}'),
        ("Items: [1, 2, 3].", "[1, 2, 3]"),
        ("  true  ", "true"),
    ],
)
def test_extract_json_from_text(text, expected):
    assert extract_json_from_text(text) == expected


@pytest.mark.asyncio
async def test_text_output_passes_through():
    schema = OutputSchema()
    assert schema.is_text
    assert schema.instructions() is None
    assert await schema.process_text("hello", _ctx()) == "hello"


@pytest.mark.asyncio
async def test_structured_output_parsed():
    schema = OutputSchema(Answer)
    assert not schema.is_text
    assert '"value"' in schema.instructions()

    result = await schema.process_text('```json\n{"value": 3, "unit": "kg"}\n```', _ctx())
    assert result == Answer(value=3, unit="kg")


@pytest.mark.asyncio
async def test_structured_output_error_lists_fields():
    schema = OutputSchema(Answer)
    with pytest.raises(OutputValidationError) as exc_info:
        await schema.process_text('{"unit": "kg"}', _ctx())

    message = exc_info.value.message
    assert message.startswith("Output validation failed:")
    assert "- value: Field required" in message
    assert exc_info.value.retry_message().endswith("Fix the errors and try again.")


@pytest.mark.asyncio
async def test_process_value_validates_python_objects():
    schema = OutputSchema(Answer)
    assert await schema.process_value({"value": "7"}, _ctx()) == Answer(value=7)
    with pytest.raises(OutputValidationError):
        await schema.process_value("not an answer", _ctx())


@pytest.mark.asyncio
async def test_validators_transform_and_reject():
    async def double(ctx, answer: Answer) -> Answer:
        assert ctx.run_id == "r"
        return Answer(value=answer.value * 2, unit=answer.unit)

    def positive(answer: Answer) -> None:
        if answer.value <= 0:
            raise ModelRetry("value must be positive")

    schema = OutputSchema(Answer, [OutputValidator(double), OutputValidator(positive)])

    assert (await schema.process_text('{"value": 4}', _ctx())).value == 8
    with pytest.raises(OutputValidationError) as exc_info:
        await schema.process_text('{"value": -1}', _ctx())
    assert exc_info.value.message == "value must be positive"


def test_validator_context_detection():
    assert OutputValidator(lambda ctx, value: value).takes_ctx is True
    assert OutputValidator(lambda value: value).takes_ctx is False


@pytest.mark.asyncio
async def test_list_output_type():
    schema = OutputSchema(list[int])
    assert await schema.process_text("Numbers: [1, 2, 3]", _ctx()) == [1, 2, 3]
