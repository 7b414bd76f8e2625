import json

import pytest
from pydantic import BaseModel

from ai_executor.context import ExecutionContext
from ai_executor.models import FunctionDefinition, ModelResponse, RetryPolicy, ToolDefinition
from ai_executor.providers import ModelProvider

# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


class AdderInput(BaseModel):
    num1: int
    num2: int


class AdderOutput(BaseModel):
    sum: int


class RangeInput(BaseModel):
    min: int
    max: int


class RandomNumber(BaseModel):
    value: int


class LuckyOutput(BaseModel):
    number: int


# ---------------------------------------------------------------------------
# Scripted model
# ---------------------------------------------------------------------------


class ScriptedModel(ModelProvider):
    """Replays canned replies in order; the last one repeats forever."""

    def __init__(self, *replies):
        self.replies = [r if isinstance(r, (str, Exception)) else json.dumps(r) for r in replies]
        self.prompts: list[str] = []
        self.options = []

    @property
    def calls(self) -> int:
        return len(self.prompts)

    async def generate(self, prompt, options=None):
        self.prompts.append(prompt)
        self.options.append(options)
        reply = self.replies[min(len(self.prompts), len(self.replies)) - 1]
        if isinstance(reply, Exception):
            raise reply
        return ModelResponse(raw_output=reply, model_info={"model": "scripted"})


class RecordingSink:
    def __init__(self):
        self.events = []

    def publish(self, event):
        self.events.append(event)

    def types(self):
        return [event.type.value for event in self.events]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

NO_DELAY = RetryPolicy(max_attempts=3, delay=0)


@pytest.fixture
def adder():
    return FunctionDefinition(
        id="adder",
        input_schema=AdderInput,
        output_schema=AdderOutput,
        prompt_template="Add {{num1}} and {{num2}}.",
        retry_policy=NO_DELAY,
    )


@pytest.fixture
def lucky():
    return FunctionDefinition(
        id="lucky",
        input_schema=RangeInput,
        output_schema=LuckyOutput,
        prompt_template="Pick a number between {{min}} and {{max}} with the RNG tool.",
        retry_policy=NO_DELAY,
    )


@pytest.fixture
def rng_calls():
    return []


@pytest.fixture
def rng(rng_calls):
    def execute(args):
        rng_calls.append(args)
        return RandomNumber(value=7)

    return ToolDefinition(
        name="RNG",
        description="Random integer in [min, max].",
        input_schema=RangeInput,
        output_schema=RandomNumber,
        execute=execute,
    )


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def make_context(sink):
    def factory(model, tools=(), functions=(), cache=None):
        return ExecutionContext(
            model,
            cache=cache,
            event_sink=sink,
            tools=list(tools),
            functions=list(functions),
        )

    return factory
