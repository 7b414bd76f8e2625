# run.py
# Entry point. Config and wiring only.
#
# Swap AI_EXECUTOR_MODEL for any OpenRouter-supported model.
# https://openrouter.ai/models

import asyncio
import logging
import random

from pydantic import BaseModel, Field

from ai_executor.cache import InMemoryCacheProvider
from ai_executor.config import Settings, load_settings
from ai_executor.context import ExecutionContext
from ai_executor.display import ConsoleEventSink, trace_summary
from ai_executor.executor import Executor
from ai_executor.models import FunctionDefinition, ToolDefinition
from ai_executor.providers import OpenAIProvider

# ---------------------------------------------------------------------------
# Sample definitions
# ---------------------------------------------------------------------------


class AdderInput(BaseModel):
    num1: float
    num2: float


class AdderOutput(BaseModel):
    sum: float


class RangeInput(BaseModel):
    min: int
    max: int


class RandomNumber(BaseModel):
    value: int


class LuckyOutput(BaseModel):
    number: int
    comment: str


ADDER = FunctionDefinition(
    id="adder",
    input_schema=AdderInput,
    output_schema=AdderOutput,
    prompt_template="Add {{num1}} and {{num2}}.",
)

LUCKY_NUMBER = FunctionDefinition(
    id="lucky_number",
    input_schema=RangeInput,
    output_schema=LuckyOutput,
    prompt_template=(
        "Pick a lucky number between {{min}} and {{max}} using the RNG tool, "
        "then add a one-line comment about it."
    ),
    tools=("RNG",),
)

RNG = ToolDefinition(
    name="RNG",
    description="Returns a uniformly random integer in [min, max].",
    input_schema=RangeInput,
    output_schema=RandomNumber,
    execute=lambda args: RandomNumber(value=random.randint(args.min, args.max)),
)


def build_executor(settings: Settings) -> Executor:
    context = ExecutionContext(
        OpenAIProvider(
            settings.model,
            base_url=settings.base_url,
            api_key=settings.api_key,
            timeout=settings.timeout,
        ),
        cache=InMemoryCacheProvider(),
        event_sink=ConsoleEventSink(),
        tools=[RNG],
        functions=[ADDER, LUCKY_NUMBER],
    )
    return Executor(context, settings.executor_config())


async def _demo(executor: Executor) -> None:
    await executor.execute("adder", {"num1": 15, "num2": 27})

    result = await executor.run("lucky_number", {"min": 1, "max": 10})
    trace_summary(result.trace)


def main() -> None:
    logging.basicConfig(level=logging.WARNING)
    executor = build_executor(load_settings())
    try:
        asyncio.run(_demo(executor))
    finally:
        executor.context.cache.close()


if __name__ == "__main__":
    main()
