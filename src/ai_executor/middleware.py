# middleware.py
# Onion-model interceptor chain around each execution step.
#
# Each middleware receives (context, next) and calls next() at most once.
# Not calling it short-circuits the step; calling it twice is a programmer
# error and raises immediately. Canonical order, outermost first:
#
#   error capture → logging → [caller middleware] → input validation
#     → history → output validation → handler
#
# so history is only recorded when nothing inside it failed, output checks
# included.

import logging
import time
from typing import Any, Awaitable, Callable, Iterable

from pydantic import BaseModel, ConfigDict, Field

from ai_executor.envelope import SuccessEnvelope, validate_success_data
from ai_executor.errors import InputValidationError, OutputValidationError
from ai_executor.history import History
from ai_executor.models import EventType, FunctionDefinition, StepTarget, ToolDefinition

logger = logging.getLogger(__name__)


class StepContext(BaseModel):
    """Mutable state of one step as it travels through the chain."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    target: StepTarget
    name: str = Field(..., description="Function id for LLM steps, tool name for tool steps.")
    function: FunctionDefinition | None = None
    history: History
    input: Any = None
    output: Any = None
    error: Exception | None = None
    attempt: int = 1
    tool: ToolDefinition | None = None
    publish: Callable[..., None] | None = Field(default=None, description="publish(event_type, **data)")
    metadata: dict[str, Any] = Field(default_factory=dict)

    def emit(self, event_type: EventType, **data: Any) -> None:
        if self.publish is not None:
            self.publish(event_type, step=self.target.value, name=self.name, **data)

    @property
    def label(self) -> str:
        return f"{self.target.value}:{self.name}"


NextFn = Callable[[], Awaitable[None]]
Middleware = Callable[[StepContext, NextFn], Awaitable[None]]
FinalHandler = Callable[[StepContext], Awaitable[None]]


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class _Cursor:
    """Dispatch position for one run; guards against double next() calls."""

    def __init__(self, chain: list[Middleware], final_handler: FinalHandler, context: StepContext) -> None:
        self._chain = chain
        self._final_handler = final_handler
        self._context = context
        self._position = -1

    async def dispatch(self, index: int) -> None:
        if index <= self._position:
            raise RuntimeError("next() called multiple times")
        self._position = index

        if index < len(self._chain):
            await self._chain[index](self._context, lambda: self.dispatch(index + 1))
        else:
            await self._final_handler(self._context)


class MiddlewarePipeline:
    def __init__(self, middleware: Iterable[Middleware] = ()) -> None:
        self._middleware: list[Middleware] = list(middleware)

    def use(self, middleware: Middleware) -> "MiddlewarePipeline":
        self._middleware.append(middleware)
        return self

    @property
    def middleware(self) -> list[Middleware]:
        return list(self._middleware)

    async def run(self, context: StepContext, final_handler: FinalHandler) -> StepContext:
        """
        Run the chain, then `final_handler`. Errors reach the nearest
        error-capturing middleware or, without one, the caller.
        """
        await _Cursor(list(self._middleware), final_handler, context).dispatch(0)
        return context


# ---------------------------------------------------------------------------
# Canonical middleware
# ---------------------------------------------------------------------------


async def error_capture_middleware(context: StepContext, call_next: NextFn) -> None:
    """Store any error on the context instead of letting it unwind the loop."""
    try:
        await call_next()
    except Exception as exc:
        if context.error is None:
            context.error = exc
        else:
            logger.warning("[%s] Suppressed %r; context already holds %r.", context.label, exc, context.error)


async def logging_middleware(context: StepContext, call_next: NextFn) -> None:
    logger.debug("[%s] --> attempt %d input=%r", context.label, context.attempt, context.input)
    started = time.perf_counter()
    try:
        await call_next()
    except Exception as exc:
        elapsed = (time.perf_counter() - started) * 1000
        logger.warning("[%s] <-- %s (%.0fms): %s", context.label, type(exc).__name__, elapsed, exc)
        raise

    elapsed = (time.perf_counter() - started) * 1000
    if context.error is not None:
        logger.warning("[%s] <-- %s (%.0fms): %s", context.label, type(context.error).__name__, elapsed, context.error)
    else:
        logger.info("[%s] <-- ok (%.0fms)", context.label, elapsed)


async def validation_middleware(context: StepContext, call_next: NextFn) -> None:
    """
    Input gate: function input for LLM steps, tool input for tool steps.
    Invalid input never reaches the handler.
    """
    definition, subject = _definition_for(context)
    validator = definition.input_validator
    context.emit(EventType.INPUT_VALIDATION_START, input=context.input)
    checked = validator.check(context.input)
    if not checked.ok:
        error = InputValidationError(
            f"Input for {subject} is invalid: {checked.summary()}",
            errors=checked.errors,
            value=context.input,
        )
        context.emit(EventType.INPUT_VALIDATION_ERROR, error=error)
        raise error
    context.input = checked.value
    context.emit(EventType.INPUT_VALIDATION_END, input=context.input)

    await call_next()


async def output_validation_middleware(context: StepContext, call_next: NextFn) -> None:
    """
    Output check, innermost: success data against the function's output
    schema for LLM steps, tool output for tool steps. Runs before history
    sees the result, so a rejected reply is never recorded.
    """
    await call_next()

    if context.target is StepTarget.LLM:
        if isinstance(context.output, SuccessEnvelope):
            validator = _definition_for(context)[0].output_validator
            context.emit(EventType.OUTPUT_VALIDATION_START, output=context.output.data)
            try:
                context.output = validate_success_data(context.output, validator)
            except OutputValidationError as exc:
                context.emit(EventType.OUTPUT_VALIDATION_ERROR, error=exc)
                raise
            context.emit(EventType.OUTPUT_VALIDATION_END, output=context.output.data)
        return

    validator = _definition_for(context)[0].output_validator
    context.emit(EventType.OUTPUT_VALIDATION_START, output=context.output)
    checked = validator.check(context.output)
    if not checked.ok:
        error = OutputValidationError(
            f"Tool {context.tool.name!r} returned invalid output: {checked.summary()}",
            output=context.output,
            errors=checked.errors,
        )
        context.emit(EventType.OUTPUT_VALIDATION_ERROR, error=error)
        raise error
    context.output = checked.value
    context.emit(EventType.OUTPUT_VALIDATION_END, output=context.output)


def _definition_for(context: StepContext) -> tuple[FunctionDefinition | ToolDefinition, str]:
    if context.target is StepTarget.LLM:
        if context.function is None:
            raise RuntimeError(f"LLM step {context.name!r} reached validation without a function.")
        return context.function, f"function {context.function.id!r}"
    if context.tool is None:
        raise RuntimeError(f"Tool step {context.name!r} reached validation without a resolved tool.")
    return context.tool, f"tool {context.tool.name!r}"


async def history_middleware(context: StepContext, call_next: NextFn) -> None:
    """Record the step's result once everything inside it succeeded."""
    await call_next()

    if context.error is not None or context.output is None:
        return
    if context.target is StepTarget.LLM:
        context.history.add_assistant(context.output)
    else:
        payload = context.output.model_dump(mode="json") if isinstance(context.output, BaseModel) else context.output
        context.history.add_tool_response(context.name, payload)


def default_middleware(extra: Iterable[Middleware] = ()) -> list[Middleware]:
    return [
        error_capture_middleware,
        logging_middleware,
        *extra,
        validation_middleware,
        history_middleware,
        output_validation_middleware,
    ]
