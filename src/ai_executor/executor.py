# executor.py
# The agent loop: one parametrized state machine for every AI function.
#
#   LLM_STEP  ──success──▶ SUCCESS
#      │ ▲    ──error────▶ FAILED (LlmError)
#  call_tool│ │
#      ▼ │
#   TOOL_STEP ──failure (abort)──▶ FAILED
#
# Each LLM step runs compile → model → extract → envelope as one unit inside
# the retry controller. Every step of either kind counts against the
# iteration ceiling.

import asyncio
import inspect
import logging
from typing import Any, Literal, Mapping

from pydantic import BaseModel, ConfigDict, Field

from ai_executor.cache import CachingModelProvider
from ai_executor.context import ExecutionContext
from ai_executor.dispatcher import ToolDispatcher
from ai_executor.envelope import ErrorEnvelope, SuccessEnvelope, ToolCallEnvelope, validate_envelope
from ai_executor.errors import (
    AiFunctionError,
    LlmError,
    MaxIterationsError,
    OutputParsingError,
    OutputValidationError,
    PromptCompilationError,
    ProviderError,
)
from ai_executor.extractor import parse
from ai_executor.history import History
from ai_executor.middleware import Middleware, MiddlewarePipeline, StepContext, default_middleware
from ai_executor.models import (
    CachePolicy,
    EventType,
    ExecutionEvent,
    ExecutionTrace,
    FunctionDefinition,
    GenerateOptions,
    RetryPolicy,
    StepTarget,
)
from ai_executor.prompt import DEFAULT_HISTORY_LIMIT, PromptCompiler
from ai_executor.providers import ModelProvider
from ai_executor.retry import RetryController

logger = logging.getLogger(__name__)

FEEDBACK_MESSAGE = (
    "Your previous reply was rejected ({kind}): {error}. "
    "Reply again with exactly one JSON envelope that matches the required schema."
)


class ExecutorConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_iterations: int = Field(default=8, ge=1, description="Ceiling on LLM + tool steps per execution.")
    history_limit: int = DEFAULT_HISTORY_LIMIT
    tool_error_policy: Literal["recover", "abort"] = "recover"
    default_retry: RetryPolicy = Field(default_factory=RetryPolicy)


class ExecutionResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    output: Any
    history: History
    trace: ExecutionTrace
    iterations: int


class Executor:
    """
    Runs Function Definitions against an ExecutionContext.

    Example:
        executor = Executor(ExecutionContext(OpenAIProvider("anthropic/claude-3.5-haiku")))
        result = await executor.execute(adder, {"num1": 15, "num2": 27})
    """

    def __init__(
        self,
        context: ExecutionContext,
        config: ExecutorConfig | None = None,
        middleware: tuple[Middleware, ...] | list[Middleware] = (),
        retry: RetryController | None = None,
    ) -> None:
        self._context = context
        self._config = config or ExecutorConfig()
        self._pipeline = MiddlewarePipeline(default_middleware(middleware))
        self._retry = retry or RetryController()
        self._compiler = PromptCompiler(history_limit=self._config.history_limit)

    @property
    def config(self) -> ExecutorConfig:
        return self._config

    @property
    def context(self) -> ExecutionContext:
        return self._context

    async def execute(
        self,
        function: FunctionDefinition | str,
        input: BaseModel | Mapping[str, Any],
        context: ExecutionContext | None = None,
    ) -> Any:
        """Run `function` on `input`; returns an instance of its output schema."""
        result = await self.run(function, input, context)
        return result.output

    async def run(
        self,
        function: FunctionDefinition | str,
        input: BaseModel | Mapping[str, Any],
        context: ExecutionContext | None = None,
    ) -> ExecutionResult:
        """Like execute(), but also returns the History and trace of the run."""
        context = context or self._context
        definition = context.resolve_function(function)
        execution = _Execution(self, context, definition, input)
        return await execution.run()


# ---------------------------------------------------------------------------
# Per-call state
# ---------------------------------------------------------------------------


class _Execution:
    """State owned by exactly one execute() call. Never shared."""

    def __init__(
        self,
        executor: Executor,
        context: ExecutionContext,
        definition: FunctionDefinition,
        input: BaseModel | Mapping[str, Any],
    ) -> None:
        self._executor = executor
        self._config = executor.config
        self._context = context
        self._definition = definition
        self._input = input
        self._history = History()
        self._trace = ExecutionTrace()
        self._iterations = 0
        self._pending: set[asyncio.Future] = set()
        self._model = self._select_model()

    async def run(self) -> ExecutionResult:
        self._publish(EventType.AI_FUNCTION_START, input=self._input)
        try:
            output = await self._loop()
        except Exception as exc:
            logger.warning("Function %r failed: %s", self._definition.id, exc)
            self._publish(EventType.AI_FUNCTION_ERROR, error=exc, iterations=self._iterations)
            raise
        finally:
            await self._drain()

        self._publish(EventType.AI_FUNCTION_END, output=output, iterations=self._iterations)
        await self._drain()
        return ExecutionResult(
            output=output,
            history=self._history,
            trace=self._trace,
            iterations=self._iterations,
        )

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    async def _loop(self) -> Any:
        tools = self._context.tools_for(self._definition)
        dispatcher = ToolDispatcher(tools, pipeline=self._executor._pipeline, publish=self._publish)

        while True:
            if self._iterations >= self._config.max_iterations:
                raise MaxIterationsError(
                    f"Function {self._definition.id!r} exceeded {self._config.max_iterations} iteration(s).",
                    iterations=self._iterations,
                )
            self._iterations += 1

            if self._trace.next_target() is StepTarget.TOOL:
                await self._tool_step(dispatcher, self._trace.last.output)
                continue

            step = await self._llm_step(list(tools.values()))
            envelope = step.output
            self._trace.record(StepTarget.LLM, step.input, envelope)

            if isinstance(envelope, SuccessEnvelope):
                return envelope.data
            if isinstance(envelope, ErrorEnvelope):
                raise LlmError(f"Model reported an error: {envelope.message}")
            # ToolCallEnvelope: the trace routes the next iteration to the tool.

    async def _tool_step(self, dispatcher: ToolDispatcher, call: ToolCallEnvelope) -> None:
        try:
            output = await dispatcher.dispatch(call.tool_name, call.input, self._history)
        except AiFunctionError as exc:
            self._trace.record(StepTarget.TOOL, call.input, None, tool_name=call.tool_name, error=str(exc))
            if self._config.tool_error_policy == "abort":
                raise
            logger.info("Tool %r failed; handing the error back to the model.", call.tool_name)
            return
        self._trace.record(StepTarget.TOOL, call.input, output, tool_name=call.tool_name)

    async def _llm_step(self, tools: list) -> StepContext:
        policy = self._definition.retry_policy or self._config.default_retry
        attempts = 0

        async def attempt() -> StepContext:
            nonlocal attempts
            attempts += 1
            step = StepContext(
                target=StepTarget.LLM,
                name=self._definition.id,
                function=self._definition,
                history=self._history,
                input=self._input,
                attempt=attempts,
                publish=self._publish,
                metadata={"tools": tools},
            )
            await self._executor._pipeline.run(step, self._call_model)
            if step.error is not None:
                await self._forget_rejected(step)
                raise step.error
            return step

        async def on_retry(attempt_number: int, error: Exception, delay: float) -> None:
            self._publish(
                EventType.RETRY_ATTEMPT,
                attempt=attempt_number,
                max_attempts=policy.max_attempts,
                error=error,
                delay=delay,
            )
            if policy.validation_feedback and isinstance(error, (OutputParsingError, OutputValidationError)):
                self._history.add_error(FEEDBACK_MESSAGE.format(kind=type(error).__name__, error=error))

        return await self._executor._retry.run(attempt, policy, on_retry=on_retry)

    async def _forget_rejected(self, step: StepContext) -> None:
        """A reply that failed parsing or validation must not be served from the cache again."""
        key = step.metadata.get("cache_key")
        if key is None or not isinstance(step.error, (OutputParsingError, OutputValidationError)):
            return
        logger.info("Evicting rejected response %s from the cache.", key[:12])
        await self._context.cache.delete(key)

    # ------------------------------------------------------------------
    # Final handler for LLM steps
    # ------------------------------------------------------------------

    async def _call_model(self, step: StepContext) -> None:
        compiler = self._executor._compiler

        step.emit(EventType.PROMPT_COMPILATION_START)
        try:
            if not len(self._history):
                self._history.add_user(compiler.render_query(self._definition, step.input))
            prompt = compiler.compile(self._definition, step.input, self._history, step.metadata["tools"])
        except PromptCompilationError as exc:
            step.emit(EventType.PROMPT_COMPILATION_ERROR, error=exc)
            raise
        step.emit(EventType.PROMPT_COMPILATION_END, prompt=prompt)

        options = GenerateOptions(system_prompt=self._definition.system_prompt, params=self._definition.model_options)
        step.emit(EventType.LLM_START, attempt=step.attempt)
        try:
            response = await self._model.generate(prompt, options)
        except Exception as exc:
            step.emit(EventType.LLM_ERROR, error=exc)
            if isinstance(exc, ProviderError):
                raise
            raise ProviderError(f"{type(exc).__name__}: {exc}", details=exc) from exc

        step.metadata["cache_key"] = response.model_info.get("cache_key")
        step.emit(EventType.LLM_END, raw_output=response.raw_output, usage=response.usage, model_info=response.model_info)

        step.emit(EventType.OUTPUT_PARSING_START)
        try:
            step.output = validate_envelope(parse(response.raw_output))
        except OutputParsingError as exc:
            step.emit(EventType.OUTPUT_PARSING_ERROR, error=exc)
            raise
        except OutputValidationError as exc:
            step.emit(EventType.OUTPUT_VALIDATION_ERROR, error=exc)
            raise
        step.emit(EventType.OUTPUT_PARSING_END, envelope=step.output)

    # ------------------------------------------------------------------
    # Providers and events
    # ------------------------------------------------------------------

    def _select_model(self) -> ModelProvider:
        policy = self._definition.cache_policy or CachePolicy()
        if self._context.cache is None or not policy.enabled:
            return self._context.model
        return CachingModelProvider(self._context.model, self._context.cache, ttl=policy.ttl)

    def _publish(self, event_type: EventType, **data: Any) -> None:
        sink = self._context.event_sink
        if sink is None:
            return
        event = ExecutionEvent(type=event_type, function_id=self._definition.id, data=data)
        try:
            outcome = sink.publish(event)
        except Exception:
            logger.warning("Event sink failed on %s.", event_type.value, exc_info=True)
            return
        if inspect.isawaitable(outcome):
            future = asyncio.ensure_future(outcome)
            self._pending.add(future)
            future.add_done_callback(self._delivered)

    def _delivered(self, future: asyncio.Future) -> None:
        self._pending.discard(future)
        if not future.cancelled() and future.exception() is not None:
            logger.warning("Event sink failed.", exc_info=future.exception())

    async def _drain(self) -> None:
        """Wait for async sink deliveries; their failures are logged, never raised."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
