# dispatcher.py
# Tool dispatcher: look up, validate, execute, validate, fold into History.
#
# A tool step runs through the same middleware pipeline as a model step, so
# validation and history recording come from the canonical middleware. Any
# failure is appended to History as an error message before it is raised, so
# the next model turn can self-correct instead of the run silently dying.

import inspect
import logging
from typing import Any, Callable, Mapping

from ai_executor.errors import DefinitionNotFoundError, ToolExecutionError
from ai_executor.history import History
from ai_executor.middleware import MiddlewarePipeline, StepContext, default_middleware
from ai_executor.models import EventType, StepTarget, ToolDefinition

logger = logging.getLogger(__name__)


class ToolDispatcher:
    def __init__(
        self,
        tools: Mapping[str, ToolDefinition],
        pipeline: MiddlewarePipeline | None = None,
        publish: Callable[..., None] | None = None,
    ) -> None:
        self._tools = dict(tools)
        self._pipeline = pipeline or MiddlewarePipeline(default_middleware())
        self._publish = publish

    async def dispatch(self, tool_name: str, raw_input: Any, history: History) -> Any:
        """
        Run one tool call. Returns the validated output; on failure the error
        is recorded in `history` and re-raised.
        """
        context = StepContext(
            target=StepTarget.TOOL,
            name=tool_name,
            history=history,
            input=raw_input,
            publish=self._publish,
        )
        context.emit(EventType.TOOL_START, input=raw_input)

        try:
            context.tool = self._resolve(tool_name)
            await self._pipeline.run(context, _invoke)
            if context.error is not None:
                raise context.error
        except Exception as exc:
            logger.warning("Tool %r failed: %s", tool_name, exc)
            history.add_error(f"Tool {tool_name!r} failed ({type(exc).__name__}): {exc}")
            context.emit(EventType.TOOL_ERROR, error=exc)
            raise

        context.emit(EventType.TOOL_END, output=context.output)
        return context.output

    def _resolve(self, tool_name: str) -> ToolDefinition:
        tool = self._tools.get(tool_name)
        if tool is None:
            known = ", ".join(sorted(self._tools)) or "none"
            logger.debug("Unknown tool %r requested; registered: %s", tool_name, known)
            raise DefinitionNotFoundError("Tool", tool_name)
        return tool


async def _invoke(context: StepContext) -> None:
    """Final handler for tool steps: call the tool, wrapping whatever it raises."""
    tool = context.tool
    try:
        result = tool.execute(context.input)
        if inspect.isawaitable(result):
            result = await result
    except Exception as exc:
        raise ToolExecutionError(
            f"Tool {tool.name!r} raised {type(exc).__name__}: {exc}",
            tool_name=tool.name,
            input=context.input,
            cause=exc,
        ) from exc
    context.output = result
