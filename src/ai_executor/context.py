# context.py
# Execution context: everything one execute() call can reach.
#
# Passed explicitly into every call; there is no process-wide registry.
# Registrations are keyed by name; re-registering a name overwrites it with
# a warning rather than merging.

import logging
from typing import Any, Awaitable, Protocol, runtime_checkable

from ai_executor.cache import CacheProvider
from ai_executor.errors import DefinitionNotFoundError
from ai_executor.models import ExecutionEvent, FunctionDefinition, ToolDefinition
from ai_executor.providers import ModelProvider

logger = logging.getLogger(__name__)


@runtime_checkable
class EventSink(Protocol):
    """Fire-and-forget observer. May be sync or async; its failures never abort execution."""

    def publish(self, event: ExecutionEvent) -> Awaitable[Any] | None: ...


class ExecutionContext:
    def __init__(
        self,
        model: ModelProvider,
        *,
        cache: CacheProvider | None = None,
        event_sink: EventSink | None = None,
        tools: list[ToolDefinition] | None = None,
        functions: list[FunctionDefinition] | None = None,
    ) -> None:
        self.model = model
        self.cache = cache
        self.event_sink = event_sink
        self._tools: dict[str, ToolDefinition] = {}
        self._functions: dict[str, FunctionDefinition] = {}
        for tool in tools or []:
            self.register_tool(tool)
        for function in functions or []:
            self.register_function(function)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_tool(self, tool: ToolDefinition) -> None:
        if tool.name in self._tools:
            logger.warning("Tool %r is already registered; overwriting.", tool.name)
        self._tools[tool.name] = tool

    def register_function(self, function: FunctionDefinition) -> None:
        if function.id in self._functions:
            logger.warning("Function %r is already registered; overwriting.", function.id)
        self._functions[function.id] = function

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    @property
    def tools(self) -> dict[str, ToolDefinition]:
        return dict(self._tools)

    @property
    def functions(self) -> dict[str, FunctionDefinition]:
        return dict(self._functions)

    def get_tool(self, name: str) -> ToolDefinition:
        try:
            return self._tools[name]
        except KeyError:
            raise DefinitionNotFoundError("Tool", name) from None

    def resolve_function(self, function: FunctionDefinition | str) -> FunctionDefinition:
        if isinstance(function, FunctionDefinition):
            return function
        try:
            return self._functions[function]
        except KeyError:
            raise DefinitionNotFoundError("Function", function) from None

    def tools_for(self, function: FunctionDefinition) -> dict[str, ToolDefinition]:
        """Tools the function may call, in registration order."""
        if function.tools is None:
            return dict(self._tools)
        return {name: self.get_tool(name) for name in function.tools}
