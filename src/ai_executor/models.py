# models.py
# Data contracts for the execution engine.
# No business logic lives here: pure schema and validation.

import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field

from ai_executor.envelope import ToolCallEnvelope
from ai_executor.schema import SchemaValidator


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------


class RetryPolicy(BaseModel):
    """How a failable step is re-attempted. Attempt numbering starts at 1."""

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=3, ge=1)
    delay: float | Callable[[int], float] = Field(
        default=0.2,
        description="Seconds between attempts, or a function of the zero-based retry count.",
    )
    is_retryable: Callable[[BaseException], bool] | None = Field(
        default=None,
        description="Retry predicate; None selects retry.is_retryable_default.",
    )
    validation_feedback: bool = Field(
        default=True,
        description="Fold parse/validation failures into History before the next attempt.",
    )


class CachePolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    ttl: float | None = Field(default=None, description="Seconds; None defers to the cache provider.")


# ---------------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------------


class FunctionDefinition(BaseModel):
    """Static declaration of one callable AI capability."""

    model_config = ConfigDict(frozen=True)

    id: str
    input_schema: type[BaseModel]
    output_schema: type[BaseModel]
    prompt_template: str = Field(..., description="User query with {{var}} placeholders.")
    system_prompt: str | None = None
    retry_policy: RetryPolicy | None = None
    cache_policy: CachePolicy | None = None
    model_options: dict[str, Any] = Field(default_factory=dict)
    tools: tuple[str, ...] | None = Field(
        default=None,
        description="Tool names this function may call; None allows every tool in the context.",
    )

    @property
    def input_validator(self) -> SchemaValidator:
        return SchemaValidator(self.input_schema)

    @property
    def output_validator(self) -> SchemaValidator:
        return SchemaValidator(self.output_schema)


class ToolDefinition(BaseModel):
    """
    Static declaration of an externally executable capability.

    `execute` receives a validated instance of `input_schema` and may be a
    plain function or a coroutine function.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Dispatch key; the model must echo it back verbatim.")
    description: str
    input_schema: type[BaseModel]
    output_schema: type[BaseModel]
    execute: Callable[[Any], Any]

    @property
    def input_validator(self) -> SchemaValidator:
        return SchemaValidator(self.input_schema)

    @property
    def output_validator(self) -> SchemaValidator:
        return SchemaValidator(self.output_schema)

    def describe(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema.model_json_schema(),
            "outputSchema": self.output_schema.model_json_schema(),
        }


# ---------------------------------------------------------------------------
# Model provider contract
# ---------------------------------------------------------------------------


class GenerateOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    system_prompt: str | None = None
    params: dict[str, Any] = Field(default_factory=dict, description="Caller-supplied options bag.")


class ModelResponse(BaseModel):
    raw_output: str
    usage: dict[str, Any] | None = None
    model_info: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class EventType(str, Enum):
    AI_FUNCTION_START = "AI_FUNCTION_START"
    AI_FUNCTION_END = "AI_FUNCTION_END"
    AI_FUNCTION_ERROR = "AI_FUNCTION_ERROR"
    INPUT_VALIDATION_START = "INPUT_VALIDATION_START"
    INPUT_VALIDATION_END = "INPUT_VALIDATION_END"
    INPUT_VALIDATION_ERROR = "INPUT_VALIDATION_ERROR"
    PROMPT_COMPILATION_START = "PROMPT_COMPILATION_START"
    PROMPT_COMPILATION_END = "PROMPT_COMPILATION_END"
    PROMPT_COMPILATION_ERROR = "PROMPT_COMPILATION_ERROR"
    LLM_START = "LLM_START"
    LLM_END = "LLM_END"
    LLM_ERROR = "LLM_ERROR"
    OUTPUT_PARSING_START = "OUTPUT_PARSING_START"
    OUTPUT_PARSING_END = "OUTPUT_PARSING_END"
    OUTPUT_PARSING_ERROR = "OUTPUT_PARSING_ERROR"
    OUTPUT_VALIDATION_START = "OUTPUT_VALIDATION_START"
    OUTPUT_VALIDATION_END = "OUTPUT_VALIDATION_END"
    OUTPUT_VALIDATION_ERROR = "OUTPUT_VALIDATION_ERROR"
    TOOL_START = "TOOL_START"
    TOOL_END = "TOOL_END"
    TOOL_ERROR = "TOOL_ERROR"
    RETRY_ATTEMPT = "RETRY_ATTEMPT"


class ExecutionEvent(BaseModel):
    type: EventType
    timestamp: float = Field(default_factory=time.time)
    function_id: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Pipeline trace
# ---------------------------------------------------------------------------


class StepTarget(str, Enum):
    LLM = "llm"
    TOOL = "tool"


class TraceEntry(BaseModel):
    """Append-only record of one executed step."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    target: StepTarget
    input: Any = None
    output: Any = None
    tool_name: str | None = None
    error: str | None = None


class ExecutionTrace:
    """Ordered step log owned by a single execute() call."""

    def __init__(self) -> None:
        self._entries: list[TraceEntry] = []

    def record(
        self,
        target: StepTarget,
        input: Any,
        output: Any,
        tool_name: str | None = None,
        error: str | None = None,
    ) -> TraceEntry:
        entry = TraceEntry(target=target, input=input, output=output, tool_name=tool_name, error=error)
        self._entries.append(entry)
        return entry

    @property
    def entries(self) -> list[TraceEntry]:
        return list(self._entries)

    @property
    def last(self) -> TraceEntry | None:
        return self._entries[-1] if self._entries else None

    def targets(self) -> list[StepTarget]:
        return [entry.target for entry in self._entries]

    def next_target(self) -> StepTarget:
        """
        Decide the next step from the last recorded one.

        Only an LLM step that produced a tool-call envelope leads to a tool
        step; everything else goes back to the model.
        """
        last = self.last
        if last is not None and last.target is StepTarget.LLM and isinstance(last.output, ToolCallEnvelope):
            return StepTarget.TOOL
        return StepTarget.LLM

    def __len__(self) -> int:
        return len(self._entries)
