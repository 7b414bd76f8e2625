# errors.py
# Typed failures raised by the execution engine.
#
# Every terminal condition reaches the caller as one of these. The retry
# predicate in retry.py decides which of them are worth another attempt.

from typing import Any


class AiFunctionError(Exception):
    """Base class for every error raised by the engine."""


class InputValidationError(AiFunctionError):
    """Caller (or model-supplied tool) input failed its declared schema."""

    def __init__(self, message: str, errors: list | None = None, value: Any = None) -> None:
        super().__init__(message)
        self.errors = errors or []
        self.value = value


class PromptCompilationError(AiFunctionError):
    """A template could not be rendered, e.g. an unresolved placeholder."""

    def __init__(self, message: str, missing: list[str] | None = None) -> None:
        super().__init__(message)
        self.missing = missing or []


class ProviderError(AiFunctionError):
    """The model backend failed: network error, 5xx, timeout."""

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.details = details


class OutputParsingError(AiFunctionError):
    """No extractable, parseable JSON in the model text, or no usable envelope tag."""

    def __init__(self, message: str, raw_output: str) -> None:
        super().__init__(message)
        self.raw_output = raw_output


class OutputValidationError(AiFunctionError):
    """Parsed output does not conform to the envelope arm or the output schema."""

    def __init__(self, message: str, output: Any = None, errors: list | None = None) -> None:
        super().__init__(message)
        self.output = output
        self.errors = errors or []


class ToolExecutionError(AiFunctionError):
    """The tool function itself raised."""

    def __init__(self, message: str, tool_name: str, input: Any = None, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.tool_name = tool_name
        self.input = input
        self.cause = cause


class DefinitionNotFoundError(AiFunctionError):
    """A function id or tool name is not registered in the execution context."""

    def __init__(self, kind: str, name: str) -> None:
        super().__init__(f"{kind} definition not found: {name!r}")
        self.kind = kind
        self.name = name


class LlmError(AiFunctionError):
    """The model answered with an explicit `error` envelope."""


class MaxRetriesExceededError(AiFunctionError):
    """A retryable error persisted past the attempt budget."""

    def __init__(self, message: str, last_error: BaseException, attempts: int) -> None:
        super().__init__(message)
        self.last_error = last_error
        self.attempts = attempts


class MaxIterationsError(AiFunctionError):
    """The LLM/tool loop hit the iteration ceiling without a final answer."""

    def __init__(self, message: str, iterations: int) -> None:
        super().__init__(message)
        self.iterations = iterations
