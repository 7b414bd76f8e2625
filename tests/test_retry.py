from unittest.mock import AsyncMock, MagicMock

import pytest

from ai_executor.errors import (
    InputValidationError,
    MaxRetriesExceededError,
    OutputParsingError,
    PromptCompilationError,
    ProviderError,
    ToolExecutionError,
)
from ai_executor.models import RetryPolicy
from ai_executor.retry import RetryController, compute_delay, is_retryable_default


def _flaky(failures, error=None):
    error = error or ProviderError("boom")
    return AsyncMock(side_effect=[error] * failures + ["ok"])


# ---------------------------------------------------------------------------
# Attempt accounting
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
@pytest.mark.parametrize("failures,max_attempts", [(0, 1), (1, 2), (2, 3), (3, 5)])
async def test_succeeds_after_k_failures(failures, max_attempts):
    operation = _flaky(failures)
    result = await RetryController(sleep=AsyncMock()).run(operation, RetryPolicy(max_attempts=max_attempts, delay=0))
    assert result == "ok"
    assert operation.await_count == failures + 1


@pytest.mark.asyncio
@pytest.mark.parametrize("failures,max_attempts", [(1, 1), (3, 3), (5, 2)])
async def test_gives_up_after_max_attempts(failures, max_attempts):
    operation = _flaky(failures)
    with pytest.raises(MaxRetriesExceededError) as info:
        await RetryController(sleep=AsyncMock()).run(operation, RetryPolicy(max_attempts=max_attempts, delay=0))
    assert operation.await_count == max_attempts
    assert info.value.attempts == max_attempts
    assert isinstance(info.value.last_error, ProviderError)
    assert info.value.__cause__ is info.value.last_error


@pytest.mark.asyncio
async def test_non_retryable_error_propagates_unchanged():
    error = InputValidationError("bad input")
    operation = AsyncMock(side_effect=error)
    with pytest.raises(InputValidationError) as info:
        await RetryController(sleep=AsyncMock()).run(operation, RetryPolicy(max_attempts=5))
    assert info.value is error
    assert operation.await_count == 1


@pytest.mark.asyncio
async def test_custom_predicate_overrides_default():
    operation = _flaky(1, ToolExecutionError("tool broke", tool_name="RNG"))
    policy = RetryPolicy(max_attempts=2, delay=0, is_retryable=lambda exc: isinstance(exc, ToolExecutionError))
    assert await RetryController(sleep=AsyncMock()).run(operation, policy) == "ok"


# ---------------------------------------------------------------------------
# Delays and hooks
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_sleeps_between_attempts_and_calls_hook():
    sleep = AsyncMock()
    hook = MagicMock()
    policy = RetryPolicy(max_attempts=3, delay=lambda retry: retry * 0.5)
    await RetryController(sleep=sleep).run(_flaky(2), policy, on_retry=hook)

    assert [call.args[0] for call in sleep.await_args_list] == [0.0, 0.5]
    assert [call.args[0] for call in hook.call_args_list] == [1, 2]


@pytest.mark.asyncio
async def test_async_hook_is_awaited():
    hook = AsyncMock()
    await RetryController(sleep=AsyncMock()).run(_flaky(1), RetryPolicy(delay=0), on_retry=hook)
    hook.assert_awaited_once()


def test_negative_delay_is_clamped():
    assert compute_delay(RetryPolicy(delay=-1.0), 1) == 0.0
    assert compute_delay(RetryPolicy(delay=lambda retry: -5), 3) == 0.0


@pytest.mark.parametrize(
    "error,expected",
    [
        (ProviderError("x"), True),
        (OutputParsingError("x", raw_output=""), True),
        (InputValidationError("x"), False),
        (PromptCompilationError("x"), False),
        (ToolExecutionError("x", tool_name="t"), False),
        (ValueError("x"), False),
    ],
)
def test_default_predicate(error, expected):
    assert is_retryable_default(error) is expected
