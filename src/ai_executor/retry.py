# retry.py
# Retry controller for any failable async operation.
#
# Non-retryable errors propagate unchanged on first sight. A retryable error
# that survives the last attempt is wrapped in MaxRetriesExceededError, which
# separates "gave up" from "this kind of error is never retried".

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, TypeVar

from ai_executor.errors import (
    MaxRetriesExceededError,
    OutputParsingError,
    OutputValidationError,
    ProviderError,
)
from ai_executor.models import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")

RetryHook = Callable[[int, Exception, float], Any]

_TRANSIENT = (ProviderError, OutputParsingError, OutputValidationError)


def is_retryable_default(error: BaseException) -> bool:
    """Provider failures and malformed/invalid model output deserve another try."""
    return isinstance(error, _TRANSIENT)


def compute_delay(policy: RetryPolicy, attempt: int) -> float:
    """Seconds to wait after failed `attempt` (1-based). Never negative."""
    delay = policy.delay
    if callable(delay):
        delay = delay(attempt - 1)
    return max(0.0, float(delay))


class RetryController:
    def __init__(self, sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep) -> None:
        self._sleep = sleep

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: RetryPolicy,
        on_retry: RetryHook | None = None,
    ) -> T:
        """
        Await `operation` up to `policy.max_attempts` times.

        `on_retry(attempt, error, delay)` runs before each sleep and may be
        a coroutine function.
        """
        predicate = policy.is_retryable or is_retryable_default

        for attempt in range(1, policy.max_attempts + 1):
            try:
                return await operation()
            except Exception as exc:
                if not predicate(exc):
                    raise
                if attempt >= policy.max_attempts:
                    raise MaxRetriesExceededError(
                        f"Gave up after {attempt} attempt(s). Last error: {exc}",
                        last_error=exc,
                        attempts=attempt,
                    ) from exc

                delay = compute_delay(policy, attempt)
                logger.info(
                    "Attempt %d/%d failed with %s; retrying in %.2fs.",
                    attempt,
                    policy.max_attempts,
                    type(exc).__name__,
                    delay,
                )
                if on_retry is not None:
                    outcome = on_retry(attempt, exc, delay)
                    if inspect.isawaitable(outcome):
                        await outcome
                await self._sleep(delay)

        # max_attempts >= 1 is enforced by RetryPolicy
        raise AssertionError("unreachable")
