# config.py
# Environment-driven settings. Values come from the process environment,
# optionally seeded from a .env file in the working directory.

import os
from typing import Literal

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field

from ai_executor.executor import ExecutorConfig
from ai_executor.models import RetryPolicy
from ai_executor.providers import DEFAULT_BASE_URL, DEFAULT_TIMEOUT

DEFAULT_MODEL = "anthropic/claude-3.5-haiku"


class Settings(BaseModel):
    base_url: str = DEFAULT_BASE_URL
    api_key: str | None = None
    model: str = DEFAULT_MODEL
    max_iterations: int = Field(default=8, ge=1)
    history_limit: int = 10
    max_attempts: int = Field(default=3, ge=1)
    retry_delay: float = Field(default=0.2, ge=0)
    timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0)
    tool_error_policy: Literal["recover", "abort"] = "recover"

    def executor_config(self) -> ExecutorConfig:
        return ExecutorConfig(
            max_iterations=self.max_iterations,
            history_limit=self.history_limit,
            tool_error_policy=self.tool_error_policy,
            default_retry=RetryPolicy(max_attempts=self.max_attempts, delay=self.retry_delay),
        )


_ENVIRONMENT = {
    "base_url": "AI_EXECUTOR_BASE_URL",
    "api_key": "OPENROUTER_API_KEY",
    "model": "AI_EXECUTOR_MODEL",
    "max_iterations": "AI_EXECUTOR_MAX_ITERATIONS",
    "history_limit": "AI_EXECUTOR_HISTORY_LIMIT",
    "max_attempts": "AI_EXECUTOR_MAX_ATTEMPTS",
    "retry_delay": "AI_EXECUTOR_RETRY_DELAY",
    "timeout": "AI_EXECUTOR_TIMEOUT",
    "tool_error_policy": "AI_EXECUTOR_TOOL_ERROR_POLICY",
}


def load_settings(dotenv: bool = True) -> Settings:
    """Read Settings from the environment. Unset or empty variables keep their defaults."""
    if dotenv:
        load_dotenv(find_dotenv(usecwd=True))

    values = {}
    for field, variable in _ENVIRONMENT.items():
        raw = os.getenv(variable)
        if raw:
            values[field] = raw.strip()
    return Settings(**values)
