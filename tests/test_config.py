import os

import pytest
from pydantic import ValidationError

from ai_executor.config import DEFAULT_MODEL, Settings, load_settings
from ai_executor.providers import DEFAULT_BASE_URL

ENV_VARS = [
    "AI_EXECUTOR_BASE_URL",
    "OPENROUTER_API_KEY",
    "AI_EXECUTOR_MODEL",
    "AI_EXECUTOR_MAX_ITERATIONS",
    "AI_EXECUTOR_HISTORY_LIMIT",
    "AI_EXECUTOR_MAX_ATTEMPTS",
    "AI_EXECUTOR_RETRY_DELAY",
    "AI_EXECUTOR_TIMEOUT",
    "AI_EXECUTOR_TOOL_ERROR_POLICY",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    settings = load_settings(dotenv=False)
    assert settings.base_url == DEFAULT_BASE_URL
    assert settings.model == DEFAULT_MODEL
    assert settings.api_key is None
    assert settings.max_iterations == 8
    assert settings.tool_error_policy == "recover"


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("AI_EXECUTOR_MODEL", "openai/gpt-4o-mini")
    monkeypatch.setenv("AI_EXECUTOR_MAX_ITERATIONS", "4")
    monkeypatch.setenv("AI_EXECUTOR_RETRY_DELAY", "1.5")
    monkeypatch.setenv("AI_EXECUTOR_TOOL_ERROR_POLICY", "abort")
    monkeypatch.setenv("OPENROUTER_API_KEY", "sk-test")

    settings = load_settings(dotenv=False)
    assert settings.model == "openai/gpt-4o-mini"
    assert settings.max_iterations == 4
    assert settings.retry_delay == 1.5
    assert settings.tool_error_policy == "abort"
    assert settings.api_key == "sk-test"


def test_empty_variable_keeps_default(monkeypatch):
    monkeypatch.setenv("AI_EXECUTOR_MAX_ATTEMPTS", "")
    assert load_settings(dotenv=False).max_attempts == 3


@pytest.mark.parametrize(
    "name,value",
    [
        ("AI_EXECUTOR_MAX_ITERATIONS", "many"),
        ("AI_EXECUTOR_MAX_ITERATIONS", "0"),
        ("AI_EXECUTOR_TIMEOUT", "-1"),
        ("AI_EXECUTOR_TOOL_ERROR_POLICY", "ignore"),
    ],
)
def test_malformed_values_fail_at_load(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ValidationError):
        load_settings(dotenv=False)


def test_dotenv_file_is_read(tmp_path, monkeypatch):
    (tmp_path / ".env").write_text("AI_EXECUTOR_MODEL=from-dotenv\n")
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(os, "environ", dict(os.environ))
    assert load_settings().model == "from-dotenv"


def test_executor_config():
    config = Settings(max_iterations=3, history_limit=6, max_attempts=5, retry_delay=0, tool_error_policy="abort").executor_config()
    assert config.max_iterations == 3
    assert config.history_limit == 6
    assert config.tool_error_policy == "abort"
    assert config.default_retry.max_attempts == 5
    assert config.default_retry.delay == 0
