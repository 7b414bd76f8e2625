import json
import logging

import pytest

from ai_executor.errors import PromptCompilationError
from ai_executor.history import History
from ai_executor.prompt import PromptCompiler, render_template, template_values, template_variables
from conftest import AdderInput

# ---------------------------------------------------------------------------
# Template rendering
# ---------------------------------------------------------------------------

def test_template_variables_in_order_without_duplicates():
    assert template_variables("{{a}} + {{ b }} = {{a}}") == ["a", "b"]


def test_render_template_substitutes_values():
    assert render_template("Add {{num1}} and {{ num2 }}.", {"num1": "15", "num2": "27"}) == "Add 15 and 27."


def test_render_template_strict_mode_rejects_missing_keys():
    with pytest.raises(PromptCompilationError) as info:
        render_template("Hello {{name}} from {{city}}", {"name": "Ada"})
    assert info.value.missing == ["city"]


def test_template_values_coerce_to_strings():
    values = template_values({"n": 3, "flag": True, "items": [1, 2], "none": None, "text": "x"})
    assert values == {"n": "3", "flag": "true", "items": "[1, 2]", "none": "null", "text": "x"}


def test_template_values_from_model_instance():
    assert template_values(AdderInput(num1=15, num2=27)) == {"num1": "15", "num2": "27"}


# ---------------------------------------------------------------------------
# Compilation
# ---------------------------------------------------------------------------

def test_compile_orders_sections(adder, rng):
    history = History()
    history.add_user("Add 15 and 27.")
    prompt = PromptCompiler().compile(adder, {"num1": 15, "num2": 27}, history, [rng])

    positions = [prompt.index(marker) for marker in ("Available tools", "Conversation so far", "RESPONSE FORMAT", "Task:")]
    assert positions == sorted(positions)
    assert prompt.rstrip().endswith("Add 15 and 27.")


def test_compile_omits_empty_sections(adder):
    prompt = PromptCompiler().compile(adder, {"num1": 1, "num2": 2})
    assert "Available tools" not in prompt
    assert "Conversation so far" not in prompt


def test_compile_lists_each_tool_as_json(adder, rng):
    prompt = PromptCompiler().compile(adder, {"num1": 1, "num2": 2}, tools=[rng])
    line = next(l for l in prompt.splitlines() if l.startswith('{"name"'))
    assert json.loads(line)["name"] == "RNG"


def test_compile_is_deterministic(adder, rng):
    compiler = PromptCompiler()
    first = compiler.compile(adder, {"num1": 1, "num2": 2}, tools=[rng])
    second = compiler.compile(adder, {"num1": 1, "num2": 2}, tools=[rng])
    assert first == second


def test_compile_projects_history_through_the_limit(adder):
    history = History()
    for i in range(6):
        history.add_user(f"turn-{i}")
    prompt = PromptCompiler(history_limit=3).compile(adder, {"num1": 1, "num2": 2}, history)
    assert "turn-0" in prompt
    assert "turn-1" not in prompt
    assert "turn-4" in prompt and "turn-5" in prompt


def test_low_history_limit_warns_once_at_construction(adder, caplog):
    history = History()
    for i in range(4):
        history.add_user(f"turn-{i}")
    with caplog.at_level(logging.WARNING):
        compiler = PromptCompiler(history_limit=1)
        assert len(caplog.records) == 1
        prompt = compiler.compile(adder, {"num1": 1, "num2": 2}, history)
        compiler.compile(adder, {"num1": 1, "num2": 2}, history)
    assert len(caplog.records) == 1
    assert "turn-0" in prompt and "turn-3" in prompt
    assert "turn-1" not in prompt
