import logging

import pytest

from ai_executor.context import EventSink, ExecutionContext
from ai_executor.envelope import SuccessEnvelope, ToolCallEnvelope
from ai_executor.errors import DefinitionNotFoundError
from ai_executor.models import ExecutionTrace, StepTarget
from conftest import RecordingSink, ScriptedModel

# ---------------------------------------------------------------------------
# Registries
# ---------------------------------------------------------------------------

def test_register_and_resolve(adder, rng):
    context = ExecutionContext(ScriptedModel("{}"), tools=[rng], functions=[adder])
    assert context.resolve_function("adder") is adder
    assert context.resolve_function(adder) is adder
    assert context.get_tool("RNG") is rng


def test_unknown_names_raise(adder):
    context = ExecutionContext(ScriptedModel("{}"))
    with pytest.raises(DefinitionNotFoundError, match="Function definition not found: 'adder'"):
        context.resolve_function("adder")
    with pytest.raises(DefinitionNotFoundError, match="Tool"):
        context.get_tool("RNG")


def test_duplicate_registration_overwrites_with_warning(rng, caplog):
    context = ExecutionContext(ScriptedModel("{}"), tools=[rng])
    replacement = rng.model_copy(update={"description": "v2"})
    with caplog.at_level(logging.WARNING):
        context.register_tool(replacement)
    assert context.get_tool("RNG").description == "v2"
    assert "already registered" in caplog.text


def test_contexts_do_not_share_registries(rng):
    first = ExecutionContext(ScriptedModel("{}"), tools=[rng])
    second = ExecutionContext(ScriptedModel("{}"))
    assert "RNG" in first.tools
    assert second.tools == {}


def test_tools_for_respects_function_subset(adder, lucky, rng):
    context = ExecutionContext(ScriptedModel("{}"), tools=[rng])
    assert list(context.tools_for(lucky)) == ["RNG"]
    assert context.tools_for(adder.model_copy(update={"tools": ()})) == {}


def test_recording_sink_satisfies_protocol():
    assert isinstance(RecordingSink(), EventSink)


# ---------------------------------------------------------------------------
# Trace routing
# ---------------------------------------------------------------------------

def test_trace_routes_tool_calls_to_tool_step():
    trace = ExecutionTrace()
    assert trace.next_target() is StepTarget.LLM

    trace.record(StepTarget.LLM, {}, ToolCallEnvelope(tool_name="RNG", input={}))
    assert trace.next_target() is StepTarget.TOOL

    trace.record(StepTarget.TOOL, {}, {"value": 7}, tool_name="RNG")
    assert trace.next_target() is StepTarget.LLM

    trace.record(StepTarget.LLM, {}, SuccessEnvelope(data={}))
    assert trace.next_target() is StepTarget.LLM
    assert len(trace) == 3
