# prompt.py
# Prompt compiler: one final prompt string per model turn.
#
# Pure function of its inputs (no I/O, no hidden state), so identical inputs
# always yield identical prompts and response caching stays sound.
#
# Templates run in strict mode: a {{placeholder}} without a matching input key
# raises PromptCompilationError instead of leaking into the prompt.

import json
import logging
import re
from typing import Any, Iterable, Mapping

from pydantic import BaseModel

from ai_executor.envelope import envelope_json_schema
from ai_executor.errors import PromptCompilationError
from ai_executor.history import MIN_LIMIT, History
from ai_executor.models import FunctionDefinition, ToolDefinition

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")

DEFAULT_HISTORY_LIMIT = 10


# ---------------------------------------------------------------------------
# System Prompts
# ---------------------------------------------------------------------------

EXECUTE_FUNCTION_PREAMBLE = """\
You are a precise assistant that completes one task and answers in JSON.

If you have enough information, answer the task directly.
If you need more information and a suitable tool is listed, ask for that tool \
to be called instead of guessing. Tool results are appended to the conversation.
If the task cannot be completed, answer with an error.\
"""

TOOLS_SECTION = """\
Available tools (call them by their exact "name"; "_input" must match "inputSchema"):
{tools}\
"""

HISTORY_SECTION = """\
Conversation so far:
{history}\
"""

FORMAT_SECTION = """\
RESPONSE FORMAT:
Respond with exactly ONE JSON object matching this JSON Schema, and nothing else:
{schema}

- "_type": "success": "_data" holds the final answer.
- "_type": "error": "_message" explains why the task cannot be completed.
- "_type": "call_tool": "_toolName" names a listed tool and "_input" holds its arguments.\
"""

QUERY_SECTION = """\
Task:
{query}\
"""


# ---------------------------------------------------------------------------
# Template rendering
# ---------------------------------------------------------------------------


def template_variables(template: str) -> list[str]:
    """Placeholder names in first-appearance order, without duplicates."""
    return list(dict.fromkeys(_PLACEHOLDER.findall(template)))


def _coerce(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, BaseModel):
        return value.model_dump_json()
    if isinstance(value, (dict, list, tuple, bool)) or value is None:
        return json.dumps(value, ensure_ascii=False, default=str)
    return str(value)


def template_values(input: BaseModel | Mapping[str, Any]) -> dict[str, str]:
    """Key → string map for rendering, built once from validated input."""
    if isinstance(input, BaseModel):
        fields = {name: getattr(input, name) for name in type(input).model_fields}
    else:
        fields = dict(input)
    return {key: _coerce(value) for key, value in fields.items()}


def render_template(template: str, values: Mapping[str, str]) -> str:
    missing = [name for name in template_variables(template) if name not in values]
    if missing:
        raise PromptCompilationError(
            f"Missing required template variables: {', '.join(missing)}",
            missing=missing,
        )
    return _PLACEHOLDER.sub(lambda match: values[match.group(1)], template)


# ---------------------------------------------------------------------------
# Compiler
# ---------------------------------------------------------------------------


class PromptCompiler:
    """
    Assembles: preamble, tool catalog, bounded history, envelope schema and
    the rendered user query, in that order. Empty sections are omitted.
    """

    def __init__(self, history_limit: int = DEFAULT_HISTORY_LIMIT, preamble: str = EXECUTE_FUNCTION_PREAMBLE) -> None:
        if history_limit < MIN_LIMIT:
            logger.warning("History limit %d is below %d; using %d.", history_limit, MIN_LIMIT, MIN_LIMIT)
            history_limit = MIN_LIMIT
        self._history_limit = history_limit
        self._preamble = preamble

    def render_query(self, definition: FunctionDefinition, input: BaseModel | Mapping[str, Any]) -> str:
        return render_template(definition.prompt_template, template_values(input)).strip()

    def compile(
        self,
        definition: FunctionDefinition,
        input: BaseModel | Mapping[str, Any],
        history: History | None = None,
        tools: Iterable[ToolDefinition] = (),
    ) -> str:
        query = self.render_query(definition, input)

        sections = [self._preamble]

        catalog = [tool.describe() for tool in tools]
        if catalog:
            rendered = "\n".join(json.dumps(entry, ensure_ascii=False) for entry in catalog)
            sections.append(TOOLS_SECTION.format(tools=rendered))

        if history is not None and len(history):
            sections.append(HISTORY_SECTION.format(history=history.to_json(self._history_limit)))

        schema = envelope_json_schema(definition.output_validator)
        sections.append(FORMAT_SECTION.format(schema=json.dumps(schema, ensure_ascii=False)))
        sections.append(QUERY_SECTION.format(query=query))

        return "\n\n".join(sections)
