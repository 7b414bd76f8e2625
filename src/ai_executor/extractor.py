# extractor.py
# Output extractor: recover a JSON substring from noisy model text.
#
# Strategies, first hit wins:
#   0. the whole trimmed text is already a JSON document
#   1. a fenced block tagged `json` (any case)
#   2. any fenced block whose interior starts with `{` or `[`
#   3. the first `{`/`[` up to its balancing closer (depth counter)
# Extraction never assumes the substring is valid JSON; parse() does that and
# reports failure as OutputParsingError, never as a crash.

import json
import re
from typing import Any

from ai_executor.errors import OutputParsingError

_FENCE = re.compile(r"```[ \t]*([A-Za-z0-9_+-]*)[^\n`]*\n?(.*?)```", re.DOTALL)
_CLOSERS = {"{": "}", "[": "]"}


def _is_json(text: str) -> bool:
    try:
        json.loads(text)
    except ValueError:
        return False
    return True


def _fenced_blocks(raw: str) -> list[tuple[str, str]]:
    return [(match.group(1).lower(), match.group(2).strip()) for match in _FENCE.finditer(raw)]


def _balanced_span(raw: str) -> str | None:
    """
    Span from the first `{` or `[` to the closer that returns depth to 0.

    Only the opener's own bracket kind is counted, and brackets inside JSON
    string literals are ignored.
    """
    starts = [index for index in (raw.find("{"), raw.find("[")) if index != -1]
    if not starts:
        return None
    start = min(starts)
    opener = raw[start]
    closer = _CLOSERS[opener]

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(raw)):
        char = raw[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == opener:
            depth += 1
        elif char == closer:
            depth -= 1
            if depth == 0:
                return raw[start : index + 1]
    return None


def extract(raw: str) -> str:
    """Best-guess JSON substring of `raw`. Raises OutputParsingError if none."""
    trimmed = raw.strip()
    if trimmed and _is_json(trimmed):
        return trimmed

    blocks = _fenced_blocks(raw)
    for tag, body in blocks:
        if tag == "json" and body:
            return body
    for _, body in blocks:
        if body.startswith(("{", "[")):
            return body

    span = _balanced_span(raw)
    if span is not None:
        return span

    raise OutputParsingError("Could not locate JSON content in the model output.", raw_output=raw)


def parse(raw: str) -> Any:
    """extract() followed by json.loads; both failures surface as OutputParsingError."""
    candidate = extract(raw)
    try:
        # strict=False tolerates literal newlines inside strings
        return json.loads(candidate, strict=False)
    except json.JSONDecodeError as exc:
        raise OutputParsingError(f"Extracted content is not valid JSON: {exc}", raw_output=raw) from exc
