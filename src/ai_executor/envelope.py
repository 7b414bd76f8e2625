# envelope.py
# Response envelope: the tagged union every model turn must answer with.
#
#   {"_type": "success",   "_data": <output schema>}
#   {"_type": "error",     "_message": "<string>"}
#   {"_type": "call_tool", "_toolName": "<string>", "_input": {<object>}}
#
# `_type` fully determines the remaining fields. A missing or unknown tag is
# malformed output (OutputParsingError); a known tag with the wrong shape, or
# success data that fails the function's output schema, is a validation
# mismatch (OutputValidationError).

import copy
import json
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ai_executor.errors import OutputParsingError, OutputValidationError
from ai_executor.schema import SchemaValidator, field_errors


class SuccessEnvelope(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    type: Literal["success"] = Field(default="success", alias="_type")
    data: Any = Field(..., alias="_data", description="Payload matching the function's output schema.")


class ErrorEnvelope(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    type: Literal["error"] = Field(default="error", alias="_type")
    message: str = Field(..., alias="_message", description="Why the task cannot be completed.")


class ToolCallEnvelope(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    type: Literal["call_tool"] = Field(default="call_tool", alias="_type")
    tool_name: str = Field(..., alias="_toolName", description="Exact name of the tool to call.")
    input: dict[str, Any] = Field(..., alias="_input", description="Arguments for the tool.")


# `_type` already tells the arms apart, so a plain union also accepts
# envelope instances as they are.
Envelope = Union[SuccessEnvelope, ErrorEnvelope, ToolCallEnvelope]

_ARMS: dict[str, type[BaseModel]] = {
    "success": SuccessEnvelope,
    "error": ErrorEnvelope,
    "call_tool": ToolCallEnvelope,
}


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_envelope(parsed: Any, output_validator: SchemaValidator | None = None) -> Envelope:
    """
    Validate a parsed JSON value as an envelope.

    With an `output_validator`, success data additionally goes through the
    function's output schema and is replaced by the validated model instance.
    """
    tag = parsed.get("_type") if isinstance(parsed, dict) else None
    arm = _ARMS.get(tag) if isinstance(tag, str) else None
    if arm is None:
        raw = json.dumps(parsed, default=str)
        raise OutputParsingError(
            f"Response has no valid '_type' tag (expected one of {sorted(_ARMS)}).",
            raw_output=raw,
        )

    try:
        envelope = arm.model_validate(parsed)
    except ValidationError as exc:
        errors = field_errors(exc)
        raise OutputValidationError(
            f"Malformed '{tag}' envelope: " + "; ".join(str(e) for e in errors),
            output=parsed,
            errors=errors,
        ) from exc

    if output_validator is not None and isinstance(envelope, SuccessEnvelope):
        envelope = validate_success_data(envelope, output_validator)
    return envelope


def validate_success_data(envelope: SuccessEnvelope, output_validator: SchemaValidator) -> SuccessEnvelope:
    """Second, narrower pass: success data against the function's output schema."""
    result = output_validator.check(envelope.data)
    if not result.ok:
        raise OutputValidationError(
            f"Success data does not match {output_validator.schema.__name__}: {result.summary()}",
            output=envelope.data,
            errors=result.errors,
        )
    return SuccessEnvelope(data=result.value)


# ---------------------------------------------------------------------------
# JSON-Schema for the prompt
# ---------------------------------------------------------------------------


def envelope_json_schema(output_validator: SchemaValidator) -> dict[str, Any]:
    """
    JSON-Schema of the union with the function's real output schema in the
    success arm. Nested definitions are hoisted to the root so `$ref`s stay
    resolvable.
    """
    data_schema = copy.deepcopy(output_validator.describe())
    defs = data_schema.pop("$defs", {})

    success = SuccessEnvelope.model_json_schema(by_alias=True)
    success["properties"]["_data"] = data_schema
    arms = [
        success,
        ErrorEnvelope.model_json_schema(by_alias=True),
        ToolCallEnvelope.model_json_schema(by_alias=True),
    ]
    for arm in arms:
        arm["required"] = sorted(set(arm.get("required", [])) | {"_type"})

    schema: dict[str, Any] = {"oneOf": arms}
    if defs:
        schema["$defs"] = defs
    return schema
