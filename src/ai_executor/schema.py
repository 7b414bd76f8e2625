# schema.py
# Schema validator: answers "does this value conform" for a pydantic model.
#
# Structured field-level errors are returned, never raised, so each caller can
# wrap them in the error type that fits its layer.

from typing import Any

from pydantic import BaseModel, Field, ValidationError


class FieldError(BaseModel):
    """One field-level mismatch, flattened from a pydantic error."""

    loc: str = Field(..., description="Dotted path to the offending field; empty for the root.")
    message: str
    kind: str = Field(..., description="pydantic error type, e.g. 'missing' or 'int_parsing'.")

    def __str__(self) -> str:
        return f"{self.loc}: {self.message}" if self.loc else self.message


class ValidationResult(BaseModel):
    value: Any = None
    errors: list[FieldError] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def summary(self) -> str:
        return "; ".join(str(error) for error in self.errors)


def field_errors(exc: ValidationError) -> list[FieldError]:
    return [
        FieldError(
            loc=".".join(str(part) for part in error["loc"]),
            message=error["msg"],
            kind=error["type"],
        )
        for error in exc.errors()
    ]


class SchemaValidator:
    """
    Wraps an input or output schema.

    `check()` accepts either an instance of the schema (returned as-is) or any
    JSON-like value, which is validated into a new instance.
    """

    def __init__(self, schema: type[BaseModel]) -> None:
        self._schema = schema

    @property
    def schema(self) -> type[BaseModel]:
        return self._schema

    def check(self, value: Any) -> ValidationResult:
        if isinstance(value, self._schema):
            return ValidationResult(value=value)
        try:
            return ValidationResult(value=self._schema.model_validate(value))
        except ValidationError as exc:
            return ValidationResult(errors=field_errors(exc))

    def conforms(self, value: Any) -> bool:
        return self.check(value).ok

    def describe(self) -> dict[str, Any]:
        """JSON-Schema of the wrapped model."""
        return self._schema.model_json_schema()
