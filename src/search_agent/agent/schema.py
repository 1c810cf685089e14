"""Tool schemas and the structural validator for tool-call parameters."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from search_agent.types import ValidationResult

ParameterType = Literal["string", "number", "boolean", "array", "object"]


class ParameterSchema(BaseModel):
    """Recursive description of a parameter value."""

    model_config = ConfigDict(frozen=True)

    type: ParameterType
    description: str | None = None
    properties: dict[str, ParameterSchema] | None = None
    items: ParameterSchema | None = None
    required: list[str] | None = None
    enum: list[str] | None = None


class ToolExample(BaseModel):
    model_config = ConfigDict(frozen=True)

    input: dict[str, Any]
    description: str


class ToolSchema(BaseModel):
    """Declarative tool description shown to the model and used for validation.

    Field contents are checked at registration time rather than here, so an
    invalid schema can still be constructed and rejected by the registry.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    parameters: ParameterSchema
    examples: list[ToolExample] = Field(default_factory=list)


def json_type_name(value: Any) -> str:
    """Return the JSON type name of a Python value."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, Mapping):
        return "object"
    return type(value).__name__


def validate_value(value: Any, schema: ParameterSchema, path: str) -> list[str]:
    """Collect type and enum violations for `value` and everything below it.

    Absent (`None`) values are never flagged here; required-ness is checked
    by `validate_parameters` at the object root.
    """

    if value is None:
        return []

    errors: list[str] = []
    actual = json_type_name(value)

    if schema.type == "string":
        if actual != "string":
            errors.append(f"{path}: expected string, got {actual}")
        elif schema.enum and value not in schema.enum:
            errors.append(f"{path}: value must be one of [{', '.join(schema.enum)}]")

    elif schema.type in ("number", "boolean"):
        if actual != schema.type:
            errors.append(f"{path}: expected {schema.type}, got {actual}")

    elif schema.type == "array":
        if actual != "array":
            errors.append(f"{path}: expected array, got {actual}")
        elif schema.items is not None:
            for index, item in enumerate(value):
                errors.extend(validate_value(item, schema.items, f"{path}[{index}]"))

    elif schema.type == "object":
        if actual != "object":
            errors.append(f"{path}: expected object, got {actual}")
        elif schema.properties:
            for key, prop_schema in schema.properties.items():
                errors.extend(validate_value(value.get(key), prop_schema, f"{path}.{key}"))

    return errors


def validate_parameters(params: Any, schema: ParameterSchema) -> ValidationResult:
    """Validate a call's root parameter mapping against an object schema."""

    if not isinstance(params, Mapping):
        return ValidationResult(
            valid=False,
            errors=[f"parameters: expected object, got {json_type_name(params)}"],
        )

    errors: list[str] = []
    for field_name in schema.required or []:
        if params.get(field_name) is None:
            errors.append(f"Missing required parameter: {field_name}")

    for key, prop_schema in (schema.properties or {}).items():
        if key in params:
            errors.extend(validate_value(params[key], prop_schema, key))

    return ValidationResult(valid=not errors, errors=errors or None)


def validate(value: Any, schema: ParameterSchema) -> ValidationResult:
    """Validate any value tree; object schemas also enforce `required`."""

    if schema.type == "object":
        return validate_parameters(value, schema)
    errors = validate_value(value, schema, "value")
    return ValidationResult(valid=not errors, errors=errors or None)
