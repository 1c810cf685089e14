"""Tool registry keyed by tool name."""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any, Union

from search_agent.agent.lifecycle import CancellationSignal
from search_agent.agent.schema import ParameterSchema, ToolSchema, validate_parameters
from search_agent.types import ToolCall, ToolResult, ValidationResult

ToolHandler = Callable[
    [dict[str, Any], Union[CancellationSignal, None]],
    Union[ToolResult, Any, Awaitable[Union[ToolResult, Any]]],
]


@dataclass(slots=True, frozen=True)
class RegisteredTool:
    schema: ToolSchema
    handler: ToolHandler


class ToolRegistry:
    """Stores schema+handler pairs and validates calls against them."""

    def __init__(self) -> None:
        self._tools: dict[str, RegisteredTool] = {}

    def register(self, schema: ToolSchema | Mapping[str, Any], handler: ToolHandler) -> None:
        """Register a tool, replacing any earlier tool with the same name.

        Raises:
            ValueError: the schema has no name or description, or its
                parameters are not an object schema.
        """

        if not isinstance(schema, ToolSchema):
            _check_raw_schema(schema)
            schema = ToolSchema.model_validate(schema)
        if not schema.name or not isinstance(schema.name, str):
            raise ValueError("Tool schema must have a valid name")
        if not schema.description or not isinstance(schema.description, str):
            raise ValueError("Tool schema must have a description")
        if schema.parameters.type != "object":
            raise ValueError("Tool schema parameters must be an object type")
        self._tools[schema.name] = RegisteredTool(schema=schema, handler=handler)

    def unregister(self, name: str) -> bool:
        return self._tools.pop(name, None) is not None

    def clear(self) -> None:
        self._tools.clear()

    def list_schemas(self) -> list[ToolSchema]:
        return [entry.schema for entry in self._tools.values()]

    def get_schema(self, name: str) -> ToolSchema | None:
        entry = self._tools.get(name)
        return entry.schema if entry else None

    def get_handler(self, name: str) -> ToolHandler | None:
        entry = self._tools.get(name)
        return entry.handler if entry else None

    def names(self) -> list[str]:
        return list(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def validate_call(self, call: ToolCall) -> ValidationResult:
        entry = self._tools.get(call.name)
        if entry is None:
            return ValidationResult(
                valid=False,
                errors=[
                    f"Unknown tool: {call.name}. "
                    f"Available tools: {', '.join(self._tools)}"
                ],
            )
        return validate_parameters(call.parameters, entry.schema.parameters)

    def format_for_prompt(self) -> str:
        """Render every registered tool as a prompt section for the model."""

        if not self._tools:
            return "No tools available."

        sections: list[str] = []
        for schema in self.list_schemas():
            section = (
                f"### {schema.name}\n{schema.description}\n\n"
                f"Parameters:\n{_format_parameters(schema.parameters)}"
            )
            if schema.examples:
                examples = "\n".join(
                    f"  - {example.description}: "
                    f"{json.dumps(example.input, ensure_ascii=False)}"
                    for example in schema.examples
                )
                section += f"\nExamples:\n{examples}"
            sections.append(section)
        return "\n\n".join(sections)


def _check_raw_schema(schema: Mapping[str, Any]) -> None:
    # Surface the registry's own messages before pydantic coercion kicks in.
    for key in ("name", "description"):
        value = schema.get(key)
        if not value or not isinstance(value, str):
            label = "a valid name" if key == "name" else "a description"
            raise ValueError(f"Tool schema must have {label}")
    parameters = schema.get("parameters")
    if not isinstance(parameters, Mapping) or parameters.get("type") != "object":
        raise ValueError("Tool schema parameters must be an object type")


def _format_parameters(schema: ParameterSchema) -> str:
    lines: list[str] = []
    required = set(schema.required or [])
    for name, prop in (schema.properties or {}).items():
        flag = "required" if name in required else "optional"
        description = f" - {prop.description}" if prop.description else ""
        lines.append(f"- {name}: {prop.type} ({flag}){description}")
        if prop.enum:
            lines.append(f"  Allowed values: {', '.join(prop.enum)}")
    return "\n".join(lines)
