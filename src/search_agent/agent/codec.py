"""Tool-call serialization and tolerant parsing of model output.

Two wire syntaxes are accepted when parsing:

- JSON: `{"tool": "<name>", "parameters": {...}, "reasoning": "<text>"}`
- XML-like: `<tool_call><name>..</name><parameters>{..}</parameters>
  <reasoning>..</reasoning></tool_call>`

JSON is tried first. A `None` result means no tool call is present in the
text; it is not an error.
"""

from __future__ import annotations

import json
import re
from typing import Any

from pydantic import ValidationError

from search_agent.agent.schema import ToolSchema
from search_agent.types import ToolCall

_DECODER = json.JSONDecoder()

_TOOL_CALL_BLOCK = re.compile(r"<tool_call>(.*?)</tool_call>", flags=re.DOTALL)
_NAME_TAG = re.compile(r"<name>(.*?)</name>", flags=re.DOTALL)
_PARAMETERS_TAG = re.compile(r"<parameters>(.*?)</parameters>", flags=re.DOTALL)
_REASONING_TAG = re.compile(r"<reasoning>(.*?)</reasoning>", flags=re.DOTALL)


def serialize_tool_call(call: ToolCall) -> str:
    """Serialize a call to its canonical JSON form.

    Top-level keys keep the fixed order `tool`, `parameters`, `reasoning`;
    parameter keys are sorted, so equal calls always produce equal bytes.
    """

    return "{%s: %s, %s: %s, %s: %s}" % (
        json.dumps("tool"),
        json.dumps(call.name, ensure_ascii=False),
        json.dumps("parameters"),
        json.dumps(call.parameters, ensure_ascii=False, sort_keys=True),
        json.dumps("reasoning"),
        json.dumps(call.reasoning, ensure_ascii=False),
    )


def parse_tool_call(text: str) -> ToolCall | None:
    return _parse_json_tool_call(text) or _parse_xml_tool_call(text)


def _parse_json_tool_call(text: str) -> ToolCall | None:
    payload = _first_object_with_key(text, "tool")
    if payload is None:
        return None

    name = payload.get("tool")
    if not isinstance(name, str) or not name:
        return None

    parameters = payload.get("parameters")
    reasoning = payload.get("reasoning")
    return ToolCall(
        name=name,
        parameters={} if parameters is None else parameters,
        reasoning="" if reasoning is None else str(reasoning),
    )


def _first_object_with_key(text: str, key: str) -> dict[str, Any] | None:
    """Return the first decodable JSON object in `text` that has `key`.

    Scanning resumes one character after every candidate brace, so objects
    nested inside a non-matching outer object are still found.
    """

    position = text.find("{")
    while position != -1:
        try:
            candidate, _ = _DECODER.raw_decode(text, position)
        except json.JSONDecodeError:
            candidate = None
        if isinstance(candidate, dict) and key in candidate:
            return candidate
        position = text.find("{", position + 1)
    return None


def _parse_xml_tool_call(text: str) -> ToolCall | None:
    block = _TOOL_CALL_BLOCK.search(text)
    if block is None:
        return None

    content = block.group(1)
    name_match = _NAME_TAG.search(content)
    if name_match is None:
        return None

    parameters: dict[str, Any] = {}
    params_match = _PARAMETERS_TAG.search(content)
    if params_match is not None:
        try:
            decoded = json.loads(params_match.group(1).strip())
        except json.JSONDecodeError:
            decoded = None
        if isinstance(decoded, dict):
            parameters = decoded

    reasoning_match = _REASONING_TAG.search(content)
    return ToolCall(
        name=name_match.group(1).strip(),
        parameters=parameters,
        reasoning=reasoning_match.group(1).strip() if reasoning_match else "",
    )


def serialize_tool_schema(schema: ToolSchema) -> str:
    return schema.model_dump_json(exclude_none=True)


def parse_tool_schema(text: str) -> ToolSchema | None:
    """Parse a serialized schema, returning `None` for malformed input."""

    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None
    if not isinstance(payload.get("examples"), list):
        payload["examples"] = []
    try:
        return ToolSchema.model_validate(payload)
    except ValidationError:
        return None
