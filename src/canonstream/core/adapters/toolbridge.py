"""Tool declarations and their provider schemas."""

from __future__ import annotations

import json
import re
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Union

from ..errors import AdapterError
from ..message import ensure_json_compatible, freeze_json, thaw_json

_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{1,64}$")

ToolExecutorFn = Callable[[Mapping[str, Any]], Union[Any, Awaitable[Any]]]


@dataclass(frozen=True, slots=True)
class Tool:
    """A function the model may call.

    A tool without an ``executor`` can only be resolved through an approval
    decision. ``needs_approval`` gates a tool that does have an executor.
    """

    name: str
    parameters: Mapping[str, Any]
    description: str | None = None
    executor: ToolExecutorFn | None = field(default=None, compare=False)
    needs_approval: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not _NAME_PATTERN.fullmatch(self.name):
            msg = "tool name must match ^[a-zA-Z0-9_-]{1,64}$"
            raise AdapterError(msg)

        normalized_description: str | None = None
        if self.description is not None:
            if not isinstance(self.description, str):
                msg = "tool description must be a string when provided"
                raise AdapterError(msg)
            stripped = self.description.strip()
            if not stripped:
                msg = "tool description cannot be empty"
                raise AdapterError(msg)
            normalized_description = stripped

        if self.executor is not None and not callable(self.executor):
            msg = f"executor for tool '{self.name}' must be callable"
            raise AdapterError(msg)

        if not isinstance(self.parameters, Mapping):
            msg = "tool parameters must be a mapping"
            raise AdapterError(msg)

        raw_parameters = thaw_json(self.parameters)
        try:
            ensure_json_compatible(raw_parameters, path=f"Tool('{self.name}').parameters")
            sanitized = json.loads(json.dumps(raw_parameters, allow_nan=False))
        except (TypeError, ValueError) as exc:
            msg = "tool parameters must be JSON serializable"
            raise AdapterError(msg) from exc

        if sanitized.get("type") != "object":
            msg = "tool parameters must describe a JSON object"
            raise AdapterError(msg)

        properties = sanitized.setdefault("properties", {})
        if not isinstance(properties, dict):
            msg = "tool parameters must include an object 'properties' mapping"
            raise AdapterError(msg)

        required = sanitized.get("required")
        if required is not None:
            if not isinstance(required, list):
                msg = "tool parameter 'required' must be a list of strings"
                raise AdapterError(msg)
            for index, item in enumerate(required):
                if not isinstance(item, str) or not item:
                    msg = f"required parameter names must be non-empty strings (index {index})"
                    raise AdapterError(msg)
                if item not in properties:
                    msg = f"required parameter '{item}' is not defined"
                    raise AdapterError(msg)

        if normalized_description is not None:
            object.__setattr__(self, "description", normalized_description)
        object.__setattr__(self, "parameters", freeze_json(sanitized))

    @property
    def requires_approval(self) -> bool:
        return self.executor is None or self.needs_approval

    def schema(self) -> dict[str, Any]:
        """Return the JSON schema of the parameters as plain data."""

        return thaw_json(self.parameters)


def tools_to_openai(tools: Sequence[Tool]) -> list[dict[str, Any]]:
    """Convert tools to the OpenAI-style ``tools`` payload (also used by Groq and Ollama)."""

    converted: list[dict[str, Any]] = []
    for tool in _unique_tools(tools):
        function_payload: dict[str, Any] = {"name": tool.name, "parameters": tool.schema()}
        if tool.description is not None:
            function_payload["description"] = tool.description
        converted.append({"type": "function", "function": function_payload})
    return converted


def tools_to_anthropic(tools: Sequence[Tool]) -> list[dict[str, Any]]:
    converted: list[dict[str, Any]] = []
    for tool in _unique_tools(tools):
        payload: dict[str, Any] = {"name": tool.name, "input_schema": tool.schema()}
        if tool.description is not None:
            payload["description"] = tool.description
        converted.append(payload)
    return converted


def tools_by_name(tools: Sequence[Tool]) -> dict[str, Tool]:
    return {tool.name: tool for tool in _unique_tools(tools)}


def _unique_tools(tools: Sequence[Tool]) -> list[Tool]:
    if isinstance(tools, (str, bytes, bytearray)):
        msg = "tools must be provided as a sequence of Tool instances"
        raise AdapterError(msg)

    seen_names: set[str] = set()
    unique: list[Tool] = []
    for index, tool in enumerate(tools):
        if not isinstance(tool, Tool):
            msg = f"tools[{index}] must be a Tool"
            raise AdapterError(msg)
        if tool.name in seen_names:
            msg = f"duplicate tool name '{tool.name}'"
            raise AdapterError(msg)
        seen_names.add(tool.name)
        unique.append(tool)
    return unique
