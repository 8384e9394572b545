"""Conversation message schema shared by adapters and the agent loop."""

from __future__ import annotations

import json
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

from .ids import generate_id


class MessageRole(str, Enum):
    """Canonical role names understood by every adapter."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ToolCallState(str, Enum):
    """Lifecycle states of a tool call, shared by the loop and the UI reducer."""

    AWAITING_INPUT = "awaiting-input"
    INPUT_STREAMING = "input-streaming"
    INPUT_COMPLETE = "input-complete"
    PENDING = "pending"
    EXECUTING = "executing"
    APPROVAL_REQUESTED = "approval-requested"
    APPROVAL_RESPONDED = "approval-responded"
    OUTPUT_AVAILABLE = "output-available"
    OUTPUT_ERROR = "output-error"

    @property
    def is_terminal(self) -> bool:
        return self in (ToolCallState.OUTPUT_AVAILABLE, ToolCallState.OUTPUT_ERROR)


@dataclass(frozen=True, slots=True)
class ToolCall:
    """A tool invocation requested by an assistant message."""

    id: str
    name: str
    arguments: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.id, str) or not self.id:
            msg = "tool call id must be a non-empty string"
            raise ValueError(msg)
        if not isinstance(self.name, str) or not self.name:
            msg = "tool call name must be a non-empty string"
            raise ValueError(msg)
        if not isinstance(self.arguments, Mapping):
            msg = "tool call arguments must be a mapping"
            raise TypeError(msg)

        plain_arguments = thaw_json(dict(self.arguments))
        ensure_json_compatible(plain_arguments, path="ToolCall.arguments")

        sanitized = json.loads(json.dumps(plain_arguments, allow_nan=False))
        object.__setattr__(self, "arguments", freeze_json(sanitized))

    def arguments_json(self) -> str:
        """Return the arguments encoded as a compact JSON object string."""

        return json.dumps(thaw_json(self.arguments), separators=(",", ":"))


@dataclass(frozen=True, slots=True)
class Message:
    """A single entry of the append-only conversation history.

    ``content`` may be ``None`` for assistant turns that only request tools.
    Tool result messages carry the ``tool_call_id`` they answer and the
    terminal ``state`` reached by that call.
    """

    role: MessageRole
    content: str | None = None
    tool_calls: tuple[ToolCall, ...] | None = None
    tool_call_id: str | None = None
    state: ToolCallState | None = None
    id: str = field(default_factory=lambda: generate_id("msg"))

    def __post_init__(self) -> None:
        if not isinstance(self.role, MessageRole):
            object.__setattr__(self, "role", MessageRole(self.role))

        if self.content is not None and not isinstance(self.content, str):
            msg = "message content must be a string or None"
            raise TypeError(msg)

        if self.tool_calls is not None:
            if not isinstance(self.tool_calls, Sequence) or isinstance(
                self.tool_calls, (str, bytes, bytearray)
            ):
                msg = "tool_calls must be a sequence of ToolCall instances"
                raise TypeError(msg)
            candidates = tuple(self.tool_calls)
            for call in candidates:
                if not isinstance(call, ToolCall):
                    msg = "tool_calls must contain ToolCall instances"
                    raise TypeError(msg)
            if candidates and self.role is not MessageRole.ASSISTANT:
                msg = "only assistant messages may carry tool calls"
                raise ValueError(msg)
            object.__setattr__(self, "tool_calls", candidates or None)

        if self.role is MessageRole.TOOL:
            if not isinstance(self.tool_call_id, str) or not self.tool_call_id:
                msg = "tool messages require a tool_call_id"
                raise ValueError(msg)
        elif self.tool_call_id is not None:
            msg = "tool_call_id is only valid on tool messages"
            raise ValueError(msg)

        if self.state is not None and not isinstance(self.state, ToolCallState):
            object.__setattr__(self, "state", ToolCallState(self.state))

    @classmethod
    def user(cls, content: str) -> Message:
        return cls(role=MessageRole.USER, content=content)

    @classmethod
    def system(cls, content: str) -> Message:
        return cls(role=MessageRole.SYSTEM, content=content)

    @classmethod
    def tool_result(
        cls,
        tool_call_id: str,
        content: str,
        *,
        state: ToolCallState = ToolCallState.OUTPUT_AVAILABLE,
    ) -> Message:
        return cls(role=MessageRole.TOOL, content=content, tool_call_id=tool_call_id, state=state)


def ensure_json_compatible(value: Any, *, path: str) -> None:
    if isinstance(value, Mapping):
        for key, inner in value.items():
            if not isinstance(key, str):
                msg = f"{path} keys must be strings"
                raise TypeError(msg)
            ensure_json_compatible(inner, path=f"{path}.{key}")
        return

    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        for index, item in enumerate(value):
            ensure_json_compatible(item, path=f"{path}[{index}]")
        return

    if isinstance(value, (bool, type(None), str)):
        return

    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            msg = f"{path} contains non-finite float values"
            raise ValueError(msg)
        return

    msg = f"{path} contains unsupported value type {type(value).__name__}"
    raise TypeError(msg)


def freeze_json(value: Any) -> Any:
    if isinstance(value, dict):
        return MappingProxyType({key: freeze_json(inner) for key, inner in value.items()})

    if isinstance(value, list):
        return tuple(freeze_json(inner) for inner in value)

    return value


def thaw_json(value: Any) -> Any:
    """Convert frozen mapping proxies and tuples back into plain JSON values."""

    if isinstance(value, Mapping):
        return {key: thaw_json(inner) for key, inner in value.items()}

    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return [thaw_json(inner) for inner in value]

    return value
