"""Canonical, provider-independent stream events.

Every adapter translates its vendor wire format into this vocabulary, and
every consumer (the agent loop, the UI reducer, the SSE serializer) speaks
only this vocabulary. Events are immutable; timestamps are epoch
milliseconds supplied by the producer's clock.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from .message import ToolCallState


class FinishReason(str, Enum):
    """Normalized classification of why a model turn ended."""

    STOP = "stop"
    LENGTH = "length"
    CONTENT_FILTER = "content_filter"
    TOOL_CALLS = "tool_calls"


@dataclass(frozen=True, slots=True)
class Usage:
    """Token accounting reported by a provider for one or more turns."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int | None = None

    def __post_init__(self) -> None:
        if self.total_tokens is None:
            object.__setattr__(self, "total_tokens", self.prompt_tokens + self.completion_tokens)

    def merge(self, other: Usage | None) -> Usage:
        if other is None:
            return self
        return Usage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=(self.total_tokens or 0) + (other.total_tokens or 0),
        )


@dataclass(frozen=True, slots=True)
class ErrorInfo:
    message: str
    code: str | None = None

    @classmethod
    def from_exception(cls, exc: BaseException) -> ErrorInfo:
        code = getattr(exc, "code", None)
        if code is None:
            code = getattr(exc, "status_code", None)
        message = str(exc) or type(exc).__name__
        return cls(message=message, code=None if code is None else str(code))


@dataclass(frozen=True, slots=True)
class RunStarted:
    run_id: str
    model: str
    timestamp: int


@dataclass(frozen=True, slots=True)
class TextStart:
    message_id: str
    timestamp: int
    role: str = "assistant"


@dataclass(frozen=True, slots=True)
class TextDelta:
    """One text fragment plus the running concatenation for ``message_id``."""

    message_id: str
    delta: str
    accumulated_content: str
    timestamp: int


@dataclass(frozen=True, slots=True)
class TextEnd:
    message_id: str
    timestamp: int


@dataclass(frozen=True, slots=True)
class ToolCallStart:
    tool_call_id: str
    tool_name: str
    index: int
    timestamp: int


@dataclass(frozen=True, slots=True)
class ToolCallArgsDelta:
    tool_call_id: str
    delta: str
    timestamp: int


@dataclass(frozen=True, slots=True)
class ToolCallEnd:
    """Terminal event for one tool call.

    ``parsed_input`` is ``{}`` whenever the accumulated argument string is
    empty, malformed, or not a JSON object.
    """

    tool_call_id: str
    tool_name: str
    parsed_input: Mapping[str, Any]
    timestamp: int


@dataclass(frozen=True, slots=True)
class RunFinished:
    run_id: str
    finish_reason: FinishReason
    timestamp: int
    usage: Usage | None = None


@dataclass(frozen=True, slots=True)
class RunError:
    run_id: str
    error: ErrorInfo
    timestamp: int


@dataclass(frozen=True, slots=True)
class ApprovalRequested:
    tool_call_id: str
    tool_name: str
    input: Mapping[str, Any]
    approval_id: str
    timestamp: int


@dataclass(frozen=True, slots=True)
class ToolResult:
    """Outcome of a tool call once it reached a terminal state."""

    tool_call_id: str
    tool_name: str
    content: str
    state: ToolCallState
    timestamp: int
    metadata: Mapping[str, Any] = field(default_factory=dict)


StreamEvent = Union[
    RunStarted,
    TextStart,
    TextDelta,
    TextEnd,
    ToolCallStart,
    ToolCallArgsDelta,
    ToolCallEnd,
    RunFinished,
    RunError,
    ApprovalRequested,
    ToolResult,
]

TERMINAL_EVENTS = (RunFinished, RunError)


def is_terminal(event: StreamEvent) -> bool:
    """Whether ``event`` ends its stream."""

    return isinstance(event, TERMINAL_EVENTS)


def normalize_finish_reason(value: Any) -> FinishReason:
    """Coerce a vendor or wire finish reason into :class:`FinishReason`."""

    if isinstance(value, FinishReason):
        return value
    try:
        return FinishReason(str(value))
    except ValueError:
        return FinishReason.STOP


__all__ = [
    "ApprovalRequested",
    "ErrorInfo",
    "FinishReason",
    "RunError",
    "RunFinished",
    "RunStarted",
    "StreamEvent",
    "TERMINAL_EVENTS",
    "TextDelta",
    "TextEnd",
    "TextStart",
    "ToolCallArgsDelta",
    "ToolCallEnd",
    "ToolCallStart",
    "ToolResult",
    "Usage",
    "is_terminal",
    "normalize_finish_reason",
]
