"""Core data structures, canonical events and adapter interfaces."""

from __future__ import annotations

from .cancellation import CancellationToken
from .errors import AdapterError, AgentLoopError, ApprovalError
from .events import (
    ApprovalRequested,
    ErrorInfo,
    FinishReason,
    RunError,
    RunFinished,
    RunStarted,
    StreamEvent,
    TextDelta,
    TextEnd,
    TextStart,
    ToolCallArgsDelta,
    ToolCallEnd,
    ToolCallStart,
    ToolResult,
    Usage,
    is_terminal,
)
from .message import Message, MessageRole, ToolCall, ToolCallState
from .adapters.toolbridge import Tool

__all__ = [
    "AdapterError",
    "AgentLoopError",
    "ApprovalError",
    "ApprovalRequested",
    "CancellationToken",
    "ErrorInfo",
    "FinishReason",
    "Message",
    "MessageRole",
    "RunError",
    "RunFinished",
    "RunStarted",
    "StreamEvent",
    "TextDelta",
    "TextEnd",
    "TextStart",
    "Tool",
    "ToolCall",
    "ToolCallArgsDelta",
    "ToolCallEnd",
    "ToolCallStart",
    "ToolCallState",
    "ToolResult",
    "Usage",
    "is_terminal",
]
