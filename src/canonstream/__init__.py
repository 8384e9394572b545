"""Provider-agnostic streaming events for tool-calling language model agents.

The package normalizes vendor streaming formats into one canonical event
vocabulary, drives a tool-calling agent loop over those events, folds them
into renderable UI messages, and frames them as Server-Sent Events.
"""

from __future__ import annotations

from .client import StreamReducer, UIMessage, reduce_events
from .config import AgentConfig
from .core import (
    AdapterError,
    AgentLoopError,
    ApprovalError,
    ApprovalRequested,
    CancellationToken,
    ErrorInfo,
    FinishReason,
    Message,
    MessageRole,
    RunError,
    RunFinished,
    RunStarted,
    StreamEvent,
    TextDelta,
    TextEnd,
    TextStart,
    Tool,
    ToolCall,
    ToolCallArgsDelta,
    ToolCallEnd,
    ToolCallStart,
    ToolCallState,
    ToolResult,
    Usage,
)
from .io import format_sse, parse_sse, sse_stream
from .runtime import AgentLoop, LoopResult, LoopStatus

__all__ = [
    "AdapterError",
    "AgentConfig",
    "AgentLoop",
    "AgentLoopError",
    "ApprovalError",
    "ApprovalRequested",
    "CancellationToken",
    "ErrorInfo",
    "FinishReason",
    "LoopResult",
    "LoopStatus",
    "Message",
    "MessageRole",
    "RunError",
    "RunFinished",
    "RunStarted",
    "StreamEvent",
    "StreamReducer",
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
    "UIMessage",
    "Usage",
    "format_sse",
    "parse_sse",
    "reduce_events",
    "sse_stream",
]

__version__ = "0.1.0"
