"""Client-side reduction of canonical events into renderable messages."""

from .reducer import (
    ApprovalInfo,
    StreamReducer,
    TextPart,
    ToolCallPart,
    UIMessage,
    reduce_events,
)

__all__ = [
    "ApprovalInfo",
    "StreamReducer",
    "TextPart",
    "ToolCallPart",
    "UIMessage",
    "reduce_events",
]
