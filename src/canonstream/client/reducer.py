"""Fold canonical events into an ordered list of UI message parts.

The reducer owns one :class:`UIMessage` and mutates it in place as events
arrive. Tool-call parts are always located by ``tool_call_id`` and text
parts by ``message_id``; list positions are never used as identity because
parts move when a tool call is inserted ahead of the turn's text.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Union

from canonstream.core.events import (
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
)
from canonstream.core.ids import generate_id
from canonstream.core.message import ToolCallState, thaw_json

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class TextPart:
    message_id: str
    content: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"type": "text", "messageId": self.message_id, "content": self.content}


@dataclass(slots=True)
class ApprovalInfo:
    id: str
    needs_approval: bool = True
    approved: bool | None = None


@dataclass(slots=True)
class ToolCallPart:
    """Render state of one tool call.

    ``arguments`` is the raw argument text streamed so far; ``input`` is the
    parsed object once the call ended.
    """

    id: str
    name: str
    arguments: str = ""
    state: ToolCallState = ToolCallState.AWAITING_INPUT
    input: dict[str, Any] | None = None
    output: str | None = None
    approval: ApprovalInfo | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": "tool-call",
            "id": self.id,
            "name": self.name,
            "arguments": self.arguments,
            "state": self.state.value,
        }
        if self.input is not None:
            data["input"] = self.input
        if self.output is not None:
            data["output"] = self.output
        if self.approval is not None:
            data["approval"] = {
                "id": self.approval.id,
                "needsApproval": self.approval.needs_approval,
                "approved": self.approval.approved,
            }
        return data


MessagePart = Union[TextPart, ToolCallPart]


@dataclass(slots=True)
class UIMessage:
    id: str = field(default_factory=lambda: generate_id("msg"))
    role: str = "assistant"
    parts: list[MessagePart] = field(default_factory=list)
    error: ErrorInfo | None = None
    finish_reason: FinishReason | None = None
    usage: Usage | None = None

    @property
    def text(self) -> str:
        return "".join(part.content for part in self.parts if isinstance(part, TextPart))

    @property
    def tool_calls(self) -> list[ToolCallPart]:
        return [part for part in self.parts if isinstance(part, ToolCallPart)]

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "role": self.role,
            "parts": [part.to_dict() for part in self.parts],
        }
        if self.error is not None:
            data["error"] = {"message": self.error.message, "code": self.error.code}
        if self.finish_reason is not None:
            data["finishReason"] = self.finish_reason.value
        if self.usage is not None:
            data["usage"] = {
                "promptTokens": self.usage.prompt_tokens,
                "completionTokens": self.usage.completion_tokens,
                "totalTokens": self.usage.total_tokens,
            }
        return data


class StreamReducer:
    """Apply canonical events to a single :class:`UIMessage`.

    With ``tool_calls_before_text`` (the default) a tool-call part that first
    appears after text of the same turn is inserted ahead of that text part,
    so the text stays rendered after the tools it follows up on.
    """

    def __init__(self, message: UIMessage | None = None, *, tool_calls_before_text: bool = True) -> None:
        self.message = message or UIMessage()
        self.tool_calls_before_text = tool_calls_before_text
        self._current_text: str | None = None

    def apply(self, event: StreamEvent) -> UIMessage:
        if isinstance(event, RunStarted):
            # a new turn; its text must not capture tool calls of the next one
            self._current_text = None
        elif isinstance(event, (TextStart, TextEnd)):
            pass
        elif isinstance(event, TextDelta):
            self._apply_text(event)
        elif isinstance(event, ToolCallStart):
            part = self._tool_part(event.tool_call_id, event.tool_name)
            if not part.name:
                part.name = event.tool_name
        elif isinstance(event, ToolCallArgsDelta):
            part = self._tool_part(event.tool_call_id)
            part.arguments += event.delta
            part.state = ToolCallState.INPUT_STREAMING
        elif isinstance(event, ToolCallEnd):
            part = self._tool_part(event.tool_call_id, event.tool_name)
            part.input = thaw_json(event.parsed_input)
            part.state = ToolCallState.INPUT_COMPLETE
        elif isinstance(event, ApprovalRequested):
            part = self._tool_part(event.tool_call_id, event.tool_name)
            if part.input is None:
                part.input = thaw_json(event.input)
            part.approval = ApprovalInfo(id=event.approval_id)
            part.state = ToolCallState.APPROVAL_REQUESTED
        elif isinstance(event, ToolResult):
            part = self._tool_part(event.tool_call_id, event.tool_name)
            part.output = event.content
            part.state = event.state
        elif isinstance(event, RunFinished):
            self.message.finish_reason = event.finish_reason
            if event.usage is not None:
                self.message.usage = event.usage.merge(self.message.usage)
        elif isinstance(event, RunError):
            self.message.error = event.error
        else:
            LOGGER.debug("reducer ignoring %s", type(event).__name__)
        return self.message

    def respond_to_approval(self, approval_id: str, approved: bool) -> ToolCallPart:
        """Record a local approval decision on the part waiting for it."""

        for part in self.message.tool_calls:
            if part.approval is not None and part.approval.id == approval_id:
                part.approval.approved = approved
                part.state = ToolCallState.APPROVAL_RESPONDED
                return part
        msg = f"no tool call is waiting on approval {approval_id!r}"
        raise KeyError(msg)

    def set_tool_output(self, tool_call_id: str, output: str, *, error: bool = False) -> ToolCallPart:
        part = self._find_tool(tool_call_id)
        if part is None:
            msg = f"unknown tool call {tool_call_id!r}"
            raise KeyError(msg)
        part.output = output
        part.state = ToolCallState.OUTPUT_ERROR if error else ToolCallState.OUTPUT_AVAILABLE
        return part

    def _apply_text(self, event: TextDelta) -> None:
        for part in self.message.parts:
            if isinstance(part, TextPart) and part.message_id == event.message_id:
                part.content = event.accumulated_content
                break
        else:
            self.message.parts.append(TextPart(event.message_id, event.accumulated_content))
        self._current_text = event.message_id

    def _find_tool(self, tool_call_id: str) -> ToolCallPart | None:
        for part in self.message.parts:
            if isinstance(part, ToolCallPart) and part.id == tool_call_id:
                return part
        return None

    def _tool_part(self, tool_call_id: str, tool_name: str = "") -> ToolCallPart:
        part = self._find_tool(tool_call_id)
        if part is not None:
            return part

        part = ToolCallPart(id=tool_call_id, name=tool_name)
        position = self._text_position() if self.tool_calls_before_text else None
        if position is None:
            self.message.parts.append(part)
        else:
            self.message.parts.insert(position, part)
        return part

    def _text_position(self) -> int | None:
        if self._current_text is None:
            return None
        for position, part in enumerate(self.message.parts):
            if isinstance(part, TextPart) and part.message_id == self._current_text:
                return position
        return None


def reduce_events(
    events: Iterable[StreamEvent],
    *,
    message: UIMessage | None = None,
    tool_calls_before_text: bool = True,
) -> UIMessage:
    reducer = StreamReducer(message, tool_calls_before_text=tool_calls_before_text)
    for event in events:
        reducer.apply(event)
    return reducer.message


__all__ = [
    "ApprovalInfo",
    "MessagePart",
    "StreamReducer",
    "TextPart",
    "ToolCallPart",
    "UIMessage",
    "reduce_events",
]
