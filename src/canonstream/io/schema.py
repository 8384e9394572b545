"""Wire schema for canonical events sent over the network.

Each event serializes to a JSON object with camelCase keys and an
upper-case ``type`` tag (``RUN_STARTED``, ``TEXT_MESSAGE_CONTENT``, ...).
Remote consumers parse it back into the same canonical dataclasses.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from enum import Enum
from typing import Annotated, Any, ClassVar, Dict, List, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel
from typing_extensions import TypeAliasType

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
from canonstream.core.message import ToolCallState, thaw_json

JSONPrimitive = Union[str, int, float, bool, None]
JSONValue = TypeAliasType(
    "JSONValue", Union[JSONPrimitive, Dict[str, "JSONValue"], List["JSONValue"]]
)


class WireModel(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )


class UsageWire(WireModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int | None = None


class ErrorWire(WireModel):
    message: str
    code: str | None = None


class WireEventModel(WireModel):
    """Base for every event on the wire."""

    event_class: ClassVar[Any]

    type: str
    timestamp: int = Field(..., description="Epoch milliseconds at which the event was produced.")

    def to_event(self) -> StreamEvent:
        values = {name: getattr(self, name) for name in type(self).model_fields if name != "type"}
        return self.event_class(**values)


class RunStartedWire(WireEventModel):
    event_class: ClassVar[Any] = RunStarted

    type: Literal["RUN_STARTED"] = "RUN_STARTED"
    run_id: str
    model: str


class TextStartWire(WireEventModel):
    event_class: ClassVar[Any] = TextStart

    type: Literal["TEXT_MESSAGE_START"] = "TEXT_MESSAGE_START"
    message_id: str
    role: str = "assistant"


class TextDeltaWire(WireEventModel):
    event_class: ClassVar[Any] = TextDelta

    type: Literal["TEXT_MESSAGE_CONTENT"] = "TEXT_MESSAGE_CONTENT"
    message_id: str
    delta: str
    accumulated_content: str = Field(..., description="Concatenation of every delta so far for this message.")


class TextEndWire(WireEventModel):
    event_class: ClassVar[Any] = TextEnd

    type: Literal["TEXT_MESSAGE_END"] = "TEXT_MESSAGE_END"
    message_id: str


class ToolCallStartWire(WireEventModel):
    event_class: ClassVar[Any] = ToolCallStart

    type: Literal["TOOL_CALL_START"] = "TOOL_CALL_START"
    tool_call_id: str
    tool_name: str
    index: int


class ToolCallArgsWire(WireEventModel):
    event_class: ClassVar[Any] = ToolCallArgsDelta

    type: Literal["TOOL_CALL_ARGS"] = "TOOL_CALL_ARGS"
    tool_call_id: str
    delta: str


class ToolCallEndWire(WireEventModel):
    event_class: ClassVar[Any] = ToolCallEnd

    type: Literal["TOOL_CALL_END"] = "TOOL_CALL_END"
    tool_call_id: str
    tool_name: str
    parsed_input: Dict[str, JSONValue] = Field(default_factory=dict)


class RunFinishedWire(WireEventModel):
    event_class: ClassVar[Any] = RunFinished

    type: Literal["RUN_FINISHED"] = "RUN_FINISHED"
    run_id: str
    finish_reason: FinishReason
    usage: UsageWire | None = None

    def to_event(self) -> StreamEvent:
        usage = None if self.usage is None else Usage(**self.usage.model_dump())
        return RunFinished(
            run_id=self.run_id,
            finish_reason=self.finish_reason,
            usage=usage,
            timestamp=self.timestamp,
        )


class RunErrorWire(WireEventModel):
    event_class: ClassVar[Any] = RunError

    type: Literal["RUN_ERROR"] = "RUN_ERROR"
    run_id: str
    error: ErrorWire

    def to_event(self) -> StreamEvent:
        return RunError(
            run_id=self.run_id,
            error=ErrorInfo(message=self.error.message, code=self.error.code),
            timestamp=self.timestamp,
        )


class ApprovalRequestedWire(WireEventModel):
    event_class: ClassVar[Any] = ApprovalRequested

    type: Literal["APPROVAL_REQUESTED"] = "APPROVAL_REQUESTED"
    tool_call_id: str
    tool_name: str
    input: Dict[str, JSONValue] = Field(default_factory=dict)
    approval_id: str


class ToolResultWire(WireEventModel):
    event_class: ClassVar[Any] = ToolResult

    type: Literal["TOOL_CALL_RESULT"] = "TOOL_CALL_RESULT"
    tool_call_id: str
    tool_name: str
    content: str
    state: ToolCallState
    metadata: Dict[str, JSONValue] = Field(default_factory=dict)


WireEvent = Annotated[
    Union[
        RunStartedWire,
        TextStartWire,
        TextDeltaWire,
        TextEndWire,
        ToolCallStartWire,
        ToolCallArgsWire,
        ToolCallEndWire,
        RunFinishedWire,
        RunErrorWire,
        ApprovalRequestedWire,
        ToolResultWire,
    ],
    Field(discriminator="type"),
]

_WIRE_ADAPTER: TypeAdapter[Any] = TypeAdapter(WireEvent)

_WIRE_BY_EVENT: dict[type, type[WireEventModel]] = {
    wire.event_class: wire
    for wire in (
        RunStartedWire,
        TextStartWire,
        TextDeltaWire,
        TextEndWire,
        ToolCallStartWire,
        ToolCallArgsWire,
        ToolCallEndWire,
        RunFinishedWire,
        RunErrorWire,
        ApprovalRequestedWire,
        ToolResultWire,
    )
}


def event_to_wire(event: StreamEvent) -> WireEventModel:
    try:
        wire_class = _WIRE_BY_EVENT[type(event)]
    except KeyError:
        raise TypeError(f"unsupported event type {type(event).__name__}") from None

    values = {field.name: _plain(getattr(event, field.name)) for field in dataclasses.fields(event)}
    return wire_class.model_validate(values)


def dump_event(event: StreamEvent) -> str:
    """Serialize ``event`` to its compact JSON wire form."""

    return event_to_wire(event).model_dump_json(by_alias=True, exclude_none=True)


def parse_wire_event(data: str | bytes | Mapping[str, Any]) -> WireEventModel:
    if isinstance(data, (str, bytes)):
        return _WIRE_ADAPTER.validate_json(data)
    return _WIRE_ADAPTER.validate_python(data)


def wire_to_event(data: str | bytes | Mapping[str, Any]) -> StreamEvent:
    return parse_wire_event(data).to_event()


def _plain(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {field.name: _plain(getattr(value, field.name)) for field in dataclasses.fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Mapping):
        return thaw_json(value)
    return value


__all__ = [
    "JSONValue",
    "WireEvent",
    "WireEventModel",
    "dump_event",
    "event_to_wire",
    "parse_wire_event",
    "wire_to_event",
]
