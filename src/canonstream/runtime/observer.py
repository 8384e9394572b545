"""Observers notified by the agent loop for every event it yields."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any, Protocol

from canonstream.core.events import (
    ApprovalRequested,
    RunError,
    RunFinished,
    StreamEvent,
    TextDelta,
    ToolCallEnd,
    ToolCallStart,
    ToolResult,
)
from canonstream.io.schema import event_to_wire

from .state import AgentLoopState

LOGGER = logging.getLogger(__name__)


class LoopObserver(Protocol):
    def on_event(self, event: StreamEvent, state: AgentLoopState) -> None:
        """Receive an event and the loop state at the time it was yielded."""


class NullObserver:
    def on_event(self, event: StreamEvent, state: AgentLoopState) -> None:
        return None


class LoggingObserver:
    """Log stream progress for observability."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or LOGGER

    def on_event(self, event: StreamEvent, state: AgentLoopState) -> None:
        if isinstance(event, TextDelta):
            self._logger.debug("on_event message=%s delta=%r", event.message_id, event.delta)
        elif isinstance(event, (ToolCallStart, ToolCallEnd)):
            self._logger.info(
                "on_tool %s id=%s name=%s",
                type(event).__name__,
                event.tool_call_id,
                event.tool_name,
            )
        elif isinstance(event, ApprovalRequested):
            self._logger.info(
                "on_tool approval requested id=%s approval_id=%s",
                event.tool_call_id,
                event.approval_id,
            )
        elif isinstance(event, ToolResult):
            self._logger.info("on_tool result id=%s state=%s", event.tool_call_id, event.state.value)
        elif isinstance(event, RunFinished):
            self._logger.info(
                "on_complete finish_reason=%s iteration=%s usage=%s",
                event.finish_reason.value,
                state.iteration,
                event.usage,
            )
        elif isinstance(event, RunError):
            self._logger.warning("on_error run=%s message=%s", event.run_id, event.error.message)
        else:
            self._logger.debug("on_event %s", type(event).__name__)


class CompositeObserver:
    """Fan events out to several observers in order."""

    def __init__(self, *observers: LoopObserver) -> None:
        self._observers = list(observers)

    def add(self, observer: LoopObserver) -> None:
        self._observers.append(observer)

    def on_event(self, event: StreamEvent, state: AgentLoopState) -> None:
        for observer in self._observers:
            observer.on_event(event, state)


class SessionTranscript:
    """Buffer of streaming events and state snapshots for deterministic replay."""

    def __init__(self) -> None:
        self._events: list[StreamEvent] = []
        self._states: list[AgentLoopState] = []

    def on_event(self, event: StreamEvent, state: AgentLoopState) -> None:
        self.record(event, state)

    def record(self, event: StreamEvent, state: AgentLoopState) -> None:
        """Append an event alongside a snapshot of the loop state."""

        self._events.append(event)
        self._states.append(state.snapshot())

    @property
    def events(self) -> tuple[StreamEvent, ...]:
        return tuple(self._events)

    @property
    def states(self) -> tuple[AgentLoopState, ...]:
        return tuple(self._states)

    def __len__(self) -> int:
        return len(self._events)

    async def replay(self) -> AsyncIterator[StreamEvent]:
        """Yield recorded events as an async iterator."""

        for event in self._events:
            yield event

    def to_wire(self) -> list[dict[str, Any]]:
        """Return the recorded events as JSON-ready wire dictionaries."""

        return [
            event_to_wire(event).model_dump(mode="json", by_alias=True, exclude_none=True)
            for event in self._events
        ]
