"""State tracked by the agent loop between and during turns."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING

from canonstream.core.events import ApprovalRequested, ErrorInfo, FinishReason, Usage
from canonstream.core.message import Message, ToolCall, ToolCallState

if TYPE_CHECKING:
    from .strategies import LoopStrategy


class LoopStatus(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    RESOLVING = "resolving"
    STOPPED = "stopped"
    ERRORED = "errored"
    CANCELLED = "cancelled"
    BUDGET_EXCEEDED = "budget_exceeded"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = frozenset(
    {LoopStatus.STOPPED, LoopStatus.ERRORED, LoopStatus.CANCELLED, LoopStatus.BUDGET_EXCEEDED}
)


@dataclass(slots=True)
class ToolCallRecord:
    """Lifecycle of one tool call requested in the latest assistant turn."""

    call: ToolCall
    state: ToolCallState = ToolCallState.PENDING
    approval: ApprovalRequested | None = None
    result: Message | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal


@dataclass(slots=True)
class AgentLoopState:
    """Aggregated runtime state for a single agent loop."""

    messages: list[Message]
    strategy: LoopStrategy
    iteration: int = 0
    status: LoopStatus = LoopStatus.IDLE
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    finish_reason: FinishReason | None = None
    usage: Usage | None = None
    error: ErrorInfo | None = None

    @property
    def pending_approvals(self) -> tuple[ApprovalRequested, ...]:
        return tuple(
            record.approval
            for record in self.tool_calls
            if record.state is ToolCallState.APPROVAL_REQUESTED and record.approval is not None
        )

    def snapshot(self) -> AgentLoopState:
        """Return a copy that later loop progress does not mutate."""

        # Messages and events are frozen, so copying the containers is enough.
        return AgentLoopState(
            messages=list(self.messages),
            strategy=self.strategy,
            iteration=self.iteration,
            status=self.status,
            tool_calls=[replace(record) for record in self.tool_calls],
            finish_reason=self.finish_reason,
            usage=self.usage,
            error=self.error,
        )
