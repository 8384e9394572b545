"""Tool execution and the approval resolution table."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from canonstream.core.adapters.toolbridge import Tool, tools_by_name
from canonstream.core.errors import ApprovalError
from canonstream.core.events import ApprovalRequested, ToolResult
from canonstream.core.ids import Clock, IdFactory, generate_id, system_clock
from canonstream.core.message import Message, ToolCall, ToolCallState, thaw_json

LOGGER = logging.getLogger(__name__)

REJECTED_CONTENT = "Tool call was rejected by the user."
MISSING_OUTPUT_CONTENT = "Tool call was approved but no output was supplied."


@dataclass(frozen=True, slots=True)
class ApprovalDecision:
    """An external answer to an :class:`ApprovalRequested` event.

    ``output`` lets the approval flow supply the tool result directly, which
    is how tools without an executor produce output.
    """

    approval_id: str
    approved: bool
    output: str | None = None


@dataclass(frozen=True, slots=True)
class ToolOutcome:
    call: ToolCall
    state: ToolCallState
    content: str

    def to_message(self) -> Message:
        return Message.tool_result(self.call.id, self.content, state=self.state)

    def to_event(self, timestamp: int) -> ToolResult:
        return ToolResult(
            tool_call_id=self.call.id,
            tool_name=self.call.name,
            content=self.content,
            state=self.state,
            timestamp=timestamp,
        )


class ApprovalTable:
    """Keyed resolution table mapping ``approval_id`` to a decision.

    Decisions are matched by id only, so several approvals may be
    outstanding at once and answered in any order.
    """

    def __init__(self) -> None:
        self._requests: dict[str, ApprovalRequested] = {}
        self._decisions: dict[str, ApprovalDecision] = {}

    def register(self, request: ApprovalRequested) -> None:
        self._requests[request.approval_id] = request

    def resolve(self, approval_id: str, approved: bool, output: str | None = None) -> ApprovalDecision:
        if approval_id not in self._requests:
            msg = f"unknown approval id '{approval_id}'"
            raise ApprovalError(msg)
        if approval_id in self._decisions:
            msg = f"approval '{approval_id}' has already been resolved"
            raise ApprovalError(msg)
        decision = ApprovalDecision(approval_id=approval_id, approved=bool(approved), output=output)
        self._decisions[approval_id] = decision
        LOGGER.info("approval %s resolved approved=%s", approval_id, decision.approved)
        return decision

    def decision_for(self, approval_id: str) -> ApprovalDecision | None:
        return self._decisions.get(approval_id)

    @property
    def pending(self) -> tuple[ApprovalRequested, ...]:
        return tuple(
            request for approval_id, request in self._requests.items() if approval_id not in self._decisions
        )

    def __contains__(self, approval_id: object) -> bool:
        return approval_id in self._requests

    def __len__(self) -> int:
        return len(self._requests)


class ToolExecutor:
    """Resolve tool calls into outcomes or approval requests."""

    def __init__(
        self,
        tools: Sequence[Tool],
        *,
        concurrency: int = 8,
        clock: Clock = system_clock,
        id_factory: IdFactory = generate_id,
    ) -> None:
        self._tools = tools_by_name(tools)
        if concurrency < 1:
            msg = "tool concurrency must be at least 1"
            raise ValueError(msg)
        self._concurrency = concurrency
        self._semaphore: asyncio.Semaphore | None = None
        self._semaphore_loop: asyncio.AbstractEventLoop | None = None
        self._clock = clock
        self._id_factory = id_factory

    def _limiter(self) -> asyncio.Semaphore:
        # one semaphore per event loop; a paused loop may resume under a new one
        loop = asyncio.get_running_loop()
        if self._semaphore is None or self._semaphore_loop is not loop:
            self._semaphore = asyncio.Semaphore(self._concurrency)
            self._semaphore_loop = loop
        return self._semaphore

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def needs_approval(self, call: ToolCall) -> bool:
        tool = self._tools.get(call.name)
        return tool is not None and tool.requires_approval

    def request_approval(self, call: ToolCall) -> ApprovalRequested:
        return ApprovalRequested(
            tool_call_id=call.id,
            tool_name=call.name,
            input=thaw_json(call.arguments),
            approval_id=self._id_factory("approval"),
            timestamp=self._clock(),
        )

    async def execute(self, call: ToolCall) -> ToolOutcome:
        """Run the tool's executor, converting failures into ``output-error``."""

        tool = self._tools.get(call.name)
        if tool is None:
            return ToolOutcome(call, ToolCallState.OUTPUT_ERROR, f"Unknown tool '{call.name}'.")
        if tool.executor is None:
            return ToolOutcome(call, ToolCallState.OUTPUT_ERROR, f"Tool '{call.name}' has no executor.")

        async with self._limiter():
            LOGGER.info("executing tool %s (id=%s)", call.name, call.id)
            try:
                result = tool.executor(thaw_json(call.arguments))
                if inspect.isawaitable(result):
                    result = await result
            except Exception as exc:
                LOGGER.warning("tool %s (id=%s) failed: %s", call.name, call.id, exc)
                return ToolOutcome(call, ToolCallState.OUTPUT_ERROR, str(exc) or type(exc).__name__)

        return ToolOutcome(call, ToolCallState.OUTPUT_AVAILABLE, _stringify(result))

    async def apply_decision(self, call: ToolCall, decision: ApprovalDecision) -> ToolOutcome:
        if not decision.approved:
            return ToolOutcome(call, ToolCallState.OUTPUT_ERROR, REJECTED_CONTENT)

        tool = self._tools.get(call.name)
        if tool is not None and tool.executor is not None:
            return await self.execute(call)
        if decision.output is None:
            return ToolOutcome(call, ToolCallState.OUTPUT_ERROR, MISSING_OUTPUT_CONTENT)
        return ToolOutcome(call, ToolCallState.OUTPUT_AVAILABLE, _stringify(decision.output))


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    return json.dumps(value, default=str)
