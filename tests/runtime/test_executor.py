from __future__ import annotations

import asyncio
from typing import Any

import pytest

from canonstream.core.adapters.toolbridge import Tool
from canonstream.core.errors import ApprovalError
from canonstream.core.events import ToolResult
from canonstream.core.ids import sequential_ids, stable_clock
from canonstream.core.message import MessageRole, ToolCall, ToolCallState
from canonstream.runtime.executor import (
    MISSING_OUTPUT_CONTENT,
    REJECTED_CONTENT,
    ApprovalDecision,
    ApprovalTable,
    ToolExecutor,
)

PARAMETERS = {"type": "object", "properties": {"city": {"type": "string"}}}


async def _forecast(args: dict[str, Any]) -> dict[str, Any]:
    await asyncio.sleep(0)
    return {"city": args["city"], "temp": 18}


def _executor(*tools: Tool, concurrency: int = 8) -> ToolExecutor:
    return ToolExecutor(tools, concurrency=concurrency, clock=stable_clock(), id_factory=sequential_ids())


def _call(name: str = "forecast", **arguments: Any) -> ToolCall:
    return ToolCall(id="call-1", name=name, arguments=arguments or {"city": "Lyon"})


def test_async_executor_output_is_serialized() -> None:
    executor = _executor(Tool(name="forecast", parameters=PARAMETERS, executor=_forecast))

    outcome = asyncio.run(executor.execute(_call()))

    assert outcome.state is ToolCallState.OUTPUT_AVAILABLE
    assert outcome.content == '{"city": "Lyon", "temp": 18}'
    message = outcome.to_message()
    assert (message.role, message.tool_call_id, message.state) == (
        MessageRole.TOOL,
        "call-1",
        ToolCallState.OUTPUT_AVAILABLE,
    )
    event = outcome.to_event(42)
    assert event == ToolResult(
        tool_call_id="call-1",
        tool_name="forecast",
        content='{"city": "Lyon", "temp": 18}',
        state=ToolCallState.OUTPUT_AVAILABLE,
        timestamp=42,
    )


def test_executor_returning_none_produces_empty_content() -> None:
    executor = _executor(Tool(name="forecast", parameters=PARAMETERS, executor=lambda args: None))

    outcome = asyncio.run(executor.execute(_call()))

    assert outcome.content == ""
    assert outcome.state is ToolCallState.OUTPUT_AVAILABLE


def test_executor_failure_becomes_output_error() -> None:
    def _fail(args: dict[str, Any]) -> str:
        raise KeyError("city")

    executor = _executor(Tool(name="forecast", parameters=PARAMETERS, executor=_fail))

    outcome = asyncio.run(executor.execute(_call()))

    assert outcome.state is ToolCallState.OUTPUT_ERROR
    assert outcome.content == "'city'"


def test_unknown_and_executorless_tools_error() -> None:
    executor = _executor(Tool(name="forecast", parameters=PARAMETERS))

    unknown = asyncio.run(executor.execute(_call("radar")))
    manual = asyncio.run(executor.execute(_call()))

    assert unknown.state is ToolCallState.OUTPUT_ERROR
    assert manual.state is ToolCallState.OUTPUT_ERROR
    assert "no executor" in manual.content


def test_approval_requirements() -> None:
    executor = _executor(
        Tool(name="forecast", parameters=PARAMETERS, executor=_forecast),
        Tool(name="book", parameters=PARAMETERS),
        Tool(name="pay", parameters=PARAMETERS, executor=_forecast, needs_approval=True),
    )

    assert not executor.needs_approval(_call("forecast"))
    assert executor.needs_approval(_call("book"))
    assert executor.needs_approval(_call("pay"))
    assert not executor.needs_approval(_call("unknown"))

    request = executor.request_approval(_call("book"))
    assert request.approval_id == "approval-1"
    assert dict(request.input) == {"city": "Lyon"}
    assert executor.request_approval(_call("pay")).approval_id == "approval-2"


def test_apply_decision_paths() -> None:
    executor = _executor(
        Tool(name="book", parameters=PARAMETERS),
        Tool(name="pay", parameters=PARAMETERS, executor=_forecast, needs_approval=True),
    )

    rejected = asyncio.run(executor.apply_decision(_call("pay"), ApprovalDecision("a", approved=False)))
    executed = asyncio.run(executor.apply_decision(_call("pay"), ApprovalDecision("a", approved=True)))
    supplied = asyncio.run(executor.apply_decision(_call("book"), ApprovalDecision("a", True, output="booked")))
    missing = asyncio.run(executor.apply_decision(_call("book"), ApprovalDecision("a", approved=True)))

    assert (rejected.state, rejected.content) == (ToolCallState.OUTPUT_ERROR, REJECTED_CONTENT)
    assert executed.state is ToolCallState.OUTPUT_AVAILABLE
    assert (supplied.state, supplied.content) == (ToolCallState.OUTPUT_AVAILABLE, "booked")
    assert (missing.state, missing.content) == (ToolCallState.OUTPUT_ERROR, MISSING_OUTPUT_CONTENT)


def test_concurrency_limit_is_respected() -> None:
    active = 0
    peak = 0

    async def _track(args: dict[str, Any]) -> str:
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.01)
        active -= 1
        return "ok"

    executor = _executor(Tool(name="track", parameters={"type": "object"}, executor=_track), concurrency=2)

    async def _run() -> list[Any]:
        calls = [ToolCall(id=f"call-{n}", name="track") for n in range(5)]
        return await asyncio.gather(*(executor.execute(call) for call in calls))

    outcomes = asyncio.run(_run())

    assert peak == 2
    assert all(outcome.content == "ok" for outcome in outcomes)


def test_executor_is_reusable_across_event_loops() -> None:
    executor = _executor(Tool(name="forecast", parameters=PARAMETERS, executor=_forecast), concurrency=1)

    first = asyncio.run(executor.execute(_call()))
    second = asyncio.run(executor.execute(_call()))

    assert first == second


def test_concurrency_must_be_positive() -> None:
    with pytest.raises(ValueError):
        ToolExecutor((), concurrency=0)


def test_approval_table_tracks_pending_requests() -> None:
    executor = _executor(Tool(name="book", parameters=PARAMETERS))
    table = ApprovalTable()
    first = executor.request_approval(_call("book"))
    second = executor.request_approval(ToolCall(id="call-2", name="book"))
    table.register(first)
    table.register(second)

    decision = table.resolve(second.approval_id, True, "done")

    assert decision == ApprovalDecision(second.approval_id, True, "done")
    assert table.pending == (first,)
    assert table.decision_for(first.approval_id) is None
    assert second.approval_id in table
    assert len(table) == 2
    with pytest.raises(ApprovalError):
        table.resolve(second.approval_id, False)
    with pytest.raises(ApprovalError):
        table.resolve("approval-99", True)
