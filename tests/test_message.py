from __future__ import annotations

import pytest

from canonstream.core.events import (
    ErrorInfo,
    FinishReason,
    RunFinished,
    TextEnd,
    Usage,
    is_terminal,
    normalize_finish_reason,
)
from canonstream.core.message import Message, MessageRole, ToolCall, ToolCallState


def test_tool_call_arguments_are_frozen_copies() -> None:
    arguments = {"path": "notes.txt", "lines": [1, 2]}
    call = ToolCall(id="call-1", name="read", arguments=arguments)
    arguments["path"] = "changed"

    assert call.arguments["path"] == "notes.txt"
    assert call.arguments["lines"] == (1, 2)
    assert call.arguments_json() == '{"path":"notes.txt","lines":[1,2]}'
    with pytest.raises(TypeError):
        call.arguments["path"] = "x"  # type: ignore[index]


@pytest.mark.parametrize(
    "kwargs",
    [
        {"id": "", "name": "read"},
        {"id": "call-1", "name": ""},
    ],
)
def test_tool_call_requires_id_and_name(kwargs) -> None:
    with pytest.raises(ValueError):
        ToolCall(**kwargs)


def test_tool_call_rejects_non_json_arguments() -> None:
    with pytest.raises(TypeError):
        ToolCall(id="call-1", name="read", arguments={"handle": object()})
    with pytest.raises(ValueError):
        ToolCall(id="call-1", name="read", arguments={"ratio": float("inf")})


def test_message_roles_are_coerced_and_validated() -> None:
    message = Message(role="user", content="hi")

    assert message.role is MessageRole.USER
    assert message.id.startswith("msg-")

    with pytest.raises(ValueError):
        Message(role=MessageRole.USER, tool_calls=(ToolCall(id="c", name="n"),))
    with pytest.raises(ValueError):
        Message(role=MessageRole.TOOL, content="result")
    with pytest.raises(ValueError):
        Message(role=MessageRole.USER, content="hi", tool_call_id="call-1")
    with pytest.raises(TypeError):
        Message(role=MessageRole.USER, content=42)  # type: ignore[arg-type]


def test_tool_result_carries_terminal_state() -> None:
    result = Message.tool_result("call-1", "boom", state="output-error")

    assert result.role is MessageRole.TOOL
    assert result.state is ToolCallState.OUTPUT_ERROR
    assert result.state.is_terminal
    assert not ToolCallState.APPROVAL_REQUESTED.is_terminal


def test_empty_tool_calls_collapse_to_none() -> None:
    message = Message(role=MessageRole.ASSISTANT, content="done", tool_calls=())

    assert message.tool_calls is None


def test_usage_totals_and_merge() -> None:
    first = Usage(prompt_tokens=3, completion_tokens=2)
    second = Usage(prompt_tokens=1, completion_tokens=1, total_tokens=5)

    assert first.total_tokens == 5
    assert first.merge(second) == Usage(prompt_tokens=4, completion_tokens=3, total_tokens=10)
    assert first.merge(None) is first


def test_error_info_from_exception_reads_codes() -> None:
    class _HTTPError(Exception):
        status_code = 429

    assert ErrorInfo.from_exception(_HTTPError("slow down")) == ErrorInfo(message="slow down", code="429")
    assert ErrorInfo.from_exception(RuntimeError()) == ErrorInfo(message="RuntimeError")


def test_terminal_events_and_finish_reasons() -> None:
    assert is_terminal(RunFinished(run_id="r", finish_reason=FinishReason.STOP, timestamp=1))
    assert not is_terminal(TextEnd(message_id="m", timestamp=1))
    assert normalize_finish_reason("length") is FinishReason.LENGTH
    assert normalize_finish_reason("end_turn") is FinishReason.STOP
