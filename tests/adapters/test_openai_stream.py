from __future__ import annotations

import pytest

from canonstream.core.adapters.openai import (
    build_openai_payload,
    map_openai_chunk,
    openai_adapter,
)
from canonstream.core.errors import AdapterError
from canonstream.core.events import (
    FinishReason,
    RunFinished,
    TextDelta,
    ToolCallArgsDelta,
    ToolCallEnd,
    ToolCallStart,
    Usage,
)
from canonstream.core.ids import sequential_ids, stable_clock
from canonstream.core.message import Message, MessageRole, ToolCall
from canonstream.core.adapters.toolbridge import Tool

from tests.fixtures.provider_fakes import (
    build_streaming_client,
    openai_text_chunks,
    openai_tool_call_chunks,
)
from tests.harness import assert_stream_invariants, collect, event_types

SUM_TOOL = Tool(
    name="sum",
    description="Add two numbers",
    parameters={
        "type": "object",
        "properties": {"a": {"type": "number"}, "b": {"type": "number"}},
        "required": ["a", "b"],
    },
    executor=lambda args: str(args["a"] + args["b"]),
)


def _adapter(client, **kwargs):
    return openai_adapter(client, clock=stable_clock(), id_factory=sequential_ids(), **kwargs)


def test_streams_text_tokens() -> None:
    client, streams = build_streaming_client(openai_text_chunks("Hello", ", world"))

    events = collect(_adapter(client), prompt="Say hello")

    deltas = [event for event in events if isinstance(event, TextDelta)]
    assert [delta.delta for delta in deltas] == ["Hello", ", world"]
    assert deltas[-1].accumulated_content == "Hello, world"
    finished = events[-1]
    assert isinstance(finished, RunFinished)
    assert finished.finish_reason is FinishReason.STOP
    assert finished.usage == Usage(prompt_tokens=1, completion_tokens=3, total_tokens=4)
    assert events[0].model == "gpt-test"
    assert streams[0].closed
    assert_stream_invariants(events)


def test_streams_tool_call_fragments() -> None:
    client, _ = build_streaming_client(openai_tool_call_chunks())

    events = collect(_adapter(client), prompt="add 1 and 3", tools=[SUM_TOOL])

    assert event_types(events) == [
        "RunStarted",
        "TextStart",
        "TextDelta",
        "ToolCallStart",
        "ToolCallArgsDelta",
        "ToolCallArgsDelta",
        "ToolCallEnd",
        "TextEnd",
        "RunFinished",
    ]
    start = next(event for event in events if isinstance(event, ToolCallStart))
    assert (start.tool_call_id, start.tool_name, start.index) == ("call-1", "sum", 0)
    fragments = [event.delta for event in events if isinstance(event, ToolCallArgsDelta)]
    assert "".join(fragments) == '{"a": 1, "b": 3}'
    end = next(event for event in events if isinstance(event, ToolCallEnd))
    assert dict(end.parsed_input) == {"a": 1, "b": 3}
    assert events[-1].finish_reason is FinishReason.TOOL_CALLS
    assert_stream_invariants(events)


def test_request_payload_contains_messages_tools_and_options() -> None:
    client, _ = build_streaming_client(openai_text_chunks("ok"))
    adapter = _adapter(client, default_params={"temperature": 0.2})

    collect(adapter, prompt="hi", tools=[SUM_TOOL], model="gpt-4o-mini")

    call = client.chat.completions.calls[0]
    assert call["model"] == "gpt-4o-mini"
    assert call["stream"] is True
    assert call["temperature"] == 0.2
    assert call["messages"] == [
        {"role": "system", "content": "Harness system"},
        {"role": "user", "content": "hi"},
    ]
    assert call["tools"][0]["function"]["name"] == "sum"
    assert call["tools"][0]["function"]["parameters"]["required"] == ["a", "b"]


def test_payload_serializes_tool_history() -> None:
    history = [
        Message.user("add"),
        Message(
            role=MessageRole.ASSISTANT,
            content=None,
            tool_calls=(ToolCall(id="call-1", name="sum", arguments={"a": 1, "b": 2}),),
        ),
        Message.tool_result("call-1", "3"),
    ]

    payload = build_openai_payload(history, "gpt-test", (), {})

    assert payload["messages"][1]["tool_calls"] == [
        {"id": "call-1", "type": "function", "function": {"name": "sum", "arguments": '{"a":1,"b":2}'}}
    ]
    assert payload["messages"][2] == {"role": "tool", "content": "3", "tool_call_id": "call-1"}
    assert "tools" not in payload


def test_adapter_validates_inputs() -> None:
    client, _ = build_streaming_client(openai_text_chunks("ok"))
    adapter = _adapter(client)

    with pytest.raises(AdapterError):
        adapter.stream([], model="gpt-test")
    with pytest.raises(AdapterError):
        adapter.stream([Message.user("hi")])
    with pytest.raises(AdapterError):
        adapter.stream([Message.user("hi")], model="gpt-test", provider_options={"stream": False})
    with pytest.raises(AdapterError):
        adapter.stream([Message.user("hi")], model="gpt-test", tools=[{"name": "sum"}])


def test_default_params_reject_reserved_keys() -> None:
    client, _ = build_streaming_client()

    with pytest.raises(ValueError):
        openai_adapter(client, default_params={"messages": []})

    adapter = openai_adapter(client, default_params={"model": "gpt-default"})
    assert "gpt-default" in repr(adapter)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("stop", FinishReason.STOP),
        ("length", FinishReason.LENGTH),
        ("content_filter", FinishReason.CONTENT_FILTER),
        ("function_call", FinishReason.TOOL_CALLS),
        ("something_new", FinishReason.STOP),
    ],
)
def test_finish_reason_mapping(raw: str, expected: FinishReason) -> None:
    delta = map_openai_chunk({"choices": [{"index": 0, "delta": {}, "finish_reason": raw}]})

    assert delta is not None
    assert delta.finish_reason is expected


def test_keepalive_chunks_are_ignored_but_usage_only_chunks_are_kept() -> None:
    assert map_openai_chunk({"choices": []}) is None
    usage_only = map_openai_chunk({"choices": [], "usage": {"prompt_tokens": 2, "completion_tokens": 1}})

    assert usage_only is not None
    assert usage_only.usage == Usage(prompt_tokens=2, completion_tokens=1)
