from __future__ import annotations

from canonstream.core.adapters.ollama import map_ollama_chunk, ollama_adapter
from canonstream.core.adapters.utils import messages_to_ollama
from canonstream.core.events import (
    FinishReason,
    ToolCallArgsDelta,
    ToolCallEnd,
    ToolCallStart,
    Usage,
)
from canonstream.core.ids import sequential_ids
from canonstream.core.message import Message, MessageRole, ToolCall

from tests.fixtures.provider_fakes import build_ollama_client, ollama_tool_call_chunks
from tests.harness import assert_stream_invariants, collect, event_types


def test_whole_tool_calls_get_synthesized_ids() -> None:
    client, streams = build_ollama_client(ollama_tool_call_chunks())

    events = collect(ollama_adapter(client, id_factory=sequential_ids()), prompt="weather and time?")

    assert event_types(events) == [
        "RunStarted",
        "ToolCallStart",
        "ToolCallArgsDelta",
        "ToolCallEnd",
        "ToolCallStart",
        "ToolCallArgsDelta",
        "ToolCallEnd",
        "RunFinished",
    ]
    starts = [event for event in events if isinstance(event, ToolCallStart)]
    assert [(start.tool_call_id, start.tool_name, start.index) for start in starts] == [
        ("call-1", "get_weather", 0),
        ("call-2", "get_time", 1),
    ]
    arguments = [event.delta for event in events if isinstance(event, ToolCallArgsDelta)]
    assert arguments == ['{"city": "Paris"}', '{"zone": "CET"}']
    ends = [dict(event.parsed_input) for event in events if isinstance(event, ToolCallEnd)]
    assert ends == [{"city": "Paris"}, {"zone": "CET"}]
    finished = events[-1]
    assert finished.finish_reason is FinishReason.TOOL_CALLS
    assert finished.usage == Usage(prompt_tokens=30, completion_tokens=12)
    assert events[0].model == "llama-test"
    assert streams[0].closed
    assert_stream_invariants(events)


def test_text_stream_finishes_on_done() -> None:
    client, _ = build_ollama_client(
        [
            {"model": "llama-test", "message": {"role": "assistant", "content": "Bonjour"}, "done": False},
            {"model": "llama-test", "message": {"role": "assistant", "content": "!"}, "done": False},
            {
                "model": "llama-test",
                "message": {"role": "assistant", "content": ""},
                "done": True,
                "done_reason": "length",
                "prompt_eval_count": 4,
                "eval_count": 2,
            },
        ]
    )

    events = collect(ollama_adapter(client), prompt="greet")

    assert event_types(events) == ["RunStarted", "TextStart", "TextDelta", "TextDelta", "TextEnd", "RunFinished"]
    assert events[-2].message_id == events[1].message_id
    assert events[-1].finish_reason is FinishReason.LENGTH
    assert client.calls[0]["stream"] is True


def test_error_chunk_maps_to_error_delta() -> None:
    delta = map_ollama_chunk({"error": "model 'missing' not found"})

    assert delta is not None
    assert delta.error is not None
    assert delta.error.message == "model 'missing' not found"


def test_history_keeps_arguments_as_objects() -> None:
    converted = messages_to_ollama(
        [
            Message.user("weather?"),
            Message(
                role=MessageRole.ASSISTANT,
                tool_calls=(ToolCall(id="call-1", name="get_weather", arguments={"city": "Paris"}),),
            ),
            Message.tool_result("call-1", "18C"),
        ]
    )

    assert converted[1] == {
        "role": "assistant",
        "content": "",
        "tool_calls": [{"function": {"name": "get_weather", "arguments": {"city": "Paris"}}}],
    }
    assert converted[2] == {"role": "tool", "content": "18C"}
