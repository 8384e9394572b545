from __future__ import annotations

from canonstream.core.adapters.groq import groq_adapter, map_groq_chunk
from canonstream.core.adapters.toolbridge import Tool
from canonstream.core.events import FinishReason, RunFinished, Usage
from canonstream.core.ids import sequential_ids

from tests.fixtures.provider_fakes import build_streaming_client
from tests.harness import assert_stream_invariants, collect, event_types

LOOKUP = Tool(name="lookup", parameters={"type": "object", "properties": {"q": {"type": "string"}}})


def _groq_chunks() -> list[dict]:
    return [
        {
            "id": "chatcmpl-1",
            "model": "llama-3.1-8b-instant",
            "choices": [{"index": 0, "delta": {"role": "assistant", "content": ""}}],
            "x_groq": {"id": "req_01"},
        },
        {"choices": [{"index": 0, "delta": {"content": "Groq "}}]},
        {"choices": [{"index": 0, "delta": {"content": "is fast"}}]},
        {
            "choices": [{"index": 0, "delta": {}, "finish_reason": "stop"}],
            "x_groq": {
                "id": "req_01",
                "usage": {"prompt_tokens": 18, "completion_tokens": 4, "total_tokens": 22},
            },
        },
    ]


def test_streams_text_and_reads_usage_from_x_groq() -> None:
    client, _ = build_streaming_client(_groq_chunks())

    events = collect(groq_adapter(client, id_factory=sequential_ids()), prompt="hi")

    assert event_types(events) == [
        "RunStarted",
        "TextStart",
        "TextDelta",
        "TextDelta",
        "TextEnd",
        "RunFinished",
    ]
    assert events[0].model == "llama-3.1-8b-instant"
    finished = events[-1]
    assert isinstance(finished, RunFinished)
    assert finished.usage == Usage(prompt_tokens=18, completion_tokens=4, total_tokens=22)
    assert_stream_invariants(events)


def test_usage_falls_back_to_top_level_field() -> None:
    delta = map_groq_chunk(
        {
            "choices": [{"index": 0, "delta": {}, "finish_reason": "length"}],
            "usage": {"prompt_tokens": 5, "completion_tokens": 7},
        }
    )

    assert delta is not None
    assert delta.finish_reason is FinishReason.LENGTH
    assert delta.usage == Usage(prompt_tokens=5, completion_tokens=7)


def test_payload_requests_automatic_tool_choice() -> None:
    client, _ = build_streaming_client(_groq_chunks())

    collect(groq_adapter(client), prompt="search", tools=[LOOKUP])

    call = client.chat.completions.calls[0]
    assert call["tool_choice"] == "auto"
    assert call["tools"][0]["function"]["name"] == "lookup"


def test_error_chunk_maps_to_error_delta() -> None:
    delta = map_groq_chunk({"error": {"message": "model decommissioned", "type": "invalid_request_error"}})

    assert delta is not None
    assert delta.error is not None
    assert delta.error.code == "invalid_request_error"
