from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

from canonstream.core.events import FinishReason, RunFinished, RunStarted, TextDelta
from canonstream.io.sse import DONE_LINE, SSE_HEADERS, aparse_sse, encode_events, format_sse, parse_sse, sse_stream

EVENTS = [
    RunStarted(run_id="run-1", model="gpt-test", timestamp=1),
    TextDelta(message_id="msg-1", delta="Hi", accumulated_content="Hi", timestamp=2),
    RunFinished(run_id="run-1", finish_reason=FinishReason.STOP, timestamp=3),
]


async def _source(events) -> AsyncIterator:
    for event in events:
        yield event


def test_format_sse_frames_one_event() -> None:
    frame = format_sse(EVENTS[0])

    assert frame.startswith('data: {"type":"RUN_STARTED"')
    assert frame.endswith("}\n\n")
    assert frame.count("\n") == 2


def test_sse_stream_ends_with_done_sentinel() -> None:
    async def _collect() -> list[str]:
        return [frame async for frame in sse_stream(_source(EVENTS))]

    frames = asyncio.run(_collect())

    assert frames[-1] == DONE_LINE == "data: [DONE]\n\n"
    assert frames[:-1] == [format_sse(event) for event in EVENTS]
    assert SSE_HEADERS["Content-Type"] == "text/event-stream"


def test_sse_stream_closes_even_without_events() -> None:
    async def _collect() -> list[str]:
        return [frame async for frame in sse_stream(_source([]))]

    assert asyncio.run(_collect()) == [DONE_LINE]


def test_encoded_body_parses_back() -> None:
    body = encode_events(EVENTS)

    assert body.endswith(DONE_LINE)
    assert list(parse_sse(body.splitlines())) == EVENTS
    assert list(parse_sse([body])) == EVENTS


def test_parser_skips_comments_and_other_fields() -> None:
    lines = [
        ": keep-alive",
        "event: message",
        "id: 7",
        format_sse(EVENTS[0]).rstrip("\n"),
        "",
        "retry: 1000",
        "",
    ]

    assert list(parse_sse(lines)) == [EVENTS[0]]


def test_multi_line_data_is_joined() -> None:
    lines = [
        'data: {"type": "RUN_STARTED",',
        'data: "runId": "run-1", "model": "gpt-test", "timestamp": 1}',
        "",
    ]

    assert list(parse_sse(lines)) == [EVENTS[0]]


def test_parser_stops_at_done_and_flushes_trailing_event() -> None:
    after_done = encode_events(EVENTS[:1]) + format_sse(EVENTS[1])
    unterminated = [format_sse(EVENTS[1]).rstrip("\n")]

    assert list(parse_sse([after_done])) == [EVENTS[0]]
    assert list(parse_sse(unterminated)) == [EVENTS[1]]


def test_async_parser_matches_sync_parser() -> None:
    body = encode_events(EVENTS)

    async def _lines() -> AsyncIterator[str]:
        for line in body.splitlines(keepends=True):
            yield line

    async def _collect() -> list:
        return [event async for event in aparse_sse(_lines())]

    assert asyncio.run(_collect()) == EVENTS
