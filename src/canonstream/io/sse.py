"""Server-Sent Events framing for canonical event streams."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterable, AsyncIterator, Iterable, Iterator

from canonstream.core.events import StreamEvent

from .schema import dump_event, wire_to_event

LOGGER = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"
DONE_LINE = f"data: {DONE_SENTINEL}\n\n"
SSE_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


def format_sse(event: StreamEvent) -> str:
    """Frame one event as ``data: <json>\\n\\n``."""

    return f"data: {dump_event(event)}\n\n"


async def sse_stream(events: AsyncIterable[StreamEvent]) -> AsyncIterator[str]:
    """Frame every event and finish with the ``[DONE]`` sentinel.

    The sentinel is written even when the source ends without a terminal
    event (cancellation), so the far side always sees a closed stream.
    """

    async for event in events:
        yield format_sse(event)
    yield DONE_LINE


def encode_events(events: Iterable[StreamEvent]) -> str:
    return "".join(format_sse(event) for event in events) + DONE_LINE


def parse_sse(lines: Iterable[str]) -> Iterator[StreamEvent]:
    """Parse SSE text lines back into canonical events, stopping at ``[DONE]``."""

    decoder = _SSEDecoder()
    for line in lines:
        for payload in decoder.feed(line):
            if payload == DONE_SENTINEL:
                return
            yield wire_to_event(payload)
    for payload in decoder.flush():
        if payload == DONE_SENTINEL:
            return
        yield wire_to_event(payload)


async def aparse_sse(lines: AsyncIterable[str]) -> AsyncIterator[StreamEvent]:
    decoder = _SSEDecoder()
    async for line in lines:
        for payload in decoder.feed(line):
            if payload == DONE_SENTINEL:
                return
            yield wire_to_event(payload)
    for payload in decoder.flush():
        if payload == DONE_SENTINEL:
            return
        yield wire_to_event(payload)


class _SSEDecoder:
    """Collects ``data`` fields until a blank line dispatches the event."""

    def __init__(self) -> None:
        self._data: list[str] = []

    def feed(self, raw: str) -> list[str]:
        payloads: list[str] = []
        # callers may hand over whole chunks instead of single lines
        for line in raw.splitlines() or [""]:
            if not line:
                payloads.extend(self.flush())
                continue
            if line.startswith(":"):
                continue
            field, _, value = line.partition(":")
            if value.startswith(" "):
                value = value[1:]
            if field == "data":
                self._data.append(value)
            else:
                LOGGER.debug("ignoring SSE field %r", field)
        return payloads

    def flush(self) -> list[str]:
        if not self._data:
            return []
        payload = "\n".join(self._data)
        self._data = []
        return [payload]
