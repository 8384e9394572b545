"""Wire serialization of canonical events."""

from .schema import dump_event, event_to_wire, parse_wire_event, wire_to_event
from .sse import (
    DONE_LINE,
    SSE_HEADERS,
    aparse_sse,
    encode_events,
    format_sse,
    parse_sse,
    sse_stream,
)

__all__ = [
    "DONE_LINE",
    "SSE_HEADERS",
    "aparse_sse",
    "dump_event",
    "encode_events",
    "event_to_wire",
    "format_sse",
    "parse_sse",
    "parse_wire_event",
    "sse_stream",
    "wire_to_event",
]
