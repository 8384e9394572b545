"""Anthropic Messages API streams.

Anthropic delivers typed events instead of chunk deltas. Tool calls open
with a ``tool_use`` content block and stream their input as
``input_json_delta`` fragments keyed by the block index. ``message_delta``
carries the stop reason and is treated as the finish signal.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from ..events import FinishReason, Usage
from ..message import Message
from .base import ProviderAdapter, ProviderSpec
from .openai import read_error
from .stream import ChunkDelta, ToolCallFragment, as_mapping
from .toolbridge import Tool, tools_to_anthropic
from .utils import messages_to_anthropic

DEFAULT_MAX_TOKENS = 1024

_STOP_REASONS = {
    "end_turn": FinishReason.STOP,
    "stop_sequence": FinishReason.STOP,
    "pause_turn": FinishReason.STOP,
    "max_tokens": FinishReason.LENGTH,
    "tool_use": FinishReason.TOOL_CALLS,
    "refusal": FinishReason.CONTENT_FILTER,
}


def create_anthropic_stream(client: Any, payload: Mapping[str, Any]) -> Any:
    return client.messages.create(**payload)


def build_anthropic_payload(
    messages: Sequence[Message],
    model: str,
    tools: Sequence[Tool],
    options: Mapping[str, Any],
) -> dict[str, Any]:
    system, converted = messages_to_anthropic(messages)
    payload: dict[str, Any] = {"model": model, "max_tokens": DEFAULT_MAX_TOKENS, **options}
    payload["messages"] = converted
    payload["stream"] = True
    if system is not None and "system" not in payload:
        payload["system"] = system
    if tools:
        payload["tools"] = tools_to_anthropic(tools)
    return payload


def map_anthropic_event(event: Mapping[str, Any]) -> ChunkDelta | None:
    event_type = event.get("type")

    if event_type == "message_start":
        message = as_mapping(event.get("message")) or {}
        usage = as_mapping(message.get("usage")) or {}
        return ChunkDelta(
            model=message.get("model") or None,
            usage=Usage(prompt_tokens=int(usage.get("input_tokens") or 0)),
        )

    if event_type == "content_block_start":
        block = as_mapping(event.get("content_block")) or {}
        if block.get("type") != "tool_use":
            return ChunkDelta()
        fragment = ToolCallFragment(
            index=int(event.get("index") or 0),
            id=block.get("id") or None,
            name=block.get("name") or None,
        )
        return ChunkDelta(tool_calls=(fragment,))

    if event_type == "content_block_delta":
        delta = as_mapping(event.get("delta")) or {}
        delta_type = delta.get("type")
        if delta_type == "text_delta":
            return ChunkDelta(text=delta.get("text") or None)
        if delta_type == "input_json_delta":
            fragment = ToolCallFragment(
                index=int(event.get("index") or 0),
                arguments=delta.get("partial_json") or None,
            )
            return ChunkDelta(tool_calls=(fragment,))
        return None

    if event_type == "message_delta":
        delta = as_mapping(event.get("delta")) or {}
        usage = as_mapping(event.get("usage")) or {}
        stop_reason = delta.get("stop_reason")
        return ChunkDelta(
            finish_reason=_STOP_REASONS.get(str(stop_reason), FinishReason.STOP) if stop_reason else None,
            usage=Usage(completion_tokens=int(usage.get("output_tokens") or 0)),
        )

    if event_type == "error":
        return ChunkDelta(error=read_error(_flatten_error(event.get("error"))))

    # ping, content_block_stop and message_stop carry nothing
    return None


def _flatten_error(raw: Any) -> Any:
    mapping = as_mapping(raw)
    if mapping is None:
        return raw
    return {"message": mapping.get("message"), "code": mapping.get("type")}


ANTHROPIC = ProviderSpec(
    name="anthropic",
    map_chunk=map_anthropic_event,
    build_payload=build_anthropic_payload,
    open_stream=create_anthropic_stream,
)


def anthropic_adapter(client: Any, **kwargs: Any) -> ProviderAdapter:
    """Return a :class:`ProviderAdapter` for an ``AsyncAnthropic``-compatible client."""

    return ProviderAdapter(client, ANTHROPIC, **kwargs)
