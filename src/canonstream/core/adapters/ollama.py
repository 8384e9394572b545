"""Local inference streams in the Ollama ``/api/chat`` format.

Ollama sends whole tool calls at once, with arguments already decoded and
usually without ids. Each call is mapped to a fresh slot carrying the full
JSON argument string; ids are synthesized when the stream finishes.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from typing import Any

from ..events import ErrorInfo, FinishReason, Usage
from ..message import Message
from .base import ProviderAdapter, ProviderSpec
from .stream import ChunkDelta, ToolCallFragment, as_mapping
from .toolbridge import Tool, tools_to_openai
from .utils import messages_to_ollama


def create_ollama_stream(client: Any, payload: Mapping[str, Any]) -> Any:
    return client.chat(**payload)


def build_ollama_payload(
    messages: Sequence[Message],
    model: str,
    tools: Sequence[Tool],
    options: Mapping[str, Any],
) -> dict[str, Any]:
    payload: dict[str, Any] = {"model": model, **options}
    payload["messages"] = messages_to_ollama(messages)
    payload["stream"] = True
    if tools:
        payload["tools"] = tools_to_openai(tools)
    return payload


def map_ollama_chunk(chunk: Mapping[str, Any]) -> ChunkDelta | None:
    error = chunk.get("error")
    if error:
        return ChunkDelta(error=ErrorInfo(message=str(error)))

    message = as_mapping(chunk.get("message")) or {}
    text = message.get("content")
    fragments = tuple(_read_tool_call(raw) for raw in message.get("tool_calls") or [])

    finish_reason = None
    usage = None
    if chunk.get("done"):
        finish_reason = FinishReason.LENGTH if chunk.get("done_reason") == "length" else FinishReason.STOP
        usage = Usage(
            prompt_tokens=int(chunk.get("prompt_eval_count") or 0),
            completion_tokens=int(chunk.get("eval_count") or 0),
        )

    return ChunkDelta(
        model=chunk.get("model") or None,
        text=text if isinstance(text, str) and text else None,
        tool_calls=fragments,
        finish_reason=finish_reason,
        usage=usage,
    )


def _read_tool_call(raw: Any) -> ToolCallFragment:
    mapping = as_mapping(raw) or {}
    function = as_mapping(mapping.get("function")) or {}

    arguments = function.get("arguments")
    if arguments is None:
        arguments = {}
    if not isinstance(arguments, str):
        arguments = json.dumps(dict(as_mapping(arguments) or {}))

    index = function.get("index")
    return ToolCallFragment(
        index=None if index is None else int(index),
        id=mapping.get("id") or None,
        name=function.get("name") or None,
        arguments=arguments,
    )


OLLAMA = ProviderSpec(
    name="ollama",
    map_chunk=map_ollama_chunk,
    build_payload=build_ollama_payload,
    open_stream=create_ollama_stream,
)


def ollama_adapter(client: Any, **kwargs: Any) -> ProviderAdapter:
    """Return a :class:`ProviderAdapter` for an ``ollama.AsyncClient``-compatible client."""

    return ProviderAdapter(client, OLLAMA, **kwargs)
