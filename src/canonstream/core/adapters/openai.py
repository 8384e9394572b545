"""OpenAI-style chat completion streams.

The chunk layout here is shared by every OpenAI-compatible endpoint, so the
fragment, usage and error readers are reused by :mod:`.groq`.
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
from .utils import messages_to_openai

_FINISH_REASONS = {
    "stop": FinishReason.STOP,
    "length": FinishReason.LENGTH,
    "content_filter": FinishReason.CONTENT_FILTER,
    "tool_calls": FinishReason.TOOL_CALLS,
    "function_call": FinishReason.TOOL_CALLS,
}


def create_openai_stream(client: Any, payload: Mapping[str, Any]) -> Any:
    """Create a streaming iterator using the provided OpenAI client."""

    return client.chat.completions.create(**payload)


def build_openai_payload(
    messages: Sequence[Message],
    model: str,
    tools: Sequence[Tool],
    options: Mapping[str, Any],
) -> dict[str, Any]:
    payload: dict[str, Any] = {"model": model, **options}
    payload["messages"] = messages_to_openai(messages)
    payload["stream"] = True
    if tools:
        payload["tools"] = tools_to_openai(tools)
    return payload


def map_openai_chunk(chunk: Mapping[str, Any]) -> ChunkDelta | None:
    """Map one ``chat.completion.chunk`` to a :class:`ChunkDelta`.

    Usage is read from whichever chunk carries it, normally the finishing one.
    Chunks without choices or usage (keep-alives) map to ``None``.
    """

    error = chunk.get("error")
    if error is not None:
        return ChunkDelta(error=read_error(error))

    usage = read_openai_usage(chunk.get("usage"))
    return map_openai_choice(chunk, usage)


def map_openai_choice(chunk: Mapping[str, Any], usage: Usage | None) -> ChunkDelta | None:
    model = chunk.get("model") or None
    choices = chunk.get("choices") or []
    if not choices:
        if usage is None:
            return None
        return ChunkDelta(model=model, usage=usage)

    choice = as_mapping(choices[0]) or {}
    delta = as_mapping(choice.get("delta")) or {}

    text = delta.get("content")
    raw_calls = delta.get("tool_calls") or []
    fragments = tuple(read_tool_fragment(raw, position) for position, raw in enumerate(raw_calls))

    raw_finish = choice.get("finish_reason")
    finish_reason = None
    if raw_finish:
        finish_reason = _FINISH_REASONS.get(str(raw_finish), FinishReason.STOP)

    return ChunkDelta(
        model=model,
        text=text if isinstance(text, str) and text else None,
        tool_calls=fragments,
        finish_reason=finish_reason,
        usage=usage,
    )


def read_tool_fragment(raw: Any, position: int) -> ToolCallFragment:
    mapping = as_mapping(raw) or {}
    function = as_mapping(mapping.get("function")) or {}

    index = mapping.get("index")
    arguments = function.get("arguments")
    if arguments is not None and not isinstance(arguments, str):
        arguments = json.dumps(arguments)

    return ToolCallFragment(
        index=position if index is None else int(index),
        id=mapping.get("id") or None,
        name=function.get("name") or None,
        arguments=arguments or None,
    )


def read_openai_usage(raw: Any) -> Usage | None:
    usage = as_mapping(raw)
    if not usage:
        return None
    return Usage(
        prompt_tokens=int(usage.get("prompt_tokens") or 0),
        completion_tokens=int(usage.get("completion_tokens") or 0),
        total_tokens=usage.get("total_tokens"),
    )


def read_error(raw: Any) -> ErrorInfo:
    mapping = as_mapping(raw)
    if mapping is None:
        return ErrorInfo(message=str(raw))
    code = mapping.get("code") or mapping.get("type")
    message = mapping.get("message") or "provider returned an error"
    return ErrorInfo(message=str(message), code=None if code is None else str(code))


OPENAI = ProviderSpec(
    name="openai",
    map_chunk=map_openai_chunk,
    build_payload=build_openai_payload,
    open_stream=create_openai_stream,
)


def openai_adapter(client: Any, **kwargs: Any) -> ProviderAdapter:
    """Return a :class:`ProviderAdapter` for an ``AsyncOpenAI``-compatible client."""

    return ProviderAdapter(client, OPENAI, **kwargs)
