"""Groq chat completion streams.

Groq speaks the OpenAI chunk layout but reports usage under ``x_groq``.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from ..message import Message
from .base import ProviderAdapter, ProviderSpec
from .openai import map_openai_choice, read_error, read_openai_usage
from .stream import ChunkDelta, as_mapping
from .toolbridge import Tool, tools_to_openai
from .utils import messages_to_openai


def create_groq_stream(client: Any, payload: Mapping[str, Any]) -> Any:
    return client.chat.completions.create(**payload)


def build_groq_payload(
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
        payload.setdefault("tool_choice", "auto")
    return payload


def map_groq_chunk(chunk: Mapping[str, Any]) -> ChunkDelta | None:
    error = chunk.get("error")
    if error is not None:
        return ChunkDelta(error=read_error(error))

    x_groq = as_mapping(chunk.get("x_groq")) or {}
    usage = read_openai_usage(x_groq.get("usage")) or read_openai_usage(chunk.get("usage"))
    return map_openai_choice(chunk, usage)


GROQ = ProviderSpec(
    name="groq",
    map_chunk=map_groq_chunk,
    build_payload=build_groq_payload,
    open_stream=create_groq_stream,
)


def groq_adapter(client: Any, **kwargs: Any) -> ProviderAdapter:
    return ProviderAdapter(client, GROQ, **kwargs)
