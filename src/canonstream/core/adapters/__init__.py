"""Adapter interfaces and provider implementations."""

from __future__ import annotations

from .anthropic import ANTHROPIC, anthropic_adapter, map_anthropic_event
from .base import ModelAdapter, ProviderAdapter, ProviderSpec
from .groq import GROQ, groq_adapter, map_groq_chunk
from .ollama import OLLAMA, map_ollama_chunk, ollama_adapter
from .openai import OPENAI, map_openai_chunk, openai_adapter
from .stream import (
    BaseStreamIterator,
    ChunkDelta,
    DeltaNormalizer,
    ProviderStreamIterator,
    ReplayTransport,
    StreamState,
    ToolCallFragment,
    apply_delta,
    fail_stream,
    finish_stream,
    replay_stream,
)
from .toolbridge import Tool, tools_to_anthropic, tools_to_openai

PROVIDERS: dict[str, ProviderSpec] = {
    spec.name: spec for spec in (OPENAI, GROQ, ANTHROPIC, OLLAMA)
}

__all__ = [
    "ANTHROPIC",
    "BaseStreamIterator",
    "ChunkDelta",
    "DeltaNormalizer",
    "GROQ",
    "ModelAdapter",
    "OLLAMA",
    "OPENAI",
    "PROVIDERS",
    "ProviderAdapter",
    "ProviderSpec",
    "ProviderStreamIterator",
    "ReplayTransport",
    "StreamState",
    "Tool",
    "ToolCallFragment",
    "anthropic_adapter",
    "apply_delta",
    "fail_stream",
    "finish_stream",
    "groq_adapter",
    "map_anthropic_event",
    "map_groq_chunk",
    "map_ollama_chunk",
    "map_openai_chunk",
    "ollama_adapter",
    "openai_adapter",
    "replay_stream",
    "tools_to_anthropic",
    "tools_to_openai",
]
