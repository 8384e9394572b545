"""Adapter interface shared by provider implementations."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from ..cancellation import CancellationToken
from ..errors import AdapterError
from ..events import StreamEvent
from ..ids import Clock, IdFactory, generate_id, system_clock
from ..message import Message
from .stream import ChunkMapper, DeltaNormalizer, ProviderStreamIterator
from .toolbridge import Tool

PayloadBuilder = Callable[[Sequence[Message], str, Sequence[Tool], Mapping[str, Any]], dict[str, Any]]
TransportOpener = Callable[[Any, Mapping[str, Any]], Any]

RESERVED_OPTIONS = frozenset({"messages", "model", "stream", "tools"})


class ModelAdapter(ABC):
    """Abstract interface for provider-specific adapters."""

    @abstractmethod
    def stream(
        self,
        messages: Sequence[Message],
        /,
        *,
        model: str | None = None,
        tools: Sequence[Tool] | None = None,
        provider_options: Mapping[str, Any] | None = None,
        cancellation: CancellationToken | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Return a single-pass async iterator of canonical stream events."""


@dataclass(frozen=True, slots=True)
class ProviderSpec:
    """Everything that differs between vendors.

    ``map_chunk`` is the vendor's mapping function; ``build_payload`` and
    ``open_stream`` turn a conversation into an opened vendor transport.
    """

    name: str
    map_chunk: ChunkMapper
    build_payload: PayloadBuilder
    open_stream: TransportOpener


class ProviderAdapter(ModelAdapter):
    """Vendor-agnostic adapter configured by a :class:`ProviderSpec`."""

    def __init__(
        self,
        client: Any,
        provider: ProviderSpec,
        *,
        default_model: str | None = None,
        default_params: Mapping[str, Any] | None = None,
        clock: Clock = system_clock,
        id_factory: IdFactory = generate_id,
    ) -> None:
        self._client = client
        self._provider = provider
        self._default_model = default_model
        self._default_params = dict(default_params or {})
        self._clock = clock
        self._id_factory = id_factory

        if "model" in self._default_params and self._default_model is None:
            model_value = self._default_params.pop("model")
            self._default_model = str(model_value)

        conflict = RESERVED_OPTIONS.intersection(self._default_params)
        if conflict:
            joined = ", ".join(sorted(conflict))
            msg = f"default parameters cannot include reserved keys: {joined}"
            raise ValueError(msg)

    @property
    def provider(self) -> ProviderSpec:
        return self._provider

    def stream(
        self,
        messages: Sequence[Message],
        /,
        *,
        model: str | None = None,
        tools: Sequence[Tool] | None = None,
        provider_options: Mapping[str, Any] | None = None,
        cancellation: CancellationToken | None = None,
    ) -> ProviderStreamIterator:
        if not messages:
            msg = "at least one message is required"
            raise AdapterError(msg)

        model_name = model or self._default_model
        if not model_name:
            msg = "a model name must be provided"
            raise AdapterError(msg)

        prepared_tools = self._prepare_tools(tools)
        options = self._merge_options(provider_options)
        payload = self._provider.build_payload(messages, model_name, prepared_tools, options)

        normalizer = DeltaNormalizer(
            self._provider.map_chunk,
            model=model_name,
            clock=self._clock,
            id_factory=self._id_factory,
        )

        def _open() -> Any:
            return self._provider.open_stream(self._client, payload)

        return ProviderStreamIterator(_open, normalizer, cancellation=cancellation)

    def _merge_options(self, provider_options: Mapping[str, Any] | None) -> dict[str, Any]:
        options = dict(self._default_params)
        for key, value in (provider_options or {}).items():
            if key in RESERVED_OPTIONS:
                msg = f"option '{key}' is managed by the adapter"
                raise AdapterError(msg)
            options[key] = value
        return options

    def _prepare_tools(self, tools: Sequence[Tool] | None) -> tuple[Tool, ...]:
        if tools is None:
            return ()

        if isinstance(tools, (Mapping, str, bytes, bytearray)) or not isinstance(tools, Sequence):
            msg = "tools must be a sequence of Tool instances"
            raise AdapterError(msg)

        for index, tool in enumerate(tools):
            if not isinstance(tool, Tool):
                msg = f"tools[{index}] must be a Tool"
                raise AdapterError(msg)
        return tuple(tools)

    def __repr__(self) -> str:
        return f"ProviderAdapter(provider={self._provider.name!r}, model={self._default_model!r})"
