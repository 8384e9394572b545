"""Stream accumulation and the base iterator shared by every provider adapter.

Vendor mapping functions turn one raw chunk into a vendor-neutral
:class:`ChunkDelta`. :func:`apply_delta` folds that delta into an explicit
:class:`StreamState` and returns the canonical events it produced, so the
ordering rules live in one place and can be tested without a network stream.
:class:`BaseStreamIterator` drives the fold over an async transport and
guarantees that every stream ends with exactly one terminal event, unless the
caller cancelled it.
"""

from __future__ import annotations

import abc
import asyncio
import inspect
import json
import logging
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Mapping
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Any, Deque, Protocol

from ..cancellation import CancellationToken
from ..errors import AdapterError
from ..events import (
    ErrorInfo,
    FinishReason,
    RunError,
    RunFinished,
    RunStarted,
    StreamEvent,
    TextDelta,
    TextEnd,
    TextStart,
    ToolCallArgsDelta,
    ToolCallEnd,
    ToolCallStart,
    Usage,
    is_terminal,
)
from ..ids import Clock, IdFactory, generate_id, system_clock
from ..message import ensure_json_compatible

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ToolCallFragment:
    """Partial tool call keyed by the vendor's index.

    An ``index`` of ``None`` opens a new call slot, for vendors that deliver
    whole calls without positions.
    """

    index: int | None
    id: str | None = None
    name: str | None = None
    arguments: str | None = None


@dataclass(frozen=True, slots=True)
class ChunkDelta:
    """Vendor-neutral content of one raw chunk.

    ``finish_reason`` marks the vendor's finish signal and must already be
    normalized by the mapping function. ``error`` marks a vendor-level error
    payload delivered inside the stream.
    """

    model: str | None = None
    text: str | None = None
    tool_calls: tuple[ToolCallFragment, ...] = ()
    finish_reason: FinishReason | None = None
    usage: Usage | None = None
    error: ErrorInfo | None = None


ChunkMapper = Callable[[Mapping[str, Any]], "ChunkDelta | None"]


@dataclass(slots=True)
class ToolCallBuffer:
    index: int
    id: str | None = None
    name: str | None = None
    arguments: list[str] = field(default_factory=list)
    pending: list[str] = field(default_factory=list)
    started: bool = False

    @property
    def arguments_text(self) -> str:
        return "".join(self.arguments)


@dataclass(slots=True)
class StreamState:
    """Accumulator owned by a single adapter stream."""

    run_id: str
    model: str
    message_id: str
    run_started: bool = False
    text_started: bool = False
    text: str = ""
    tool_calls: dict[int, ToolCallBuffer] = field(default_factory=dict)
    usage: Usage | None = None
    finished: bool = False


def apply_delta(
    state: StreamState,
    delta: ChunkDelta,
    now: int,
    *,
    id_factory: IdFactory = generate_id,
) -> list[StreamEvent]:
    """Fold ``delta`` into ``state`` and return the canonical events it yields."""

    if state.finished:
        return []

    if delta.model and not state.run_started:
        state.model = delta.model

    events: list[StreamEvent] = []
    _ensure_run_started(state, now, events)

    if delta.error is not None:
        events.extend(fail_stream(state, delta.error, now))
        return events

    if delta.usage is not None:
        state.usage = delta.usage if state.usage is None else state.usage.merge(delta.usage)

    if delta.text:
        if not state.text_started:
            state.text_started = True
            events.append(TextStart(message_id=state.message_id, timestamp=now))
        state.text += delta.text
        events.append(
            TextDelta(
                message_id=state.message_id,
                delta=delta.text,
                accumulated_content=state.text,
                timestamp=now,
            )
        )

    for fragment in delta.tool_calls:
        events.extend(_apply_fragment(state, fragment, now))

    if delta.finish_reason is not None:
        events.extend(finish_stream(state, now, reason=delta.finish_reason, id_factory=id_factory))

    return events


def finish_stream(
    state: StreamState,
    now: int,
    *,
    reason: FinishReason | None = None,
    id_factory: IdFactory = generate_id,
) -> list[StreamEvent]:
    """Close open tool calls and text, then emit ``RunFinished``."""

    if state.finished:
        return []

    events: list[StreamEvent] = []
    _ensure_run_started(state, now, events)

    assembled = False
    for buffer in state.tool_calls.values():
        if buffer.name is None:
            LOGGER.warning(
                "dropping tool call at index %s without a name (run_id=%s)",
                buffer.index,
                state.run_id,
            )
            continue
        if not buffer.started:
            if buffer.id is None:
                buffer.id = id_factory("call")
            events.extend(_start_tool_call(buffer, now))
        events.append(
            ToolCallEnd(
                tool_call_id=buffer.id,
                tool_name=buffer.name,
                parsed_input=parse_tool_arguments(buffer.arguments_text),
                timestamp=now,
            )
        )
        assembled = True

    if state.text_started:
        events.append(TextEnd(message_id=state.message_id, timestamp=now))

    if assembled:
        finish_reason = FinishReason.TOOL_CALLS
    elif reason is None or reason is FinishReason.TOOL_CALLS:
        finish_reason = FinishReason.STOP
    else:
        finish_reason = reason

    events.append(
        RunFinished(
            run_id=state.run_id,
            finish_reason=finish_reason,
            usage=state.usage,
            timestamp=now,
        )
    )
    state.finished = True
    return events


def fail_stream(state: StreamState, error: ErrorInfo, now: int) -> list[StreamEvent]:
    """Emit ``RunError`` (preceded by ``RunStarted`` if needed) and end the stream."""

    if state.finished:
        return []

    events: list[StreamEvent] = []
    _ensure_run_started(state, now, events)
    events.append(RunError(run_id=state.run_id, error=error, timestamp=now))
    state.finished = True
    return events


def parse_tool_arguments(raw: str) -> dict[str, Any]:
    """Parse an accumulated argument string, substituting ``{}`` on failure.

    Objects holding non-finite numbers such as ``NaN`` count as failures
    too, since a :class:`~canonstream.core.message.ToolCall` cannot carry them.
    """

    if not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        LOGGER.debug("tool call arguments are not valid JSON: %r", raw)
        return {}
    if not isinstance(parsed, dict):
        return {}
    try:
        ensure_json_compatible(parsed, path="arguments")
    except (TypeError, ValueError) as exc:
        LOGGER.debug("tool call arguments rejected: %s", exc)
        return {}
    return parsed


def _ensure_run_started(state: StreamState, now: int, events: list[StreamEvent]) -> None:
    if state.run_started:
        return
    state.run_started = True
    events.append(RunStarted(run_id=state.run_id, model=state.model, timestamp=now))


def _apply_fragment(state: StreamState, fragment: ToolCallFragment, now: int) -> list[StreamEvent]:
    index = fragment.index
    if index is None:
        index = max(state.tool_calls, default=-1) + 1
    buffer = state.tool_calls.get(index)
    if buffer is None:
        buffer = ToolCallBuffer(index=index)
        state.tool_calls[index] = buffer

    if fragment.id and buffer.id is None:
        buffer.id = fragment.id
    if fragment.name and buffer.name is None:
        buffer.name = fragment.name

    events: list[StreamEvent] = []
    if fragment.arguments:
        buffer.arguments.append(fragment.arguments)
        if buffer.started:
            events.append(
                ToolCallArgsDelta(tool_call_id=buffer.id, delta=fragment.arguments, timestamp=now)
            )
        else:
            buffer.pending.append(fragment.arguments)

    if not buffer.started and buffer.id is not None and buffer.name is not None:
        events.extend(_start_tool_call(buffer, now))
    return events


def _start_tool_call(buffer: ToolCallBuffer, now: int) -> list[StreamEvent]:
    buffer.started = True
    events: list[StreamEvent] = [
        ToolCallStart(
            tool_call_id=buffer.id,
            tool_name=buffer.name,
            index=buffer.index,
            timestamp=now,
        )
    ]
    if buffer.pending:
        events.append(
            ToolCallArgsDelta(
                tool_call_id=buffer.id,
                delta="".join(buffer.pending),
                timestamp=now,
            )
        )
        buffer.pending.clear()
    return events


class StreamNormalizer(Protocol):
    async def normalize_chunk(self, chunk: Mapping[str, Any]) -> list[StreamEvent]:
        """Map a provider-specific chunk into canonical stream events."""

    def normalize_end(self) -> list[StreamEvent]:
        """Flush state when the transport is exhausted."""

    def normalize_error(self, exc: BaseException) -> list[StreamEvent]:
        """Convert a transport or vendor failure into terminal events."""


class DeltaNormalizer:
    """Normalizer driving :func:`apply_delta` with a vendor mapping function."""

    def __init__(
        self,
        mapper: ChunkMapper,
        *,
        model: str,
        clock: Clock = system_clock,
        id_factory: IdFactory = generate_id,
    ) -> None:
        self._mapper = mapper
        self._clock = clock
        self._id_factory = id_factory
        self.state = StreamState(
            run_id=id_factory("run"),
            model=model,
            message_id=id_factory("msg"),
        )

    async def normalize_chunk(self, chunk: Mapping[str, Any]) -> list[StreamEvent]:
        delta = self._mapper(chunk)
        if delta is None:
            return []
        return apply_delta(self.state, delta, self._clock(), id_factory=self._id_factory)

    def normalize_end(self) -> list[StreamEvent]:
        return finish_stream(self.state, self._clock(), id_factory=self._id_factory)

    def normalize_error(self, exc: BaseException) -> list[StreamEvent]:
        LOGGER.warning("stream %s failed: %s", self.state.run_id, exc)
        return fail_stream(self.state, ErrorInfo.from_exception(exc), self._clock())


class _StreamCancelled(Exception):
    pass


class BaseStreamIterator(AsyncIterator[StreamEvent], metaclass=abc.ABCMeta):
    """Shared async iterator driving provider-specific streaming adapters.

    Subclasses source raw provider chunks by implementing
    :meth:`_get_next_chunk`. Each chunk is normalized into zero or more
    :class:`StreamEvent` instances and buffered so consumers receive a linear
    sequence regardless of how providers batch their updates.

    Transport exhaustion and transport errors are handed to the normalizer,
    so the sequence always closes with ``RunFinished`` or ``RunError``. When
    the cancellation token fires the iterator stops without a terminal event
    and discards anything still buffered.
    """

    def __init__(
        self,
        normalizer: StreamNormalizer,
        *,
        cancellation: CancellationToken | None = None,
    ) -> None:
        self._normalizer = normalizer
        self._cancellation = cancellation
        self._buffer: Deque[StreamEvent] = deque()
        self._closed = False
        self._finalized = False
        self._exhausted = False
        self._close_lock = asyncio.Lock()

    def __aiter__(self) -> BaseStreamIterator:
        return self

    async def __anext__(self) -> StreamEvent:
        if self._cancellation is not None and self._cancellation.cancelled:
            await self.close()
            raise StopAsyncIteration

        if self._closed and not self._buffer:
            raise StopAsyncIteration

        buffered = self._pop_buffered_event()
        if buffered is not None:
            return await self._finalize_if_needed(buffered)

        while True:
            if self._closed:
                raise StopAsyncIteration

            if self._finalized:
                await self.close()
                raise StopAsyncIteration

            try:
                events = await self._pull_events()
            except _StreamCancelled:
                await self.close()
                raise StopAsyncIteration from None

            if not events:
                if self._exhausted:
                    await self.close()
                    raise StopAsyncIteration
                continue

            self._buffer.extend(events)
            buffered = self._pop_buffered_event()
            if buffered is not None:
                return await self._finalize_if_needed(buffered)

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        """Release provider resources and prevent additional iteration."""

        async with self._close_lock:
            if self._closed:
                return

            self._closed = True
            self._buffer.clear()
            await self._on_close()

    async def aclose(self) -> None:
        await self.close()

    async def _pull_events(self) -> list[StreamEvent]:
        try:
            chunk = await self._consume_chunk()
        except StopAsyncIteration:
            self._exhausted = True
            return self._normalizer.normalize_end()
        except _StreamCancelled:
            raise
        except Exception as exc:
            return self._normalizer.normalize_error(exc)

        try:
            return await self._normalizer.normalize_chunk(chunk)
        except Exception as exc:
            return self._normalizer.normalize_error(exc)

    async def _consume_chunk(self) -> Mapping[str, Any]:
        token = self._cancellation
        if token is None:
            return await self._get_next_chunk()
        if token.cancelled:
            raise _StreamCancelled

        next_chunk = asyncio.ensure_future(self._get_next_chunk())
        cancelled = asyncio.ensure_future(token.wait())
        try:
            done, _ = await asyncio.wait(
                {next_chunk, cancelled},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            cancelled.cancel()
            if not next_chunk.done():
                next_chunk.cancel()
                with suppress(asyncio.CancelledError):
                    await next_chunk

        if next_chunk in done and not next_chunk.cancelled():
            return next_chunk.result()
        raise _StreamCancelled

    async def _finalize_if_needed(self, event: StreamEvent) -> StreamEvent:
        if is_terminal(event):
            self._finalized = True
            if not self._buffer:
                await self.close()
        return event

    def _pop_buffered_event(self) -> StreamEvent | None:
        if not self._buffer:
            return None
        return self._buffer.popleft()

    @abc.abstractmethod
    async def _get_next_chunk(self) -> Mapping[str, Any]:
        """Retrieve the next raw chunk from the provider stream."""

    async def _on_close(self) -> None:
        """Allow subclasses to dispose provider resources when closing."""


StreamOpener = Callable[[], "Any | Awaitable[Any]"]


class ProviderStreamIterator(BaseStreamIterator):
    """Iterator over a vendor transport that is opened lazily on first use.

    Opening lazily means connection failures surface as ``RunError`` events
    rather than exceptions, and a token cancelled before consumption begins
    never touches the transport.
    """

    def __init__(
        self,
        opener: StreamOpener,
        normalizer: StreamNormalizer,
        *,
        cancellation: CancellationToken | None = None,
    ) -> None:
        self._opener = opener
        self._stream: Any = None
        self._iterator: Any = None
        self._stream_closed = False
        super().__init__(normalizer, cancellation=cancellation)

    async def _get_next_chunk(self) -> Mapping[str, Any]:
        if self._iterator is None:
            await self._open()
        raw_chunk = await self._iterator.__anext__()
        return coerce_chunk(raw_chunk)

    async def _open(self) -> None:
        stream = self._opener()
        if inspect.isawaitable(stream):
            stream = await stream
        self._stream = stream
        self._iterator = _coerce_async_iterator(stream)
        LOGGER.debug("opened provider stream %s", type(stream).__name__)

    async def _on_close(self) -> None:
        if self._stream_closed or self._stream is None:
            return
        self._stream_closed = True

        for closer_name in ("aclose", "close"):
            closer = getattr(self._stream, closer_name, None)
            if closer is None:
                continue
            result = closer()
            if inspect.isawaitable(result):
                await result
            return


class ReplayTransport:
    """Async transport that replays recorded vendor chunks.

    ``error`` is raised after the recorded chunks, which reproduces a
    connection dropping mid-stream.
    """

    def __init__(self, chunks: Iterable[Any], *, error: BaseException | None = None) -> None:
        self._chunks: Deque[Any] = deque(chunks)
        self._error = error
        self.closed = False

    def __aiter__(self) -> ReplayTransport:
        return self

    async def __anext__(self) -> Any:
        await asyncio.sleep(0)
        if self._chunks:
            return self._chunks.popleft()
        if self._error is not None:
            error, self._error = self._error, None
            raise error
        raise StopAsyncIteration

    async def aclose(self) -> None:
        self.closed = True


async def replay_stream(iterator: AsyncIterator[StreamEvent]) -> list[StreamEvent]:
    """Collect all events emitted by a stream iterator."""

    events: list[StreamEvent] = []
    try:
        async for event in iterator:
            events.append(event)
    finally:
        closer = getattr(iterator, "aclose", None)
        if closer is not None:
            await closer()
    return events


def coerce_chunk(chunk: Any) -> Mapping[str, Any]:
    """Return ``chunk`` as a mapping, unwrapping SDK model objects."""

    mapping = as_mapping(chunk)
    if mapping is None:
        msg = "stream chunk must be a mapping"
        raise AdapterError(msg)
    return mapping


def as_mapping(value: Any) -> Mapping[str, Any] | None:
    if value is None:
        return None
    if isinstance(value, Mapping):
        return value

    if hasattr(value, "model_dump"):
        mapping = value.model_dump()
        if isinstance(mapping, Mapping):
            return mapping

    if hasattr(value, "__dict__"):
        return dict(vars(value))

    return None


def _coerce_async_iterator(stream: Any) -> Any:
    iterator_factory = getattr(stream, "__aiter__", None)
    if iterator_factory is None or not callable(iterator_factory):
        msg = "provider stream must support async iteration"
        raise AdapterError(msg)
    iterator = iterator_factory()
    if not hasattr(iterator, "__anext__"):
        msg = "provider stream iterator must define '__anext__'"
        raise AdapterError(msg)
    return iterator


__all__ = [
    "BaseStreamIterator",
    "ChunkDelta",
    "ChunkMapper",
    "DeltaNormalizer",
    "ProviderStreamIterator",
    "ReplayTransport",
    "StreamNormalizer",
    "StreamState",
    "ToolCallBuffer",
    "ToolCallFragment",
    "apply_delta",
    "as_mapping",
    "coerce_chunk",
    "fail_stream",
    "finish_stream",
    "parse_tool_arguments",
    "replay_stream",
]
