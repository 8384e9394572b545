"""Agent loop driving adapter turns, tool resolution, and approvals.

The loop is a state machine advanced by *ticks*. One tick (a full pass over
:meth:`AgentLoop.events`) runs until the loop is terminal or blocked on an
approval decision. Approvals are never awaited inside a tick: the caller
answers them with :meth:`AgentLoop.respond` and ticks again.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping, Sequence
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any, Union

from canonstream.config import AgentConfig
from canonstream.core.adapters.base import ModelAdapter
from canonstream.core.adapters.stream import StreamState, fail_stream
from canonstream.core.adapters.toolbridge import Tool
from canonstream.core.cancellation import CancellationToken
from canonstream.core.errors import AgentLoopError, ApprovalError
from canonstream.core.events import (
    ApprovalRequested,
    ErrorInfo,
    FinishReason,
    RunError,
    StreamEvent,
    TextDelta,
    TextStart,
    ToolCallEnd,
    ToolCallStart,
    Usage,
    is_terminal,
)
from canonstream.core.ids import Clock, IdFactory, generate_id, system_clock
from canonstream.core.message import Message, MessageRole, ToolCall, ToolCallState

from .executor import ApprovalDecision, ApprovalTable, ToolExecutor, ToolOutcome
from .observer import LoopObserver, NullObserver
from .state import AgentLoopState, LoopStatus, ToolCallRecord
from .strategies import LoopStrategy

LOGGER = logging.getLogger(__name__)

ApprovalHandler = Callable[
    [ApprovalRequested],
    Union[ApprovalDecision, None, Awaitable[Union[ApprovalDecision, None]]],
]


@dataclass(frozen=True, slots=True)
class LoopResult:
    status: LoopStatus
    messages: tuple[Message, ...]
    new_messages: tuple[Message, ...]
    iteration: int
    usage: Usage | None = None
    finish_reason: FinishReason | None = None
    error: ErrorInfo | None = None
    pending_approvals: tuple[ApprovalRequested, ...] = ()

    @property
    def last_message(self) -> Message | None:
        return self.messages[-1] if self.messages else None


class _TurnAccumulator:
    """Builds the assistant message from the events of one adapter stream."""

    def __init__(self) -> None:
        self.message_id: str | None = None
        self.content: str | None = None
        self._calls: dict[str, list[Any]] = {}

    def observe(self, event: StreamEvent) -> None:
        if isinstance(event, TextStart):
            self.message_id = event.message_id
        elif isinstance(event, TextDelta):
            self.message_id = self.message_id or event.message_id
            self.content = event.accumulated_content
        elif isinstance(event, ToolCallStart):
            self._calls.setdefault(event.tool_call_id, [event.tool_name, {}])
        elif isinstance(event, ToolCallEnd):
            entry = self._calls.setdefault(event.tool_call_id, [event.tool_name, {}])
            entry[1] = event.parsed_input

    def build(self, id_factory: IdFactory) -> Message:
        tool_calls = tuple(
            ToolCall(id=call_id, name=name, arguments=arguments)
            for call_id, (name, arguments) in self._calls.items()
        )
        return Message(
            role=MessageRole.ASSISTANT,
            content=self.content,
            tool_calls=tool_calls or None,
            id=self.message_id or id_factory("msg"),
        )


class AgentLoop:
    """Coordinate adapter streaming, tool execution, and approval gates.

    Iterating the loop (``async for event in loop``) performs one tick and
    yields every canonical event in arrival order, followed by the
    ``ApprovalRequested`` and ``ToolResult`` events the loop produces itself.
    """

    def __init__(
        self,
        adapter: ModelAdapter,
        messages: Sequence[Message],
        /,
        *,
        model: str | None = None,
        tools: Sequence[Tool] = (),
        strategy: LoopStrategy | None = None,
        provider_options: Mapping[str, Any] | None = None,
        cancellation: CancellationToken | None = None,
        observer: LoopObserver | None = None,
        approval_handler: ApprovalHandler | None = None,
        config: AgentConfig | None = None,
        clock: Clock = system_clock,
        id_factory: IdFactory = generate_id,
    ) -> None:
        if not messages:
            raise AgentLoopError("at least one message is required")

        config = config if config is not None else AgentConfig()
        self._adapter = adapter
        self._model = model or config.model
        self._tools = tuple(tools)
        self._provider_options = dict(provider_options or {})
        self._cancellation = cancellation if cancellation is not None else CancellationToken()
        self._observer: LoopObserver = observer if observer is not None else NullObserver()
        self._approval_handler = approval_handler
        self._grace_period = config.tool_grace_period
        self._clock = clock
        self._id_factory = id_factory
        self._executor = ToolExecutor(
            self._tools,
            concurrency=config.tool_concurrency,
            clock=clock,
            id_factory=id_factory,
        )
        self._approvals = ApprovalTable()
        self._initial_count = len(messages)
        self._running = False
        self._abandoned: set[asyncio.Future[Any]] = set()

        self.state = AgentLoopState(
            messages=list(messages),
            strategy=strategy or config.strategy(),
        )

    @property
    def status(self) -> LoopStatus:
        return self.state.status

    @property
    def cancellation(self) -> CancellationToken:
        return self._cancellation

    @property
    def pending_approvals(self) -> tuple[ApprovalRequested, ...]:
        return tuple(
            request
            for request in self.state.pending_approvals
            if self._approvals.decision_for(request.approval_id) is None
        )

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        return self.events()

    async def events(self) -> AsyncIterator[StreamEvent]:
        """Advance the loop by one tick, yielding events as they happen.

        Closing the generator early (``break`` out of ``async for``) closes
        the adapter stream of the current turn. That turn is discarded, so
        the next tick streams it again from the same history. Tool results
        already produced in a resolving turn are kept.
        """

        if self._running:
            raise AgentLoopError("the agent loop is already running")
        self._running = True
        try:
            if self.state.status is LoopStatus.IDLE:
                self._enter_initial_status()

            while not self.state.status.is_terminal:
                if self._cancellation.cancelled:
                    self._transition(LoopStatus.CANCELLED)
                    break

                if self.state.status is LoopStatus.STREAMING:
                    async with aclosing(self._stream_turn()) as turn:
                        async for event in turn:
                            yield event
                    continue

                async with aclosing(self._resolve_turn()) as resolution:
                    async for event in resolution:
                        yield event
                if self.state.status is LoopStatus.RESOLVING:
                    # blocked on approval decisions
                    break
        finally:
            self._running = False

    async def run(self) -> LoopResult:
        """Drain one tick and return the loop result."""

        async for _ in self.events():
            pass
        return self.result()

    def respond(self, approval_id: str, approved: bool, *, output: str | None = None) -> ApprovalDecision:
        """Record an external approval decision; takes effect on the next tick."""

        if self.state.status.is_terminal:
            raise ApprovalError(f"the agent loop has already finished ({self.state.status.value})")
        return self._approvals.resolve(approval_id, approved, output)

    def cancel(self, reason: str | None = None) -> None:
        """Request cooperative cancellation. A no-op on terminal loops."""

        if self.state.status.is_terminal:
            return
        self._cancellation.cancel(reason)
        if not self._running:
            self._transition(LoopStatus.CANCELLED)

    def result(self) -> LoopResult:
        messages = tuple(self.state.messages)
        return LoopResult(
            status=self.state.status,
            messages=messages,
            new_messages=messages[self._initial_count :],
            iteration=self.state.iteration,
            usage=self.state.usage,
            finish_reason=self.state.finish_reason,
            error=self.state.error,
            pending_approvals=self.pending_approvals,
        )

    def _enter_initial_status(self) -> None:
        messages = self.state.messages
        last_assistant = None
        for position in range(len(messages) - 1, -1, -1):
            if messages[position].role is MessageRole.ASSISTANT:
                last_assistant = position
                break

        if last_assistant is None:
            self._transition(LoopStatus.STREAMING)
            return

        assistant = messages[last_assistant]
        trailing = messages[last_assistant + 1 :]
        if not assistant.tool_calls:
            if not trailing:
                LOGGER.info("conversation already complete; not invoking the adapter")
                self._transition(LoopStatus.STOPPED)
                return
            self._transition(LoopStatus.STREAMING)
            return

        if any(message.role is MessageRole.USER for message in trailing):
            self._transition(LoopStatus.STREAMING)
            return

        answered = {message.tool_call_id for message in trailing if message.role is MessageRole.TOOL}
        unresolved = [call for call in assistant.tool_calls if call.id not in answered]
        if not unresolved:
            self._transition(LoopStatus.STREAMING)
            return

        self.state.tool_calls = [ToolCallRecord(call=call) for call in unresolved]
        self._transition(LoopStatus.RESOLVING)

    async def _stream_turn(self) -> AsyncIterator[StreamEvent]:
        try:
            stream = self._adapter.stream(
                tuple(self.state.messages),
                model=self._model,
                tools=self._tools,
                provider_options=self._provider_options,
                cancellation=self._cancellation,
            )
        except Exception as exc:
            LOGGER.warning("adapter refused the request: %s", exc)
            error = ErrorInfo.from_exception(exc)
            failed = StreamState(
                run_id=self._id_factory("run"),
                model=self._model or "",
                message_id=self._id_factory("msg"),
            )
            for event in fail_stream(failed, error, self._clock()):
                self._notify(event)
                yield event
            self._fail(error)
            return

        accumulator = _TurnAccumulator()
        terminal: StreamEvent | None = None
        try:
            async for event in stream:
                accumulator.observe(event)
                self._notify(event)
                yield event
                if is_terminal(event):
                    terminal = event
                    break
        finally:
            closer = getattr(stream, "aclose", None)
            if closer is not None:
                await closer()

        if terminal is None:
            if self._cancellation.cancelled:
                self._transition(LoopStatus.CANCELLED)
            else:
                self._fail(ErrorInfo("stream ended without a terminal event", code="incomplete_stream"))
            return

        if isinstance(terminal, RunError):
            self._fail(terminal.error)
            return

        self.state.finish_reason = terminal.finish_reason
        if terminal.usage is not None:
            self.state.usage = terminal.usage if self.state.usage is None else self.state.usage.merge(terminal.usage)

        assistant = accumulator.build(self._id_factory)
        self.state.messages.append(assistant)

        if assistant.tool_calls:
            self.state.tool_calls = [ToolCallRecord(call=call) for call in assistant.tool_calls]
            self._transition(LoopStatus.RESOLVING)
        else:
            self._transition(LoopStatus.STOPPED)

    async def _resolve_turn(self) -> AsyncIterator[StreamEvent]:
        records = self.state.tool_calls

        for record in records:
            if record.state is not ToolCallState.PENDING or not self._executor.needs_approval(record.call):
                continue
            request = self._executor.request_approval(record.call)
            record.state = ToolCallState.APPROVAL_REQUESTED
            record.approval = request
            self._approvals.register(request)
            self._notify(request)
            yield request

            if self._approval_handler is not None:
                try:
                    decision = self._approval_handler(request)
                    if inspect.isawaitable(decision):
                        decision = await decision
                except Exception as exc:
                    LOGGER.exception("approval handler failed for %s", request.approval_id)
                    self._fail(ErrorInfo.from_exception(exc))
                    return
                if decision is not None:
                    self._approvals.resolve(request.approval_id, decision.approved, decision.output)

        if self._cancellation.cancelled:
            self._transition(LoopStatus.CANCELLED)
            return

        runnable: list[tuple[ToolCallRecord, ApprovalDecision | None]] = []
        for record in records:
            if record.state is ToolCallState.PENDING:
                runnable.append((record, None))
            elif record.state is ToolCallState.APPROVAL_REQUESTED and record.approval is not None:
                decision = self._approvals.decision_for(record.approval.approval_id)
                if decision is not None:
                    record.state = ToolCallState.APPROVAL_RESPONDED
                    runnable.append((record, decision))

        outcomes = await self._dispatch(runnable)
        if outcomes is None:
            self._transition(LoopStatus.CANCELLED)
            return

        for (record, _), outcome in zip(runnable, outcomes):
            record.state = outcome.state
            record.result = outcome.to_message()
            event = outcome.to_event(self._clock())
            self._notify(event)
            yield event

        if not all(record.is_terminal for record in records):
            LOGGER.info(
                "waiting on %d approval decision(s) (iteration=%s)",
                len(self.pending_approvals),
                self.state.iteration,
            )
            return

        for record in records:
            self.state.messages.append(record.result)
        self.state.tool_calls = []
        self.state.iteration += 1

        if not self.state.strategy(self.state):
            self._transition(LoopStatus.BUDGET_EXCEEDED)
            return
        self._transition(LoopStatus.STREAMING)

    async def _dispatch(
        self,
        runnable: Sequence[tuple[ToolCallRecord, ApprovalDecision | None]],
    ) -> list[ToolOutcome] | None:
        """Run tool calls concurrently; ``None`` means cancellation won the race."""

        if not runnable:
            return []

        tasks = []
        for record, decision in runnable:
            record.state = ToolCallState.EXECUTING
            if decision is None:
                coroutine = self._executor.execute(record.call)
            else:
                coroutine = self._executor.apply_decision(record.call, decision)
            tasks.append(asyncio.ensure_future(coroutine))

        waiter = asyncio.ensure_future(asyncio.gather(*tasks))
        cancelled = asyncio.ensure_future(self._cancellation.wait())
        try:
            await asyncio.wait({waiter, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancelled.cancel()

        if waiter.done():
            return list(waiter.result())

        LOGGER.info("cancellation observed with %d tool execution(s) in flight", len(tasks))
        _, still_running = await asyncio.wait(tasks, timeout=self._grace_period)
        if still_running:
            LOGGER.warning(
                "abandoning %d tool execution(s) after %.1fs grace period",
                len(still_running),
                self._grace_period,
            )
        self._abandoned.add(waiter)
        waiter.add_done_callback(self._abandoned.discard)
        return None

    def _notify(self, event: StreamEvent) -> None:
        try:
            self._observer.on_event(event, self.state)
        except Exception:
            LOGGER.exception("observer failed on %s", type(event).__name__)

    def _fail(self, error: ErrorInfo) -> None:
        self.state.error = error
        self._transition(LoopStatus.ERRORED)

    def _transition(self, status: LoopStatus) -> None:
        previous = self.state.status
        self.state.status = status
        LOGGER.info(
            "agent loop %s -> %s (iteration=%s)",
            previous.value,
            status.value,
            self.state.iteration,
        )
