"""Loop strategies deciding whether the agent loop starts another turn.

A strategy receives the loop state after a tool turn has been resolved and
the iteration counter incremented, and returns ``True`` to continue.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING

from canonstream.core.events import FinishReason

if TYPE_CHECKING:
    from .state import AgentLoopState

LoopStrategy = Callable[["AgentLoopState"], bool]


def max_iterations(limit: int) -> LoopStrategy:
    if limit < 1:
        msg = "max_iterations limit must be at least 1"
        raise ValueError(msg)

    def _strategy(state: AgentLoopState) -> bool:
        return state.iteration < limit

    _strategy.__name__ = f"max_iterations({limit})"
    return _strategy


def until_finish_reason(reasons: Iterable[FinishReason | str]) -> LoopStrategy:
    """Stop once the latest finish reason is one of ``reasons``."""

    stop_reasons = frozenset(FinishReason(reason) for reason in reasons)

    def _strategy(state: AgentLoopState) -> bool:
        return state.finish_reason not in stop_reasons

    return _strategy


def combine_strategies(*strategies: LoopStrategy) -> LoopStrategy:
    """Continue only while every strategy agrees."""

    if not strategies:
        msg = "combine_strategies requires at least one strategy"
        raise ValueError(msg)

    def _strategy(state: AgentLoopState) -> bool:
        return all(strategy(state) for strategy in strategies)

    return _strategy
