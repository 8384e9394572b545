"""Identifier and timestamp factories shared by adapters and the agent loop."""

from __future__ import annotations

import time
import uuid
from collections.abc import Callable
from itertools import count

IdFactory = Callable[[str], str]
Clock = Callable[[], int]

STABLE_ORIGIN_MS = 1_704_067_200_000  # 2024-01-01T00:00:00Z


def generate_id(prefix: str) -> str:
    """Return a unique identifier such as ``run-1718000000000-1a2b3c4d``."""

    return f"{prefix}-{system_clock()}-{uuid.uuid4().hex[:8]}"


def system_clock() -> int:
    """Wall clock time in epoch milliseconds."""

    return int(time.time() * 1000)


def sequential_ids(*, start: int = 1) -> IdFactory:
    """Return an id factory yielding ``<prefix>-<n>`` with one counter per prefix."""

    counters: dict[str, count] = {}

    def _next(prefix: str) -> str:
        counter = counters.setdefault(prefix, count(start))
        return f"{prefix}-{next(counter)}"

    return _next


def stable_clock(*, origin: int = STABLE_ORIGIN_MS, step: int = 1) -> Clock:
    """Return a clock that yields deterministic, strictly increasing timestamps."""

    counter = count()

    def _next() -> int:
        return origin + step * next(counter)

    return _next


__all__ = [
    "Clock",
    "IdFactory",
    "STABLE_ORIGIN_MS",
    "generate_id",
    "sequential_ids",
    "stable_clock",
    "system_clock",
]
