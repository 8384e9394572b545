"""Cooperative cancellation shared by adapters, the agent loop, and tools."""

from __future__ import annotations

import asyncio


class CancellationToken:
    """A one-shot signal that stops new work from being started.

    Cancelling is idempotent. Executors performing long running I/O may poll
    :attr:`cancelled` or await :meth:`wait` themselves. Waiters are created on
    whichever event loop is running, so a token may outlive a single
    ``asyncio.run`` call, as happens when a loop pauses for approvals.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: str | None = None
        self._waiters: set[asyncio.Future[None]] = set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str | None = None) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason
        for waiter in self._waiters:
            if not waiter.done():
                waiter.set_result(None)

    async def wait(self) -> None:
        """Block until the token is cancelled."""

        if self._cancelled:
            return
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.add(waiter)
        try:
            await waiter
        finally:
            self._waiters.discard(waiter)

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "active"
        return f"CancellationToken({state})"
