"""Exception types raised by canonstream components."""

from __future__ import annotations


class AdapterError(RuntimeError):
    """Raised when an adapter cannot fulfil a request."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class AgentLoopError(RuntimeError):
    """Raised when the agent loop is driven incorrectly."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ApprovalError(AgentLoopError):
    """Raised for approval decisions that do not match a pending tool call."""
