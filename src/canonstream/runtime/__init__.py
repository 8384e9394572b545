"""Agent loop, tool execution, and loop observers."""

from .executor import ApprovalDecision, ApprovalTable, ToolExecutor, ToolOutcome
from .loop import AgentLoop, LoopResult
from .observer import (
    CompositeObserver,
    LoggingObserver,
    LoopObserver,
    NullObserver,
    SessionTranscript,
)
from .state import AgentLoopState, LoopStatus, ToolCallRecord
from .strategies import combine_strategies, max_iterations, until_finish_reason

__all__ = [
    "AgentLoop",
    "AgentLoopState",
    "ApprovalDecision",
    "ApprovalTable",
    "CompositeObserver",
    "LoggingObserver",
    "LoopObserver",
    "LoopResult",
    "LoopStatus",
    "NullObserver",
    "SessionTranscript",
    "ToolCallRecord",
    "ToolExecutor",
    "ToolOutcome",
    "combine_strategies",
    "max_iterations",
    "until_finish_reason",
]
