"""Test harness utilities for adapter validation."""

from .adapter_harness import assert_stream_invariants, collect, collect_async, event_types

__all__ = [
    "assert_stream_invariants",
    "collect",
    "collect_async",
    "event_types",
]
