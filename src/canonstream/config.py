"""Runtime configuration for the agent loop and the client reducer."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import TYPE_CHECKING, Any, Mapping

if TYPE_CHECKING:
    from .runtime.strategies import LoopStrategy

ENV_PREFIX = "CANONSTREAM_"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(slots=True)
class AgentConfig:
    """Tunables shared by :class:`~canonstream.runtime.loop.AgentLoop` and the reducer.

    Attributes
    ----------
    model:
        Model name used when the caller does not pass one explicitly.
    max_iterations:
        Number of tool turns the default strategy allows before the loop ends
        in ``budget_exceeded``.
    tool_concurrency:
        Upper bound on tool executors running at the same time.
    tool_grace_period:
        Seconds in-flight tools may keep running after cancellation before the
        loop stops waiting for them.
    tool_calls_before_text:
        Whether the client reducer renders tool-call parts ahead of the text
        part of the same turn.
    """

    model: str | None = None
    max_iterations: int = 5
    tool_concurrency: int = 8
    tool_grace_period: float = 5.0
    tool_calls_before_text: bool = True

    def __post_init__(self) -> None:
        if self.model is not None and not self.model.strip():
            raise ValueError("model must not be blank")
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        if self.tool_concurrency < 1:
            raise ValueError("tool_concurrency must be at least 1")
        if self.tool_grace_period < 0:
            raise ValueError("tool_grace_period must not be negative")

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "AgentConfig":
        """Build a config from a mapping such as a parsed JSON or TOML section."""

        known = {field.name for field in fields(cls)}
        unknown = set(mapping) - known
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ValueError(f"unknown configuration keys: {joined}")

        values: dict[str, Any] = {}
        for key, value in mapping.items():
            values[key] = _coerce(key, value)
        return cls(**values)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "AgentConfig":
        """Read ``CANONSTREAM_*`` variables, ignoring unset or empty ones."""

        source = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for field in fields(cls):
            raw = source.get(ENV_PREFIX + field.name.upper())
            if raw is None or raw == "":
                continue
            values[field.name] = raw
        return cls.from_mapping(values)

    def strategy(self) -> "LoopStrategy":
        from .runtime.strategies import max_iterations

        return max_iterations(self.max_iterations)

    def context(self) -> Mapping[str, Any]:
        return {field.name: getattr(self, field.name) for field in fields(self)}


def _coerce(key: str, value: Any) -> Any:
    if key in {"max_iterations", "tool_concurrency"}:
        return _to_int(key, value)
    if key == "tool_grace_period":
        try:
            return float(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"{key} must be a number") from exc
    if key == "tool_calls_before_text":
        return _to_bool(key, value)
    if value is not None and not isinstance(value, str):
        raise ValueError(f"{key} must be a string")
    return value


def _to_int(key: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{key} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{key} must be an integer") from exc


def _to_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ValueError(f"{key} must be a boolean")
