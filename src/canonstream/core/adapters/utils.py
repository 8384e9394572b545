"""Pure conversion helpers from canonical history to vendor request messages."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from ..message import Message, MessageRole, ToolCall, ToolCallState, thaw_json


def messages_to_openai(messages: Sequence[Message]) -> list[dict[str, Any]]:
    """Convert messages into the OpenAI Chat API format (shared by Groq)."""

    converted: list[dict[str, Any]] = []
    for message in messages:
        payload: dict[str, Any] = {
            "role": message.role.value,
            "content": message.content,
        }
        if message.tool_calls:
            payload["tool_calls"] = [tool_call_to_openai(call) for call in message.tool_calls]
        if message.role is MessageRole.TOOL:
            payload["tool_call_id"] = message.tool_call_id
            payload["content"] = message.content or ""
        converted.append(payload)

    return converted


def tool_call_to_openai(tool_call: ToolCall) -> dict[str, Any]:
    return {
        "id": tool_call.id,
        "type": "function",
        "function": {
            "name": tool_call.name,
            "arguments": tool_call.arguments_json(),
        },
    }


def messages_to_anthropic(messages: Sequence[Message]) -> tuple[str | None, list[dict[str, Any]]]:
    """Split out the system prompt and convert the rest to Anthropic content blocks.

    Consecutive tool results are merged into a single ``user`` turn because
    the Messages API requires alternating roles.
    """

    system_parts: list[str] = []
    converted: list[dict[str, Any]] = []

    for message in messages:
        if message.role is MessageRole.SYSTEM:
            if message.content:
                system_parts.append(message.content)
            continue

        if message.role is MessageRole.TOOL:
            block = {
                "type": "tool_result",
                "tool_use_id": message.tool_call_id,
                "content": message.content or "",
            }
            if message.state is ToolCallState.OUTPUT_ERROR:
                block["is_error"] = True
            previous = converted[-1] if converted else None
            if (
                previous is not None
                and previous["role"] == "user"
                and isinstance(previous["content"], list)
                and all(item.get("type") == "tool_result" for item in previous["content"])
            ):
                previous["content"].append(block)
            else:
                converted.append({"role": "user", "content": [block]})
            continue

        if message.role is MessageRole.ASSISTANT and message.tool_calls:
            blocks: list[dict[str, Any]] = []
            if message.content:
                blocks.append({"type": "text", "text": message.content})
            for call in message.tool_calls:
                blocks.append(
                    {
                        "type": "tool_use",
                        "id": call.id,
                        "name": call.name,
                        "input": thaw_json(call.arguments),
                    }
                )
            converted.append({"role": "assistant", "content": blocks})
            continue

        converted.append({"role": message.role.value, "content": message.content or ""})

    system = "\n\n".join(system_parts) if system_parts else None
    return system, converted


def messages_to_ollama(messages: Sequence[Message]) -> list[dict[str, Any]]:
    converted: list[dict[str, Any]] = []
    for message in messages:
        payload: dict[str, Any] = {
            "role": message.role.value,
            "content": message.content or "",
        }
        if message.tool_calls:
            payload["tool_calls"] = [
                {"function": {"name": call.name, "arguments": thaw_json(call.arguments)}}
                for call in message.tool_calls
            ]
        converted.append(payload)
    return converted
