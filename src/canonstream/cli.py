"""Command line interface for replaying and reducing canonical streams."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Sequence

from .client.reducer import reduce_events
from .config import AgentConfig
from .core.adapters import PROVIDERS, DeltaNormalizer, ProviderStreamIterator, ReplayTransport
from .io.sse import parse_sse, sse_stream

LOGGER = logging.getLogger(__name__)

DEFAULT_REPLAY_MODEL = "unknown"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="canonstream",
        description="Normalize recorded provider streams into canonical events",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    replay_parser = subparsers.add_parser(
        "replay", help="convert a recorded vendor stream (JSON lines) into SSE"
    )
    replay_parser.add_argument(
        "--provider",
        choices=sorted(PROVIDERS),
        required=True,
        help="Vendor wire format of the recorded chunks",
    )
    replay_parser.add_argument("chunks", type=Path, help="File with one vendor chunk per line")
    replay_parser.add_argument("--model", help="Model name reported until the stream names one")
    replay_parser.add_argument(
        "-o",
        "--output",
        type=Path,
        help="Write the SSE stream to this path instead of stdout",
    )

    reduce_parser = subparsers.add_parser(
        "reduce", help="fold an SSE event stream into the rendered UI message"
    )
    reduce_parser.add_argument("events", type=Path, help="SSE file produced by 'replay'")
    reduce_parser.add_argument(
        "--text-first",
        action="store_true",
        help="Keep text parts ahead of tool calls that arrive after them",
    )
    reduce_parser.add_argument(
        "-o",
        "--output",
        type=Path,
        help="Write the message JSON to this path instead of stdout",
    )

    return parser


def _read_chunks(path: Path) -> list[dict[str, Any]]:
    chunks: list[dict[str, Any]] = []
    with path.open(encoding="utf-8") as handle:
        for number, line in enumerate(handle, start=1):
            if not line.strip():
                continue
            try:
                chunks.append(json.loads(line))
            except json.JSONDecodeError as exc:
                raise ValueError(f"{path}:{number}: invalid JSON chunk ({exc.msg})") from exc
    return chunks


async def _replay(provider: str, chunks: list[dict[str, Any]], model: str) -> str:
    spec = PROVIDERS[provider]
    transport = ReplayTransport(chunks)
    normalizer = DeltaNormalizer(spec.map_chunk, model=model)
    iterator = ProviderStreamIterator(lambda: transport, normalizer)
    frames: list[str] = []
    try:
        async for frame in sse_stream(iterator):
            frames.append(frame)
    finally:
        await iterator.aclose()
    return "".join(frames)


def _emit(text: str, output: Path | None) -> None:
    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(text, encoding="utf-8")
    else:
        sys.stdout.write(text)
        if not text.endswith("\n"):
            sys.stdout.write("\n")


def _handle_replay(args: argparse.Namespace, config: AgentConfig) -> int:
    chunks = _read_chunks(args.chunks)
    model = args.model or config.model or DEFAULT_REPLAY_MODEL
    LOGGER.info("replaying %d %s chunks from %s", len(chunks), args.provider, args.chunks)
    _emit(asyncio.run(_replay(args.provider, chunks, model)), args.output)
    return 0


def _handle_reduce(args: argparse.Namespace, config: AgentConfig) -> int:
    with args.events.open(encoding="utf-8") as handle:
        events = list(parse_sse(handle))
    tools_first = config.tool_calls_before_text and not args.text_first
    message = reduce_events(events, tool_calls_before_text=tools_first)
    _emit(json.dumps(message.to_dict(), indent=2), args.output)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    handlers = {"replay": _handle_replay, "reduce": _handle_reduce}
    handler = handlers.get(args.command)
    if handler is None:
        parser.error("no command provided")
        return 2

    try:
        config = AgentConfig.from_env()
        return handler(args, config)
    except (OSError, ValueError) as exc:
        print(f"canonstream: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
