from __future__ import annotations

import json
from pathlib import Path

import pytest

from canonstream.cli import build_parser, main
from canonstream.io.sse import DONE_LINE

from tests.fixtures.provider_fakes import anthropic_tool_use_events, openai_tool_call_chunks


def _write_jsonl(path: Path, chunks) -> Path:
    path.write_text("\n".join(json.dumps(chunk) for chunk in chunks) + "\n\n", encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("MODEL", "MAX_ITERATIONS", "TOOL_CONCURRENCY", "TOOL_GRACE_PERIOD", "TOOL_CALLS_BEFORE_TEXT"):
        monkeypatch.delenv(f"CANONSTREAM_{name}", raising=False)


def test_parser_lists_known_providers():
    parser = build_parser()
    args = parser.parse_args(["replay", "--provider", "groq", "chunks.jsonl"])

    assert args.command == "replay"
    assert args.chunks == Path("chunks.jsonl")
    with pytest.raises(SystemExit):
        parser.parse_args(["replay", "--provider", "bedrock", "chunks.jsonl"])


def test_replay_writes_sse_stream(tmp_path: Path):
    chunks = _write_jsonl(tmp_path / "openai.jsonl", openai_tool_call_chunks())
    output = tmp_path / "out" / "events.sse"

    exit_code = main(["replay", "--provider", "openai", str(chunks), "--model", "gpt-test", "-o", str(output)])

    assert exit_code == 0
    body = output.read_text(encoding="utf-8")
    assert body.endswith(DONE_LINE)
    assert body.startswith('data: {"type":"RUN_STARTED"')
    assert '"model":"gpt-test"' in body
    assert '"type":"TOOL_CALL_END"' in body
    assert '"finishReason":"tool_calls"' in body


def test_replay_prints_to_stdout(tmp_path: Path, capsys):
    chunks = _write_jsonl(tmp_path / "anthropic.jsonl", anthropic_tool_use_events())

    assert main(["replay", "--provider", "anthropic", str(chunks)]) == 0

    out = capsys.readouterr().out
    assert '"toolName":"get_weather"' in out
    assert out.endswith(DONE_LINE)


def test_reduce_folds_replayed_stream(tmp_path: Path, capsys):
    chunks = _write_jsonl(tmp_path / "openai.jsonl", openai_tool_call_chunks())
    events = tmp_path / "events.sse"
    main(["replay", "--provider", "openai", str(chunks), "-o", str(events)])

    assert main(["reduce", str(events)]) == 0
    message = json.loads(capsys.readouterr().out)

    assert [part["type"] for part in message["parts"]] == ["tool-call", "text"]
    tool = message["parts"][0]
    assert (tool["id"], tool["name"], tool["state"]) == ("call-1", "sum", "input-complete")
    assert tool["input"] == {"a": 1, "b": 3}
    assert message["parts"][1]["content"] == "Calling calculator"
    assert message["finishReason"] == "tool_calls"
    assert message["usage"]["totalTokens"] == 6


def test_reduce_text_first(tmp_path: Path):
    chunks = _write_jsonl(tmp_path / "openai.jsonl", openai_tool_call_chunks())
    events = tmp_path / "events.sse"
    output = tmp_path / "message.json"
    main(["replay", "--provider", "openai", str(chunks), "-o", str(events)])

    assert main(["reduce", str(events), "--text-first", "-o", str(output)]) == 0

    message = json.loads(output.read_text(encoding="utf-8"))
    assert [part["type"] for part in message["parts"]] == ["text", "tool-call"]


def test_invalid_chunk_file_reports_line(tmp_path: Path, capsys):
    chunks = tmp_path / "broken.jsonl"
    chunks.write_text('{"choices": []}\n{not json\n', encoding="utf-8")

    assert main(["replay", "--provider", "openai", str(chunks)]) == 1
    assert "broken.jsonl:2" in capsys.readouterr().err


def test_missing_input_file_fails(tmp_path: Path, capsys):
    assert main(["reduce", str(tmp_path / "missing.sse")]) == 1
    assert capsys.readouterr().err.startswith("canonstream:")
