from pathlib import Path

import pytest
from typer.testing import CliRunner

from rina import __version__, cli

EVENTS = "\n".join(
    [
        '{"type": "session_init", "session_id": "sess-42"}',
        '{"type": "text_start"}',
        '{"type": "text_delta", "text": "Hel"}',
        '{"type": "text_delta", "text": "lo"}',
        '{"type": "text_end"}',
        '{"type": "tool_start", "tool_name": "webSearch"}',
        '{"type": "text_start"}',
        '{"type": "text_delta", "text": "Bye"}',
    ]
)


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli, "setup_logging", lambda **_kwargs: None)


def _write(tmp_path: Path, name: str, text: str) -> Path:
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return path


def test_version() -> None:
    result = CliRunner().invoke(cli.create_app(), ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_replay_buffered(tmp_path: Path) -> None:
    events = _write(tmp_path, "run.jsonl", EVENTS)

    result = CliRunner().invoke(
        cli.create_app(), ["replay", str(events), "--platform", "telegram"]
    )

    assert result.exit_code == 0, result.output
    assert "Hello" in result.output
    assert "> Searching the web..." in result.output
    assert "Bye" in result.output
    assert "posts: 3" in result.output
    assert "session: sess-42" in result.output


def test_replay_live_override(tmp_path: Path) -> None:
    events = _write(tmp_path, "run.jsonl", EVENTS)

    result = CliRunner().invoke(
        cli.create_app(), ["replay", str(events), "--platform", "telegram", "--live"]
    )

    assert result.exit_code == 0, result.output
    assert "Hello" in result.output
    assert "segments: 2" in result.output


def test_replay_rejects_malformed_events(tmp_path: Path) -> None:
    events = _write(tmp_path, "bad.jsonl", '{"type": "text_start"}\nnot json\n')

    result = CliRunner().invoke(cli.create_app(), ["replay", str(events)])

    assert result.exit_code == 1


def test_replay_reports_config_errors(tmp_path: Path) -> None:
    events = _write(tmp_path, "run.jsonl", EVENTS)

    result = CliRunner().invoke(
        cli.create_app(),
        ["replay", str(events), "--config", str(tmp_path / "missing.toml")],
    )

    assert result.exit_code == 1


def test_split_prints_chunks(tmp_path: Path) -> None:
    text = _write(tmp_path, "reply.txt", "a" * 30 + "\n\n" + "b" * 30)

    result = CliRunner().invoke(
        cli.create_app(), ["split", str(text), "--max-length", "40"]
    )

    assert result.exit_code == 0, result.output
    assert "chunk 1/2" in result.output
    assert "chunk 2/2" in result.output
    assert "a" * 30 in result.output
    assert "b" * 30 in result.output
