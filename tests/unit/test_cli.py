"""Tests for the command-line entry point."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

from click.testing import CliRunner

from webhookbot.cli import EXIT_FAILURE, main

_CLEAN_ENV = {
    "BOT_DSN": "",
    "BOT_HTTP_PREFIX": "",
    "TELEGRAM_BOT_TOKEN": "",
    "AUDIT_LOG_PATH": "",
}


def test_refuses_to_start_without_dsn() -> None:
    result = CliRunner().invoke(
        main, ["--http-prefix", "https://bots.example.com/webhookbot", "--bot-token", "1:A"],
        env=_CLEAN_ENV,
    )
    assert result.exit_code == EXIT_FAILURE
    assert "database DSN" in result.output


def test_refuses_invalid_prefix(tmp_path: Path) -> None:
    result = CliRunner().invoke(
        main, ["--dsn", str(tmp_path / "w.db"), "--http-prefix", "not-a-url", "--bot-token", "1:A"],
        env=_CLEAN_ENV,
    )
    assert result.exit_code == EXIT_FAILURE


def test_refuses_to_start_without_bot_token(tmp_path: Path) -> None:
    result = CliRunner().invoke(
        main, ["--dsn", str(tmp_path / "w.db"), "--http-prefix", "https://bots.example.com"],
        env=_CLEAN_ENV,
    )
    assert result.exit_code == EXIT_FAILURE
    assert "bot token" in result.output


def test_reads_environment(tmp_path: Path) -> None:
    env = {
        **_CLEAN_ENV,
        "BOT_DSN": f"sqlite:///{tmp_path / 'w.db'}",
        "BOT_HTTP_PREFIX": "https://bots.example.com/webhookbot",
        "TELEGRAM_BOT_TOKEN": "1:A",
    }
    with patch("webhookbot.cli.run", return_value=0) as mock_run:
        result = CliRunner().invoke(main, [], env=env)

    assert result.exit_code == 0
    settings = mock_run.call_args[0][0]
    assert settings.http_prefix == "https://bots.example.com/webhookbot"
    assert settings.bot_token == "1:A"


def test_supervisor_failure_exits_nonzero(tmp_path: Path) -> None:
    args = [
        "--dsn", str(tmp_path / "w.db"),
        "--http-prefix", "https://bots.example.com",
        "--bot-token", "1:A",
    ]
    with patch("webhookbot.cli.BotServer") as server_cls:
        server_cls.return_value.run.side_effect = RuntimeError("boom")
        result = CliRunner().invoke(main, args, env=_CLEAN_ENV)
    assert result.exit_code == EXIT_FAILURE
    assert "boom" in result.output
