from __future__ import annotations

import allure
import pytest
from click.testing import CliRunner

from chatplane import __version__
from chatplane.main import chatplane

pytestmark = [
    allure.epic("Operations"),
    allure.feature("Command Line"),
]


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch) -> None:
    for name in (
        "CHATPLANE_MODE",
        "CHATPLANE_AI_BACKEND",
        "CHATPLANE_CODEX_CMD",
        "CHATPLANE_SHUTDOWN_TIMEOUT",
        "TELEGRAM_BOT_TOKEN",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr("chatplane.controllers.configure_logging", lambda _level: None)


def test_version() -> None:
    result = CliRunner().invoke(chatplane, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_ask_ping() -> None:
    result = CliRunner().invoke(chatplane, ["ask", "!ping"])

    assert result.exit_code == 0, result.output
    assert result.output.strip() == "pong"


def test_ask_unknown_command_fails() -> None:
    result = CliRunner().invoke(chatplane, ["ask", "!bogus"])

    assert result.exit_code == 1
    assert "error: unknown command: !bogus" in result.output
    assert "Command failed." in result.output


def test_ask_free_text_uses_configured_cli_backend(monkeypatch, echo_agent_env: str) -> None:
    monkeypatch.setenv("CHATPLANE_CODEX_CMD", echo_agent_env)

    result = CliRunner().invoke(chatplane, ["ask", "hello"])

    assert result.exit_code == 0, result.output
    assert result.output.strip() == "echo: hello"


def test_ask_missing_openai_key_reports_credential_error(monkeypatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    result = CliRunner().invoke(chatplane, ["ask", "--backend", "openai", "hello"])

    assert result.exit_code == 1
    assert "error: OPENAI_API_KEY is empty" in result.output


def test_ask_rejects_bad_backend_env(monkeypatch) -> None:
    monkeypatch.setenv("CHATPLANE_AI_BACKEND", "gemini")

    result = CliRunner().invoke(chatplane, ["ask", "!ping"])

    assert result.exit_code == 2
    assert "Unsupported AI backend" in result.output


def test_commands_lists_registry() -> None:
    result = CliRunner().invoke(chatplane, ["commands"])

    assert result.exit_code == 0
    lines = result.output.splitlines()
    assert [line.split()[0] for line in lines] == ["!ask", "!echo", "!ping"]


def test_run_cli_mode_serves_stdin_then_drains() -> None:
    result = CliRunner().invoke(
        chatplane,
        ["run", "--mode", "cli", "--concurrency", "2", "--shutdown-timeout", "5s"],
        input="!ping\n!echo hi\n",
    )

    assert result.exit_code == 0, result.output
    lines = result.output.splitlines()
    assert lines[0].startswith("chatplane CLI.")
    assert "pong" in lines
    assert "hi" in lines
    assert lines[-1].startswith("shutdown drained in ")
    assert "processed=2 succeeded=2 failed=0 canceled=0" in lines[-1]


def test_run_rejects_bad_shutdown_timeout() -> None:
    result = CliRunner().invoke(chatplane, ["run", "--mode", "daemon", "--shutdown-timeout", "soon"])

    assert result.exit_code == 2
    assert "Invalid duration" in result.output
