"""Helpers shared by chat transport adapters."""

from __future__ import annotations

from collections.abc import Mapping

from chatplane.engine.errors import SubmitError
from chatplane.engine.registry import TaskRegistry
from chatplane.engine.router import DEFAULT_COMMAND_PREFIX, DEFAULT_FREE_TEXT_COMMAND

ASK_COMMAND = DEFAULT_FREE_TEXT_COMMAND
HELP_COMMAND = "help"
META_PREFIX = "/"


def is_meta_command(text: str) -> bool:
    """True for transport-level slash commands such as ``/help``."""

    return text.strip().startswith(META_PREFIX)


def meta_command_name(text: str) -> str:
    """Return the slash command name, dropping a Telegram ``@botname`` suffix."""

    head = text.strip()[len(META_PREFIX) :].split(maxsplit=1)
    if not head:
        return ""
    return head[0].split("@", 1)[0].lower()


def render_help(registry: TaskRegistry, *, prefix: str = DEFAULT_COMMAND_PREFIX) -> str:
    lines = ["chatplane commands:", "/help - show this help"]
    for command in registry.commands():
        usage = command.usage.replace(DEFAULT_COMMAND_PREFIX, prefix, 1)
        lines.append(f"{usage} - {command.help}")
    lines.append(f"Any message without a {prefix} prefix is sent to the AI backend.")
    return "\n".join(lines)


def submit_error_text(error: SubmitError) -> str:
    return error.message


def is_backend_bound(text: str, *, prefix: str = DEFAULT_COMMAND_PREFIX) -> bool:
    """True for text that will reach the AI backend (free text or ``!ask``)."""

    stripped = text.strip()
    if not stripped or is_meta_command(stripped):
        return False
    if not stripped.startswith(prefix):
        return True
    body = stripped[len(prefix) :]
    if not body or body[0].isspace():
        return False
    parts = body.split(maxsplit=1)
    return parts[0].lower() == ASK_COMMAND and len(parts) > 1


def select_mode(mode: str, *, env: Mapping[str, str], stdin_is_tty: bool) -> str:
    """Resolve ``auto`` to a concrete transport."""

    if mode != "auto":
        return mode
    if env.get("TELEGRAM_BOT_TOKEN", "").strip():
        return "telegram"
    if stdin_is_tty:
        return "cli"
    return "daemon"
