"""Prefix-based routing of raw chat text to command handlers.

Routing rules:

- ``!<name> [args]`` resolves to the registered command ``name``; an
  unregistered name is an ``unknown_command`` failure, never free text.
- any other non-blank text resolves to the free-text command (``ask``),
  which forwards the whole text to the selected backend.

Slash commands (``/help``) belong to transports and are answered before
text ever reaches the engine.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from chatplane.engine.handlers import Handler, failure_handler
from chatplane.engine.models import FailureClass
from chatplane.engine.registry import Arity, TaskRegistry

DEFAULT_COMMAND_PREFIX = "!"
DEFAULT_FREE_TEXT_COMMAND = "ask"


@dataclass(slots=True, frozen=True)
class Route:
    """Resolved handler and its argument."""

    command: str | None
    handler: Handler
    argument: str
    failure_class: FailureClass | None = None


class Router(Protocol):
    """Resolves raw text to a route."""

    def resolve(self, text: str) -> Route:
        """Return the route for ``text``."""


class PrefixRouter:
    """Router for ``!command`` syntax with a free-text fallback."""

    def __init__(
        self,
        registry: TaskRegistry,
        *,
        prefix: str = DEFAULT_COMMAND_PREFIX,
        free_text_command: str = DEFAULT_FREE_TEXT_COMMAND,
    ) -> None:
        if not prefix:
            raise ValueError("Command prefix must not be empty.")
        free_text = registry.lookup(free_text_command)
        if free_text is None:
            raise ValueError(f"Free-text command is not registered: {free_text_command!r}")
        self.registry = registry
        self.prefix = prefix
        self._free_text = free_text

    def resolve(self, text: str) -> Route:
        stripped = text.strip()
        if not stripped:
            return _failure(FailureClass.INVALID_INPUT, "message is empty")

        if not stripped.startswith(self.prefix):
            return Route(
                command=self._free_text.name,
                handler=self._free_text.handler,
                argument=stripped,
            )

        body = stripped[len(self.prefix) :]
        if not body or body[0].isspace():
            return _failure(FailureClass.UNKNOWN_COMMAND, self._unknown_command_message(""))
        parts = body.split(maxsplit=1)
        name = parts[0].lower()
        argument = parts[1].strip() if len(parts) > 1 else ""
        command = self.registry.lookup(name)
        if command is None:
            return _failure(FailureClass.UNKNOWN_COMMAND, self._unknown_command_message(name))

        if command.arity is Arity.NONE and argument:
            return _failure(FailureClass.INVALID_INPUT, f"usage: {command.usage}")
        if command.arity is Arity.FREE_TEXT and not argument:
            return _failure(FailureClass.INVALID_INPUT, f"usage: {command.usage}")
        return Route(command=command.name, handler=command.handler, argument=argument)

    def _unknown_command_message(self, name: str) -> str:
        available = ", ".join(f"{self.prefix}{known}" for known in self.registry.names())
        shown = f"{self.prefix}{name}" if name else self.prefix
        return f"unknown command: {shown}. Available commands: {available}"


def _failure(failure_class: FailureClass, message: str) -> Route:
    return Route(
        command=None,
        handler=failure_handler(failure_class, message),
        argument="",
        failure_class=failure_class,
    )
