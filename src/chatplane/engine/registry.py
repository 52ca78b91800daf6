"""Static command registry, frozen before the engine accepts jobs."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType

from chatplane.engine.handlers import Handler, ask_handler, echo_handler, ping_handler


class Arity(str, Enum):
    """Argument expectation of a command."""

    NONE = "none"
    FREE_TEXT = "free_text"


@dataclass(slots=True, frozen=True)
class Command:
    """Registered command and its handler."""

    name: str
    arity: Arity
    handler: Handler
    help: str
    usage: str


class TaskRegistry:
    """Read-only name -> command mapping."""

    __slots__ = ("_commands",)

    def __init__(self, commands: Mapping[str, Command]) -> None:
        self._commands = MappingProxyType(dict(commands))

    @classmethod
    def build(cls, commands: Iterable[Command]) -> TaskRegistry:
        """Validate and freeze a set of commands."""

        collected: dict[str, Command] = {}
        for command in commands:
            name = command.name
            if not name or not name.strip():
                raise ValueError("Command name is empty.")
            if name != name.strip().lower() or any(char.isspace() for char in name):
                raise ValueError(f"Command name must be a lowercase word: {name!r}")
            if name in collected:
                raise ValueError(f"Command already registered: {name!r}")
            collected[name] = command
        return cls(collected)

    def lookup(self, name: str) -> Command | None:
        return self._commands.get(name)

    def names(self) -> tuple[str, ...]:
        return tuple(sorted(self._commands))

    def commands(self) -> tuple[Command, ...]:
        return tuple(self._commands[name] for name in self.names())

    def __contains__(self, name: object) -> bool:
        return name in self._commands

    def __len__(self) -> int:
        return len(self._commands)


def default_registry() -> TaskRegistry:
    """Registry with the built-in ping, echo and ask commands."""

    return TaskRegistry.build(
        [
            Command(
                name="ping",
                arity=Arity.NONE,
                handler=ping_handler,
                help="reply with pong",
                usage="!ping",
            ),
            Command(
                name="echo",
                arity=Arity.FREE_TEXT,
                handler=echo_handler,
                help="echo back text",
                usage="!echo <text>",
            ),
            Command(
                name="ask",
                arity=Arity.FREE_TEXT,
                handler=ask_handler,
                help="run a prompt on the configured AI backend",
                usage="!ask <prompt>",
            ),
        ],
    )
