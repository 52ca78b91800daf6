"""Backend dispatch contract shared by every LLM backend variant."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from chatplane.engine.errors import HandlerError
from chatplane.engine.models import FailureClass


class BackendKind(str, Enum):
    """Closed set of supported backends."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    CODEX = "codex"
    CLAUDE_CODE = "claude-code"

    @property
    def is_remote(self) -> bool:
        return self in (BackendKind.OPENAI, BackendKind.ANTHROPIC)


_KIND_ALIASES: dict[str, BackendKind] = {
    "openai": BackendKind.OPENAI,
    "anthropic": BackendKind.ANTHROPIC,
    "claude-api": BackendKind.ANTHROPIC,
    "claude_api": BackendKind.ANTHROPIC,
    "codex": BackendKind.CODEX,
    "claude-code": BackendKind.CLAUDE_CODE,
    "claude_code": BackendKind.CLAUDE_CODE,
}


def parse_backend_kind(value: str) -> BackendKind:
    """Normalize a backend name, accepting the documented aliases."""

    normalized = value.strip().lower()
    try:
        return _KIND_ALIASES[normalized]
    except KeyError as error:
        raise ValueError(
            f"Unsupported AI backend: {value!r}. Use openai, anthropic, codex, or claude-code.",
        ) from error


class BackendError(HandlerError):
    """Classified backend failure."""

    def __init__(
        self,
        failure_class: FailureClass,
        message: str,
        *,
        reason_code: str | None = None,
    ) -> None:
        super().__init__(failure_class, message)
        self.reason_code = reason_code


@dataclass(slots=True, frozen=True)
class RemoteApiSettings:
    """Connection details for one remote LLM API."""

    api_key: str
    model: str
    base_url: str
    max_tokens: int = 1024


DEFAULT_OPENAI = RemoteApiSettings(
    api_key="",
    model="gpt-5.3-codex",
    base_url="https://api.openai.com",
)
DEFAULT_ANTHROPIC = RemoteApiSettings(
    api_key="",
    model="claude-3-5-sonnet-latest",
    base_url="https://api.anthropic.com",
)
DEFAULT_CODEX_COMMAND = "codex exec --skip-git-repo-check {prompt}"
DEFAULT_CLAUDE_CODE_COMMAND = "claude -p {prompt}"


@dataclass(slots=True, frozen=True)
class BackendSettings:
    """Selected backend and per-variant settings, resolved once at startup."""

    kind: BackendKind = BackendKind.CODEX
    timeout_seconds: float = 120.0
    openai: RemoteApiSettings = field(default_factory=lambda: DEFAULT_OPENAI)
    anthropic: RemoteApiSettings = field(default_factory=lambda: DEFAULT_ANTHROPIC)
    codex_command: str = DEFAULT_CODEX_COMMAND
    claude_code_command: str = DEFAULT_CLAUDE_CODE_COMMAND


class BackendDispatch(Protocol):
    """Uniform call contract implemented by every backend variant."""

    name: str

    def invoke(self, prompt: str, timeout_seconds: float) -> str:
        """Return backend output text or raise :class:`BackendError`."""


def require_output(text: str, *, backend: str) -> str:
    """Strip backend output, rejecting blank responses."""

    stripped = text.strip()
    if not stripped:
        raise BackendError(
            FailureClass.EMPTY_RESPONSE,
            f"{backend} returned empty output",
            reason_code=f"{backend}_empty_response",
        )
    return stripped
