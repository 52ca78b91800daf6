"""LLM backend implementations behind one ``invoke`` contract."""

from __future__ import annotations

from chatplane.backend.base import (
    BackendDispatch,
    BackendError,
    BackendKind,
    BackendSettings,
    RemoteApiSettings,
    parse_backend_kind,
)
from chatplane.backend.cli_backend import CliToolBackend
from chatplane.backend.http_backend import AnthropicBackend, HttpApiBackend, OpenAiBackend

__all__ = [
    "AnthropicBackend",
    "BackendDispatch",
    "BackendError",
    "BackendKind",
    "BackendSettings",
    "CliToolBackend",
    "HttpApiBackend",
    "OpenAiBackend",
    "RemoteApiSettings",
    "build_backend",
    "invoke",
    "parse_backend_kind",
]


def build_backend(settings: BackendSettings, *, transport=None) -> BackendDispatch:
    """Create the single backend selected for this process."""

    if settings.kind is BackendKind.OPENAI:
        return OpenAiBackend(settings.openai, transport=transport)
    if settings.kind is BackendKind.ANTHROPIC:
        return AnthropicBackend(settings.anthropic, transport=transport)
    if settings.kind is BackendKind.CODEX:
        return CliToolBackend(name="codex", command_template=settings.codex_command)
    if settings.kind is BackendKind.CLAUDE_CODE:
        return CliToolBackend(name="claude-code", command_template=settings.claude_code_command)
    raise ValueError(f"Unsupported backend kind: {settings.kind!r}")


def invoke(settings: BackendSettings, prompt: str, timeout_seconds: float | None = None) -> str:
    """Run one prompt on the configured backend."""

    backend = build_backend(settings)
    try:
        return backend.invoke(
            prompt,
            settings.timeout_seconds if timeout_seconds is None else timeout_seconds,
        )
    finally:
        close = getattr(backend, "close", None)
        if close is not None:
            close()
