"""Runtime configuration for the control plane."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field

from chatplane.backend.base import (
    DEFAULT_ANTHROPIC,
    DEFAULT_CLAUDE_CODE_COMMAND,
    DEFAULT_CODEX_COMMAND,
    DEFAULT_OPENAI,
    BackendSettings,
    RemoteApiSettings,
    parse_backend_kind,
)

SUPPORTED_MODES = ("auto", "cli", "telegram", "daemon")
_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m)?\s*$")


@dataclass(slots=True)
class EngineSettings:
    """Dispatch engine sizing and shutdown budget."""

    concurrency: int = 4
    queue_size: int = 128
    shutdown_timeout_seconds: float = 10.0


@dataclass(slots=True)
class TelegramSettings:
    """Telegram Bot API transport settings."""

    bot_token: str = ""
    poll_timeout_seconds: int = 25
    api_base_url: str = "https://api.telegram.org"


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    mode: str = "auto"
    log_level: str = "INFO"
    engine: EngineSettings = field(default_factory=EngineSettings)
    backend: BackendSettings = field(default_factory=BackendSettings)
    telegram: TelegramSettings = field(default_factory=TelegramSettings)

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment with defaults for local use."""

        return cls(
            mode=os.getenv("CHATPLANE_MODE", "auto").strip().lower(),
            log_level=os.getenv("CHATPLANE_LOG_LEVEL", "INFO").strip().upper(),
            engine=EngineSettings(
                concurrency=_env_int("CHATPLANE_CONCURRENCY", 4),
                queue_size=_env_int("CHATPLANE_QUEUE_SIZE", 128),
                shutdown_timeout_seconds=_env_duration("CHATPLANE_SHUTDOWN_TIMEOUT", "10s"),
            ),
            backend=BackendSettings(
                kind=parse_backend_kind(os.getenv("CHATPLANE_AI_BACKEND", "codex")),
                timeout_seconds=_env_duration("CHATPLANE_BACKEND_TIMEOUT", "120s"),
                openai=RemoteApiSettings(
                    api_key=os.getenv("OPENAI_API_KEY", "").strip(),
                    model=os.getenv("OPENAI_MODEL", DEFAULT_OPENAI.model),
                    base_url=os.getenv("OPENAI_BASE_URL", DEFAULT_OPENAI.base_url),
                ),
                anthropic=RemoteApiSettings(
                    api_key=os.getenv("ANTHROPIC_API_KEY", "").strip(),
                    model=os.getenv("ANTHROPIC_MODEL", DEFAULT_ANTHROPIC.model),
                    base_url=os.getenv("ANTHROPIC_BASE_URL", DEFAULT_ANTHROPIC.base_url),
                    max_tokens=_env_int("ANTHROPIC_MAX_TOKENS", DEFAULT_ANTHROPIC.max_tokens),
                ),
                codex_command=os.getenv("CHATPLANE_CODEX_CMD", DEFAULT_CODEX_COMMAND),
                claude_code_command=os.getenv(
                    "CHATPLANE_CLAUDE_CODE_CMD",
                    DEFAULT_CLAUDE_CODE_COMMAND,
                ),
            ),
            telegram=TelegramSettings(
                bot_token=os.getenv("TELEGRAM_BOT_TOKEN", "").strip(),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the engine cannot run with."""

        if self.mode not in SUPPORTED_MODES:
            raise ValueError(
                f"Unsupported mode: {self.mode!r}. Use one of {', '.join(SUPPORTED_MODES)}.",
            )
        if self.engine.concurrency < 1:
            raise ValueError("CHATPLANE_CONCURRENCY must be >= 1.")
        if self.engine.queue_size < 1:
            raise ValueError("CHATPLANE_QUEUE_SIZE must be >= 1.")
        if self.engine.shutdown_timeout_seconds <= 0:
            raise ValueError("CHATPLANE_SHUTDOWN_TIMEOUT must be > 0.")
        if self.backend.timeout_seconds <= 0:
            raise ValueError("CHATPLANE_BACKEND_TIMEOUT must be > 0.")
        if self.backend.anthropic.max_tokens < 1:
            raise ValueError("ANTHROPIC_MAX_TOKENS must be >= 1.")
        for name, template in (
            ("CHATPLANE_CODEX_CMD", self.backend.codex_command),
            ("CHATPLANE_CLAUDE_CODE_CMD", self.backend.claude_code_command),
        ):
            if not template.strip():
                raise ValueError(f"{name} must not be empty.")
        if logging.getLevelName(self.log_level) == f"Level {self.log_level}":
            raise ValueError(f"Unsupported log level: {self.log_level!r}")
        if self.mode == "telegram" and not self.telegram.bot_token:
            raise ValueError("TELEGRAM_BOT_TOKEN is required for telegram mode.")


def parse_duration(value: str) -> float:
    """Parse ``500ms``, ``10s``, ``1m`` or bare seconds into seconds."""

    match = _DURATION_RE.match(value)
    if match is None:
        raise ValueError(
            f"Invalid duration: {value!r}. Expected forms like 500ms, 10s, 1m or 10.",
        )
    amount = float(match.group(1))
    unit = match.group(2) or "s"
    if unit == "ms":
        return amount / 1000
    if unit == "m":
        return amount * 60
    return amount


def configure_logging(level: str = "INFO") -> None:
    """Send log records to stderr once per process."""

    logging.basicConfig(level=level.upper(), format=_LOG_FORMAT)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value.strip())
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from error


def _env_duration(name: str, default: str) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return parse_duration(default)
    try:
        return parse_duration(value)
    except ValueError as error:
        raise ValueError(f"Invalid duration for {name}: {value!r}") from error
