"""Controllers for chatplane CLI commands."""

from __future__ import annotations

import logging
import os
import signal
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace

from chatplane.adapters.base import select_mode
from chatplane.adapters.cli import CliAdapter
from chatplane.adapters.daemon import DaemonAdapter
from chatplane.adapters.telegram import TelegramAdapter, TelegramClient
from chatplane.backend import BackendDispatch, build_backend, parse_backend_kind
from chatplane.config import Settings, configure_logging, parse_duration
from chatplane.engine.core import Engine
from chatplane.engine.handlers import ExecutionContext
from chatplane.engine.models import JobResult
from chatplane.engine.registry import TaskRegistry, default_registry
from chatplane.engine.router import PrefixRouter

logger = logging.getLogger(__name__)

ASK_SESSION_ID = "oneshot"


@dataclass(slots=True)
class RunCommand:
    """CLI input for serving a transport."""

    mode: str | None = None
    concurrency: int | None = None
    queue_size: int | None = None
    shutdown_timeout: str | None = None
    backend: str | None = None
    log_level: str | None = None


@dataclass(slots=True)
class AskCommand:
    """CLI input for a one-shot command."""

    text: str
    backend: str | None = None
    timeout_seconds: float | None = None


@dataclass(slots=True)
class AskResult:
    """One-shot outcome for CLI rendering."""

    success: bool
    lines: list[str]


class ControlPlaneController:
    """Builds the engine from settings and runs transports against it."""

    def __init__(self, *, backend_factory=build_backend) -> None:
        self._backend_factory = backend_factory
        self._stop = threading.Event()

    def run(self, command: RunCommand) -> list[str]:
        settings = self._settings_for_run(command)
        configure_logging(settings.log_level)
        mode = select_mode(settings.mode, env=os.environ, stdin_is_tty=sys.stdin.isatty())

        registry = default_registry()
        backend = self._backend_factory(settings.backend)
        engine = build_engine(settings, registry=registry, backend=backend)
        logger.info("Starting mode=%s backend=%s", mode, settings.backend.kind.value)

        self._stop.clear()
        try:
            with self._signal_handlers():
                engine.start()
                self._serve(mode, settings=settings, engine=engine, registry=registry)
        finally:
            report = engine.shutdown()
            _close(backend)
        return [report.describe()]

    def ask(self, command: AskCommand) -> AskResult:
        settings = Settings.from_env()
        backend_settings = settings.backend
        if command.backend is not None:
            backend_settings = replace(backend_settings, kind=parse_backend_kind(command.backend))
        if command.timeout_seconds is not None:
            backend_settings = replace(backend_settings, timeout_seconds=command.timeout_seconds)
        settings = replace(
            settings,
            mode="auto",
            backend=backend_settings,
            engine=replace(settings.engine, concurrency=1, queue_size=1),
        )
        settings.validate()

        results: list[JobResult] = []
        done = threading.Event()

        class _Collect:
            def deliver(self, result: JobResult) -> None:
                results.append(result)
                done.set()

        backend = self._backend_factory(settings.backend)
        engine = build_engine(settings, registry=default_registry(), backend=backend)
        try:
            with engine:
                engine.submit(ASK_SESSION_ID, command.text, _Collect(), adapter="oneshot")
                done.wait()
        finally:
            _close(backend)

        result = results[0]
        return AskResult(success=result.ok, lines=[result.render()])

    def list_commands(self) -> list[str]:
        registry = default_registry()
        return [f"{command.usage:<16} {command.help}" for command in registry.commands()]

    def request_stop(self) -> None:
        self._stop.set()

    def _serve(
        self,
        mode: str,
        *,
        settings: Settings,
        engine: Engine,
        registry: TaskRegistry,
    ) -> None:
        if mode == "cli":
            CliAdapter(engine=engine, registry=registry).run(self._stop)
            return
        if mode == "telegram":
            client = TelegramClient(settings.telegram)
            try:
                TelegramAdapter(engine=engine, registry=registry, client=client).run(self._stop)
            finally:
                client.close()
            return
        if mode == "daemon":
            DaemonAdapter().run(self._stop)
            return
        raise ValueError(f"Unsupported mode: {mode!r}")

    def _settings_for_run(self, command: RunCommand) -> Settings:
        settings = Settings.from_env()
        engine_settings = settings.engine
        if command.concurrency is not None:
            engine_settings = replace(engine_settings, concurrency=command.concurrency)
        if command.queue_size is not None:
            engine_settings = replace(engine_settings, queue_size=command.queue_size)
        if command.shutdown_timeout is not None:
            engine_settings = replace(
                engine_settings,
                shutdown_timeout_seconds=parse_duration(command.shutdown_timeout),
            )
        backend_settings = settings.backend
        if command.backend is not None:
            backend_settings = replace(backend_settings, kind=parse_backend_kind(command.backend))
        settings = replace(
            settings,
            mode=(command.mode or settings.mode).lower(),
            log_level=(command.log_level or settings.log_level).upper(),
            engine=engine_settings,
            backend=backend_settings,
        )
        settings.validate()
        return settings

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            logger.info("Received %s, shutting down", name)
            self._stop.set()

        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
        except ValueError:
            # Signal handlers can only be installed in main thread.
            yield
            return
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)


def build_engine(
    settings: Settings,
    *,
    registry: TaskRegistry,
    backend: BackendDispatch,
) -> Engine:
    """Wire router, execution context and engine from settings."""

    return Engine(
        router=PrefixRouter(registry),
        context=ExecutionContext(
            backend=backend,
            backend_timeout_seconds=settings.backend.timeout_seconds,
        ),
        concurrency=settings.engine.concurrency,
        queue_capacity=settings.engine.queue_size,
        shutdown_timeout_seconds=settings.engine.shutdown_timeout_seconds,
    )


def _close(backend: BackendDispatch) -> None:
    close = getattr(backend, "close", None)
    if close is not None:
        close()
