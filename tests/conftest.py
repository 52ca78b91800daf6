"""Shared test fixtures."""

from __future__ import annotations

import os
import random
import sys
import threading
import time
from pathlib import Path

import pytest

from chatplane.backend import BackendError
from chatplane.engine.core import Engine
from chatplane.engine.handlers import ExecutionContext
from chatplane.engine.models import JobResult
from chatplane.engine.registry import default_registry
from chatplane.engine.router import PrefixRouter

SRC_DIR = Path(__file__).resolve().parents[1] / "src"
ECHO_AGENT_COMMAND = f"{sys.executable} -m chatplane.backend.echo_agent"


class RecordingSink:
    """Result sink that collects every delivery."""

    def __init__(self) -> None:
        self.results: list[JobResult] = []
        self._cond = threading.Condition()

    def deliver(self, result: JobResult) -> None:
        with self._cond:
            self.results.append(result)
            self._cond.notify_all()

    def wait_for(self, count: int, timeout: float = 5.0) -> list[JobResult]:
        deadline = time.monotonic() + timeout
        with self._cond:
            while len(self.results) < count:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                self._cond.wait(remaining)
            return list(self.results)


class StubBackend:
    """In-memory backend recording prompts."""

    name = "stub"

    def __init__(
        self,
        *,
        delay: float = 0.0,
        jitter: float = 0.0,
        error: BackendError | None = None,
        gate: threading.Event | None = None,
    ) -> None:
        self.delay = delay
        self.jitter = jitter
        self.error = error
        self.gate = gate
        self.prompts: list[str] = []
        self.started = threading.Event()
        self._lock = threading.Lock()

    def invoke(self, prompt: str, timeout_seconds: float) -> str:  # noqa: ARG002
        with self._lock:
            self.prompts.append(prompt)
        self.started.set()
        if self.gate is not None:
            self.gate.wait(5)
        if self.delay:
            time.sleep(self.delay)
        if self.jitter:
            time.sleep(random.uniform(0, self.jitter))  # noqa: S311
        if self.error is not None:
            raise self.error
        return f"answer: {prompt}"


def build_test_engine(
    backend: StubBackend,
    *,
    concurrency: int = 2,
    queue_capacity: int = 16,
    shutdown_timeout_seconds: float = 5.0,
) -> Engine:
    return Engine(
        router=PrefixRouter(default_registry()),
        context=ExecutionContext(backend=backend, backend_timeout_seconds=5.0),
        concurrency=concurrency,
        queue_capacity=queue_capacity,
        shutdown_timeout_seconds=shutdown_timeout_seconds,
    )


@pytest.fixture()
def stub_backend() -> StubBackend:
    return StubBackend()


@pytest.fixture()
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture()
def engine(stub_backend):
    """Running engine over the stub backend, shut down after the test."""

    instance = build_test_engine(stub_backend)
    instance.start()
    yield instance
    instance.shutdown()


@pytest.fixture()
def echo_agent_env(monkeypatch) -> str:
    """Make the echo agent importable from subprocesses; return its command."""

    existing = os.environ.get("PYTHONPATH")
    monkeypatch.setenv(
        "PYTHONPATH",
        str(SRC_DIR) if not existing else f"{SRC_DIR}{os.pathsep}{existing}",
    )
    return ECHO_AGENT_COMMAND
