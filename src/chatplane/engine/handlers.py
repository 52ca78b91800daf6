"""Built-in command handlers."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from chatplane.backend.base import BackendDispatch
from chatplane.engine.errors import HandlerError
from chatplane.engine.models import FailureClass, Job


@dataclass(slots=True, frozen=True)
class ExecutionContext:
    """Per-worker context reused across jobs."""

    backend: BackendDispatch
    backend_timeout_seconds: float


@dataclass(slots=True, frozen=True)
class HandlerRequest:
    """Inputs for one handler call."""

    argument: str
    job: Job
    context: ExecutionContext


Handler = Callable[[HandlerRequest], str]


def ping_handler(request: HandlerRequest) -> str:  # noqa: ARG001
    return "pong"


def echo_handler(request: HandlerRequest) -> str:
    return request.argument


def ask_handler(request: HandlerRequest) -> str:
    """Forward the prompt to the process-wide backend."""

    return request.context.backend.invoke(
        request.argument,
        request.context.backend_timeout_seconds,
    )


def failure_handler(failure_class: FailureClass, message: str) -> Handler:
    """Build a handler that always fails with the given classification."""

    def _fail(request: HandlerRequest) -> str:  # noqa: ARG001
        raise HandlerError(failure_class, message)

    return _fail
