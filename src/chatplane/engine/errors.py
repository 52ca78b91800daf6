"""Exceptions raised by the dispatch engine."""

from __future__ import annotations

from chatplane.engine.models import FailureClass


class EngineConfigError(ValueError):
    """Engine constructed with invalid concurrency, capacity or timeout."""


class SubmitError(RuntimeError):
    """Producer-side rejection surfaced to the submitting session."""

    reason = "submit_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class QueueFullError(SubmitError):
    """Job queue is at capacity; the job was not enqueued."""

    reason = "queue_full"

    def __init__(self, capacity: int) -> None:
        super().__init__(f"busy: job queue is full ({capacity} pending), try again later")
        self.capacity = capacity


class ShuttingDownError(SubmitError):
    """Engine stopped accepting jobs."""

    reason = "shutting_down"

    def __init__(self) -> None:
        super().__init__("shutting down: not accepting new jobs")


class QueueClosedError(RuntimeError):
    """Enqueue attempted after the queue was closed."""


class HandlerError(RuntimeError):
    """Classified handler failure converted to a failed job result."""

    def __init__(self, failure_class: FailureClass, message: str) -> None:
        super().__init__(message)
        self.failure_class = failure_class
        self.message = message
