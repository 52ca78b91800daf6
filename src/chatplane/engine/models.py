"""Domain models for the dispatch engine."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Protocol

logger = logging.getLogger(__name__)

CANCEL_REASON = "canceled: engine shut down before the job finished"


def utc_now() -> datetime:
    """Current UTC timestamp."""

    return datetime.now(tz=UTC)


class EngineState(str, Enum):
    """Engine lifecycle states."""

    STARTING = "starting"
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


class FailureClass(str, Enum):
    """Normalized failure classes carried by failed job results."""

    UNKNOWN_COMMAND = "unknown_command"
    INVALID_INPUT = "invalid_input"
    CREDENTIAL_MISSING = "credential_missing"
    TOOL_UNAVAILABLE = "tool_unavailable"
    NETWORK_OR_PROCESS_FAILURE = "network_or_process_failure"
    TIMEOUT = "timeout"
    EMPTY_RESPONSE = "empty_response"
    INTERNAL_ERROR = "internal_error"
    CANCELED = "canceled"


@dataclass(slots=True, frozen=True)
class JobResult:
    """One-time outcome of a job: output text or a classified failure."""

    job_id: int
    session_id: str
    adapter: str
    output: str | None = None
    failure_class: FailureClass | None = None
    error: str | None = None
    completed_at: datetime = field(default_factory=utc_now)
    elapsed_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.failure_class is None

    def render(self) -> str:
        """Text shown to the user by a transport."""

        if self.failure_class is not None:
            return f"error: {self.error or self.failure_class.value}"
        return self.output or "ok"


class ResultSink(Protocol):
    """Capability that receives exactly one result for a job."""

    def deliver(self, result: JobResult) -> None:
        """Deliver a job result back to the submitting adapter."""


class CallbackSink:
    """Result sink backed by a plain callable."""

    def __init__(self, callback) -> None:
        self._callback = callback

    def deliver(self, result: JobResult) -> None:
        self._callback(result)


@dataclass(slots=True, eq=False)
class Job:
    """Unit of work derived from a single user input.

    The job owns its result sink and guarantees that the sink is called at
    most once, whichever of the worker or the shutdown deadline gets there
    first.
    """

    job_id: int
    adapter: str
    session_id: str
    text: str
    sink: ResultSink
    submitted_at: datetime = field(default_factory=utc_now)
    _canceled: bool = field(default=False, init=False, repr=False)
    _delivered: bool = field(default=False, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    @property
    def canceled(self) -> bool:
        return self._canceled

    @property
    def delivered(self) -> bool:
        return self._delivered

    def succeed(self, output: str, *, elapsed_seconds: float = 0.0) -> bool:
        return self._deliver(
            JobResult(
                job_id=self.job_id,
                session_id=self.session_id,
                adapter=self.adapter,
                output=output,
                elapsed_seconds=elapsed_seconds,
            ),
        )

    def fail(
        self,
        failure_class: FailureClass,
        message: str,
        *,
        elapsed_seconds: float = 0.0,
    ) -> bool:
        return self._deliver(
            JobResult(
                job_id=self.job_id,
                session_id=self.session_id,
                adapter=self.adapter,
                failure_class=failure_class,
                error=message,
                elapsed_seconds=elapsed_seconds,
            ),
        )

    def cancel(self, reason: str = CANCEL_REASON) -> bool:
        """Mark the job canceled and deliver a cancellation result.

        Returns False when a result was already delivered.
        """

        result = self.claim_cancellation(reason)
        if result is None:
            return False
        self.send(result)
        return True

    def claim_cancellation(self, reason: str = CANCEL_REASON) -> JobResult | None:
        """Win the single delivery slot for a cancellation without calling the sink.

        Returns the result to pass to :meth:`send`, or None when another
        result already claimed the slot.
        """

        with self._lock:
            if self._delivered:
                return None
            self._canceled = True
            self._delivered = True
        return JobResult(
            job_id=self.job_id,
            session_id=self.session_id,
            adapter=self.adapter,
            failure_class=FailureClass.CANCELED,
            error=reason,
        )

    def send(self, result: JobResult) -> None:
        """Hand a claimed result to the sink, logging sink failures."""

        try:
            self.sink.deliver(result)
        except Exception:  # noqa: BLE001
            logger.exception(
                "Result sink failed job_id=%s adapter=%s session=%s",
                self.job_id,
                self.adapter,
                self.session_id,
            )

    def _deliver(self, result: JobResult) -> bool:
        with self._lock:
            if self._delivered or self._canceled:
                return False
            self._delivered = True
        self.send(result)
        return True
