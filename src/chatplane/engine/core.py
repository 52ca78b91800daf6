"""Dispatch engine: job submission, worker pool ownership and shutdown."""

from __future__ import annotations

import itertools
import logging
import threading
import time
from dataclasses import dataclass

from chatplane.engine.errors import (
    EngineConfigError,
    QueueClosedError,
    QueueFullError,
    ShuttingDownError,
)
from chatplane.engine.handlers import ExecutionContext
from chatplane.engine.models import EngineState, Job, JobResult, ResultSink
from chatplane.engine.queue import DEFAULT_QUEUE_CAPACITY, JobQueue
from chatplane.engine.router import Router
from chatplane.engine.worker import DEFAULT_CONCURRENCY, WorkerPool, WorkerRunSummary

logger = logging.getLogger(__name__)

DEFAULT_SHUTDOWN_TIMEOUT_SECONDS = 10.0
_CANCEL_DELIVERY_GRACE_SECONDS = 0.05


@dataclass(slots=True, frozen=True)
class ShutdownReport:
    """Outcome of the graceful shutdown protocol."""

    timed_out: bool
    canceled: int
    elapsed_seconds: float
    summary: WorkerRunSummary

    def describe(self) -> str:
        status = "deadline exceeded" if self.timed_out else "drained"
        return (
            f"shutdown {status} in {self.elapsed_seconds:.2f}s: "
            f"processed={self.summary.processed} succeeded={self.summary.succeeded} "
            f"failed={self.summary.failed} canceled={self.canceled}"
        )


class Engine:
    """Owns the job queue and worker pool and coordinates their shutdown.

    Lifecycle: ``starting -> running -> draining -> stopped``. Jobs are
    accepted only while running. Shutdown closes the queue, lets workers
    finish what is already queued and, once the hard deadline passes,
    delivers a cancellation result to every job that has not finished.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        router: Router,
        context: ExecutionContext,
        concurrency: int = DEFAULT_CONCURRENCY,
        queue_capacity: int = DEFAULT_QUEUE_CAPACITY,
        shutdown_timeout_seconds: float = DEFAULT_SHUTDOWN_TIMEOUT_SECONDS,
    ) -> None:
        if concurrency < 1:
            raise EngineConfigError(f"Concurrency must be >= 1, got {concurrency!r}")
        if queue_capacity < 1:
            raise EngineConfigError(f"Queue capacity must be >= 1, got {queue_capacity!r}")
        if not shutdown_timeout_seconds > 0:
            raise EngineConfigError(
                f"Shutdown timeout must be > 0 seconds, got {shutdown_timeout_seconds!r}",
            )
        self.router = router
        self.shutdown_timeout_seconds = shutdown_timeout_seconds
        self.queue = JobQueue(queue_capacity)
        self.pool = WorkerPool(
            size=concurrency,
            queue=self.queue,
            router=router,
            context=context,
        )
        self._state = EngineState.STARTING
        self._lock = threading.Lock()
        self._shutdown_lock = threading.Lock()
        self._ids = itertools.count(1)
        self._report: ShutdownReport | None = None

    @property
    def state(self) -> EngineState:
        with self._lock:
            return self._state

    @property
    def concurrency(self) -> int:
        return self.pool.size

    def start(self) -> None:
        with self._lock:
            if self._state is not EngineState.STARTING:
                raise RuntimeError(f"Engine cannot start from state {self._state.value}")
            self.pool.start()
            self._state = EngineState.RUNNING
        logger.info(
            "Engine running concurrency=%d queue_capacity=%d shutdown_timeout=%.1fs",
            self.pool.size,
            self.queue.capacity,
            self.shutdown_timeout_seconds,
        )

    def submit(
        self,
        session_id: str,
        raw_text: str,
        sink: ResultSink,
        *,
        adapter: str = "unknown",
    ) -> int:
        """Queue one job and return its id.

        Raises:
            QueueFullError: the queue is at capacity; nothing was enqueued.
            ShuttingDownError: shutdown has started.
        """

        with self._lock:
            if self._state is EngineState.STARTING:
                raise RuntimeError("Engine is not running yet.")
            if self._state is not EngineState.RUNNING:
                logger.warning("Rejected job while %s session=%s", self._state.value, session_id)
                raise ShuttingDownError
            job = Job(
                job_id=next(self._ids),
                adapter=adapter,
                session_id=session_id,
                text=raw_text,
                sink=sink,
            )
            try:
                self.queue.enqueue(job)
            except QueueFullError:
                logger.warning(
                    "Rejected job: queue full capacity=%d session=%s",
                    self.queue.capacity,
                    session_id,
                )
                raise
            except QueueClosedError as error:
                raise ShuttingDownError from error
        logger.debug("Job queued job_id=%s adapter=%s session=%s", job.job_id, adapter, session_id)
        return job.job_id

    def shutdown(self, timeout: float | None = None) -> ShutdownReport:
        """Drain queued jobs, bounded by a hard deadline.

        Idempotent: later calls return the first report.
        """

        with self._shutdown_lock:
            if self._report is not None:
                return self._report

            started = time.monotonic()
            budget = self.shutdown_timeout_seconds if timeout is None else timeout
            with self._lock:
                never_started = self._state is EngineState.STARTING
                self._state = EngineState.DRAINING
            logger.info("Engine draining pending=%d deadline=%.1fs", len(self.queue), budget)
            self.queue.close()

            canceled = 0
            timed_out = False
            if never_started:
                canceled = self._cancel(self.queue.drain())
            elif not self.pool.join(started + max(0.0, budget)):
                timed_out = True
                canceled = self._cancel(self.pool.abandon() + self.queue.drain())
                logger.warning(
                    "Shutdown deadline exceeded: abandoned %d worker(s), canceled %d job(s)",
                    self.pool.alive(),
                    canceled,
                )

            with self._lock:
                self._state = EngineState.STOPPED
            self._report = ShutdownReport(
                timed_out=timed_out,
                canceled=canceled,
                elapsed_seconds=time.monotonic() - started,
                summary=self.pool.summary(),
            )
            logger.info("Engine stopped: %s", self._report.describe())
            return self._report

    def _cancel(self, jobs: list[Job]) -> int:
        """Claim cancellation for unfinished jobs and deliver it off this thread.

        Claims happen on the calling thread, so a late worker finds the
        delivery slot taken. Sink calls run on a daemon thread that shutdown
        waits on only for a short grace period.
        """

        claimed = [
            (job, result)
            for job in jobs
            if (result := job.claim_cancellation()) is not None
        ]
        self.pool.record_canceled(len(claimed))
        if claimed:
            delivery = threading.Thread(
                target=_send_all,
                args=(claimed,),
                daemon=True,
                name="chatplane-cancel-delivery",
            )
            delivery.start()
            delivery.join(timeout=_CANCEL_DELIVERY_GRACE_SECONDS)
        return len(claimed)

    def __enter__(self) -> Engine:
        self.start()
        return self

    def __exit__(self, *_: object) -> None:
        self.shutdown()


def _send_all(claimed: list[tuple[Job, JobResult]]) -> None:
    for job, result in claimed:
        job.send(result)
