"""Fixed-size thread pool that drains the job queue."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass

from chatplane.engine.errors import HandlerError
from chatplane.engine.handlers import ExecutionContext, HandlerRequest
from chatplane.engine.models import FailureClass, Job
from chatplane.engine.queue import JobQueue
from chatplane.engine.router import Router

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 4


@dataclass(slots=True)
class WorkerRunSummary:
    """Aggregate pool counters for shutdown reporting."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    canceled: int = 0


class WorkerPool:
    """Runs ``size`` identical workers over one shared queue."""

    def __init__(
        self,
        *,
        size: int,
        queue: JobQueue,
        router: Router,
        context: ExecutionContext,
    ) -> None:
        if size < 1:
            raise ValueError(f"Worker pool size must be >= 1, got {size!r}")
        self.size = size
        self.queue = queue
        self.router = router
        self.context = context
        self._threads: list[threading.Thread] = []
        self._lock = threading.Lock()
        self._in_flight: set[Job] = set()
        self._abandoned = False
        self._summary = WorkerRunSummary()

    def start(self) -> None:
        if self._threads:
            raise RuntimeError("Worker pool already started.")
        for index in range(1, self.size + 1):
            thread = threading.Thread(
                target=self._worker_loop,
                args=(index,),
                daemon=True,
                name=f"chatplane-worker-{index}",
            )
            self._threads.append(thread)
            thread.start()
        logger.info("Worker pool started size=%d", self.size)

    def join(self, deadline: float) -> bool:
        """Wait for all workers until a ``time.monotonic()`` deadline.

        Returns True when every worker exited in time.
        """

        for thread in self._threads:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            thread.join(timeout=remaining)
        return not any(thread.is_alive() for thread in self._threads)

    def alive(self) -> int:
        return sum(1 for thread in self._threads if thread.is_alive())

    def abandon(self) -> list[Job]:
        """Stop waiting for workers and return jobs still being executed.

        A worker that dequeues a job after this call cancels it instead of
        running it.
        """

        with self._lock:
            self._abandoned = True
            return list(self._in_flight)

    def summary(self) -> WorkerRunSummary:
        with self._lock:
            return WorkerRunSummary(
                processed=self._summary.processed,
                succeeded=self._summary.succeeded,
                failed=self._summary.failed,
                canceled=self._summary.canceled,
            )

    def record_canceled(self, count: int) -> None:
        with self._lock:
            self._summary.canceled += count

    def _worker_loop(self, index: int) -> None:
        logger.debug("Worker %d started", index)
        while True:
            job = self.queue.dequeue()
            if job is None:
                logger.debug("Worker %d exiting: queue closed", index)
                return

            with self._lock:
                abandoned = self._abandoned
                if not abandoned:
                    self._in_flight.add(job)
            if abandoned:
                if job.cancel():
                    self.record_canceled(1)
                continue

            try:
                self._run_job(index, job)
            finally:
                with self._lock:
                    self._in_flight.discard(job)

    def _run_job(self, index: int, job: Job) -> None:
        started = time.monotonic()
        output: str | None = None
        failure_class: FailureClass | None = None
        message = ""

        try:
            route = self.router.resolve(job.text)
            output = route.handler(
                HandlerRequest(argument=route.argument, job=job, context=self.context),
            )
        except HandlerError as error:
            failure_class = error.failure_class
            message = error.message
        except Exception:  # noqa: BLE001
            logger.exception("Handler crashed job_id=%s worker=%d", job.job_id, index)
            failure_class = FailureClass.INTERNAL_ERROR
            message = "internal error while running the command"

        elapsed = time.monotonic() - started
        if failure_class is None:
            delivered = job.succeed(output or "", elapsed_seconds=elapsed)
        else:
            delivered = job.fail(failure_class, message, elapsed_seconds=elapsed)

        with self._lock:
            self._summary.processed += 1
            if delivered and failure_class is None:
                self._summary.succeeded += 1
            elif delivered:
                self._summary.failed += 1

        logger.debug(
            "Job finished job_id=%s worker=%d status=%s delivered=%s elapsed=%.3fs",
            job.job_id,
            index,
            "ok" if failure_class is None else failure_class.value,
            delivered,
            elapsed,
        )
