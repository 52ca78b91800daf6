"""Headless mode: no input transport, results go to the log."""

from __future__ import annotations

import logging
import threading

from chatplane.engine.models import JobResult

logger = logging.getLogger(__name__)


class LogSink:
    """Result sink that writes job results to the log."""

    def deliver(self, result: JobResult) -> None:
        if result.ok:
            logger.info(
                "Job result job_id=%s session=%s text=%s",
                result.job_id,
                result.session_id,
                result.render(),
            )
            return
        logger.warning(
            "Job failed job_id=%s session=%s failure=%s error=%s",
            result.job_id,
            result.session_id,
            result.failure_class.value if result.failure_class else "unknown",
            result.error,
        )


class DaemonAdapter:
    """Keeps the engine alive until a stop signal arrives."""

    def __init__(self, *, poll_seconds: float = 0.2) -> None:
        self.sink = LogSink()
        self._poll_seconds = poll_seconds

    def run(self, stop: threading.Event) -> None:
        logger.info("Daemon mode: waiting for stop signal")
        while not stop.wait(self._poll_seconds):
            pass
