"""Bounded FIFO job queue shared by producers and the worker pool."""

from __future__ import annotations

import threading
import time
from collections import deque

from chatplane.engine.errors import QueueClosedError, QueueFullError
from chatplane.engine.models import Job

DEFAULT_QUEUE_CAPACITY = 128


class JobQueue:
    """Bounded queue that fails fast on enqueue and blocks on dequeue."""

    def __init__(self, capacity: int = DEFAULT_QUEUE_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError(f"Queue capacity must be >= 1, got {capacity!r}")
        self._capacity = capacity
        self._items: deque[Job] = deque()
        self._closed = False
        self._not_empty = threading.Condition(threading.Lock())

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def closed(self) -> bool:
        with self._not_empty:
            return self._closed

    def __len__(self) -> int:
        with self._not_empty:
            return len(self._items)

    def enqueue(self, job: Job) -> None:
        """Append a job, raising instead of waiting when the queue is full."""

        with self._not_empty:
            if self._closed:
                raise QueueClosedError("Job queue is closed")
            if len(self._items) >= self._capacity:
                raise QueueFullError(self._capacity)
            self._items.append(job)
            self._not_empty.notify()

    def dequeue(self, timeout: float | None = None) -> Job | None:
        """Return the oldest job.

        Blocks while the queue is empty and open. Returns None once the queue
        is closed and drained, or when ``timeout`` elapses first.
        """

        deadline = None if timeout is None else time.monotonic() + timeout
        with self._not_empty:
            while not self._items:
                if self._closed:
                    return None
                if deadline is None:
                    self._not_empty.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                self._not_empty.wait(remaining)
            return self._items.popleft()

    def close(self) -> None:
        """Reject further enqueues and wake every blocked consumer."""

        with self._not_empty:
            self._closed = True
            self._not_empty.notify_all()

    def drain(self) -> list[Job]:
        """Remove and return all jobs still waiting in the queue."""

        with self._not_empty:
            remaining = list(self._items)
            self._items.clear()
            return remaining
