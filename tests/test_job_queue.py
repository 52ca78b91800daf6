from __future__ import annotations

import threading
import time

import allure
import pytest

from chatplane.engine.errors import QueueClosedError, QueueFullError
from chatplane.engine.models import CallbackSink, Job
from chatplane.engine.queue import JobQueue

pytestmark = [
    allure.epic("Dispatch Engine"),
    allure.feature("Job Queue Backpressure"),
]


def _job(job_id: int) -> Job:
    return Job(
        job_id=job_id,
        adapter="test",
        session_id="s",
        text=f"job {job_id}",
        sink=CallbackSink(lambda _result: None),
    )


def test_dequeue_returns_jobs_in_submission_order() -> None:
    queue = JobQueue(capacity=4)
    for job_id in (1, 2, 3):
        queue.enqueue(_job(job_id))

    assert [queue.dequeue().job_id for _ in range(3)] == [1, 2, 3]


def test_enqueue_on_full_queue_fails_fast_without_enqueuing() -> None:
    queue = JobQueue(capacity=2)
    queue.enqueue(_job(1))
    queue.enqueue(_job(2))

    started = time.monotonic()
    with pytest.raises(QueueFullError) as excinfo:
        queue.enqueue(_job(3))

    assert time.monotonic() - started < 0.1
    assert excinfo.value.capacity == 2
    assert len(queue) == 2
    assert [queue.dequeue().job_id, queue.dequeue().job_id] == [1, 2]


def test_close_rejects_enqueue_but_hands_out_remaining_jobs() -> None:
    queue = JobQueue(capacity=4)
    queue.enqueue(_job(1))
    queue.close()

    with pytest.raises(QueueClosedError):
        queue.enqueue(_job(2))
    assert queue.closed
    assert queue.dequeue().job_id == 1
    assert queue.dequeue() is None


def test_close_wakes_blocked_consumers() -> None:
    queue = JobQueue(capacity=1)
    outcomes: list[object] = []

    def _consume() -> None:
        outcomes.append(queue.dequeue())

    consumers = [threading.Thread(target=_consume) for _ in range(3)]
    for consumer in consumers:
        consumer.start()
    time.sleep(0.05)
    queue.close()
    for consumer in consumers:
        consumer.join(timeout=2)

    assert not any(consumer.is_alive() for consumer in consumers)
    assert outcomes == [None, None, None]


def test_dequeue_timeout_returns_none_on_empty_open_queue() -> None:
    queue = JobQueue(capacity=1)

    started = time.monotonic()
    assert queue.dequeue(timeout=0.05) is None
    assert time.monotonic() - started >= 0.04


def test_drain_removes_all_waiting_jobs() -> None:
    queue = JobQueue(capacity=3)
    queue.enqueue(_job(1))
    queue.enqueue(_job(2))

    drained = queue.drain()

    assert [job.job_id for job in drained] == [1, 2]
    assert len(queue) == 0


def test_capacity_must_be_positive() -> None:
    with pytest.raises(ValueError, match="capacity"):
        JobQueue(capacity=0)
