from __future__ import annotations

import importlib
import threading
import time

import allure
import pytest
from conftest import RecordingSink, StubBackend, build_test_engine

from chatplane.backend import BackendError
from chatplane.engine.core import Engine
from chatplane.engine.errors import EngineConfigError, QueueFullError, ShuttingDownError
from chatplane.engine.handlers import ExecutionContext, HandlerRequest, ask_handler
from chatplane.engine.models import CallbackSink, EngineState, FailureClass, Job
from chatplane.engine.registry import Arity, Command, TaskRegistry
from chatplane.engine.router import PrefixRouter

pytestmark = [
    allure.epic("Dispatch Engine"),
    allure.feature("Worker Pool & Shutdown"),
]


def _by_id(sink: RecordingSink, count: int) -> dict[int, object]:
    results = sink.wait_for(count)
    assert len(results) == count
    return {result.job_id: result for result in results}


def test_ping_round_trip(engine: Engine, sink: RecordingSink, stub_backend) -> None:
    job_id = engine.submit("s1", "!ping", sink, adapter="test")

    (result,) = sink.wait_for(1)

    assert result.job_id == job_id
    assert result.ok
    assert result.output == "pong"
    assert result.session_id == "s1"
    assert result.adapter == "test"
    assert stub_backend.prompts == []


def test_echo_and_unknown_command(engine: Engine, sink: RecordingSink) -> None:
    echo_id = engine.submit("s1", "!echo hello", sink)
    bogus_id = engine.submit("s1", "!bogus", sink)

    results = _by_id(sink, 2)

    assert results[echo_id].output == "hello"
    assert results[bogus_id].failure_class is FailureClass.UNKNOWN_COMMAND
    assert results[bogus_id].render().startswith("error: unknown command: !bogus")


def test_free_text_reaches_backend_once(engine: Engine, sink: RecordingSink, stub_backend) -> None:
    engine.submit("s1", "hello bot", sink)

    (result,) = sink.wait_for(1)

    assert result.output == "answer: hello bot"
    assert stub_backend.prompts == ["hello bot"]


def test_backend_error_keeps_its_failure_class(sink: RecordingSink) -> None:
    backend = StubBackend(
        error=BackendError(FailureClass.CREDENTIAL_MISSING, "OPENAI_API_KEY is empty"),
    )
    with build_test_engine(backend) as engine:
        engine.submit("s1", "hello", sink)
        (result,) = sink.wait_for(1)

    assert result.failure_class is FailureClass.CREDENTIAL_MISSING
    assert result.render() == "error: OPENAI_API_KEY is empty"


def test_queue_full_rejects_fast_and_keeps_accepted_jobs(sink: RecordingSink) -> None:
    gate = threading.Event()
    backend = StubBackend(gate=gate)
    engine = build_test_engine(backend, concurrency=1, queue_capacity=2)
    engine.start()
    try:
        engine.submit("s1", "first", sink)
        assert backend.started.wait(2)
        engine.submit("s1", "second", sink)
        engine.submit("s1", "third", sink)

        started = time.monotonic()
        with pytest.raises(QueueFullError) as excinfo:
            engine.submit("s1", "fourth", sink)
        assert time.monotonic() - started < 0.1
        assert "busy" in excinfo.value.message
    finally:
        gate.set()
        report = engine.shutdown()

    assert not report.timed_out
    assert sorted(result.output for result in sink.wait_for(3)) == [
        "answer: first",
        "answer: second",
        "answer: third",
    ]
    assert "fourth" not in backend.prompts


def test_submit_after_shutdown_is_rejected(sink: RecordingSink, stub_backend) -> None:
    engine = build_test_engine(stub_backend)
    engine.start()
    engine.shutdown()

    with pytest.raises(ShuttingDownError, match="shutting down"):
        engine.submit("s1", "hello", sink)
    assert stub_backend.prompts == []
    assert sink.results == []


def test_submit_before_start_is_a_programming_error(sink: RecordingSink, stub_backend) -> None:
    engine = build_test_engine(stub_backend)

    with pytest.raises(RuntimeError, match="not running"):
        engine.submit("s1", "!ping", sink)


def test_graceful_shutdown_drains_queued_jobs(sink: RecordingSink) -> None:
    backend = StubBackend(delay=0.05)
    engine = build_test_engine(backend, concurrency=2)
    engine.start()
    for index in range(6):
        engine.submit("s1", f"prompt {index}", sink)

    report = engine.shutdown(timeout=5.0)

    assert not report.timed_out
    assert report.canceled == 0
    assert report.summary.succeeded == 6
    assert len(sink.results) == 6
    assert all(result.ok for result in sink.results)
    assert engine.state is EngineState.STOPPED


def test_shutdown_deadline_cancels_unfinished_jobs_exactly_once(sink: RecordingSink) -> None:
    backend = StubBackend(delay=0.3)
    engine = build_test_engine(backend, concurrency=1)
    engine.start()
    for index in range(5):
        engine.submit("s1", f"prompt {index}", sink)

    started = time.monotonic()
    report = engine.shutdown(timeout=0.5)
    elapsed = time.monotonic() - started

    assert report.timed_out
    assert elapsed < 0.75
    results = sink.wait_for(5)
    assert len(results) == 5
    assert sum(1 for result in results if result.ok) >= 1
    canceled = [r for r in results if r.failure_class is FailureClass.CANCELED]
    assert len(canceled) >= 1
    assert report.canceled == len(canceled)

    # the abandoned worker finishes its job later; it must not deliver again
    time.sleep(0.4)
    assert len(sink.results) == 5
    assert len({result.job_id for result in sink.results}) == 5


def test_slow_sink_does_not_stretch_shutdown_deadline() -> None:
    sink = RecordingSink()

    def _slow_deliver(result) -> None:
        time.sleep(0.3)
        sink.deliver(result)

    engine = build_test_engine(StubBackend(delay=0.3), concurrency=1)
    engine.start()
    for index in range(8):
        engine.submit("s1", f"prompt {index}", CallbackSink(_slow_deliver))

    started = time.monotonic()
    report = engine.shutdown(timeout=0.5)
    elapsed = time.monotonic() - started

    assert report.timed_out
    assert elapsed < 0.75
    assert report.canceled == 7

    results = sink.wait_for(8, timeout=5.0)
    assert len(results) == 8
    assert sum(1 for r in results if r.failure_class is FailureClass.CANCELED) == 7


def test_claimed_cancellation_blocks_late_worker_result() -> None:
    sink = RecordingSink()
    job = Job(job_id=1, adapter="test", session_id="s1", text="slow", sink=sink)

    claimed = job.claim_cancellation()

    assert claimed is not None
    assert claimed.failure_class is FailureClass.CANCELED
    assert job.claim_cancellation() is None
    assert job.succeed("late answer") is False
    assert sink.results == []

    job.send(claimed)

    assert [result.failure_class for result in sink.results] == [FailureClass.CANCELED]
    assert job.canceled
    assert job.delivered


def test_concurrent_submitters_get_unique_ids_and_one_result_each() -> None:
    sink = RecordingSink()
    backend = StubBackend(jitter=0.02)
    engine = build_test_engine(backend, concurrency=4, queue_capacity=200)
    engine.start()
    ids: list[int] = []
    ids_lock = threading.Lock()

    def _produce(session: str) -> None:
        for index in range(25):
            job_id = engine.submit(session, f"{session} #{index}", sink)
            with ids_lock:
                ids.append(job_id)

    producers = [threading.Thread(target=_produce, args=(f"s{n}",)) for n in range(4)]
    for producer in producers:
        producer.start()
    for producer in producers:
        producer.join()
    engine.shutdown()

    assert len(ids) == 100
    assert len(set(ids)) == 100
    assert sorted(ids) == list(range(1, 101))
    results = sink.wait_for(100)
    assert sorted(result.job_id for result in results) == sorted(ids)
    assert all(result.ok for result in results)
    assert len(set(backend.prompts)) == 100


def test_handler_crash_becomes_internal_error_and_worker_survives(sink: RecordingSink) -> None:
    def _crash(request: HandlerRequest) -> str:  # noqa: ARG001
        raise ZeroDivisionError("boom")

    registry = TaskRegistry.build(
        [
            Command(name="crash", arity=Arity.NONE, handler=_crash, help="", usage="!crash"),
            Command(name="ask", arity=Arity.FREE_TEXT, handler=ask_handler, help="", usage=""),
        ],
    )
    engine = Engine(
        router=PrefixRouter(registry),
        context=ExecutionContext(backend=StubBackend(), backend_timeout_seconds=1.0),
        concurrency=1,
    )
    with engine:
        crash_id = engine.submit("s1", "!crash", sink)
        ok_id = engine.submit("s1", "still alive", sink)
        results = _by_id(sink, 2)

    assert results[crash_id].failure_class is FailureClass.INTERNAL_ERROR
    assert "boom" not in (results[crash_id].error or "")
    assert results[ok_id].output == "answer: still alive"


def test_failing_sink_does_not_kill_worker(sink: RecordingSink) -> None:
    def _explode(_result) -> None:
        raise RuntimeError("transport down")

    engine = build_test_engine(StubBackend(), concurrency=1)
    with engine:
        engine.submit("s1", "!ping", CallbackSink(_explode))
        engine.submit("s1", "!ping", sink)
        (result,) = sink.wait_for(1)

    assert result.output == "pong"


def test_ids_increase_in_submission_order(engine: Engine, sink: RecordingSink) -> None:
    first = engine.submit("s1", "!ping", sink)
    second = engine.submit("s2", "!ping", sink)

    assert second > first


@pytest.mark.parametrize(
    "kwargs",
    [
        {"concurrency": 0},
        {"queue_capacity": 0},
        {"shutdown_timeout_seconds": 0.0},
        {"shutdown_timeout_seconds": -1.0},
    ],
)
def test_invalid_engine_config_is_rejected(kwargs: dict[str, object], stub_backend) -> None:
    with pytest.raises(EngineConfigError):
        build_test_engine(stub_backend, **kwargs)


def test_state_transitions_and_idempotent_shutdown(stub_backend) -> None:
    engine = build_test_engine(stub_backend)
    assert engine.state is EngineState.STARTING

    engine.start()
    assert engine.state is EngineState.RUNNING
    with pytest.raises(RuntimeError):
        engine.start()

    first = engine.shutdown()
    second = engine.shutdown()

    assert engine.state is EngineState.STOPPED
    assert first is second
    assert "shutdown drained" in first.describe()


def test_shutdown_without_start_stops_engine(stub_backend) -> None:
    engine = build_test_engine(stub_backend)

    report = engine.shutdown()

    assert engine.state is EngineState.STOPPED
    assert report.canceled == 0


def test_engine_package_imports_with_docs() -> None:
    module = importlib.import_module("chatplane.engine")

    assert module.__doc__
    assert module.__doc__.startswith("Transport-agnostic dispatch engine.")
