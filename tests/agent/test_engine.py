"""Tests for TaskEngine and outcome mapping."""

from __future__ import annotations

import sqlite3
import threading
import time
from collections.abc import Iterator
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from deviceagent.agent.errors import (
    MalformedCommandError,
    NotFoundError,
    PermissionDeniedError,
    TransportError,
)
from deviceagent.agent.result import ApiError, NetworkError
from deviceagent.agent.tasks.engine import EngineState, TaskEngine, outcome_for
from deviceagent.agent.tasks.queue import TaskQueue
from deviceagent.agent.tasks.types import CancelledException, Task, TaskContext, TaskOutcome
from deviceagent.core.config import RetryPolicy


@pytest.fixture
def queue(tmp_path: Path) -> Iterator[TaskQueue]:
    task_queue = TaskQueue(tmp_path / "tasks.db")
    yield task_queue
    task_queue.close()


@pytest.fixture
def client() -> MagicMock:
    mock = MagicMock()
    mock.health_check.return_value = True
    return mock


def make_engine(queue: TaskQueue, client: MagicMock, handlers: dict, **kwargs: object) -> TaskEngine:  # type: ignore[type-arg]
    return TaskEngine(queue, handlers, client, **kwargs)  # type: ignore[arg-type]


def raising(error: Exception):  # type: ignore[no-untyped-def]
    def handler(ctx: TaskContext) -> str | None:
        raise error

    return handler


class TestOutcomeFor:
    """Tests for exception to outcome mapping."""

    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (TransportError("op", NetworkError(timed_out=True)), TaskOutcome.RETRY),
            (TransportError("op", ApiError(code=400)), TaskOutcome.RETRY),
            (CancelledException(), TaskOutcome.RETRY),
            (PermissionDeniedError("location"), TaskOutcome.SUCCESS),
            (PermissionError("denied"), TaskOutcome.SUCCESS),
            (NotFoundError("gone"), TaskOutcome.FAILED),
            (FileNotFoundError("gone"), TaskOutcome.FAILED),
            (MalformedCommandError("upload_file", "filePath"), TaskOutcome.FAILED),
            (OSError("disk"), TaskOutcome.RETRY),
            (ValueError("bug"), TaskOutcome.FAILED),
        ],
    )
    def test_mapping(self, error: Exception, expected: TaskOutcome) -> None:
        assert outcome_for(Task(command="x"), error) is expected


class TestProcess:
    """Tests for running a single task and applying its outcome."""

    def test_success_completes(self, queue: TaskQueue, client: MagicMock) -> None:
        engine = make_engine(queue, client, {"ping": lambda ctx: "pong"})
        task = engine.enqueue("ping")
        assert task is not None
        queue.get(timeout=0.1)

        assert engine.process(task) is TaskOutcome.SUCCESS
        assert len(queue) == 0
        assert engine.completed_count == 1

    def test_handler_receives_params(self, queue: TaskQueue, client: MagicMock) -> None:
        seen: list[dict[str, str]] = []

        def handler(ctx: TaskContext) -> None:
            seen.append(ctx.params)

        engine = make_engine(queue, client, {"upload_file": handler})
        task = Task(command="upload_file", params={"filePath": "/a"})

        engine.run_once(task)

        assert seen == [{"filePath": "/a"}]

    def test_unknown_command_fails(self, queue: TaskQueue, client: MagicMock) -> None:
        engine = make_engine(queue, client, {})
        task = engine.enqueue("self_destruct")
        assert task is not None
        queue.get(timeout=0.1)

        assert engine.process(task) is TaskOutcome.FAILED
        assert len(queue) == 0
        assert engine.failed_count == 1

    def test_timeout_is_retried_with_backoff(self, queue: TaskQueue, client: MagicMock) -> None:
        """A timed-out server call is rescheduled with the policy delay."""
        policy = RetryPolicy(max_attempts=3, initial_backoff=30.0)
        handler = raising(TransportError("sync", NetworkError(reason="slow", timed_out=True)))
        engine = make_engine(queue, client, {"sync_all": handler}, retry_policy=policy)
        task = engine.enqueue("sync_all")
        assert task is not None
        queue.get(timeout=0.1)

        before = time.time()
        assert engine.process(task) is TaskOutcome.RETRY

        assert task.attempts == 1
        assert task.not_before >= before + 30.0
        assert queue.pending() == [task]

    def test_retry_exhausted_becomes_failed(self, queue: TaskQueue, client: MagicMock) -> None:
        policy = RetryPolicy(max_attempts=2, initial_backoff=0.0)
        handler = raising(TransportError("sync", NetworkError()))
        engine = make_engine(queue, client, {"sync_all": handler}, retry_policy=policy)
        task = engine.enqueue("sync_all")
        assert task is not None

        queue.get(timeout=0.1)
        assert engine.process(task) is TaskOutcome.RETRY
        queue.get(timeout=0.1)
        assert engine.process(task) is TaskOutcome.FAILED

        assert len(queue) == 0
        assert engine.failed_count == 1

    def test_offline_holds_task_without_attempt(self, queue: TaskQueue, client: MagicMock) -> None:
        """No connectivity: the task is not run and keeps its attempts."""
        client.health_check.return_value = False
        handler = MagicMock(return_value=None)
        engine = make_engine(queue, client, {"ping": handler}, network_check_interval=60.0)
        task = engine.enqueue("ping")
        assert task is not None
        queue.get(timeout=0.1)

        assert engine.process(task) is None

        handler.assert_not_called()
        assert task.attempts == 0
        assert queue.pending() == [task]
        assert not task.is_due()

    def test_permission_denied_is_success(self, queue: TaskQueue, client: MagicMock) -> None:
        engine = make_engine(queue, client, {"get_location": raising(PermissionDeniedError("location"))})
        task = engine.enqueue("get_location")
        assert task is not None
        queue.get(timeout=0.1)

        assert engine.process(task) is TaskOutcome.SUCCESS
        assert len(queue) == 0


class TestWorkers:
    """Tests for the worker threads."""

    def test_start_runs_queued_tasks(self, queue: TaskQueue, client: MagicMock) -> None:
        done = threading.Event()

        def handler(ctx: TaskContext) -> str:
            done.set()
            return "ok"

        engine = make_engine(queue, client, {"ping": handler}, worker_count=1)
        engine.start()
        try:
            assert engine.state is EngineState.RUNNING
            engine.enqueue("ping")
            assert done.wait(timeout=5.0)
        finally:
            engine.stop()

        assert engine.state is EngineState.STOPPED

    def test_stop_cancels_running_task(self, queue: TaskQueue, client: MagicMock) -> None:
        """A handler abandoned on shutdown leaves its task queued without an attempt."""
        started = threading.Event()

        def handler(ctx: TaskContext) -> None:
            started.set()
            while True:
                ctx.raise_if_cancelled()
                time.sleep(0.01)

        engine = make_engine(queue, client, {"sync_all": handler}, worker_count=1)
        engine.start()
        task = engine.enqueue("sync_all")
        assert task is not None
        assert started.wait(timeout=5.0)

        engine.stop(timeout=5.0)

        assert task.attempts == 0
        assert queue.pending() == [task]

    def test_task_returned_when_processing_raises(self, queue: TaskQueue, client: MagicMock) -> None:
        """A storage error while finishing a task does not leave it stuck as running."""
        runs = threading.Event()
        real_complete = queue.complete
        completions: list[str] = []

        def flaky_complete(task_id: str) -> None:
            completions.append(task_id)
            if len(completions) == 1:
                raise sqlite3.OperationalError("disk I/O error")
            real_complete(task_id)
            runs.set()

        engine = make_engine(
            queue, client, {"sync_all": lambda ctx: "ok"}, worker_count=1, network_check_interval=0.0
        )
        with patch.object(queue, "complete", side_effect=flaky_complete):
            engine.start()
            try:
                engine.enqueue("sync_all", unique_name="full_sync")
                assert runs.wait(timeout=5.0)
            finally:
                engine.stop()

        assert len(completions) == 2
        assert len(queue) == 0
        assert not queue.has_unique("full_sync")
