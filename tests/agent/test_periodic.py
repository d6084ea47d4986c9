"""Tests for PeriodicScheduler."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from deviceagent.agent.tasks.engine import TaskEngine
from deviceagent.agent.tasks.handlers import CHECK_TOKEN, SYNC_ALL
from deviceagent.agent.tasks.periodic import FULL_SYNC_JOB, TOKEN_CHECK_JOB, PeriodicScheduler
from deviceagent.agent.tasks.queue import TaskQueue


@pytest.fixture
def engine(tmp_path: Path) -> Iterator[TaskEngine]:
    queue = TaskQueue(tmp_path / "tasks.db")
    yield TaskEngine(queue, {}, MagicMock())
    queue.close()


class TestPeriodicScheduler:
    """Tests for arming and running periodic jobs."""

    def test_arm_schedules_both_jobs(self, engine: TaskEngine) -> None:
        scheduler = PeriodicScheduler(engine)
        try:
            scheduler.arm()

            assert scheduler.running
            assert scheduler.job_ids() == [FULL_SYNC_JOB, TOKEN_CHECK_JOB]
        finally:
            scheduler.stop()
        assert not scheduler.running

    def test_arm_is_idempotent(self, engine: TaskEngine) -> None:
        scheduler = PeriodicScheduler(engine)
        try:
            scheduler.arm()
            scheduler.arm()

            assert scheduler.job_ids() == [FULL_SYNC_JOB, TOKEN_CHECK_JOB]
        finally:
            scheduler.stop()

    def test_run_now_enqueues_unique_tasks(self, engine: TaskEngine) -> None:
        scheduler = PeriodicScheduler(engine)

        scheduler.run_now()
        scheduler.run_now()

        pending = engine.queue.pending()
        assert sorted(t.command for t in pending) == [CHECK_TOKEN, SYNC_ALL]
        assert {t.unique_name for t in pending} == {TOKEN_CHECK_JOB, FULL_SYNC_JOB}

    def test_enqueue_error_is_logged(self) -> None:
        broken = MagicMock()
        broken.enqueue.side_effect = RuntimeError("Queue is closed")
        scheduler = PeriodicScheduler(broken)

        scheduler.run_now()

        assert broken.enqueue.call_count == 2

    def test_job_ids_before_arm(self, engine: TaskEngine) -> None:
        assert PeriodicScheduler(engine).job_ids() == []
