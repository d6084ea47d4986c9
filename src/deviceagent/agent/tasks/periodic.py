"""Scheduler for periodic tasks.

This module provides:
- PeriodicScheduler: enqueues the recurring agent tasks on fixed intervals

Runs:
- check_token every token_check_interval_hours (registration liveness)
- sync_all every full_sync_interval_hours (proactive full sync)

Jobs only enqueue; the task engine executes. Each job uses a unique_name,
so an occurrence that is still pending or retrying is kept instead of
being duplicated.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from deviceagent.agent.tasks.handlers import CHECK_TOKEN, SYNC_ALL

if TYPE_CHECKING:
    from deviceagent.agent.tasks.engine import TaskEngine

logger = logging.getLogger(__name__)

TOKEN_CHECK_JOB = "periodic_token_check"
FULL_SYNC_JOB = "periodic_full_sync"


class PeriodicScheduler:
    """Enqueues periodic tasks on the task engine."""

    def __init__(
        self,
        engine: TaskEngine,
        token_check_interval_hours: float = 24.0,
        full_sync_interval_hours: float = 6.0,
    ) -> None:
        """Initialize the scheduler.

        Args:
            engine: Task engine receiving the periodic tasks.
            token_check_interval_hours: Period of the liveness check.
            full_sync_interval_hours: Period of the full sync.
        """
        self._engine = engine
        self._token_check_hours = token_check_interval_hours
        self._full_sync_hours = full_sync_interval_hours
        self._scheduler: BackgroundScheduler | None = None

    def _enqueue_job(self, command: str, unique_name: str) -> None:
        """Job function: put one occurrence of a periodic task in the queue."""
        try:
            if self._engine.enqueue(command, unique_name=unique_name) is None:
                logger.debug("Periodic %s still pending, keeping it", command)
        except Exception:
            logger.exception("Error enqueuing periodic %s", command)

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    def arm(self) -> None:
        """Start the scheduler (safe to call more than once)."""
        if self._scheduler is None:
            self._scheduler = BackgroundScheduler()
            self._scheduler.start()

        self._scheduler.add_job(
            self._enqueue_job,
            trigger=IntervalTrigger(hours=self._token_check_hours),
            args=(CHECK_TOKEN, TOKEN_CHECK_JOB),
            id=TOKEN_CHECK_JOB,
            name="Periodic token check",
            replace_existing=True,
        )
        self._scheduler.add_job(
            self._enqueue_job,
            trigger=IntervalTrigger(hours=self._full_sync_hours),
            args=(SYNC_ALL, FULL_SYNC_JOB),
            id=FULL_SYNC_JOB,
            name="Periodic full sync",
            replace_existing=True,
        )
        logger.info(
            "Periodic tasks armed (token check every %.0fh, full sync every %.0fh)",
            self._token_check_hours,
            self._full_sync_hours,
        )

    def job_ids(self) -> list[str]:
        """Get the ids of the scheduled jobs."""
        if self._scheduler is None:
            return []
        return sorted(job.id for job in self._scheduler.get_jobs())

    def run_now(self) -> None:
        """Enqueue one occurrence of every periodic task immediately."""
        self._enqueue_job(CHECK_TOKEN, TOKEN_CHECK_JOB)
        self._enqueue_job(SYNC_ALL, FULL_SYNC_JOB)

    def stop(self) -> None:
        """Stop the scheduler."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Periodic scheduler stopped")
