"""Task execution engine.

This module provides:
- TaskEngine: worker threads that take tasks from a TaskQueue and run them
- outcome_for: conversion of handler exceptions into a TaskOutcome

Per task:
    Pending -> Running -> SUCCESS          (removed from the queue)
                       -> RETRY -> Pending (attempts + 1, backoff delay)
                       -> FAILED           (removed, logged)

RETRY becomes FAILED once the RetryPolicy is exhausted. A task is only
started while the server is reachable; otherwise it stays pending and is
looked at again after network_check_interval, without using an attempt.
A task abandoned because the engine is stopping also stays pending and
runs again on the next start.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from enum import Enum, auto
from typing import TYPE_CHECKING

from deviceagent.agent.errors import (
    MalformedCommandError,
    NotFoundError,
    PermissionDeniedError,
    TransportError,
)
from deviceagent.agent.result import is_retryable
from deviceagent.agent.tasks.types import (
    CancelledException,
    Handler,
    Task,
    TaskContext,
    TaskOutcome,
)
from deviceagent.core.config import RetryPolicy

if TYPE_CHECKING:
    from deviceagent.agent.api import AgentClient
    from deviceagent.agent.tasks.queue import TaskQueue

logger = logging.getLogger(__name__)


class EngineState(Enum):
    """State of the task engine."""

    STOPPED = auto()
    RUNNING = auto()
    STOPPING = auto()


def outcome_for(task: Task, error: Exception) -> TaskOutcome:
    """Map an exception raised by a handler to a task outcome."""
    if isinstance(error, CancelledException):
        logger.info("Task %s cancelled", task)
        return TaskOutcome.RETRY
    if isinstance(error, TransportError):
        if not is_retryable(error.result):
            logger.error("Task %s failed: %s", task, error)
            return TaskOutcome.FAILED
        logger.warning("Task %s failed, will retry: %s", task, error)
        return TaskOutcome.RETRY
    if isinstance(error, (PermissionDeniedError, PermissionError)):
        # Retrying cannot help until the capability is granted
        logger.info("Task %s skipped: %s", task, error)
        return TaskOutcome.SUCCESS
    if isinstance(error, (NotFoundError, MalformedCommandError, FileNotFoundError)):
        logger.error("Task %s failed: %s", task, error)
        return TaskOutcome.FAILED
    if isinstance(error, OSError):
        logger.warning("Task %s I/O error, will retry: %s", task, error)
        return TaskOutcome.RETRY
    logger.error("Task %s failed with unexpected error", task, exc_info=error)
    return TaskOutcome.FAILED


class TaskEngine:
    """Runs queued tasks on a pool of worker threads.

    Usage:
        engine = TaskEngine(queue, handlers, client)
        engine.start()

        engine.enqueue("scan_filesystem")

        engine.stop()
    """

    def __init__(
        self,
        queue: TaskQueue,
        handlers: Mapping[str, Handler],
        client: AgentClient,
        retry_policy: RetryPolicy | None = None,
        worker_count: int = 2,
        network_check_interval: float = 60.0,
    ) -> None:
        """Initialize the engine.

        Args:
            queue: Durable queue the tasks come from.
            handlers: Handler per command name.
            client: HTTP client used for the connectivity check.
            retry_policy: Attempt limit and backoff for RETRY outcomes.
            worker_count: Number of worker threads.
            network_check_interval: Delay before a task held back by missing
                connectivity is looked at again, in seconds.
        """
        self._queue = queue
        self._handlers = dict(handlers)
        self._client = client
        self._retry_policy = retry_policy or RetryPolicy()
        self._worker_count = max(worker_count, 1)
        self._network_check_interval = network_check_interval

        self._engine_state = EngineState.STOPPED
        self._lock = threading.Lock()
        self._cancel = threading.Event()
        self._workers: list[threading.Thread] = []

        self._completed_count = 0
        self._failed_count = 0

    @property
    def state(self) -> EngineState:
        return self._engine_state

    @property
    def queue(self) -> TaskQueue:
        return self._queue

    @property
    def completed_count(self) -> int:
        """Get number of tasks that ended in SUCCESS."""
        return self._completed_count

    @property
    def failed_count(self) -> int:
        """Get number of tasks that ended in FAILED."""
        return self._failed_count

    def start(self) -> None:
        """Start the worker threads."""
        with self._lock:
            if self._engine_state != EngineState.STOPPED:
                logger.warning("Task engine already running")
                return

            self._engine_state = EngineState.RUNNING
            self._cancel.clear()
            for i in range(self._worker_count):
                thread = threading.Thread(
                    target=self._worker_loop,
                    name=f"TaskEngine-{i}",
                    daemon=True,
                )
                thread.start()
                self._workers.append(thread)

            logger.info("Task engine started with %d workers", self._worker_count)

    def stop(self, timeout: float = 10.0) -> None:
        """Stop the worker threads.

        Running handlers see cancellation through TaskContext.cancel_check;
        their tasks stay queued.

        Args:
            timeout: Maximum time to wait for workers to finish.
        """
        with self._lock:
            if self._engine_state == EngineState.STOPPED:
                return
            self._engine_state = EngineState.STOPPING
            self._cancel.set()
            logger.info("Task engine stopping...")

        for worker in self._workers:
            worker.join(timeout=timeout / len(self._workers))

        with self._lock:
            self._engine_state = EngineState.STOPPED
            self._workers.clear()
            logger.info("Task engine stopped")

    def enqueue(
        self,
        command: str,
        params: Mapping[str, str] | None = None,
        unique_name: str | None = None,
    ) -> Task | None:
        """Create and queue a task.

        Returns:
            The queued task, or None if a task with the same unique_name
            is already pending.
        """
        task = Task(command=command, params=dict(params or {}), unique_name=unique_name)
        if not self._queue.put(task):
            return None
        logger.info("Enqueued task %s", task)
        return task

    def run_once(self, task: Task) -> TaskOutcome:
        """Execute a task's handler and return its outcome.

        The queue is not touched; process() applies the outcome.
        """
        handler = self._handlers.get(task.command)
        if handler is None:
            logger.error("Unknown command: %s", task.command)
            return TaskOutcome.FAILED

        ctx = TaskContext(task=task, cancel_check=self._cancel.is_set)
        logger.info("Running task %s (attempt %d)", task, task.attempts + 1)
        try:
            message = handler(ctx)
        except Exception as e:
            return outcome_for(task, e)

        if message:
            logger.info("Task %s succeeded: %s", task, message)
        else:
            logger.info("Task %s succeeded", task)
        return TaskOutcome.SUCCESS

    def process(self, task: Task) -> TaskOutcome | None:
        """Run a task taken from the queue and record its outcome.

        Returns:
            The outcome, or None if the task was put back without running
            (no connectivity) or was abandoned on shutdown.
        """
        if not self._client.health_check():
            logger.info(
                "Server unreachable, holding task %s for %.0fs",
                task,
                self._network_check_interval,
            )
            self._queue.reschedule(task, self._network_check_interval)
            return None

        outcome = self.run_once(task)

        if outcome is TaskOutcome.RETRY and self._cancel.is_set():
            self._queue.reschedule(task, 0)
            return None

        if outcome is TaskOutcome.SUCCESS:
            self._queue.complete(task.task_id)
            self._completed_count += 1
        elif outcome is TaskOutcome.FAILED:
            self._queue.complete(task.task_id)
            self._failed_count += 1
        else:
            task.attempts += 1
            if self._retry_policy.exhausted(task.attempts):
                logger.error("Task %s failed after %d attempts, dropping", task, task.attempts)
                self._queue.complete(task.task_id)
                self._failed_count += 1
                return TaskOutcome.FAILED
            delay = self._retry_policy.delay_for(task.attempts)
            logger.info("Retrying task %s in %.0fs", task, delay)
            self._queue.reschedule(task, delay)
        return outcome

    def _worker_loop(self) -> None:
        """Main loop for worker threads."""
        while self._engine_state == EngineState.RUNNING:
            try:
                task = self._queue.get(timeout=1.0)
            except RuntimeError:
                # Queue closed
                break
            if task is None:
                continue
            try:
                self.process(task)
            except Exception:
                logger.exception("Unexpected error processing task %s", task)
                self._release(task)

    def _release(self, task: Task) -> None:
        """Put a task whose processing blew up back in the queue."""
        if not self._queue.is_running(task.task_id):
            return
        try:
            self._queue.reschedule(task, self._network_check_interval)
        except Exception:
            logger.exception("Could not return task %s to the queue", task)
