"""Durable task queue.

This module provides:
- TaskQueue: thread-safe queue of Tasks persisted in SQLite

Tasks are held in memory and mirrored in SQLite. A task row is written on
put() and deleted only by complete(); taking a task with get() keeps its
row. A process that dies while running a task therefore finds it again on
the next start and runs it once more (handlers are idempotent).

get() only hands out tasks whose not_before has passed, earliest first.
Tasks with a unique_name are deduplicated: while one is pending or
running, further puts with the same name are ignored (the existing task
is kept).

Persistence (SQLite):
    Each operation commits immediately. WAL mode ensures writes survive
    crashes; the RLock serializes access from worker threads.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from pathlib import Path

from deviceagent.agent.tasks.types import Task

logger = logging.getLogger(__name__)


class TaskQueue:
    """Thread-safe, SQLite-persisted queue of pending tasks."""

    def __init__(self, db_path: Path) -> None:
        """Initialize the queue and load tasks left by a previous run.

        Args:
            db_path: Path to the SQLite database.
        """
        self._lock = threading.RLock()
        self._changed = threading.Condition(self._lock)
        self._pending: dict[str, Task] = {}
        self._running: dict[str, Task] = {}
        self._closed = False

        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        db = sqlite3.connect(
            str(self._db_path),
            check_same_thread=False,
            isolation_level=None,
        )
        db.execute("PRAGMA journal_mode=WAL")
        db.execute("""
            CREATE TABLE IF NOT EXISTS tasks (
                task_id TEXT PRIMARY KEY,
                command TEXT NOT NULL,
                params TEXT NOT NULL,
                attempts INTEGER NOT NULL DEFAULT 0,
                not_before REAL NOT NULL DEFAULT 0,
                unique_name TEXT,
                created_at REAL NOT NULL
            )
        """)
        self._db: sqlite3.Connection | None = db
        self._load(db)

    def _load(self, db: sqlite3.Connection) -> None:
        cursor = db.execute(
            "SELECT task_id, command, params, attempts, not_before, unique_name, created_at "
            "FROM tasks"
        )
        for task_id, command, params, attempts, not_before, unique_name, created_at in cursor:
            self._pending[task_id] = Task(
                command=command,
                params=json.loads(params),
                task_id=task_id,
                attempts=attempts,
                not_before=not_before,
                unique_name=unique_name,
                created_at=created_at,
            )
        if self._pending:
            logger.info("Loaded %d pending tasks from %s", len(self._pending), self._db_path)

    def _persist(self, task: Task) -> None:
        if not self._db:
            return
        self._db.execute(
            """
            INSERT OR REPLACE INTO tasks
            (task_id, command, params, attempts, not_before, unique_name, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                task.task_id,
                task.command,
                json.dumps(task.params),
                task.attempts,
                task.not_before,
                task.unique_name,
                task.created_at,
            ),
        )

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("Queue is closed")

    def put(self, task: Task) -> bool:
        """Add a task.

        Returns:
            True if the task was queued, False if a task with the same
            unique_name is already pending or running.

        Raises:
            RuntimeError: If queue is closed.
        """
        with self._lock:
            self._check_open()
            if task.unique_name and self.has_unique(task.unique_name):
                logger.debug("Keeping existing task for %s, ignoring %s", task.unique_name, task)
                return False

            self._pending[task.task_id] = task
            self._persist(task)
            self._changed.notify()
            logger.debug("Queued task: %s (queue size: %d)", task, len(self._pending))
            return True

    def get(self, timeout: float | None = None) -> Task | None:
        """Take the earliest due task, marking it running.

        Blocks until a task is due or timeout expires.

        Args:
            timeout: Maximum seconds to wait (None = wait forever)

        Returns:
            The task, or None if timeout expired

        Raises:
            RuntimeError: If queue is closed while waiting
        """
        with self._changed:
            deadline = None if timeout is None else time.time() + timeout
            while True:
                self._check_open()
                now = time.time()
                due = [t for t in self._pending.values() if t.is_due(now)]
                if due:
                    task = min(due, key=lambda t: (t.not_before, t.created_at))
                    del self._pending[task.task_id]
                    self._running[task.task_id] = task
                    logger.debug("Dequeued task: %s (queue size: %d)", task, len(self._pending))
                    return task

                # Sleep until the next task becomes due, a put, or the deadline
                wait: float | None = None
                if self._pending:
                    wait = min(t.not_before for t in self._pending.values()) - now
                if deadline is not None:
                    remaining = deadline - now
                    if remaining <= 0:
                        return None
                    wait = remaining if wait is None else min(wait, remaining)
                self._changed.wait(timeout=wait)

    def complete(self, task_id: str) -> None:
        """Remove a finished (succeeded or failed) task for good."""
        with self._lock:
            self._running.pop(task_id, None)
            self._pending.pop(task_id, None)
            if self._db:
                self._db.execute("DELETE FROM tasks WHERE task_id = ?", (task_id,))
            logger.debug("Completed task %s", task_id[:8])

    def reschedule(self, task: Task, delay: float) -> None:
        """Return a running task to the queue, due after delay seconds."""
        with self._lock:
            self._check_open()
            self._running.pop(task.task_id, None)
            task.not_before = time.time() + delay
            self._pending[task.task_id] = task
            self._persist(task)
            self._changed.notify()
            logger.debug("Rescheduled task %s in %.1fs", task, delay)

    def is_running(self, task_id: str) -> bool:
        """Check whether a task was taken by get() and not yet finished."""
        with self._lock:
            return task_id in self._running

    def has_unique(self, unique_name: str) -> bool:
        """Check whether a task with this unique_name is pending or running."""
        with self._lock:
            return any(
                t.unique_name == unique_name
                for t in (*self._pending.values(), *self._running.values())
            )

    def pending(self) -> list[Task]:
        """Get pending tasks ordered by due time (does not remove them)."""
        with self._lock:
            return sorted(self._pending.values(), key=lambda t: (t.not_before, t.created_at))

    def close(self) -> None:
        """Close the queue and wake up waiting threads."""
        with self._lock:
            self._closed = True
            self._changed.notify_all()
            if self._db:
                self._db.close()
                self._db = None
            logger.debug("Task queue closed")

    def __len__(self) -> int:
        """Get number of pending and running tasks."""
        with self._lock:
            return len(self._pending) + len(self._running)

    @property
    def is_closed(self) -> bool:
        return self._closed
