"""Task types shared by the queue, the engine and command handlers.

This module provides:
- Task: one schedulable unit of work (command + parameters)
- TaskOutcome: result of one execution (SUCCESS, RETRY, FAILED)
- TaskContext: what a handler receives when it runs
- CancelledException: raised by handlers when cancellation was requested
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum, auto


class TaskOutcome(Enum):
    """Outcome of one task execution."""

    SUCCESS = auto()
    RETRY = auto()
    FAILED = auto()


@dataclass
class Task:
    """A command waiting in, or taken from, the task queue.

    Attributes:
        command: Command name (e.g., "sync_all").
        params: String parameters of the command.
        task_id: Unique identifier (uuid4 hex).
        attempts: Executions that ended in RETRY so far.
        not_before: Epoch seconds before which the task must not run.
        unique_name: Periodic job name; at most one pending task per name.
        created_at: Epoch seconds when the task was created.
    """

    command: str
    params: dict[str, str] = field(default_factory=dict)
    task_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    attempts: int = 0
    not_before: float = 0.0
    unique_name: str | None = None
    created_at: float = field(default_factory=time.time)

    def is_due(self, now: float | None = None) -> bool:
        """Check whether the task may run now."""
        return self.not_before <= (time.time() if now is None else now)

    def __str__(self) -> str:
        return f"{self.command}[{self.task_id[:8]}]"


@dataclass
class TaskContext:
    """Context passed to a command handler.

    Attributes:
        task: The task being executed.
        cancel_check: Returns True once the engine is shutting down.
    """

    task: Task
    cancel_check: Callable[[], bool] = field(default=lambda: False)

    @property
    def params(self) -> dict[str, str]:
        return self.task.params

    def raise_if_cancelled(self) -> None:
        """Abandon the handler if cancellation was requested."""
        if self.cancel_check():
            raise CancelledException(f"{self.task} cancelled")


# A handler returns an optional human-readable message on success and
# raises to signal anything else (see engine.outcome_for).
Handler = Callable[[TaskContext], str | None]


class CancelledException(Exception):
    """Raised when a task is abandoned because the engine is stopping."""

    pass
