"""Durable task execution: queue, engine, command handlers, periodic jobs."""

from deviceagent.agent.tasks.engine import EngineState, TaskEngine, outcome_for
from deviceagent.agent.tasks.queue import TaskQueue
from deviceagent.agent.tasks.types import (
    CancelledException,
    Handler,
    Task,
    TaskContext,
    TaskOutcome,
)

__all__ = [
    "CancelledException",
    "EngineState",
    "Handler",
    "Task",
    "TaskContext",
    "TaskEngine",
    "TaskOutcome",
    "TaskQueue",
    "outcome_for",
]
