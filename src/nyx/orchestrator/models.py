"""Domain models for the task graph and scheduler runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class TaskStatus(str, Enum):
    """Task lifecycle states."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class RunState(str, Enum):
    """Scheduler run lifecycle states."""

    IDLE = "idle"
    PLANNING = "planning"
    READY = "ready"
    EXECUTING = "executing"
    DONE = "done"
    ABORTED = "aborted"


class LogLevel(str, Enum):
    """Severity carried by `log` events."""

    INFO = "info"
    WARN = "warn"
    ERROR = "error"


@dataclass(slots=True)
class TaskResult:
    """Outcome reported by an executor for one task attempt."""

    success: bool
    message: str | None = None
    artifacts: list[str] = field(default_factory=list)
    output: str | None = None


@dataclass(slots=True)
class Task:
    """Unit of schedulable work owned by a `TaskGraph`."""

    id: int
    description: str
    depends_on: tuple[int, ...] = ()
    status: TaskStatus = TaskStatus.PENDING
    retries: int = 0
    attempts: int = 0
    result: TaskResult | dict[str, Any] | None = None


@dataclass(slots=True)
class RunStats:
    """Point-in-time statistics snapshot for a scheduler run."""

    start_time: float
    elapsed_seconds: int
    dispatch_count: int
    tasks_total: int
    tasks_completed: int
    tasks_failed: int
    active_agents: dict[int, str] = field(default_factory=dict)


@dataclass(slots=True)
class RunReport:
    """Final state of one scheduler run, returned to the entry point."""

    state: RunState
    stats: RunStats
    tasks: list[Task]
    blocked_task_ids: list[int] = field(default_factory=list)
