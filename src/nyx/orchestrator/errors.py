"""Error taxonomy for planning, execution, locking, and scheduling."""

from __future__ import annotations


class OrchestratorError(RuntimeError):
    """Base class for errors that end a scheduler run."""


class PlanningError(OrchestratorError):
    """Plan could not be produced or failed validation before execution."""


class CycleDetectedError(PlanningError):
    """Dependency relation contains at least one cycle."""

    def __init__(self, candidate_ids: list[int]) -> None:
        self.candidate_ids = candidate_ids
        super().__init__(
            "Cycle detected in task dependencies. Involved node IDs might include: "
            f"{', '.join(str(task_id) for task_id in candidate_ids)}",
        )


class TaskExecutionFault(OrchestratorError):
    """Executor raised instead of returning a result; aborts the run."""

    def __init__(self, task_id: int, message: str) -> None:
        self.task_id = task_id
        super().__init__(f"Task {task_id} failed critically: {message}")


class SchedulerStuck(OrchestratorError):
    """No task can make progress and the bounded wait budget is exhausted."""

    def __init__(self, task_ids: list[int]) -> None:
        self.task_ids = task_ids
        super().__init__(
            "Task execution stuck, possible cycle or persistent failure. "
            f"Unfinished task IDs: {', '.join(str(task_id) for task_id in task_ids)}",
        )


class LockError(RuntimeError):
    """Base class for resource lock errors."""

    def __init__(self, message: str, *, resource: str) -> None:
        super().__init__(message)
        self.resource = resource


class LockAcquisitionFailed(LockError):
    """Resource stayed contended beyond the retry budget."""

    def __init__(self, resource: str) -> None:
        super().__init__(f"Failed to acquire lock for resource: {resource}", resource=resource)


class LockReleaseFailed(LockError):
    """Held lock marker could not be removed."""

    def __init__(self, resource: str) -> None:
        super().__init__(f"Failed to release lock for resource: {resource}", resource=resource)
