"""Task graph ownership, dependency readiness, and cycle validation."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable, Iterator
from typing import Any

from nyx.orchestrator.errors import CycleDetectedError, PlanningError
from nyx.orchestrator.models import Task, TaskResult, TaskStatus

logger = logging.getLogger(__name__)


class TaskGraph:
    """Owns every task of a run and answers readiness queries.

    Tasks are kept in insertion order so the ready set is deterministic.
    Status changes go through `mark_status` and `reset_for_retry` only.
    """

    def __init__(self) -> None:
        self._tasks: dict[int, Task] = {}
        self._next_id = 1
        self.validated = False

    def add_task(self, description: str, depends_on: Iterable[int] = ()) -> Task:
        """Allocate the next id and store a new pending task."""

        task = Task(
            id=self._next_id,
            description=description,
            depends_on=_dedupe(depends_on),
        )
        if task.id in self._tasks:
            raise RuntimeError(f"Task id {task.id} already allocated.")
        self._next_id += 1
        self._tasks[task.id] = task
        self.validated = False
        return task

    def set_dependencies(self, task_id: int, depends_on: Iterable[int]) -> None:
        """Link dependencies during ingestion; frozen once validated."""

        if self.validated:
            raise RuntimeError("Dependencies cannot change after graph validation.")
        task = self._tasks.get(task_id)
        if task is None:
            raise KeyError(task_id)
        task.depends_on = _dedupe(depends_on)

    def get_task(self, task_id: int) -> Task | None:
        return self._tasks.get(task_id)

    def all_tasks(self) -> list[Task]:
        return list(self._tasks.values())

    def pending_tasks(self) -> list[Task]:
        return [task for task in self._tasks.values() if task.status == TaskStatus.PENDING]

    def in_progress_tasks(self) -> list[Task]:
        return [task for task in self._tasks.values() if task.status == TaskStatus.IN_PROGRESS]

    def has_unfinished(self) -> bool:
        """True while any task is pending or in progress."""

        return any(
            task.status in (TaskStatus.PENDING, TaskStatus.IN_PROGRESS)
            for task in self._tasks.values()
        )

    def get_ready_tasks(self) -> list[Task]:
        """Pending tasks whose dependencies have all completed, in insertion order."""

        ready: list[Task] = []
        for task in self._tasks.values():
            if task.status != TaskStatus.PENDING:
                continue
            if all(self._is_completed(dep_id) for dep_id in task.depends_on):
                ready.append(task)
        return ready

    def mark_status(
        self,
        task_id: int,
        status: TaskStatus,
        result: TaskResult | dict[str, Any] | None = None,
    ) -> bool:
        """Transition a task; returns False when the id is unknown.

        Entering `failed` or `in_progress` bumps `retries`, so the counter
        already reads 1 while the first attempt is running.
        """

        task = self._tasks.get(task_id)
        if task is None:
            return False
        task.status = status
        if result is not None:
            task.result = result
        if status in (TaskStatus.FAILED, TaskStatus.IN_PROGRESS):
            task.retries += 1
        if status == TaskStatus.IN_PROGRESS:
            task.attempts += 1
        return True

    def reset_for_retry(self, task_id: int) -> bool:
        """Move a failed task back to pending; no-op for any other state."""

        task = self._tasks.get(task_id)
        if task is None or task.status != TaskStatus.FAILED:
            return False
        task.status = TaskStatus.PENDING
        return True

    def blocked_tasks(self) -> list[Task]:
        """Pending tasks that can never become ready because a dependency failed."""

        failed_ids = {task.id for task in self._tasks.values() if task.status == TaskStatus.FAILED}
        if not failed_ids:
            return []

        blocked_ids: set[int] = set()
        changed = True
        while changed:
            changed = False
            for task in self._tasks.values():
                if task.status != TaskStatus.PENDING or task.id in blocked_ids:
                    continue
                if any(dep_id in failed_ids or dep_id in blocked_ids for dep_id in task.depends_on):
                    blocked_ids.add(task.id)
                    changed = True
        return [task for task in self._tasks.values() if task.id in blocked_ids]

    def validate(self) -> None:
        """Reject unknown dependency ids and cycles (Kahn's algorithm)."""

        in_degree: dict[int, int] = {task_id: 0 for task_id in self._tasks}
        dependents: dict[int, list[int]] = {task_id: [] for task_id in self._tasks}

        for task in self._tasks.values():
            for dep_id in task.depends_on:
                if dep_id not in self._tasks:
                    logger.warning(
                        "Task %d lists dependency %d which does not exist in the graph.",
                        task.id,
                        dep_id,
                    )
                    raise PlanningError(f"Task {task.id} has an invalid dependency ID: {dep_id}")
                dependents[dep_id].append(task.id)
                in_degree[task.id] += 1

        queue = deque(task_id for task_id, degree in in_degree.items() if degree == 0)
        peeled = 0
        while queue:
            current = queue.popleft()
            peeled += 1
            for dependent_id in dependents[current]:
                in_degree[dependent_id] -= 1
                if in_degree[dependent_id] == 0:
                    queue.append(dependent_id)

        if peeled != len(self._tasks):
            raise CycleDetectedError(
                [task_id for task_id in self._tasks if in_degree[task_id] > 0],
            )
        self.validated = True

    def render(self) -> str:
        return "\n".join(
            f"[{task.id}] {task.description} ({task.status.value}) "
            f"deps: [{', '.join(str(dep_id) for dep_id in task.depends_on)}]"
            for task in self._tasks.values()
        )

    def _is_completed(self, task_id: int) -> bool:
        dependency = self._tasks.get(task_id)
        return dependency is not None and dependency.status == TaskStatus.COMPLETED

    def __len__(self) -> int:
        return len(self._tasks)

    def __iter__(self) -> Iterator[Task]:
        return iter(list(self._tasks.values()))

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks


def _dedupe(values: Iterable[int]) -> tuple[int, ...]:
    seen: set[int] = set()
    ordered: list[int] = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        ordered.append(value)
    return tuple(ordered)
