"""Executor interface for scheduler task execution."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Protocol

from nyx.orchestrator.models import Task, TaskResult

DispatchHook = Callable[[], None]


class Executor(Protocol):
    """Protocol implemented by task executors.

    A failed task is reported as ``TaskResult(success=False)``.  Raising from
    `execute` is reserved for faults the scheduler should abort on.
    """

    def execute(self, task: Task) -> TaskResult:
        """Run one attempt of `task` and return its outcome."""


def resolve_in_workspace(workspace_dir: Path, raw_path: str) -> Path:
    """Resolve `raw_path` against the workspace, refusing paths that escape it."""

    root = Path(workspace_dir).resolve()
    candidate = (root / raw_path.strip()).resolve()
    if candidate != root and root not in candidate.parents:
        raise ValueError(f"Path is outside the workspace: {raw_path}")
    return candidate
