"""Shared test fixtures."""

from __future__ import annotations

import sys
from collections.abc import Callable
from pathlib import Path

import pytest

from nyx.orchestrator.events import RunEvent
from nyx.orchestrator.locks import LockManager
from nyx.orchestrator.models import Task, TaskResult

ECHO_AGENT_COMMAND = f"{sys.executable} -m nyx.orchestrator.backend.echo_agent"


class RecordingSink:
    """Event sink that keeps every event for later assertions."""

    def __init__(self) -> None:
        self.events: list[RunEvent] = []

    def __call__(self, event: RunEvent) -> None:
        self.events.append(event)

    def types(self) -> list[str]:
        return [event.type.value for event in self.events]

    def status_updates(self, task_id: int | None = None) -> list[tuple[int, str]]:
        updates = [
            (event.payload["id"], event.payload["status"].value)
            for event in self.events
            if event.type.value == "taskStatusUpdate"
        ]
        if task_id is None:
            return updates
        return [update for update in updates if update[0] == task_id]


class ScriptedExecutor:
    """Executor returning scripted outcomes per task id; success by default."""

    label = "Scripted"

    def __init__(
        self,
        outcomes: dict[int, list[bool]] | None = None,
        *,
        raise_for: set[int] | None = None,
        on_execute: Callable[[Task], None] | None = None,
    ) -> None:
        self.outcomes = {task_id: list(values) for task_id, values in (outcomes or {}).items()}
        self.raise_for = raise_for or set()
        self.on_execute = on_execute
        self.calls: list[int] = []
        self.retries_seen: list[tuple[int, int]] = []

    def execute(self, task: Task) -> TaskResult:
        self.calls.append(task.id)
        self.retries_seen.append((task.id, task.retries))
        if self.on_execute is not None:
            self.on_execute(task)
        if task.id in self.raise_for:
            raise RuntimeError(f"executor crashed on {task.id}")
        queue = self.outcomes.get(task.id)
        success = queue.pop(0) if queue else True
        return TaskResult(success=success, message=None if success else "scripted failure")


@pytest.fixture()
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture()
def no_sleep() -> list[float]:
    """List that records requested sleep durations instead of sleeping."""

    return []


@pytest.fixture()
def lock_manager(tmp_path: Path) -> LockManager:
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    return LockManager(
        lock_dir=workspace / ".nyx-locks",
        workspace_root=workspace,
        retries=2,
        min_timeout_seconds=0.0,
        sleep=lambda _seconds: None,
    )
