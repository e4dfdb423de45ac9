"""Headless console rendering of the scheduler event stream."""

from __future__ import annotations

from collections.abc import Callable

import rich_click as click

from nyx.orchestrator.events import EventType, RunEvent
from nyx.orchestrator.graph import TaskGraph
from nyx.orchestrator.models import RunStats, TaskStatus

_LEVEL_PREFIXES = {"error": "ERROR: ", "warn": "WARN: "}


class ConsoleEventSink:
    """Event sink that prints one line per event."""

    def __init__(
        self,
        *,
        echo: Callable[[str], None] = click.echo,
        show_stats: bool = True,
    ) -> None:
        self._echo = echo
        self.show_stats = show_stats

    def __call__(self, event: RunEvent) -> None:
        line = self.render(event)
        if line is not None:
            self._echo(line)

    def render(self, event: RunEvent) -> str | None:  # noqa: PLR0911
        payload = event.payload
        if event.type == EventType.LOG:
            return _LEVEL_PREFIXES.get(payload["level"], "") + payload["message"]
        if event.type == EventType.PLAN_READY:
            return f"Plan generated ({len(payload)} tasks)."
        if event.type == EventType.TASK_STATUS_UPDATE:
            return f"Task {payload['id']} status changed to: {TaskStatus(payload['status']).value}"
        if event.type == EventType.ALL_TASKS_DONE:
            return "Execution finished."
        if event.type == EventType.ORCHESTRATION_FAILED:
            return f"Orchestration failed: {payload}"
        if not self.show_stats:
            return None
        if event.type == EventType.STATS_UPDATE:
            return render_stats_line(payload)
        if event.type == EventType.AGENT_STATUS_UPDATE:
            agents = ", ".join(f"{task_id}: {label}" for task_id, label in payload.items())
            return f"[Agents] Active: {agents or 'none'}"
        return None


def render_stats_line(stats: RunStats) -> str:
    return (
        f"[Stats] Elapsed: {stats.elapsed_seconds}s | "
        f"Tasks: {stats.tasks_completed}/{stats.tasks_total} | "
        f"Failed: {stats.tasks_failed} | Dispatches: {stats.dispatch_count}"
    )


def render_task_lines(graph: TaskGraph) -> list[str]:
    """One line per task; pending tasks behind a failed dependency show as blocked."""

    blocked = {task.id for task in graph.blocked_tasks()}
    lines: list[str] = []
    for task in graph:
        status = "blocked" if task.id in blocked else task.status.value
        deps = ", ".join(str(dep) for dep in task.depends_on)
        line = f"  [{task.id}] {status:<11} {task.description}"
        if deps:
            line += f" (after {deps})"
        lines.append(line)
    return lines
