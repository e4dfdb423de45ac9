from __future__ import annotations

import allure

from nyx.orchestrator.console import ConsoleEventSink, render_task_lines
from nyx.orchestrator.events import EventType, RunEvent
from nyx.orchestrator.graph import TaskGraph
from nyx.orchestrator.models import RunStats, TaskStatus

pytestmark = [
    allure.epic("Presentation"),
    allure.feature("Console Output"),
]


def _stats() -> RunStats:
    return RunStats(
        start_time=0.0,
        elapsed_seconds=3,
        dispatch_count=2,
        tasks_total=4,
        tasks_completed=1,
        tasks_failed=1,
        active_agents={2: "WorkerAgent"},
    )


def test_console_sink_renders_headless_lines() -> None:
    lines: list[str] = []
    sink = ConsoleEventSink(echo=lines.append)

    sink(RunEvent(EventType.LOG, {"message": "careful", "level": "warn"}))
    sink(RunEvent(EventType.LOG, {"message": "broken", "level": "error"}))
    sink(RunEvent(EventType.LOG, {"message": "fine", "level": "info"}))
    sink(RunEvent(EventType.PLAN_READY, [object(), object()]))
    sink(RunEvent(EventType.TASK_STATUS_UPDATE, {"id": 3, "status": TaskStatus.FAILED}))
    sink(RunEvent(EventType.STATS_UPDATE, _stats()))
    sink(RunEvent(EventType.AGENT_STATUS_UPDATE, {2: "WorkerAgent"}))
    sink(RunEvent(EventType.AGENT_STATUS_UPDATE, {}))
    sink(RunEvent(EventType.ALL_TASKS_DONE))
    sink(RunEvent(EventType.ORCHESTRATION_FAILED, RuntimeError("stuck")))

    assert lines == [
        "WARN: careful",
        "ERROR: broken",
        "fine",
        "Plan generated (2 tasks).",
        "Task 3 status changed to: failed",
        "[Stats] Elapsed: 3s | Tasks: 1/4 | Failed: 1 | Dispatches: 2",
        "[Agents] Active: 2: WorkerAgent",
        "[Agents] Active: none",
        "Execution finished.",
        "Orchestration failed: stuck",
    ]


def test_console_sink_can_hide_stats() -> None:
    lines: list[str] = []
    sink = ConsoleEventSink(echo=lines.append, show_stats=False)

    sink(RunEvent(EventType.STATS_UPDATE, _stats()))
    sink(RunEvent(EventType.AGENT_STATUS_UPDATE, {}))

    assert lines == []


def test_render_task_lines_marks_blocked_tasks() -> None:
    graph = TaskGraph()
    graph.add_task("compile")
    graph.add_task("package", [1])
    graph.add_task("docs")
    graph.mark_status(1, TaskStatus.FAILED)
    graph.mark_status(3, TaskStatus.COMPLETED)

    assert render_task_lines(graph) == [
        "  [1] failed      compile",
        "  [2] blocked     package (after 1)",
        "  [3] completed   docs",
    ]
