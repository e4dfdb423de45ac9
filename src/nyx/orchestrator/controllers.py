"""Controllers for scheduler CLI commands."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import rich_click as click

from nyx.config import Settings
from nyx.orchestrator.backend import (
    AgentExecutor,
    FileWriteExecutor,
    ShellCommandExecutor,
    TaskRouter,
)
from nyx.orchestrator.console import ConsoleEventSink, render_stats_line, render_task_lines
from nyx.orchestrator.errors import OrchestratorError, PlanningError
from nyx.orchestrator.locks import LockManager
from nyx.orchestrator.models import RunState
from nyx.orchestrator.planner import (
    CommandPlanner,
    JsonFilePlanner,
    Planner,
    load_plan_payload,
    parse_plan,
)
from nyx.orchestrator.scheduler import Scheduler


@dataclass(slots=True)
class RunCommand:
    """CLI input for one objective run."""

    objective: str
    plan_file: Path | None
    plan_only: bool
    workspace_dir: Path | None
    max_workers: int | None
    max_retries: int | None
    lenient_plan: bool
    show_stats: bool = False


@dataclass(slots=True)
class ValidatePlanCommand:
    """CLI input for offline plan validation."""

    plan_file: Path
    lenient_plan: bool


@dataclass(slots=True)
class LockCleanupCommand:
    """CLI input for stale lock cleanup."""

    workspace_dir: Path | None
    lock_dir: Path | None


@dataclass(slots=True)
class CommandOutcome:
    """Output lines plus an overall success flag for the exit code."""

    lines: list[str]
    success: bool


@dataclass(slots=True)
class OrchestratorCliController:
    """Wires settings, planner, executors, and scheduler for CLI commands."""

    echo: Callable[[str], None] = field(default=click.echo)

    def run(self, command: RunCommand) -> CommandOutcome:
        try:
            settings = _run_settings(command)
        except ValueError as error:
            return CommandOutcome(lines=[f"Configuration error: {error}"], success=False)

        scheduler = Scheduler(
            settings=settings.scheduler,
            sink=ConsoleEventSink(echo=self.echo, show_stats=command.show_stats),
        )
        planner = _planner(command=command, settings=settings, scheduler=scheduler)
        if planner is None:
            return CommandOutcome(
                lines=[
                    "No planner configured: pass --plan-file or set "
                    "NYX_PLANNER_COMMAND_TEMPLATE.",
                ],
                success=False,
            )
        executor = _task_router(settings=settings, scheduler=scheduler)

        try:
            report = scheduler.run(command.objective, planner=planner, executor=executor)
        except OrchestratorError as error:
            lines = [f"Run aborted: {error}"]
            if scheduler.graph is not None:
                lines.extend(render_task_lines(scheduler.graph))
            lines.append(render_stats_line(scheduler.stats()))
            return CommandOutcome(lines=lines, success=False)

        lines = [
            f"Run summary: state={report.state.value} "
            f"completed={report.stats.tasks_completed}/{report.stats.tasks_total} "
            f"failed={report.stats.tasks_failed} blocked={len(report.blocked_task_ids)} "
            f"dispatches={report.stats.dispatch_count} "
            f"elapsed={report.stats.elapsed_seconds}s",
        ]
        if scheduler.graph is not None:
            lines.extend(render_task_lines(scheduler.graph))
        success = report.state in (RunState.DONE, RunState.READY) and not (
            report.stats.tasks_failed or report.blocked_task_ids
        )
        return CommandOutcome(lines=lines, success=success)

    def validate_plan(self, command: ValidatePlanCommand) -> CommandOutcome:
        try:
            text = command.plan_file.read_text("utf-8")
            graph = parse_plan(load_plan_payload(text), strict=not command.lenient_plan)
        except OSError as error:
            return CommandOutcome(
                lines=[f"Could not read plan file {command.plan_file}: {error}"],
                success=False,
            )
        except PlanningError as error:
            return CommandOutcome(lines=[f"Plan is invalid: {error}"], success=False)
        return CommandOutcome(
            lines=[f"Plan is valid: {len(graph)} tasks.", *render_task_lines(graph)],
            success=True,
        )

    def cleanup_locks(self, command: LockCleanupCommand) -> list[str]:
        settings = Settings.from_env(workspace_dir=command.workspace_dir)
        if command.lock_dir is not None:
            settings.locks.lock_dir = command.lock_dir
        settings.validate()
        removed = _lock_manager(settings).cleanup_locks()
        return [
            f"Lock directory: {settings.lock_dir}",
            f"Removed stale locks: {len(removed)}",
            *(f"  {path.name}" for path in removed),
        ]


def _run_settings(command: RunCommand) -> Settings:
    settings = Settings.from_env(workspace_dir=command.workspace_dir)
    if command.plan_only:
        settings.scheduler.plan_only = True
    if command.max_workers is not None:
        settings.scheduler.max_workers = command.max_workers
    if command.max_retries is not None:
        settings.scheduler.max_retries = command.max_retries
    if command.lenient_plan:
        settings.planner.strict = False
    settings.validate()
    return settings


def _planner(*, command: RunCommand, settings: Settings, scheduler: Scheduler) -> Planner | None:
    if command.plan_file is not None:
        return JsonFilePlanner(command.plan_file, strict=settings.planner.strict)
    if settings.planner.command_template:
        return CommandPlanner(
            command_template=settings.planner.command_template,
            timeout_seconds=settings.planner.timeout_seconds,
            strict=settings.planner.strict,
            on_dispatch=scheduler.record_dispatch,
        )
    return None


def _lock_manager(settings: Settings) -> LockManager:
    return LockManager(
        lock_dir=settings.lock_dir,
        workspace_root=settings.workspace_dir,
        stale_seconds=settings.locks.stale_seconds,
        retries=settings.locks.retries,
        backoff_factor=settings.locks.backoff_factor,
        min_timeout_seconds=settings.locks.min_timeout_seconds,
        max_timeout_seconds=settings.locks.max_timeout_seconds,
    )


def _task_router(*, settings: Settings, scheduler: Scheduler) -> TaskRouter:
    lock_manager = _lock_manager(settings)
    agent = None
    if settings.executor.agent_command_template:
        agent = AgentExecutor(
            command_template=settings.executor.agent_command_template,
            workspace_dir=settings.workspace_dir,
            lock_manager=lock_manager,
            timeout_seconds=settings.executor.agent_timeout_seconds,
            on_dispatch=scheduler.record_dispatch,
        )
    return TaskRouter(
        file_writer=FileWriteExecutor(
            workspace_dir=settings.workspace_dir,
            lock_manager=lock_manager,
        ),
        shell=ShellCommandExecutor(
            workspace_dir=settings.workspace_dir,
            timeout_seconds=settings.executor.command_timeout_seconds,
        ),
        agent=agent,
    )
