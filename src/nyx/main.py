"""CLI entrypoint for nyx."""

from pathlib import Path

import rich_click as click

from nyx import __version__
from nyx.orchestrator.controllers import (
    LockCleanupCommand,
    OrchestratorCliController,
    RunCommand,
    ValidatePlanCommand,
)

click.rich_click.USE_MARKDOWN = True
ORCHESTRATOR_CONTROLLER = OrchestratorCliController()


@click.group()
@click.version_option(version=__version__, prog_name="nyx")
def nyx() -> None:
    """Plan an objective into a task graph and execute it.

    Settings come from `NYX_*` environment variables; options override them.
    """


@nyx.command("run")
@click.argument("objective")
@click.option(
    "--plan-file",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    default=None,
    help="Read the plan from a JSON file instead of calling the planner command.",
)
@click.option("--plan-only", is_flag=True, default=False, help="Stop after planning.")
@click.option(
    "--workspace-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Workspace for file writes, commands, and the lock directory.",
)
@click.option(
    "--max-workers",
    type=click.IntRange(min=1),
    default=None,
    help="Run up to this many ready tasks at once.",
)
@click.option(
    "--max-retries",
    type=click.IntRange(min=0),
    default=None,
    help="Retries after the first failed attempt of a task.",
)
@click.option(
    "--lenient-plan",
    is_flag=True,
    default=False,
    help="Skip malformed plan items with a warning instead of rejecting the plan.",
)
@click.option(
    "--stats/--no-stats",
    "show_stats",
    default=False,
    show_default=True,
    help="Print statistics and active agent lines as they change.",
)
def run(  # noqa: PLR0913
    objective: str,
    plan_file: Path | None,
    plan_only: bool,
    workspace_dir: Path | None,
    max_workers: int | None,
    max_retries: int | None,
    lenient_plan: bool,
    show_stats: bool,
) -> None:
    """Plan `OBJECTIVE` and execute the resulting task graph."""

    outcome = ORCHESTRATOR_CONTROLLER.run(
        RunCommand(
            objective=objective,
            plan_file=plan_file,
            plan_only=plan_only,
            workspace_dir=workspace_dir,
            max_workers=max_workers,
            max_retries=max_retries,
            lenient_plan=lenient_plan,
            show_stats=show_stats,
        ),
    )
    _emit_lines(outcome.lines)
    if not outcome.success:
        raise click.ClickException("Run did not complete successfully.")


@nyx.command("validate")
@click.option(
    "--plan-file",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    required=True,
    help="Plan JSON file to check.",
)
@click.option("--lenient-plan", is_flag=True, default=False, help="Skip malformed items.")
def validate(plan_file: Path, lenient_plan: bool) -> None:
    """Check a plan file for malformed items, unknown dependencies, and cycles."""

    outcome = ORCHESTRATOR_CONTROLLER.validate_plan(
        ValidatePlanCommand(plan_file=plan_file, lenient_plan=lenient_plan),
    )
    _emit_lines(outcome.lines)
    if not outcome.success:
        raise click.ClickException("Plan validation failed.")


@nyx.group()
def locks() -> None:
    """Resource lock maintenance."""


@locks.command("cleanup")
@click.option(
    "--workspace-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Workspace whose lock directory is cleaned.",
)
@click.option(
    "--lock-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Lock directory override.",
)
def locks_cleanup(workspace_dir: Path | None, lock_dir: Path | None) -> None:
    """Remove lock markers abandoned by crashed runs."""

    try:
        lines = ORCHESTRATOR_CONTROLLER.cleanup_locks(
            LockCleanupCommand(workspace_dir=workspace_dir, lock_dir=lock_dir),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    nyx()
