"""Shell command execution for tasks that name a command to run."""

from __future__ import annotations

import logging
import re
import subprocess
from pathlib import Path

from nyx.orchestrator.models import Task, TaskResult

logger = logging.getLogger(__name__)

_COMMAND_PATTERN = re.compile(r"(?:command:|execute:)\s*(.*)", re.IGNORECASE)


def extract_command(description: str) -> str | None:
    match = _COMMAND_PATTERN.search(description)
    if match is None:
        return None
    command = match.group(1).strip()
    return command or None


class ShellCommandExecutor:
    """Run the command named in a task description inside the workspace."""

    label = "ShellCommand"

    def __init__(self, *, workspace_dir: Path, timeout_seconds: int = 600) -> None:
        self.workspace_dir = Path(workspace_dir)
        self.timeout_seconds = timeout_seconds

    def execute(self, task: Task) -> TaskResult:
        command = extract_command(task.description)
        if command is None:
            logger.error("Could not determine command to run for task %s.", task.id)
            return TaskResult(success=False, message="Could not determine command to run.")

        logger.info("Executing command for task %s: %s", task.id, command)
        try:
            completed = subprocess.run(  # noqa: S602
                command,
                shell=True,
                cwd=self.workspace_dir,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
                check=False,
            )
        except subprocess.TimeoutExpired:
            logger.error("Command for task %s timed out: %s", task.id, command)
            return TaskResult(
                success=False,
                message=f"Command timed out after {self.timeout_seconds}s: {command}",
            )

        output = f"STDOUT:\n{completed.stdout}\nSTDERR:\n{completed.stderr}"
        if completed.returncode != 0:
            logger.warning(
                "Command for task %s exited with code %s.",
                task.id,
                completed.returncode,
            )
            return TaskResult(
                success=False,
                message=f"Command failed with exit code {completed.returncode}: {command}",
                output=output,
            )
        return TaskResult(success=True, message=f"Command executed: {command}", output=output)
