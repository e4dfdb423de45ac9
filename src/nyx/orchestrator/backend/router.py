"""Keyword routing of tasks onto the built-in executors."""

from __future__ import annotations

import logging
import subprocess
from enum import Enum

from nyx.orchestrator.backend.agent import AgentExecutor
from nyx.orchestrator.backend.file_writer import FileWriteExecutor
from nyx.orchestrator.backend.shell import ShellCommandExecutor
from nyx.orchestrator.errors import LockError
from nyx.orchestrator.models import Task, TaskResult

logger = logging.getLogger(__name__)


class TaskKind(str, Enum):
    """Task category inferred from its description."""

    FILE_WRITE = "file_write"
    FILE_EDIT = "file_edit"
    SHELL = "shell"
    GENERAL = "general"


_KEYWORDS: tuple[tuple[TaskKind, tuple[str, ...]], ...] = (
    (TaskKind.FILE_WRITE, ("create file", "write file")),
    (TaskKind.FILE_EDIT, ("edit file", "modify file", "update file")),
    (TaskKind.SHELL, ("run command", "execute")),
)


def classify_task(description: str) -> TaskKind:
    lowered = description.lower()
    for kind, keywords in _KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return kind
    return TaskKind.GENERAL


class TaskRouter:
    """Pick an executor for each task from keywords in its description."""

    label = "WorkerAgent"

    def __init__(
        self,
        *,
        file_writer: FileWriteExecutor,
        shell: ShellCommandExecutor,
        agent: AgentExecutor | None = None,
    ) -> None:
        self.file_writer = file_writer
        self.shell = shell
        self.agent = agent

    def execute(self, task: Task) -> TaskResult:
        logger.info("WorkerAgent executing task %s: %s", task.id, task.description)
        kind = classify_task(task.description)
        logger.info("Task %s identified as %s task.", task.id, kind.value)
        try:
            if kind == TaskKind.FILE_WRITE:
                return self.file_writer.execute(task)
            if kind == TaskKind.FILE_EDIT:
                return TaskResult(success=False, message="File editing not yet implemented.")
            if kind == TaskKind.SHELL:
                return self.shell.execute(task)
            if self.agent is None:
                return TaskResult(
                    success=False,
                    message="No agent command configured for general tasks.",
                )
            return self.agent.execute(task)
        except (LockError, OSError, ValueError, subprocess.SubprocessError) as error:
            logger.error("Error executing task %s: %s", task.id, error)
            return TaskResult(
                success=False,
                message=str(error) or "Unknown error during task execution",
            )
