"""Built-in task executors."""

from nyx.orchestrator.backend.agent import AgentExecutor
from nyx.orchestrator.backend.base import DispatchHook, Executor
from nyx.orchestrator.backend.commands import CommandTemplateError, render_command
from nyx.orchestrator.backend.file_writer import FileWriteExecutor
from nyx.orchestrator.backend.router import TaskKind, TaskRouter, classify_task
from nyx.orchestrator.backend.shell import ShellCommandExecutor

__all__ = [
    "AgentExecutor",
    "CommandTemplateError",
    "DispatchHook",
    "Executor",
    "FileWriteExecutor",
    "ShellCommandExecutor",
    "TaskKind",
    "TaskRouter",
    "classify_task",
    "render_command",
]
