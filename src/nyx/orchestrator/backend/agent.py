"""CLI agent execution for general tasks (code generation or other)."""

from __future__ import annotations

import logging
import re
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path

from nyx.orchestrator.backend.base import DispatchHook, resolve_in_workspace
from nyx.orchestrator.backend.commands import render_command
from nyx.orchestrator.backend.file_writer import write_locked
from nyx.orchestrator.errors import LockError
from nyx.orchestrator.locks import LockManager
from nyx.orchestrator.models import Task, TaskResult

logger = logging.getLogger(__name__)

MAX_CONTEXT_FILES = 3
MAX_FILE_CONTEXT_LENGTH = 2000

_FILE_BLOCK = re.compile(r"^FILE:\s*(\S+)\s*\n```(?:\w*\n)?(.*?)```", re.MULTILINE | re.DOTALL)
_FALLBACK_CODE = re.compile(r"```(?:\w*\n)?(.*?)```", re.DOTALL)
_INFERRED_NAME = re.compile(r"\S+\.(?:ts|js|py|html|css|md|json|txt)\b", re.IGNORECASE)
_CONTEXT_FILE = re.compile(r"[/\w.-]+\.[a-zA-Z]+")

_AGENT_INSTRUCTIONS = """\
You are an expert coding assistant.
Given the task description and context, provide the necessary code or explanation.
Output ONLY the code required for the task, preferably within markdown code blocks.
If the task requires creating or modifying a specific file, mention the filename in the
format 'FILE: path/to/filename.ext' on its own line right before the corresponding code block."""


@dataclass(slots=True)
class FileBlock:
    """One `FILE: path` block with the code that follows it."""

    path: str
    code: str


def parse_file_blocks(text: str) -> list[FileBlock]:
    blocks: list[FileBlock] = []
    for match in _FILE_BLOCK.finditer(text):
        path = match.group(1).strip()
        code = match.group(2).strip()
        if path and code:
            blocks.append(FileBlock(path=path, code=code))
    return blocks


class AgentExecutor:
    """Run a CLI agent command for a task and apply the files it proposes."""

    label = "CliAgent"

    def __init__(  # noqa: PLR0913
        self,
        *,
        command_template: str,
        workspace_dir: Path,
        lock_manager: LockManager,
        timeout_seconds: int = 600,
        on_dispatch: DispatchHook | None = None,
    ) -> None:
        self.command_template = command_template
        self.workspace_dir = Path(workspace_dir)
        self.lock_manager = lock_manager
        self.timeout_seconds = timeout_seconds
        self._on_dispatch = on_dispatch

    def execute(self, task: Task) -> TaskResult:
        prompt = self.build_prompt(task)
        with tempfile.TemporaryDirectory(prefix="nyx-agent-") as tmp:
            prompt_file = Path(tmp) / "task_prompt.txt"
            prompt_file.write_text(prompt, "utf-8")
            run_args, command_head = render_command(
                self.command_template,
                values={"prompt": prompt, "prompt_file": str(prompt_file)},
            )
            if self._on_dispatch is not None:
                self._on_dispatch()
            logger.info("Running agent command %s for task %s", command_head, task.id)
            try:
                completed = subprocess.run(  # noqa: S603
                    run_args,
                    cwd=self.workspace_dir,
                    capture_output=True,
                    text=True,
                    timeout=self.timeout_seconds,
                    check=False,
                )
            except FileNotFoundError:
                return TaskResult(
                    success=False,
                    message=f"Agent command not found: {command_head}",
                )
            except subprocess.TimeoutExpired:
                return TaskResult(
                    success=False,
                    message=f"Agent command timed out after {self.timeout_seconds}s.",
                )

        if completed.returncode != 0:
            stderr_tail = completed.stderr.strip()[-500:]
            return TaskResult(
                success=False,
                message=(
                    f"Agent command exited with code {completed.returncode}"
                    f"{': ' + stderr_tail if stderr_tail else ''}"
                ),
                output=completed.stdout,
            )
        return self._apply_response(task, completed.stdout)

    def build_prompt(self, task: Task) -> str:
        context = self.gather_context(task)
        prompt = f"{_AGENT_INSTRUCTIONS}\n\nTask: {task.description}\n"
        if context:
            prompt += f"\nContext:{context}"
        return prompt

    def gather_context(self, task: Task) -> str:
        """Inline up to a few existing workspace files the task mentions."""

        context = ""
        files_read = 0
        for name in dict.fromkeys(_CONTEXT_FILE.findall(task.description)):
            if files_read >= MAX_CONTEXT_FILES:
                logger.warning("Reached max context files limit.")
                break
            try:
                path = resolve_in_workspace(self.workspace_dir, name)
                if not path.is_file():
                    continue
                content = path.read_text("utf-8")
            except (OSError, ValueError) as error:
                logger.warning("Could not read potential context file %s: %s", name, error)
                continue
            truncated = "... (truncated)" if len(content) > MAX_FILE_CONTEXT_LENGTH else ""
            context += (
                f"\n--- Content of {name} ---\n"
                f"{content[:MAX_FILE_CONTEXT_LENGTH]}{truncated}\n"
                f"--- End of {name} ---\n"
            )
            files_read += 1
        return context

    def _apply_response(self, task: Task, response: str) -> TaskResult:
        blocks = parse_file_blocks(response)
        if not blocks:
            fallback = _FALLBACK_CODE.search(response)
            if fallback is None:
                return TaskResult(
                    success=True,
                    message="Agent provided a textual response (no code block found).",
                    output=response,
                )
            inferred = _INFERRED_NAME.search(task.description)
            default_name = inferred.group(0) if inferred else f"task_{task.id}_output.txt"
            logger.warning("No filename specified by agent; writing code to %s", default_name)
            blocks = [FileBlock(path=default_name, code=fallback.group(1).strip())]

        artifacts: list[str] = []
        for block in blocks:
            try:
                target = write_locked(
                    lock_manager=self.lock_manager,
                    workspace_dir=self.workspace_dir,
                    raw_path=block.path,
                    content=block.code,
                )
            except (LockError, OSError, ValueError) as error:
                return TaskResult(
                    success=False,
                    message=f"Failed to write file {block.path}: {error}",
                    artifacts=artifacts,
                    output=response,
                )
            artifacts.append(str(target))
        return TaskResult(
            success=True,
            message=f"Agent produced {len(artifacts)} file(s).",
            artifacts=artifacts,
            output=response,
        )
