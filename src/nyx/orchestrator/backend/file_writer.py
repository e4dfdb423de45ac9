"""File write execution guarded by resource locks."""

from __future__ import annotations

import logging
import re
from pathlib import Path

from nyx.orchestrator.backend.base import resolve_in_workspace
from nyx.orchestrator.errors import LockError
from nyx.orchestrator.locks import LockManager
from nyx.orchestrator.models import Task, TaskResult

logger = logging.getLogger(__name__)

_PATH_PATTERN = re.compile(r"(?:file|path)\s+(\S+)", re.IGNORECASE)
_CONTENT_PATTERN = re.compile(r"content:(.*)", re.IGNORECASE | re.DOTALL)


def extract_file_target(task: Task) -> tuple[str, str]:
    """Return `(relative path, content)` named by a file write task."""

    path_match = _PATH_PATTERN.search(task.description)
    content_match = _CONTENT_PATTERN.search(task.description)
    file_path = path_match.group(1) if path_match else f"task_{task.id}_output.txt"
    content = content_match.group(1).strip() if content_match else ""
    return file_path, content


def write_locked(
    *,
    lock_manager: LockManager,
    workspace_dir: Path,
    raw_path: str,
    content: str,
) -> Path:
    """Write `content` to a workspace file while holding its resource lock."""

    target = resolve_in_workspace(workspace_dir, raw_path)
    with lock_manager.hold(str(target)):
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, "utf-8")
    logger.info("Wrote %d chars to %s", len(content), target)
    return target


class FileWriteExecutor:
    """Write the file a task describes, holding the file's lock while writing."""

    label = "FileWriter"

    def __init__(self, *, workspace_dir: Path, lock_manager: LockManager) -> None:
        self.workspace_dir = Path(workspace_dir)
        self.lock_manager = lock_manager

    def execute(self, task: Task) -> TaskResult:
        file_path, content = extract_file_target(task)
        if not content:
            logger.warning("Task %s has no content to write; creating empty file.", task.id)
        try:
            target = write_locked(
                lock_manager=self.lock_manager,
                workspace_dir=self.workspace_dir,
                raw_path=file_path,
                content=content,
            )
        except (LockError, OSError, ValueError) as error:
            logger.error("Failed to write file %s for task %s: %s", file_path, task.id, error)
            return TaskResult(success=False, message=f"Failed to write file {file_path}: {error}")
        return TaskResult(
            success=True,
            message=f"File written: {target}",
            artifacts=[str(target)],
        )
