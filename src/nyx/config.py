"""Runtime configuration for planning, scheduling, locking, and execution."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_LOCK_DIR_NAME = ".nyx-locks"


@dataclass(slots=True)
class SchedulerSettings:
    """Dispatch loop and retry policy settings."""

    max_retries: int = 3
    max_workers: int = 1
    max_stuck_iterations: int = 5
    stuck_backoff_seconds: float = 2.0
    plan_only: bool = False


@dataclass(slots=True)
class LockSettings:
    """Resource lock staleness and retry settings."""

    lock_dir: Path | None = None
    stale_seconds: float = 15.0
    retries: int = 5
    backoff_factor: float = 1.2
    min_timeout_seconds: float = 0.2
    max_timeout_seconds: float | None = None


@dataclass(slots=True)
class ExecutorSettings:
    """Built-in executor settings."""

    agent_command_template: str = ""
    agent_timeout_seconds: int = 600
    command_timeout_seconds: int = 600


@dataclass(slots=True)
class PlannerSettings:
    """Planner capability settings."""

    command_template: str = ""
    timeout_seconds: int = 300
    strict: bool = True


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    workspace_dir: Path = field(default_factory=Path.cwd)
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)
    locks: LockSettings = field(default_factory=LockSettings)
    executor: ExecutorSettings = field(default_factory=ExecutorSettings)
    planner: PlannerSettings = field(default_factory=PlannerSettings)

    @property
    def lock_dir(self) -> Path:
        """Effective lock directory; defaults to a hidden folder in the workspace."""

        return self.locks.lock_dir or self.workspace_dir / DEFAULT_LOCK_DIR_NAME

    @classmethod
    def from_env(cls, workspace_dir: Path | None = None) -> Settings:
        """Load settings from environment with defaults for local runs."""

        lock_dir_raw = os.getenv("NYX_LOCK_DIR", "").strip()
        max_timeout_raw = os.getenv("NYX_LOCK_MAX_TIMEOUT_SECONDS", "").strip()
        return cls(
            workspace_dir=workspace_dir
            or Path(os.getenv("NYX_WORKSPACE_DIR", "") or Path.cwd()),
            scheduler=SchedulerSettings(
                max_retries=int(os.getenv("NYX_MAX_RETRIES", "3")),
                max_workers=int(os.getenv("NYX_MAX_WORKERS", "1")),
                max_stuck_iterations=int(os.getenv("NYX_MAX_STUCK_ITERATIONS", "5")),
                stuck_backoff_seconds=float(os.getenv("NYX_STUCK_BACKOFF_SECONDS", "2.0")),
                plan_only=_env_bool("NYX_PLAN_ONLY", default=False),
            ),
            locks=LockSettings(
                lock_dir=Path(lock_dir_raw) if lock_dir_raw else None,
                stale_seconds=float(os.getenv("NYX_LOCK_STALE_SECONDS", "15.0")),
                retries=int(os.getenv("NYX_LOCK_RETRIES", "5")),
                backoff_factor=float(os.getenv("NYX_LOCK_BACKOFF_FACTOR", "1.2")),
                min_timeout_seconds=float(os.getenv("NYX_LOCK_MIN_TIMEOUT_SECONDS", "0.2")),
                max_timeout_seconds=float(max_timeout_raw) if max_timeout_raw else None,
            ),
            executor=ExecutorSettings(
                agent_command_template=os.getenv("NYX_AGENT_COMMAND_TEMPLATE", "").strip(),
                agent_timeout_seconds=int(os.getenv("NYX_AGENT_TIMEOUT_SECONDS", "600")),
                command_timeout_seconds=int(os.getenv("NYX_COMMAND_TIMEOUT_SECONDS", "600")),
            ),
            planner=PlannerSettings(
                command_template=os.getenv("NYX_PLANNER_COMMAND_TEMPLATE", "").strip(),
                timeout_seconds=int(os.getenv("NYX_PLANNER_TIMEOUT_SECONDS", "300")),
                strict=_env_bool("NYX_PLANNER_STRICT", default=True),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for out-of-range values."""

        if self.scheduler.max_retries < 0:
            raise ValueError("NYX_MAX_RETRIES must be >= 0.")
        if self.scheduler.max_workers < 1:
            raise ValueError("NYX_MAX_WORKERS must be >= 1.")
        if self.scheduler.max_stuck_iterations < 0:
            raise ValueError("NYX_MAX_STUCK_ITERATIONS must be >= 0.")
        if self.scheduler.stuck_backoff_seconds < 0:
            raise ValueError("NYX_STUCK_BACKOFF_SECONDS must be >= 0.")
        if self.locks.stale_seconds <= 0:
            raise ValueError("NYX_LOCK_STALE_SECONDS must be > 0.")
        if self.locks.retries < 0:
            raise ValueError("NYX_LOCK_RETRIES must be >= 0.")
        if self.locks.backoff_factor < 1:
            raise ValueError("NYX_LOCK_BACKOFF_FACTOR must be >= 1.")
        if self.locks.min_timeout_seconds < 0:
            raise ValueError("NYX_LOCK_MIN_TIMEOUT_SECONDS must be >= 0.")
        if (
            self.locks.max_timeout_seconds is not None
            and self.locks.max_timeout_seconds < self.locks.min_timeout_seconds
        ):
            raise ValueError(
                "NYX_LOCK_MAX_TIMEOUT_SECONDS must be >= NYX_LOCK_MIN_TIMEOUT_SECONDS.",
            )
        for name, value in (
            ("NYX_AGENT_TIMEOUT_SECONDS", self.executor.agent_timeout_seconds),
            ("NYX_COMMAND_TIMEOUT_SECONDS", self.executor.command_timeout_seconds),
            ("NYX_PLANNER_TIMEOUT_SECONDS", self.planner.timeout_seconds),
        ):
            if value <= 0:
                raise ValueError(f"{name} must be > 0.")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
