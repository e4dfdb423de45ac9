"""Structured event stream produced by the scheduler."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any


class EventType(str, Enum):
    """Observable scheduler events."""

    PLAN_READY = "planReady"
    TASK_STATUS_UPDATE = "taskStatusUpdate"
    STATS_UPDATE = "statsUpdate"
    AGENT_STATUS_UPDATE = "agentStatusUpdate"
    LOG = "log"
    ALL_TASKS_DONE = "allTasksDone"
    ORCHESTRATION_FAILED = "orchestrationFailed"


@dataclass(slots=True, frozen=True)
class RunEvent:
    """One event with its payload, delivered in state-change order."""

    type: EventType
    payload: Any = None


EventSink = Callable[[RunEvent], None]


def null_sink(_event: RunEvent) -> None:
    """Default sink used when no observer is attached."""
