"""Bounded session log used to give the planner recent context."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

OBJECTIVE = "objective"
TASK_RESULT = "task_result"
LOG = "log"

_ENTRY_MAX_CHARS = 150
_DESCRIPTION_PREVIEW_CHARS = 30


@dataclass(slots=True)
class MemoryEntry:
    kind: str
    timestamp: float
    data: dict[str, Any]


class SessionMemory:
    """Keeps the most recent session entries and renders a short summary."""

    def __init__(self, *, max_entries: int = 50, summary_length: int = 1000) -> None:
        self.max_entries = max_entries
        self.summary_length = summary_length
        self._entries: list[MemoryEntry] = []

    def add_entry(self, kind: str, data: dict[str, Any]) -> None:
        self._entries.append(MemoryEntry(kind=kind, timestamp=time.time(), data=data))
        if len(self._entries) > self.max_entries:
            del self._entries[0]

    def entries(self) -> list[MemoryEntry]:
        return list(self._entries)

    def context_summary(self) -> str:
        """Newest-first summary, truncated to the configured length."""

        summary = "Recent session events:\n"
        for entry in reversed(self._entries):
            line = f" - [{entry.kind}] {_describe(entry)}"
            if len(summary) + len(line) < self.summary_length:
                summary += line + "\n"
            else:
                summary += "... (summary truncated)\n"
                break
        return summary

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def _describe(entry: MemoryEntry) -> str:
    if entry.kind == OBJECTIVE:
        return f"Objective received: {entry.data.get('objective', '')}"
    if entry.kind == TASK_RESULT:
        description = str(entry.data.get("description", ""))
        outcome = "Success" if entry.data.get("success") else "Failed"
        message = entry.data.get("message")
        text = (
            f"Task {entry.data.get('task_id')} "
            f"({description[:_DESCRIPTION_PREVIEW_CHARS]}...) finished: {outcome}"
            f"{' - ' + str(message) if message else ''}"
        )
        return text[:_ENTRY_MAX_CHARS]
    return str(entry.data.get("message", ""))[:_ENTRY_MAX_CHARS]
