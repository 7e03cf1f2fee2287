"""Bounded undo/redo log of weekly slot snapshots."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Sequence

from .models import WeeklySlot

DEFAULT_HISTORY_CAPACITY = 30

ACTION_LABELS: Dict[str, str] = {
    "load": "Loaded schedule",
    "add": "Added slot",
    "remove": "Removed slot",
    "move": "Moved slot",
    "resize": "Resized slot",
    "template": "Applied template",
}


def format_action_name(action: str) -> str:
    return ACTION_LABELS.get(action, action.replace("_", " ").capitalize())


def _clone(slots: Sequence[WeeklySlot]) -> List[WeeklySlot]:
    return [slot.model_copy(deep=True) for slot in slots]


@dataclass(frozen=True)
class HistoryEntry:
    snapshot: List[WeeklySlot]
    action: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def label(self) -> str:
        return format_action_name(self.action)


class HistoryManager:
    """Linear stack of snapshots with a cursor.

    Pushing after an undo discards the redo branch. When the stack is full the
    oldest entry is evicted. The manager is purely in-memory: persisting the
    snapshot a cursor move lands on is the caller's job.
    """

    def __init__(self, capacity: int = DEFAULT_HISTORY_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("History capacity must be at least 1.")
        self._capacity = capacity
        self._entries: List[HistoryEntry] = []
        self._cursor = -1

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def can_undo(self) -> bool:
        return self._cursor > 0

    @property
    def can_redo(self) -> bool:
        return 0 <= self._cursor < len(self._entries) - 1

    @property
    def cursor(self) -> int:
        return self._cursor

    def current(self) -> List[WeeklySlot]:
        if self._cursor < 0:
            return []
        return _clone(self._entries[self._cursor].snapshot)

    def current_entry(self) -> HistoryEntry | None:
        if self._cursor < 0:
            return None
        return self._entries[self._cursor]

    def push(self, snapshot: Sequence[WeeklySlot], action: str) -> HistoryEntry:
        del self._entries[self._cursor + 1 :]
        entry = HistoryEntry(snapshot=_clone(snapshot), action=action)
        self._entries.append(entry)
        overflow = len(self._entries) - self._capacity
        if overflow > 0:
            del self._entries[:overflow]
        self._cursor = len(self._entries) - 1
        return entry

    def undo(self) -> List[WeeklySlot]:
        if self.can_undo:
            self._cursor -= 1
        return self.current()

    def redo(self) -> List[WeeklySlot]:
        if self.can_redo:
            self._cursor += 1
        return self.current()

    def entries(self) -> List[HistoryEntry]:
        """Full log, most recent first. Does not move the cursor."""
        return list(reversed(self._entries))

    def clear(self) -> None:
        self._entries.clear()
        self._cursor = -1

    def __len__(self) -> int:
        return len(self._entries)


__all__ = [
    "ACTION_LABELS",
    "DEFAULT_HISTORY_CAPACITY",
    "HistoryEntry",
    "HistoryManager",
    "format_action_name",
]
