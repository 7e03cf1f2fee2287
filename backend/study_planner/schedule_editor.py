"""Per-learner editing session over the weekly grid.

The editor validates placements against the grid, writes accepted changes
through the study store and records the resulting snapshot in a bounded
history. Undo and redo move the history cursor first and then commit the
snapshot it lands on as a separate awaited step. While any write is pending
the editor refuses further mutations and history moves with
``HistoryLockedError``; a failed undo/redo commit puts the cursor back where it
was and invalidates the slot cache so the next read re-syncs with the backend.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterator, List, Literal, Optional

from .conflicts import (
    DEFAULT_GRID,
    DEFAULT_SUGGESTION_LIMIT,
    GridConfig,
    SuggestedCell,
    find_nearest_empty_cells,
    find_overlapping,
    placement_problem,
)
from .errors import HistoryLockedError, PersistenceError, SlotValidationError, UnknownRecordError
from .history import DEFAULT_HISTORY_CAPACITY, HistoryEntry, HistoryManager
from .models import WeeklySlot, format_minutes, to_minutes
from .telemetry import emit_event

if TYPE_CHECKING:
    from .cache import StudyStore
    from .templates import TemplateApplication, TemplateService

logger = logging.getLogger(__name__)

PlacementAction = Literal["add", "move", "resize"]
LoadStatus = Literal["low", "ok", "high"]

WEEKLY_LOW_MINUTES = 5 * 60
WEEKLY_HIGH_MINUTES = 10 * 60


@dataclass(frozen=True)
class WeeklyLoad:
    total_minutes: int
    status: LoadStatus

    @property
    def hours(self) -> float:
        return round(self.total_minutes / 60, 1)


def weekly_load(
    slots: List[WeeklySlot],
    *,
    low_minutes: int = WEEKLY_LOW_MINUTES,
    high_minutes: int = WEEKLY_HIGH_MINUTES,
) -> WeeklyLoad:
    total = sum(slot.duration for slot in slots)
    status: LoadStatus = "ok"
    if total < low_minutes:
        status = "low"
    elif total > high_minutes:
        status = "high"
    return WeeklyLoad(total_minutes=total, status=status)


@dataclass(frozen=True)
class PlacementOutcome:
    status: Literal["applied", "conflict"]
    action: PlacementAction
    slot: WeeklySlot
    conflicts: List[WeeklySlot] = field(default_factory=list)
    suggestions: List[SuggestedCell] = field(default_factory=list)

    @property
    def applied(self) -> bool:
        return self.status == "applied"


class ScheduleEditor:
    def __init__(
        self,
        store: "StudyStore",
        learner_id: str,
        *,
        grid: GridConfig = DEFAULT_GRID,
        history_capacity: int = DEFAULT_HISTORY_CAPACITY,
        suggestion_limit: int = DEFAULT_SUGGESTION_LIMIT,
        weekly_low_minutes: int = WEEKLY_LOW_MINUTES,
        weekly_high_minutes: int = WEEKLY_HIGH_MINUTES,
    ) -> None:
        self._store = store
        self.learner_id = learner_id
        self._grid = grid
        self._history = HistoryManager(history_capacity)
        self._suggestion_limit = suggestion_limit
        self._weekly_low = weekly_low_minutes
        self._weekly_high = weekly_high_minutes
        self._pending: Optional[str] = None

    @property
    def history(self) -> HistoryManager:
        return self._history

    @property
    def pending(self) -> bool:
        return self._pending is not None

    @property
    def grid(self) -> GridConfig:
        return self._grid

    def slots(self) -> List[WeeklySlot]:
        return self._store.slots(self.learner_id)

    def weekly_load(self) -> WeeklyLoad:
        return weekly_load(self.slots(), low_minutes=self._weekly_low, high_minutes=self._weekly_high)

    def history_entries(self) -> List[HistoryEntry]:
        return self._history.entries()

    async def load(self) -> List[WeeklySlot]:
        """Fetch the learner's slots and restart history from them."""
        with self._exclusive("load"):
            slots = await self._store.refresh_slots(self.learner_id)
            self._history.clear()
            self._history.push(slots, "load")
            return slots

    async def add_slot(self, day: int, start: str, end: str, subject_id: str) -> PlacementOutcome:
        await self._ready()
        start_minute, end_minute = self._parse(start, end)
        self._validate(day, start_minute, end_minute)
        slot = WeeklySlot(learner_id=self.learner_id, day=day, start=start, end=end, subject_id=subject_id)
        return await self._place(slot, "add")

    async def move_slot(self, slot_id: str, day: int, start: str) -> PlacementOutcome:
        """Move a slot to ``day``/``start`` keeping its duration."""
        await self._ready()
        current = self._require(slot_id)
        start_minute = self._parse_one(start)
        end_minute = start_minute + current.duration
        self._validate(day, start_minute, end_minute)
        moved = current.model_copy(
            update={"day": day, "start": format_minutes(start_minute), "end": format_minutes(end_minute)}
        )
        return await self._place(moved, "move")

    async def resize_slot(self, slot_id: str, end: str) -> PlacementOutcome:
        await self._ready()
        current = self._require(slot_id)
        end_minute = self._parse_one(end)
        self._validate(current.day, current.start_minute, end_minute)
        resized = current.model_copy(update={"end": format_minutes(end_minute)})
        return await self._place(resized, "resize")

    async def remove_slot(self, slot_id: str) -> None:
        await self._ready()
        self._require(slot_id)
        with self._exclusive("remove"):
            self._ensure_baseline()
            await self._store.remove_slot(self.learner_id, slot_id)
            self._history.push(self.slots(), "remove")

    async def apply_suggestion(self, outcome: PlacementOutcome, choice: int = 0) -> PlacementOutcome:
        """Retry a conflicting placement at one of its suggested cells."""
        await self._ready()
        if outcome.applied:
            raise ValueError("Only conflicting placements carry suggestions.")
        if not 0 <= choice < len(outcome.suggestions):
            raise SlotValidationError(f"No suggestion #{choice} for this placement.")
        cell = outcome.suggestions[choice]
        relocated = outcome.slot.model_copy(update={"day": cell.day, "start": cell.start, "end": cell.end})
        self._validate(relocated.day, relocated.start_minute, relocated.end_minute)
        return await self._place(relocated, outcome.action)

    async def apply_template(
        self,
        templates: "TemplateService",
        template_id: str,
        replace_existing: bool = False,
    ) -> "TemplateApplication":
        await self._ready()
        with self._exclusive("template"):
            self._ensure_baseline()
            result = await templates.apply_template(template_id, self.learner_id, replace_existing)
            if result.added_slots or result.replaced_existing:
                self._history.push(self.slots(), "template")
            return result

    async def undo(self) -> List[WeeklySlot]:
        return await self._travel("undo")

    async def redo(self) -> List[WeeklySlot]:
        return await self._travel("redo")

    async def _travel(self, direction: Literal["undo", "redo"]) -> List[WeeklySlot]:
        await self._ready()
        with self._exclusive(direction):
            able = self._history.can_undo if direction == "undo" else self._history.can_redo
            if not able:
                return self.slots()
            previous_cursor = self._history.cursor
            snapshot = self._history.undo() if direction == "undo" else self._history.redo()
            try:
                return await self._store.sync_slots(self.learner_id, snapshot)
            except PersistenceError as exc:
                # Nothing else can touch the history while locked, so one step back restores it.
                if direction == "undo":
                    self._history.redo()
                else:
                    self._history.undo()
                logger.warning(
                    "Committing %s for learner=%s failed; history cursor restored to %s",
                    direction,
                    self.learner_id,
                    previous_cursor,
                )
                emit_event(
                    "history_commit_failed",
                    learner_id=self.learner_id,
                    direction=direction,
                    cursor=previous_cursor,
                    error=str(exc),
                )
                raise

    async def _place(self, slot: WeeklySlot, action: PlacementAction) -> PlacementOutcome:
        existing = self.slots()
        exclude_id = None if action == "add" else slot.id
        conflicts = find_overlapping(slot.day, slot.start_minute, slot.duration, existing, exclude_id=exclude_id)
        if conflicts:
            suggestions = find_nearest_empty_cells(
                slot.day,
                slot.start_minute,
                slot.duration,
                existing,
                self._suggestion_limit,
                grid=self._grid,
                exclude_id=exclude_id,
            )
            logger.info(
                "Conflict placing slot on day %s %s-%s for learner=%s (%s suggestions)",
                slot.day,
                slot.start,
                slot.end,
                self.learner_id,
                len(suggestions),
            )
            emit_event(
                "slot_conflict_detected",
                learner_id=self.learner_id,
                action=action,
                day=slot.day,
                start=slot.start,
                end=slot.end,
                conflicts=[conflict.id for conflict in conflicts],
                suggestions=len(suggestions),
            )
            return PlacementOutcome(
                status="conflict",
                action=action,
                slot=slot,
                conflicts=conflicts,
                suggestions=suggestions,
            )

        with self._exclusive(action):
            self._ensure_baseline()
            if action == "add":
                await self._store.add_slot(slot)
            else:
                await self._store.update_slot(
                    self.learner_id,
                    slot.id,
                    {"day": slot.day, "start": slot.start, "end": slot.end},
                )
            self._history.push(self.slots(), action)
        return PlacementOutcome(status="applied", action=action, slot=slot)

    async def _ready(self) -> None:
        await self._store.ensure_loaded(self.learner_id)

    def _ensure_baseline(self) -> None:
        # First mutation without an explicit load: record the starting point so it can be undone.
        if len(self._history) == 0:
            self._history.push(self.slots(), "load")

    @contextmanager
    def _exclusive(self, operation: str) -> Iterator[None]:
        if self._pending is not None:
            raise HistoryLockedError(
                f"Cannot {operation} for learner {self.learner_id} while '{self._pending}' is still committing."
            )
        self._pending = operation
        try:
            yield
        finally:
            self._pending = None

    def _require(self, slot_id: str) -> WeeklySlot:
        for slot in self.slots():
            if slot.id == slot_id:
                return slot
        raise UnknownRecordError("slot", slot_id)

    def _validate(self, day: int, start_minute: int, end_minute: int) -> None:
        if end_minute <= start_minute:
            raise SlotValidationError("Slot must end after it starts.")
        problem = placement_problem(day, start_minute, end_minute - start_minute, self._grid)
        if problem is not None:
            raise SlotValidationError(problem)

    def _parse(self, start: str, end: str) -> tuple[int, int]:
        return self._parse_one(start), self._parse_one(end)

    @staticmethod
    def _parse_one(clock: str) -> int:
        try:
            return to_minutes(clock)
        except ValueError as exc:
            raise SlotValidationError(str(exc)) from exc


__all__ = [
    "PlacementOutcome",
    "ScheduleEditor",
    "WEEKLY_HIGH_MINUTES",
    "WEEKLY_LOW_MINUTES",
    "WeeklyLoad",
    "weekly_load",
]
