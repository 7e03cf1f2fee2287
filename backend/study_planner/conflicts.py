"""Overlap detection and nearest-free-cell search over the weekly slot grid."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

from .config import Settings
from .models import MINUTES_PER_DAY, WEEK_DAYS, WeeklySlot, format_minutes, to_minutes

logger = logging.getLogger(__name__)

DEFAULT_SUGGESTION_LIMIT = 3


@dataclass(frozen=True)
class GridConfig:
    """Operating hours of the weekly grid, in minutes past midnight."""

    open_minute: int = 7 * 60
    close_minute: int = MINUTES_PER_DAY
    step: int = 30

    def __post_init__(self) -> None:
        if self.step <= 0:
            raise ValueError("Grid step must be positive.")
        if self.close_minute <= self.open_minute:
            raise ValueError("Grid must close after it opens.")
        if self.open_minute % self.step or self.close_minute % self.step:
            raise ValueError("Grid opening and closing times must sit on the step grid.")

    @classmethod
    def from_settings(cls, settings: Settings) -> "GridConfig":
        return cls(
            open_minute=to_minutes(settings.grid_open),
            close_minute=to_minutes(settings.grid_close),
            step=settings.grid_step_minutes,
        )

    @property
    def rows(self) -> int:
        return (self.close_minute - self.open_minute) // self.step


DEFAULT_GRID = GridConfig()


@dataclass(frozen=True)
class SuggestedCell:
    day: int
    start_minute: int
    duration: int
    distance: int

    @property
    def start(self) -> str:
        return format_minutes(self.start_minute)

    @property
    def end(self) -> str:
        return format_minutes(self.start_minute + self.duration)


def overlaps(a: WeeklySlot, b: WeeklySlot) -> bool:
    """Half-open interval intersection on the same day."""
    if a.day != b.day:
        return False
    return max(a.start_minute, b.start_minute) < min(a.end_minute, b.end_minute)


def _interval_overlaps(day: int, start: int, end: int, slot: WeeklySlot) -> bool:
    return slot.day == day and max(start, slot.start_minute) < min(end, slot.end_minute)


def placement_problem(
    day: int,
    start_minute: int,
    duration: int,
    grid: GridConfig = DEFAULT_GRID,
) -> Optional[str]:
    """Return why a placement is invalid on the grid itself, ignoring other slots."""
    if day not in WEEK_DAYS:
        return f"Day must be between 1 and 7, got {day}."
    if duration < grid.step:
        return f"Duration must be at least {grid.step} minutes."
    if duration % grid.step != 0:
        return f"Duration must be a multiple of {grid.step} minutes."
    if start_minute < grid.open_minute:
        return f"Start {format_minutes(start_minute)} is before opening time {format_minutes(grid.open_minute)}."
    if start_minute % grid.step != 0:
        return f"Start {format_minutes(start_minute)} is not aligned to the {grid.step}-minute grid."
    if start_minute + duration > grid.close_minute:
        return f"Slot would end after closing time {format_minutes(grid.close_minute)}."
    return None


def find_overlapping(
    day: int,
    start_minute: int,
    duration: int,
    existing_slots: Iterable[WeeklySlot],
    *,
    exclude_id: Optional[str] = None,
) -> List[WeeklySlot]:
    end_minute = start_minute + duration
    return [
        slot
        for slot in existing_slots
        if slot.id != exclude_id and _interval_overlaps(day, start_minute, end_minute, slot)
    ]


def can_place(
    day: int,
    start_minute: int,
    duration: int,
    existing_slots: Iterable[WeeklySlot],
    *,
    grid: GridConfig = DEFAULT_GRID,
    exclude_id: Optional[str] = None,
) -> bool:
    if placement_problem(day, start_minute, duration, grid) is not None:
        return False
    return not find_overlapping(day, start_minute, duration, existing_slots, exclude_id=exclude_id)


def cell_distance(day_a: int, minute_a: int, day_b: int, minute_b: int) -> int:
    """A day change always outweighs any time shift within a day."""
    return abs(day_a - day_b) * MINUTES_PER_DAY + abs(minute_a - minute_b)


def find_nearest_empty_cells(
    target_day: int,
    target_minute: int,
    duration: int,
    existing_slots: Iterable[WeeklySlot],
    limit: int = DEFAULT_SUGGESTION_LIMIT,
    *,
    grid: GridConfig = DEFAULT_GRID,
    exclude_id: Optional[str] = None,
) -> List[SuggestedCell]:
    """Scan the whole week for cells that fit ``duration`` and rank them by distance.

    Ties keep scan order (earlier day, then earlier minute).
    """
    slots = [slot for slot in existing_slots if slot.id != exclude_id]
    candidates: List[SuggestedCell] = []
    for day in WEEK_DAYS:
        for minute in range(grid.open_minute, grid.close_minute - duration + 1, grid.step):
            if can_place(day, minute, duration, slots, grid=grid):
                candidates.append(
                    SuggestedCell(
                        day=day,
                        start_minute=minute,
                        duration=duration,
                        distance=cell_distance(day, minute, target_day, target_minute),
                    )
                )
    candidates.sort(key=lambda cell: cell.distance)
    if not candidates:
        logger.info("No free cell fits %s minutes anywhere in the week.", duration)
    return candidates[: max(limit, 0)]


__all__ = [
    "DEFAULT_GRID",
    "DEFAULT_SUGGESTION_LIMIT",
    "GridConfig",
    "SuggestedCell",
    "can_place",
    "cell_distance",
    "find_nearest_empty_cells",
    "find_overlapping",
    "overlaps",
    "placement_problem",
]
