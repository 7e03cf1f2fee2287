from __future__ import annotations

from typing import Optional

import pytest

from study_planner.config import Settings
from study_planner.conflicts import (
    DEFAULT_GRID,
    GridConfig,
    can_place,
    cell_distance,
    find_nearest_empty_cells,
    find_overlapping,
    overlaps,
    placement_problem,
)
from study_planner.models import WeeklySlot, to_minutes


def _slot(day: int, start: str, end: str, slot_id: Optional[str] = None) -> WeeklySlot:
    slot = WeeklySlot(learner_id="learner-1", day=day, start=start, end=end, subject_id="math")
    if slot_id is not None:
        slot = slot.model_copy(update={"id": slot_id})
    return slot


def test_overlap_is_half_open() -> None:
    first = _slot(1, "17:00", "18:00")
    assert not overlaps(first, _slot(1, "18:00", "19:00"))
    assert overlaps(first, _slot(1, "17:30", "18:30"))
    assert not overlaps(first, _slot(2, "17:00", "18:00"))


def test_can_place_rejects_overlap_and_grid_violations() -> None:
    existing = [_slot(1, "17:00", "18:30")]
    assert not can_place(1, to_minutes("17:00"), 30, existing)
    assert can_place(1, to_minutes("18:30"), 30, existing)
    assert not can_place(1, to_minutes("06:30"), 30, existing)
    assert not can_place(1, to_minutes("23:30"), 60, existing)
    assert not can_place(8, to_minutes("10:00"), 30, existing)


def test_can_place_ignores_the_slot_being_moved() -> None:
    existing = [_slot(1, "17:00", "18:30", slot_id="moving")]
    assert can_place(1, to_minutes("17:30"), 90, existing, exclude_id="moving")


@pytest.mark.parametrize(
    ("day", "start", "duration", "fragment"),
    [
        (0, "10:00", 30, "Day must be"),
        (1, "10:00", 0, "at least"),
        (1, "10:00", 45, "multiple"),
        (1, "06:30", 30, "before opening"),
        (1, "10:15", 30, "not aligned"),
        (1, "23:30", 60, "after closing"),
    ],
)
def test_placement_problem_reports_reason(day: int, start: str, duration: int, fragment: str) -> None:
    problem = placement_problem(day, to_minutes(start), duration)
    assert problem is not None
    assert fragment in problem


def test_slot_may_end_exactly_at_closing_time() -> None:
    assert placement_problem(7, to_minutes("23:30"), 30) is None


def test_distance_prefers_same_day() -> None:
    assert cell_distance(1, 420, 1, 1410) < cell_distance(1, 600, 2, 600)


def test_nearest_cells_for_monday_conflict_scenario() -> None:
    existing = [_slot(1, "17:00", "18:30")]
    target = to_minutes("17:00")
    assert find_overlapping(1, target, 30, existing)

    suggestions = find_nearest_empty_cells(1, target, 30, existing)

    assert len(suggestions) == 3
    for cell in suggestions:
        assert cell.duration == 30
        assert cell.start_minute % DEFAULT_GRID.step == 0
        assert DEFAULT_GRID.open_minute <= cell.start_minute
        assert cell.start_minute + cell.duration <= DEFAULT_GRID.close_minute
        assert can_place(cell.day, cell.start_minute, cell.duration, existing)
    distances = [cell.distance for cell in suggestions]
    assert distances == sorted(distances)
    # 15:30 and 18:30 are both 90 minutes away; scan order keeps the earlier one.
    assert [(cell.day, cell.start) for cell in suggestions] == [(1, "16:30"), (1, "16:00"), (1, "15:30")]


def test_nearest_cells_respects_limit_and_full_week() -> None:
    full_week = [_slot(day, "07:00", "24:00") for day in range(1, 8)]
    assert find_nearest_empty_cells(3, to_minutes("10:00"), 30, full_week) == []

    open_week = find_nearest_empty_cells(3, to_minutes("10:00"), 60, [], limit=5)
    assert len(open_week) == 5
    assert open_week[0].distance == 0


def test_custom_grid_from_settings() -> None:
    settings = Settings(
        STUDY_PLANNER_GRID_OPEN="08:00",
        STUDY_PLANNER_GRID_CLOSE="22:00",
        STUDY_PLANNER_GRID_STEP_MINUTES=60,
    )
    grid = GridConfig.from_settings(settings)
    assert grid.rows == 14
    assert placement_problem(1, to_minutes("07:00"), 60, grid) is not None
    assert placement_problem(1, to_minutes("08:30"), 60, grid) is not None
    assert placement_problem(1, to_minutes("21:00"), 60, grid) is None


def test_grid_rejects_misaligned_hours() -> None:
    with pytest.raises(ValueError):
        GridConfig(open_minute=425, close_minute=1440, step=30)
    with pytest.raises(ValueError):
        GridConfig(open_minute=600, close_minute=600, step=30)
