from __future__ import annotations

import pytest

from study_planner.history import HistoryManager, format_action_name
from study_planner.models import WeeklySlot


def _slot(start: str) -> WeeklySlot:
    return WeeklySlot(learner_id="learner-1", day=1, start=start, end="23:00", subject_id="math")


def test_undo_redo_walk_the_stack() -> None:
    history = HistoryManager()
    first, second = _slot("17:00"), _slot("18:00")
    history.push([], "load")
    history.push([first], "add")
    history.push([first, second], "add")

    assert history.undo() == [first]
    assert history.undo() == []
    assert not history.can_undo
    assert history.undo() == []
    assert history.redo() == [first]
    assert history.redo() == [first, second]
    assert not history.can_redo


def test_push_after_undo_drops_redo_branch() -> None:
    history = HistoryManager()
    history.push([], "load")
    history.push([_slot("17:00")], "add")
    history.undo()

    history.push([_slot("19:00")], "add")

    assert not history.can_redo
    assert [entry.action for entry in history.entries()] == ["add", "load"]
    assert history.current()[0].start == "19:00"


def test_capacity_evicts_oldest_entries() -> None:
    history = HistoryManager(capacity=3)
    for hour in range(17, 22):
        history.push([_slot(f"{hour}:00")], "add")

    assert len(history) == 3
    assert history.entries()[-1].snapshot[0].start == "19:00"
    assert history.cursor == 2


def test_snapshots_are_isolated_from_callers() -> None:
    history = HistoryManager()
    slots = [_slot("17:00")]
    history.push(slots, "add")
    slots.append(_slot("18:00"))

    current = history.current()
    current.clear()

    assert len(history.current()) == 1


def test_entries_do_not_move_cursor_and_carry_labels() -> None:
    history = HistoryManager()
    history.push([], "load")
    history.push([_slot("17:00")], "template")

    entries = history.entries()

    assert [entry.label for entry in entries] == ["Applied template", "Loaded schedule"]
    assert history.current_entry() is entries[0]
    assert format_action_name("bulk_edit") == "Bulk edit"


def test_capacity_must_be_positive() -> None:
    with pytest.raises(ValueError):
        HistoryManager(capacity=0)
