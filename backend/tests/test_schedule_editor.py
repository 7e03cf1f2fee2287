from __future__ import annotations

import asyncio
from typing import List

import pytest

from study_planner.cache import StudyStore
from study_planner.errors import HistoryLockedError, PersistenceError, SlotValidationError, UnknownRecordError
from study_planner.models import WeeklySlot
from study_planner.repositories import InMemoryStudyBackend
from study_planner.schedule_editor import ScheduleEditor, weekly_load
from study_planner.templates import TemplateService

from conftest import FlakyBackend

LEARNER = "learner-1"


class GatedBackend(InMemoryStudyBackend):
    """Holds slot creation until the test opens the gate."""

    def __init__(self) -> None:
        super().__init__()
        self.gate = asyncio.Event()

    async def create_slot(self, slot: WeeklySlot) -> WeeklySlot:
        await self.gate.wait()
        return await super().create_slot(slot)


def _spans(slots: List[WeeklySlot]) -> List[tuple]:
    return sorted((slot.day, slot.start, slot.end) for slot in slots)


@pytest.fixture
def editor(store: StudyStore) -> ScheduleEditor:
    return ScheduleEditor(store, LEARNER)


@pytest.mark.asyncio
async def test_conflict_returns_suggestions_without_writing(
    editor: ScheduleEditor,
    backend: FlakyBackend,
    telemetry_events,
) -> None:
    first = await editor.add_slot(1, "17:00", "18:30", "math")
    assert first.applied
    backend.calls.clear()

    outcome = await editor.add_slot(1, "17:00", "17:30", "science")

    assert outcome.status == "conflict"
    assert [slot.id for slot in outcome.conflicts] == [first.slot.id]
    assert [(cell.day, cell.start, cell.end) for cell in outcome.suggestions] == [
        (1, "16:30", "17:00"),
        (1, "16:00", "16:30"),
        (1, "15:30", "16:00"),
    ]
    assert "create_slot" not in backend.calls
    assert any(event.name == "slot_conflict_detected" for event in telemetry_events)

    placed = await editor.apply_suggestion(outcome)

    assert placed.applied
    assert (placed.slot.start, placed.slot.end, placed.slot.subject_id) == ("16:30", "17:00", "science")
    assert _spans(await backend.list_slots(LEARNER)) == [(1, "16:30", "17:00"), (1, "17:00", "18:30")]


@pytest.mark.asyncio
async def test_apply_suggestion_rejects_bad_requests(editor: ScheduleEditor) -> None:
    applied = await editor.add_slot(1, "17:00", "18:00", "math")
    conflict = await editor.add_slot(1, "17:30", "18:00", "math")

    with pytest.raises(ValueError):
        await editor.apply_suggestion(applied)
    with pytest.raises(SlotValidationError):
        await editor.apply_suggestion(conflict, choice=7)


@pytest.mark.parametrize(
    ("day", "start", "end"),
    [
        (1, "06:30", "07:30"),
        (1, "17:00", "17:00"),
        (1, "17:15", "18:00"),
        (0, "17:00", "18:00"),
        (1, "7pm", "8pm"),
    ],
)
@pytest.mark.asyncio
async def test_invalid_placements_raise(editor: ScheduleEditor, day: int, start: str, end: str) -> None:
    with pytest.raises(SlotValidationError):
        await editor.add_slot(day, start, end, "math")
    assert editor.slots() == []


@pytest.mark.asyncio
async def test_move_keeps_duration_and_ignores_itself(editor: ScheduleEditor, backend: FlakyBackend) -> None:
    added = await editor.add_slot(1, "17:00", "18:30", "math")

    shifted = await editor.move_slot(added.slot.id, 1, "17:30")
    moved = await editor.move_slot(added.slot.id, 4, "09:00")

    assert shifted.applied
    assert moved.applied
    assert (moved.slot.day, moved.slot.start, moved.slot.end) == (4, "09:00", "10:30")
    assert _spans(await backend.list_slots(LEARNER)) == [(4, "09:00", "10:30")]


@pytest.mark.asyncio
async def test_move_onto_another_slot_conflicts(editor: ScheduleEditor) -> None:
    await editor.add_slot(1, "17:00", "18:00", "math")
    other = await editor.add_slot(1, "19:00", "20:00", "science")

    outcome = await editor.move_slot(other.slot.id, 1, "17:30")

    assert outcome.status == "conflict"
    assert outcome.action == "move"
    assert all(cell.duration == 60 for cell in outcome.suggestions)


@pytest.mark.asyncio
async def test_resize_and_remove(editor: ScheduleEditor, backend: FlakyBackend) -> None:
    added = await editor.add_slot(2, "17:00", "18:00", "math")

    resized = await editor.resize_slot(added.slot.id, "19:30")
    assert resized.slot.duration == 150
    with pytest.raises(SlotValidationError):
        await editor.resize_slot(added.slot.id, "16:00")

    await editor.remove_slot(added.slot.id)
    assert await backend.list_slots(LEARNER) == []
    with pytest.raises(UnknownRecordError):
        await editor.remove_slot(added.slot.id)


@pytest.mark.asyncio
async def test_undo_redo_round_trip_syncs_backend(editor: ScheduleEditor, backend: FlakyBackend) -> None:
    await editor.add_slot(1, "17:00", "18:00", "math")
    await editor.add_slot(2, "17:00", "18:00", "science")

    assert [entry.action for entry in editor.history_entries()] == ["add", "add", "load"]

    assert _spans(await editor.undo()) == [(1, "17:00", "18:00")]
    assert _spans(await backend.list_slots(LEARNER)) == [(1, "17:00", "18:00")]
    assert await editor.undo() == []
    assert await backend.list_slots(LEARNER) == []
    assert await editor.undo() == []

    await editor.redo()
    after_redo = await editor.redo()

    assert _spans(after_redo) == [(1, "17:00", "18:00"), (2, "17:00", "18:00")]
    assert _spans(await backend.list_slots(LEARNER)) == _spans(after_redo)
    assert not editor.history.can_redo


@pytest.mark.asyncio
async def test_failed_undo_commit_restores_cursor(
    editor: ScheduleEditor,
    backend: FlakyBackend,
    store: StudyStore,
    telemetry_events,
) -> None:
    await editor.add_slot(1, "17:00", "18:00", "math")
    await editor.add_slot(2, "17:00", "18:00", "math")
    cursor = editor.history.cursor
    backend.fail_on.add("delete_slot")

    with pytest.raises(PersistenceError):
        await editor.undo()

    assert editor.history.cursor == cursor
    assert not editor.pending
    failures = [event for event in telemetry_events if event.name == "history_commit_failed"]
    assert failures and failures[0].payload["direction"] == "undo"
    await store.wait_idle()
    assert len(editor.slots()) == 2


@pytest.mark.asyncio
async def test_mutations_are_refused_while_a_write_is_pending() -> None:
    backend = GatedBackend()
    editor = ScheduleEditor(StudyStore(backend), LEARNER)
    pending = asyncio.create_task(editor.add_slot(1, "17:00", "18:00", "math"))
    for _ in range(20):
        if editor.pending:
            break
        await asyncio.sleep(0)
    assert editor.pending

    with pytest.raises(HistoryLockedError):
        await editor.undo()
    with pytest.raises(HistoryLockedError):
        await editor.add_slot(3, "17:00", "18:00", "math")

    backend.gate.set()
    outcome = await pending
    assert outcome.applied
    assert not editor.pending


@pytest.mark.asyncio
async def test_template_application_is_one_undoable_step(editor: ScheduleEditor, store: StudyStore) -> None:
    result = await editor.apply_template(TemplateService(store), "lgs-balanced")

    assert len(result.added_slots) == 14
    assert editor.history_entries()[0].action == "template"
    assert await editor.undo() == []


@pytest.mark.asyncio
async def test_load_restarts_history(editor: ScheduleEditor, backend: FlakyBackend) -> None:
    await editor.add_slot(1, "17:00", "18:00", "math")
    await backend.create_slot(WeeklySlot(learner_id=LEARNER, day=5, start="10:00", end="11:00", subject_id="math"))

    slots = await editor.load()

    assert len(slots) == 2
    assert [entry.action for entry in editor.history_entries()] == ["load"]
    assert not editor.history.can_undo


def test_weekly_load_thresholds() -> None:
    def slots(hours: int) -> List[WeeklySlot]:
        return [
            WeeklySlot(learner_id=LEARNER, day=day, start="10:00", end="11:00", subject_id="math")
            for day in range(1, 8)
        ][:hours]

    assert weekly_load([]).status == "low"
    assert weekly_load(slots(5)).status == "ok"
    assert weekly_load(slots(5)).hours == 5.0
    assert weekly_load(slots(7), high_minutes=6 * 60).status == "high"
    assert weekly_load(slots(4)).status == "low"
