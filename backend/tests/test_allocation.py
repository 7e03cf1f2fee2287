from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import List, Optional

import pytest

from study_planner.allocation import (
    BasicPlanner,
    PlanningService,
    SmartPlanner,
    energy_match_score,
    monday_of,
    urgency_score,
)
from study_planner.cache import StudyStore
from study_planner.models import Topic, TopicProgress, WeeklySlot
from study_planner.progress import ProgressTracker, fresh_progress

from conftest import FlakyBackend

WEEK_START = date(2026, 3, 2)  # a Monday


def _slot(day: int, start: str, end: str, subject_id: str = "math") -> WeeklySlot:
    return WeeklySlot(learner_id="learner-1", day=day, start=start, end=end, subject_id=subject_id)


def _topic(
    topic_id: str, minutes: int, order: Optional[int] = None, subject_id: str = "math", **extra: object
) -> Topic:
    return Topic(id=topic_id, subject_id=subject_id, name=topic_id, avg_minutes=minutes, order=order, **extra)


def _progress(topics: List[Topic]) -> List[TopicProgress]:
    return [fresh_progress("learner-1", topic) for topic in topics]


def test_monday_of_normalises_any_weekday() -> None:
    assert monday_of(date(2026, 3, 2)) == WEEK_START
    assert monday_of(date(2026, 3, 8)) == WEEK_START
    assert monday_of(date(2026, 3, 9)) == date(2026, 3, 9)


def test_basic_planner_consumes_topics_in_order() -> None:
    topics = [_topic("second", 60, order=2), _topic("first", 60, order=1)]
    slots = [_slot(1, "17:00", "18:30")]

    entries = BasicPlanner().plan(WEEK_START, slots, topics, _progress(topics))

    assert [(entry.topic_id, entry.start, entry.end, entry.allocated, entry.remaining_after) for entry in entries] == [
        ("first", "17:00", "18:00", 60, 0),
        ("second", "18:00", "18:30", 30, 30),
    ]
    assert all(entry.scheduled_for == WEEK_START for entry in entries)


def test_basic_planner_walks_slots_chronologically() -> None:
    topics = [_topic("only", 300, order=1)]
    slots = [_slot(3, "10:00", "11:00"), _slot(1, "19:00", "20:00"), _slot(1, "17:00", "18:00")]

    entries = BasicPlanner().plan(WEEK_START, slots, topics, _progress(topics))

    assert [(entry.scheduled_for, entry.start) for entry in entries] == [
        (WEEK_START, "17:00"),
        (WEEK_START, "19:00"),
        (WEEK_START + timedelta(days=2), "10:00"),
    ]
    assert [entry.remaining_after for entry in entries] == [240, 180, 120]


def test_basic_planner_skips_completed_and_other_subjects() -> None:
    done = _topic("done", 60, order=1)
    science = _topic("cells", 60, order=1, subject_id="science")
    open_topic = _topic("open", 60, order=2)
    progress = _progress([done, science, open_topic])
    progress[0] = progress[0].model_copy(update={"completed": 60, "remaining": 0, "completed_flag": True})

    entries = BasicPlanner().plan(WEEK_START, [_slot(1, "17:00", "18:00")], [done, science, open_topic], progress)

    assert [entry.topic_id for entry in entries] == ["open"]


def test_topics_without_progress_rows_are_not_planned() -> None:
    topics = [_topic("seeded", 30, order=1), _topic("unseeded", 30, order=2)]
    entries = BasicPlanner().plan(WEEK_START, [_slot(1, "17:00", "18:00")], topics, _progress(topics[:1]))
    assert [entry.topic_id for entry in entries] == ["seeded"]


def test_planners_do_not_mutate_inputs_and_are_deterministic() -> None:
    topics = [_topic("a", 90, order=1), _topic("b", 45, order=2, energy_level="high")]
    progress = _progress(topics)
    slots = [_slot(1, "09:00", "10:30"), _slot(2, "17:00", "18:00")]
    snapshot = [row.model_copy() for row in progress]

    for planner in (BasicPlanner(), SmartPlanner()):
        first = planner.plan(WEEK_START, slots, topics, progress, today=WEEK_START)
        second = planner.plan(WEEK_START, slots, topics, progress, today=WEEK_START)
        assert [entry.model_dump_json() for entry in first] == [entry.model_dump_json() for entry in second]
    assert progress == snapshot


def test_iteration_guard_stops_a_slot_early(caplog: pytest.LogCaptureFixture) -> None:
    topics = [_topic("a", 30, order=1), _topic("b", 30, order=2)]
    with caplog.at_level(logging.WARNING, logger="study_planner.allocation"):
        entries = BasicPlanner(iteration_guard=1).plan(
            WEEK_START, [_slot(1, "17:00", "18:00")], topics, _progress(topics)
        )
    assert [entry.topic_id for entry in entries] == ["a"]
    assert "iteration guard" in caplog.text


def test_energy_match_table() -> None:
    morning = _slot(1, "09:00", "10:00")
    afternoon = _slot(1, "15:00", "16:00")
    evening = _slot(1, "19:00", "20:00")
    assert energy_match_score(_topic("h", 30, energy_level="high"), morning) == 10
    assert energy_match_score(_topic("h", 30, energy_level="high"), evening) == 0
    assert energy_match_score(_topic("l", 30, energy_level="low"), morning) == 3
    assert energy_match_score(_topic("m", 30), afternoon) == 10
    assert energy_match_score(_topic("m", 30), morning) == 7


def test_urgency_score_components() -> None:
    topic = _topic("t", 180, priority=4, difficulty_score=2, deadline=WEEK_START + timedelta(days=10))
    row = fresh_progress("learner-1", topic)
    # deadline in 10 days (+30), priority 4 (+40), difficulty 2 (+10), long topic (+20), untouched (+15)
    assert urgency_score(topic, row, WEEK_START) == 115
    started = row.model_copy(update={"completed": 90, "remaining": 90})
    assert urgency_score(topic, started, WEEK_START) == 80
    assert urgency_score(topic, None, WEEK_START + timedelta(days=30)) == 50 + 40 + 10


def test_smart_planner_matches_energy_to_slot() -> None:
    heavy = _topic("heavy", 60, order=1, energy_level="high")
    light = _topic("light", 60, order=2, energy_level="low")
    topics = [heavy, light]

    morning = SmartPlanner().plan(WEEK_START, [_slot(1, "09:00", "10:00")], topics, _progress(topics))
    evening = SmartPlanner().plan(WEEK_START, [_slot(1, "20:00", "21:00")], topics, _progress(topics))

    assert [entry.topic_id for entry in morning] == ["heavy"]
    assert [entry.topic_id for entry in evening] == ["light"]


def test_smart_planner_breaks_energy_ties_by_urgency() -> None:
    relaxed = _topic("relaxed", 60, order=1)
    pressing = _topic("pressing", 60, order=2, deadline=WEEK_START + timedelta(days=3))
    topics = [relaxed, pressing]

    entries = SmartPlanner().plan(
        WEEK_START, [_slot(1, "17:00", "18:00")], topics, _progress(topics), today=WEEK_START
    )

    assert [entry.topic_id for entry in entries] == ["pressing"]


def test_smart_planner_waits_for_every_prerequisite() -> None:
    done_prereq = _topic("p1", 30, order=1)
    open_prereq = _topic("p2", 60, order=1, subject_id="science")
    dependent = _topic("dep", 120, order=2, prerequisites=["p1", "p2"])
    topics = [done_prereq, open_prereq, dependent]
    progress = _progress(topics)
    progress[0] = progress[0].model_copy(update={"completed": 30, "remaining": 0, "completed_flag": True})
    slots = [_slot(day, "17:00", "19:00") for day in range(1, 8)]

    entries = SmartPlanner().plan(WEEK_START, slots, topics, progress)

    assert entries == []


def test_smart_planner_unlocks_dependents_once_prerequisite_finishes() -> None:
    base = _topic("base", 60, order=1)
    follow_up = _topic("follow-up", 60, order=2, prerequisites=["base"], priority=10)
    topics = [base, follow_up]
    slots = [_slot(1, "17:00", "18:00"), _slot(2, "17:00", "18:00")]

    entries = SmartPlanner().plan(WEEK_START, slots, topics, _progress(topics))

    assert [(entry.topic_id, entry.remaining_after) for entry in entries] == [("base", 0), ("follow-up", 0)]


def test_smart_planner_ignores_self_referencing_prerequisite(caplog: pytest.LogCaptureFixture) -> None:
    looped = _topic("looped", 60, order=1, prerequisites=["looped"])
    with caplog.at_level(logging.WARNING, logger="study_planner.allocation"):
        entries = SmartPlanner().plan(WEEK_START, [_slot(1, "17:00", "18:00")], [looped], _progress([looped]))
    assert entries == []
    assert "unusable prerequisite" in caplog.text


@pytest.mark.asyncio
async def test_planning_service_plans_from_cache_and_commits(
    store: StudyStore,
    backend: FlakyBackend,
    telemetry_events,
) -> None:
    await store.save_topics([_topic("a", 60, order=1), _topic("b", 60, order=2)])
    await store.add_slot(_slot(1, "17:00", "18:30"))
    tracker = ProgressTracker(store, clock=lambda: WEEK_START)
    service = PlanningService(store, tracker)

    entries = service.plan_week("learner-1", WEEK_START)

    assert [(entry.topic_id, entry.allocated) for entry in entries] == [("a", 60), ("b", 30)]
    assert await backend.list_progress("learner-1") == []
    event = next(event for event in telemetry_events if event.name == "plan_generated")
    assert event.payload["planner"] == "basic"
    assert event.payload["allocated_minutes"] == 90

    rows = await service.commit_plan("learner-1", entries)

    assert [row.topic_id for row in rows] == ["a", "b"]
    persisted = {row.topic_id: row for row in await backend.list_progress("learner-1")}
    assert persisted["a"].completed_flag is True
    assert persisted["b"].remaining == 30
    assert service.plan_week_smart("learner-1", WEEK_START)[0].topic_id == "b"


@pytest.mark.asyncio
async def test_planning_follows_an_edited_topic_effort(store: StudyStore) -> None:
    await store.save_topics([_topic("a", 120, order=1)])
    await store.add_slot(_slot(1, "17:00", "19:00"))
    tracker = ProgressTracker(store, clock=lambda: WEEK_START)
    service = PlanningService(store, tracker)
    await tracker.update_progress("learner-1", "a", 30)

    await store.update_topic("a", {"avg_minutes": 60})

    entries = service.plan_week("learner-1", WEEK_START)
    assert [(entry.topic_id, entry.allocated, entry.remaining_after) for entry in entries] == [("a", 30, 0)]
