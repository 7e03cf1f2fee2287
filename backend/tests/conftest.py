from __future__ import annotations

import os
from typing import Iterator, List, Set

import pytest

os.environ.setdefault("STUDY_PLANNER_PERSISTENCE_MODE", "memory")

from study_planner.cache import StudyStore  # noqa: E402
from study_planner.models import Subject, Topic, TopicProgress, WeeklySlot  # noqa: E402
from study_planner.repositories import InMemoryStudyBackend  # noqa: E402
from study_planner.repositories.study_backend import SlotPatch  # noqa: E402
from study_planner.telemetry import TelemetryEvent, clear_listeners, register_listener  # noqa: E402


class FlakyBackend(InMemoryStudyBackend):
    """In-memory backend that records calls and rejects the operations named in ``fail_on``."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_on: Set[str] = set()
        self.calls: List[str] = []

    def _check(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.fail_on:
            raise ConnectionError(f"{operation} rejected")

    async def list_subjects(self) -> List[Subject]:
        self._check("list_subjects")
        return await super().list_subjects()

    async def list_topics(self) -> List[Topic]:
        self._check("list_topics")
        return await super().list_topics()

    async def list_slots(self, learner_id: str) -> List[WeeklySlot]:
        self._check("list_slots")
        return await super().list_slots(learner_id)

    async def list_progress(self, learner_id: str) -> List[TopicProgress]:
        self._check("list_progress")
        return await super().list_progress(learner_id)

    async def create_slot(self, slot: WeeklySlot) -> WeeklySlot:
        self._check("create_slot")
        return await super().create_slot(slot)

    async def update_slot(self, slot_id: str, patch: SlotPatch) -> WeeklySlot:
        self._check("update_slot")
        return await super().update_slot(slot_id, patch)

    async def delete_slot(self, slot_id: str) -> None:
        self._check("delete_slot")
        await super().delete_slot(slot_id)

    async def replace_subjects(self, subjects: List[Subject]) -> None:
        self._check("replace_subjects")
        await super().replace_subjects(subjects)

    async def replace_topics(self, topics: List[Topic]) -> None:
        self._check("replace_topics")
        await super().replace_topics(topics)

    async def replace_progress(self, learner_id: str, rows: List[TopicProgress]) -> None:
        self._check("replace_progress")
        await super().replace_progress(learner_id, rows)


@pytest.fixture
def backend() -> FlakyBackend:
    return FlakyBackend()


@pytest.fixture
def store(backend: FlakyBackend) -> StudyStore:
    return StudyStore(backend)


@pytest.fixture
def telemetry_events() -> Iterator[List[TelemetryEvent]]:
    events: List[TelemetryEvent] = []
    register_listener(events.append)
    try:
        yield events
    finally:
        clear_listeners()
