"""Dict-backed study backend used for ``persistence_mode=memory`` and in tests."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List

from ..errors import UnknownRecordError
from ..models import Subject, Topic, TopicProgress, WeeklySlot
from .study_backend import SLOT_PATCH_FIELDS, SlotPatch

logger = logging.getLogger(__name__)


class InMemoryStudyBackend:
    def __init__(self) -> None:
        self._subjects: List[Subject] = []
        self._topics: List[Topic] = []
        self._slots: Dict[str, WeeklySlot] = {}
        self._progress: Dict[str, List[TopicProgress]] = {}
        self._lock = asyncio.Lock()

    async def list_subjects(self) -> List[Subject]:
        return [subject.model_copy(deep=True) for subject in self._subjects]

    async def list_topics(self) -> List[Topic]:
        return [topic.model_copy(deep=True) for topic in self._topics]

    async def list_slots(self, learner_id: str) -> List[WeeklySlot]:
        return [slot.model_copy(deep=True) for slot in self._slots.values() if slot.learner_id == learner_id]

    async def list_progress(self, learner_id: str) -> List[TopicProgress]:
        return [row.model_copy(deep=True) for row in self._progress.get(learner_id, [])]

    async def create_slot(self, slot: WeeklySlot) -> WeeklySlot:
        async with self._lock:
            if slot.id in self._slots:
                raise ValueError(f"Slot {slot.id} already exists.")
            self._slots[slot.id] = slot.model_copy(deep=True)
        return slot.model_copy(deep=True)

    async def update_slot(self, slot_id: str, patch: SlotPatch) -> WeeklySlot:
        async with self._lock:
            current = self._slots.get(slot_id)
            if current is None:
                raise UnknownRecordError("slot", slot_id)
            allowed = {key: value for key, value in patch.items() if key in SLOT_PATCH_FIELDS}
            updated = WeeklySlot.model_validate({**current.model_dump(), **allowed})
            self._slots[slot_id] = updated
        return updated.model_copy(deep=True)

    async def delete_slot(self, slot_id: str) -> None:
        async with self._lock:
            if self._slots.pop(slot_id, None) is None:
                raise UnknownRecordError("slot", slot_id)

    async def replace_subjects(self, subjects: List[Subject]) -> None:
        async with self._lock:
            self._subjects = [subject.model_copy(deep=True) for subject in subjects]

    async def replace_topics(self, topics: List[Topic]) -> None:
        async with self._lock:
            self._topics = [topic.model_copy(deep=True) for topic in topics]

    async def replace_progress(self, learner_id: str, rows: List[TopicProgress]) -> None:
        async with self._lock:
            self._progress[learner_id] = [row.model_copy(deep=True) for row in rows]
        logger.debug("Stored %s progress rows for learner=%s", len(rows), learner_id)


__all__ = ["InMemoryStudyBackend"]
