"""Contract of the remote collaborator the study store reads from and writes to."""

from __future__ import annotations

from typing import Any, Dict, List, Protocol, runtime_checkable

from ..models import Subject, Topic, TopicProgress, WeeklySlot

SlotPatch = Dict[str, Any]

# Fields a slot patch may carry; identity and subject assignment are fixed.
SLOT_PATCH_FIELDS = frozenset({"day", "start", "end"})


@runtime_checkable
class StudyBackend(Protocol):
    """Each write is atomic from the caller's point of view: applied fully or raised."""

    async def list_subjects(self) -> List[Subject]: ...

    async def list_topics(self) -> List[Topic]: ...

    async def list_slots(self, learner_id: str) -> List[WeeklySlot]: ...

    async def list_progress(self, learner_id: str) -> List[TopicProgress]: ...

    async def create_slot(self, slot: WeeklySlot) -> WeeklySlot: ...

    async def update_slot(self, slot_id: str, patch: SlotPatch) -> WeeklySlot: ...

    async def delete_slot(self, slot_id: str) -> None: ...

    async def replace_subjects(self, subjects: List[Subject]) -> None: ...

    async def replace_topics(self, topics: List[Topic]) -> None: ...

    async def replace_progress(self, learner_id: str, rows: List[TopicProgress]) -> None: ...


__all__ = ["SLOT_PATCH_FIELDS", "SlotPatch", "StudyBackend"]
