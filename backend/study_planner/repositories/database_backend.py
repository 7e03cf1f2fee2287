"""Study backend persisting through SQLAlchemy, one transaction per call."""

from __future__ import annotations

import asyncio
import logging
from contextlib import AbstractContextManager
from typing import Callable, List, Optional, TypeVar

from sqlalchemy.orm import Session

from ..db.session import session_scope
from ..models import Subject, Topic, TopicProgress, WeeklySlot
from .study_backend import SlotPatch
from .study_records import StudyRecordRepository, study_record_repository

logger = logging.getLogger(__name__)

ResultT = TypeVar("ResultT")

ScopeFactory = Callable[[], AbstractContextManager[Session]]


class DatabaseStudyBackend:
    """Runs each repository call in a worker thread inside its own ``session_scope``.

    A call either commits in full or rolls back and re-raises, which gives the
    cache layer the all-or-nothing writes it rolls back against.
    """

    def __init__(
        self,
        *,
        scope: Optional[ScopeFactory] = None,
        repository: StudyRecordRepository = study_record_repository,
    ) -> None:
        self._scope: ScopeFactory = scope or session_scope
        self._repository = repository

    async def list_subjects(self) -> List[Subject]:
        return await self._run(self._repository.list_subjects)

    async def list_topics(self) -> List[Topic]:
        return await self._run(self._repository.list_topics)

    async def list_slots(self, learner_id: str) -> List[WeeklySlot]:
        return await self._run(lambda session: self._repository.list_slots(session, learner_id))

    async def list_progress(self, learner_id: str) -> List[TopicProgress]:
        return await self._run(lambda session: self._repository.list_progress(session, learner_id))

    async def create_slot(self, slot: WeeklySlot) -> WeeklySlot:
        return await self._run(lambda session: self._repository.create_slot(session, slot))

    async def update_slot(self, slot_id: str, patch: SlotPatch) -> WeeklySlot:
        return await self._run(lambda session: self._repository.update_slot(session, slot_id, patch))

    async def delete_slot(self, slot_id: str) -> None:
        await self._run(lambda session: self._repository.delete_slot(session, slot_id))

    async def replace_subjects(self, subjects: List[Subject]) -> None:
        await self._run(lambda session: self._repository.replace_subjects(session, subjects))

    async def replace_topics(self, topics: List[Topic]) -> None:
        await self._run(lambda session: self._repository.replace_topics(session, topics))

    async def replace_progress(self, learner_id: str, rows: List[TopicProgress]) -> None:
        await self._run(lambda session: self._repository.replace_progress(session, learner_id, rows))

    async def _run(self, work: Callable[[Session], ResultT]) -> ResultT:
        return await asyncio.to_thread(self._in_transaction, work)

    def _in_transaction(self, work: Callable[[Session], ResultT]) -> ResultT:
        with self._scope() as session:
            return work(session)


__all__ = ["DatabaseStudyBackend"]
