"""Injectable study store: cached collections, optimistic writes, change channels."""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, TypeVar

from pydantic import BaseModel

from ..errors import PersistenceError, SubjectInUseError, UnknownRecordError
from ..models import Subject, Topic, TopicProgress, WeeklySlot
from ..progress import reconcile_progress
from ..repositories.study_backend import SLOT_PATCH_FIELDS, StudyBackend
from .channels import ChangeChannel, StoreChannels
from .collection_cache import CacheCell, CacheState, OptimisticWrite, describe_cell

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=BaseModel)

_FIXED_FIELDS = {
    "subject": frozenset({"id"}),
    "topic": frozenset({"id", "subject_id"}),
}


def _patched(record: RecordT, patch: Mapping[str, Any], fixed: frozenset) -> RecordT:
    changes = {key: value for key, value in patch.items() if key not in fixed}
    return type(record).model_validate({**record.model_dump(), **changes})


def _find(records: Sequence[RecordT], record_id: str, kind: str) -> RecordT:
    for record in records:
        if getattr(record, "id") == record_id:
            return record
    raise UnknownRecordError(kind, record_id)


def _swap(records: List[RecordT], replacement: RecordT) -> List[RecordT]:
    replacement_id = getattr(replacement, "id")
    return [replacement if getattr(record, "id") == replacement_id else record for record in records]


class StudyStore:
    """Process-wide mirror of the backend's collections.

    Reads are synchronous and served from cache cells; an unpopulated cell
    answers ``[]`` and loads in the background. Writes go through
    ``OptimisticWrite`` and publish on the collection's channel only after the
    backend confirmed them.
    """

    def __init__(
        self,
        backend: StudyBackend,
        *,
        channels: Optional[StoreChannels] = None,
        clock: Callable[[], date] = date.today,
    ) -> None:
        self._backend = backend
        self._clock = clock
        self.channels = channels or StoreChannels()
        self._subjects: CacheCell[Subject] = CacheCell("subjects", backend.list_subjects)
        self._topics: CacheCell[Topic] = CacheCell("topics", backend.list_topics)
        self._slots: Dict[str, CacheCell[WeeklySlot]] = {}
        self._progress: Dict[str, CacheCell[TopicProgress]] = {}

    # Cells -----------------------------------------------------------------

    def _slot_cell(self, learner_id: str) -> CacheCell[WeeklySlot]:
        cell = self._slots.get(learner_id)
        if cell is None:
            cell = CacheCell("slots", lambda: self._backend.list_slots(learner_id), scope=learner_id)
            self._slots[learner_id] = cell
        return cell

    def _progress_cell(self, learner_id: str) -> CacheCell[TopicProgress]:
        cell = self._progress.get(learner_id)
        if cell is None:
            cell = CacheCell("progress", lambda: self._backend.list_progress(learner_id), scope=learner_id)
            self._progress[learner_id] = cell
        return cell

    def cells(self) -> List[CacheCell[Any]]:
        return [self._subjects, self._topics, *self._slots.values(), *self._progress.values()]

    def status(self) -> List[dict]:
        return [describe_cell(cell) for cell in self.cells()]

    # Reads -----------------------------------------------------------------

    def subjects(self) -> List[Subject]:
        return self._subjects.read()

    def topics(self) -> List[Topic]:
        return self._topics.read()

    def slots(self, learner_id: str) -> List[WeeklySlot]:
        return self._slot_cell(learner_id).read()

    def progress(self, learner_id: str) -> List[TopicProgress]:
        return self._progress_cell(learner_id).read()

    async def refresh_subjects(self) -> List[Subject]:
        return await self._subjects.refresh()

    async def refresh_slots(self, learner_id: str) -> List[WeeklySlot]:
        return await self._slot_cell(learner_id).refresh()

    async def ensure_loaded(self, learner_id: Optional[str] = None) -> None:
        """Await the catalog (and one learner's collections) instead of serving stale data."""
        await self._subjects.ensure_loaded()
        await self._topics.ensure_loaded()
        if learner_id is not None:
            await self._slot_cell(learner_id).ensure_loaded()
            await self._progress_cell(learner_id).ensure_loaded()

    def invalidate_slots(self, learner_id: str) -> None:
        self._slot_cell(learner_id).invalidate()

    async def wait_idle(self) -> None:
        for cell in self.cells():
            await cell.wait_idle()

    # Subjects --------------------------------------------------------------

    async def save_subjects(self, subjects: Sequence[Subject]) -> List[Subject]:
        records = list(subjects)
        await self._write(
            self._subjects,
            lambda _: records,
            lambda: self._backend.replace_subjects(records),
            "replace subjects",
        )
        return self._publish(self.channels.subjects, self._subjects)

    async def add_subject(self, subject: Subject) -> Subject:
        await self.save_subjects([*self._subjects.peek(), subject])
        return subject

    async def update_subject(self, subject_id: str, patch: Mapping[str, Any]) -> Subject:
        """Patch a subject. Once topics or slots point at it, only ``name`` may change."""
        current = self._subjects.peek()
        subject = _find(current, subject_id, "subject")
        updated = _patched(subject, patch, _FIXED_FIELDS["subject"])
        locked = [
            field
            for field in Subject.model_fields
            if field != "name" and getattr(updated, field) != getattr(subject, field)
        ]
        if locked:
            usage = self._subject_usage(subject_id)
            if usage:
                raise SubjectInUseError(
                    subject_id,
                    f"{', '.join(locked)} cannot change while {' and '.join(usage)} reference it",
                )
        await self.save_subjects(_swap(current, updated))
        return updated

    async def remove_subject(self, subject_id: str, *, with_topics: bool = False) -> None:
        """Remove a subject no slot refers to, together with its topics when ``with_topics`` is set."""
        current = self._subjects.peek()
        _find(current, subject_id, "subject")
        usage = self._subject_usage(subject_id, count_topics=not with_topics)
        if usage:
            raise SubjectInUseError(subject_id, f"{' and '.join(usage)} still reference it")
        if with_topics:
            await self.remove_topics_by_subject(subject_id)
        await self.save_subjects([subject for subject in current if subject.id != subject_id])

    def _subject_usage(self, subject_id: str, *, count_topics: bool = True) -> List[str]:
        usage: List[str] = []
        topics = sum(1 for topic in self._topics.peek() if topic.subject_id == subject_id)
        slots = sum(1 for cell in self._slots.values() for slot in cell.peek() if slot.subject_id == subject_id)
        if count_topics and topics:
            usage.append(f"{topics} topic(s)")
        if slots:
            usage.append(f"{slots} slot(s)")
        return usage

    # Topics ----------------------------------------------------------------

    async def save_topics(self, topics: Sequence[Topic]) -> List[Topic]:
        records = list(topics)
        await self._write(
            self._topics,
            lambda _: records,
            lambda: self._backend.replace_topics(records),
            "replace topics",
        )
        return self._publish(self.channels.topics, self._topics)

    async def add_topic(self, topic: Topic) -> Topic:
        await self.save_topics([*self._topics.peek(), topic])
        return topic

    async def update_topic(self, topic_id: str, patch: Mapping[str, Any]) -> Topic:
        current = self._topics.peek()
        topic = _find(current, topic_id, "topic")
        updated = _patched(topic, patch, _FIXED_FIELDS["topic"])
        await self.save_topics(_swap(current, updated))
        if updated.avg_minutes != topic.avg_minutes:
            await self._rederive_progress(updated)
        return updated

    async def remove_topic(self, topic_id: str) -> None:
        current = self._topics.peek()
        _find(current, topic_id, "topic")
        await self.save_topics([topic for topic in current if topic.id != topic_id])

    async def remove_topics_by_subject(self, subject_id: str) -> int:
        current = self._topics.peek()
        kept = [topic for topic in current if topic.subject_id != subject_id]
        removed = len(current) - len(kept)
        if removed:
            await self.save_topics(kept)
        return removed

    # Slots -----------------------------------------------------------------

    async def add_slot(self, slot: WeeklySlot) -> WeeklySlot:
        cell = self._slot_cell(slot.learner_id)
        await self._write(
            cell,
            lambda records: [*records, slot],
            lambda: self._backend.create_slot(slot),
            f"create slot {slot.id}",
        )
        self._publish(self.channels.slots, cell, learner_id=slot.learner_id)
        return slot

    async def update_slot(self, learner_id: str, slot_id: str, patch: Mapping[str, Any]) -> WeeklySlot:
        cell = self._slot_cell(learner_id)
        changes = {key: value for key, value in patch.items() if key in SLOT_PATCH_FIELDS}
        updated = WeeklySlot.model_validate({**_find(cell.peek(), slot_id, "slot").model_dump(), **changes})
        await self._write(
            cell,
            lambda records: _swap(records, updated),
            lambda: self._backend.update_slot(slot_id, changes),
            f"update slot {slot_id}",
        )
        self._publish(self.channels.slots, cell, learner_id=learner_id)
        return updated

    async def remove_slot(self, learner_id: str, slot_id: str) -> None:
        cell = self._slot_cell(learner_id)
        _find(cell.peek(), slot_id, "slot")
        await self._write(
            cell,
            lambda records: [record for record in records if record.id != slot_id],
            lambda: self._backend.delete_slot(slot_id),
            f"delete slot {slot_id}",
        )
        self._publish(self.channels.slots, cell, learner_id=learner_id)

    async def sync_slots(self, learner_id: str, target: Sequence[WeeklySlot]) -> List[WeeklySlot]:
        """Make the learner's remote slots equal ``target`` with per-slot writes.

        The backend offers no batch slot write, so a failure part-way leaves
        the remote side partially changed. The cell is rolled back and then
        invalidated so the next read reflects what the backend really holds.
        """
        cell = self._slot_cell(learner_id)
        wanted = [slot.model_copy(deep=True) for slot in target]
        current = {slot.id: slot for slot in cell.peek()}
        wanted_ids = {slot.id for slot in wanted}

        async def _push() -> None:
            for slot_id in current:
                if slot_id not in wanted_ids:
                    await self._backend.delete_slot(slot_id)
            for slot in wanted:
                existing = current.get(slot.id)
                if existing is None:
                    await self._backend.create_slot(slot)
                elif existing != slot:
                    await self._backend.update_slot(slot.id, {"day": slot.day, "start": slot.start, "end": slot.end})

        try:
            await self._write(cell, lambda _: wanted, _push, f"sync {len(wanted)} slots")
        except PersistenceError:
            cell.invalidate()
            raise
        return self._publish(self.channels.slots, cell, learner_id=learner_id)

    async def clear_slots(self, learner_id: str) -> None:
        await self.sync_slots(learner_id, [])

    # Progress --------------------------------------------------------------

    async def save_progress(self, learner_id: str, rows: Sequence[TopicProgress]) -> List[TopicProgress]:
        cell = self._progress_cell(learner_id)
        records = list(rows)
        await self._write(
            cell,
            lambda _: records,
            lambda: self._backend.replace_progress(learner_id, records),
            f"replace progress ({len(records)} rows)",
        )
        return self._publish(self.channels.progress, cell, learner_id=learner_id)

    async def _rederive_progress(self, topic: Topic) -> None:
        """Rewrite loaded progress rows of ``topic`` so ``completed + remaining`` matches its new effort.

        Cells that were never loaded are re-derived when the progress tracker
        reads them.
        """
        today = self._clock()
        for learner_id, cell in list(self._progress.items()):
            if cell.state is CacheState.UNPOPULATED:
                continue
            rows = cell.peek()
            rederived = reconcile_progress(rows, [topic], today)
            if rederived != rows:
                await self.save_progress(learner_id, rederived)
                logger.info(
                    "Re-derived progress of topic=%s for learner=%s after its effort changed to %s minutes",
                    topic.id,
                    learner_id,
                    topic.avg_minutes,
                )

    # Internals -------------------------------------------------------------

    @staticmethod
    async def _write(
        cell: CacheCell[RecordT],
        change: Callable[[List[RecordT]], List[RecordT]],
        remote: Callable[[], Any],
        description: str,
    ) -> Any:
        return await OptimisticWrite(cell, change, remote, description=description).execute()

    @staticmethod
    def _publish(
        channel: ChangeChannel[RecordT],
        cell: CacheCell[RecordT],
        *,
        learner_id: Optional[str] = None,
    ) -> List[RecordT]:
        records = cell.peek()
        channel.publish(records, learner_id=learner_id)
        return records


__all__ = ["StudyStore"]
