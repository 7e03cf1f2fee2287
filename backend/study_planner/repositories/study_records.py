"""SQLAlchemy repository translating between ORM rows and domain records."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from ..db.models import SubjectModel, TopicModel, TopicProgressModel, WeeklySlotModel
from ..errors import UnknownRecordError
from ..models import Subject, Topic, TopicProgress, WeeklySlot, format_minutes
from .study_backend import SLOT_PATCH_FIELDS


class StudyRecordRepository:
    """Stateless helpers; every method works inside the caller's session."""

    # Catalog ---------------------------------------------------------------

    def list_subjects(self, session: Session) -> List[Subject]:
        stmt = select(SubjectModel).order_by(SubjectModel.position, SubjectModel.id)
        return [self._subject_to_domain(model) for model in session.execute(stmt).scalars()]

    def replace_subjects(self, session: Session, subjects: Iterable[Subject]) -> None:
        session.execute(delete(SubjectModel))
        for position, subject in enumerate(subjects):
            session.add(
                SubjectModel(
                    id=subject.id,
                    name=subject.name,
                    category=subject.category,
                    code=subject.code,
                    description=subject.description,
                    position=position,
                )
            )
        session.flush()

    def list_topics(self, session: Session) -> List[Topic]:
        stmt = select(TopicModel).order_by(TopicModel.position, TopicModel.id)
        return [self._topic_to_domain(model) for model in session.execute(stmt).scalars()]

    def replace_topics(self, session: Session, topics: Iterable[Topic]) -> None:
        session.execute(delete(TopicModel))
        for position, topic in enumerate(topics):
            session.add(
                TopicModel(
                    id=topic.id,
                    subject_id=topic.subject_id,
                    name=topic.name,
                    avg_minutes=topic.avg_minutes,
                    sort_order=topic.order,
                    difficulty_score=topic.difficulty_score,
                    priority=topic.priority,
                    deadline=topic.deadline,
                    prerequisites=list(topic.prerequisites),
                    energy_level=topic.energy_level,
                    position=position,
                )
            )
        session.flush()

    # Slots -----------------------------------------------------------------

    def list_slots(self, session: Session, learner_id: str) -> List[WeeklySlot]:
        stmt = (
            select(WeeklySlotModel)
            .where(WeeklySlotModel.learner_id == learner_id)
            .order_by(WeeklySlotModel.day, WeeklySlotModel.start_minute, WeeklySlotModel.id)
        )
        return [self._slot_to_domain(model) for model in session.execute(stmt).scalars()]

    def create_slot(self, session: Session, slot: WeeklySlot) -> WeeklySlot:
        if session.get(WeeklySlotModel, slot.id) is not None:
            raise ValueError(f"Slot {slot.id} already exists.")
        model = WeeklySlotModel(
            id=slot.id,
            learner_id=slot.learner_id,
            day=slot.day,
            start_minute=slot.start_minute,
            end_minute=slot.end_minute,
            subject_id=slot.subject_id,
        )
        session.add(model)
        session.flush()
        return self._slot_to_domain(model)

    def update_slot(self, session: Session, slot_id: str, patch: Dict[str, Any]) -> WeeklySlot:
        model = self._require_slot(session, slot_id)
        current = self._slot_to_domain(model)
        allowed = {key: value for key, value in patch.items() if key in SLOT_PATCH_FIELDS}
        updated = WeeklySlot.model_validate({**current.model_dump(), **allowed})
        model.day = updated.day
        model.start_minute = updated.start_minute
        model.end_minute = updated.end_minute
        session.flush()
        return updated

    def delete_slot(self, session: Session, slot_id: str) -> None:
        session.delete(self._require_slot(session, slot_id))
        session.flush()

    # Progress --------------------------------------------------------------

    def list_progress(self, session: Session, learner_id: str) -> List[TopicProgress]:
        stmt = (
            select(TopicProgressModel)
            .where(TopicProgressModel.learner_id == learner_id)
            .order_by(TopicProgressModel.topic_id)
        )
        return [self._progress_to_domain(model) for model in session.execute(stmt).scalars()]

    def replace_progress(self, session: Session, learner_id: str, rows: Iterable[TopicProgress]) -> None:
        session.execute(delete(TopicProgressModel).where(TopicProgressModel.learner_id == learner_id))
        for row in rows:
            if row.learner_id != learner_id:
                raise ValueError(f"Progress row {row.id} belongs to learner {row.learner_id}, not {learner_id}.")
            session.add(
                TopicProgressModel(
                    id=row.id,
                    learner_id=row.learner_id,
                    topic_id=row.topic_id,
                    completed=row.completed,
                    remaining=row.remaining,
                    completed_flag=row.completed_flag,
                    last_studied=row.last_studied,
                    review_count=row.review_count,
                    next_review_date=row.next_review_date,
                )
            )
        session.flush()

    # Mapping ---------------------------------------------------------------

    @staticmethod
    def _require_slot(session: Session, slot_id: str) -> WeeklySlotModel:
        model = session.get(WeeklySlotModel, slot_id)
        if model is None:
            raise UnknownRecordError("slot", slot_id)
        return model

    @staticmethod
    def _subject_to_domain(model: SubjectModel) -> Subject:
        return Subject(
            id=model.id,
            name=model.name,
            category=model.category,
            code=model.code,
            description=model.description,
        )

    @staticmethod
    def _topic_to_domain(model: TopicModel) -> Topic:
        return Topic(
            id=model.id,
            subject_id=model.subject_id,
            name=model.name,
            avg_minutes=model.avg_minutes,
            order=model.sort_order,
            difficulty_score=model.difficulty_score,
            priority=model.priority,
            deadline=model.deadline,
            prerequisites=list(model.prerequisites or []),
            energy_level=model.energy_level,  # type: ignore[arg-type]
        )

    @staticmethod
    def _slot_to_domain(model: WeeklySlotModel) -> WeeklySlot:
        return WeeklySlot(
            id=model.id,
            learner_id=model.learner_id,
            day=model.day,
            start=format_minutes(model.start_minute),
            end=format_minutes(model.end_minute),
            subject_id=model.subject_id,
        )

    @staticmethod
    def _progress_to_domain(model: TopicProgressModel) -> TopicProgress:
        return TopicProgress(
            id=model.id,
            learner_id=model.learner_id,
            topic_id=model.topic_id,
            completed=model.completed,
            remaining=model.remaining,
            completed_flag=model.completed_flag,
            last_studied=model.last_studied,
            review_count=model.review_count,
            next_review_date=model.next_review_date,
        )


study_record_repository = StudyRecordRepository()

__all__ = ["StudyRecordRepository", "study_record_repository"]
