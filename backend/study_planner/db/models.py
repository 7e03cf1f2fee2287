"""ORM models backing the study planner persistence layer."""

from __future__ import annotations

from datetime import date
from typing import Optional

from sqlalchemy import Boolean, Date, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from .base import Base, TimestampMixin

JSONType = JSON


class SubjectModel(TimestampMixin, Base):
    __tablename__ = "subjects"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    code: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class TopicModel(TimestampMixin, Base):
    __tablename__ = "topics"
    __table_args__ = (Index("ix_topics_subject_id", "subject_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    subject_id: Mapped[str] = mapped_column(String(36), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    avg_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    sort_order: Mapped[Optional[int]] = mapped_column("order", Integer, nullable=True)
    difficulty_score: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    deadline: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    prerequisites: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    energy_level: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class WeeklySlotModel(TimestampMixin, Base):
    __tablename__ = "weekly_slots"
    __table_args__ = (Index("ix_weekly_slots_learner_day", "learner_id", "day"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    learner_id: Mapped[str] = mapped_column(String(128), nullable=False)
    day: Mapped[int] = mapped_column(Integer, nullable=False)
    start_minute: Mapped[int] = mapped_column(Integer, nullable=False)
    end_minute: Mapped[int] = mapped_column(Integer, nullable=False)
    subject_id: Mapped[str] = mapped_column(String(36), nullable=False)


class TopicProgressModel(TimestampMixin, Base):
    __tablename__ = "topic_progress"
    __table_args__ = (
        UniqueConstraint("learner_id", "topic_id", name="uq_topic_progress_learner_topic"),
        Index("ix_topic_progress_learner", "learner_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    learner_id: Mapped[str] = mapped_column(String(128), nullable=False)
    topic_id: Mapped[str] = mapped_column(String(36), nullable=False)
    completed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    remaining: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    completed_flag: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_studied: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    review_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    next_review_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)


__all__ = [
    "SubjectModel",
    "TopicModel",
    "TopicProgressModel",
    "WeeklySlotModel",
]
