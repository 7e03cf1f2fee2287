"""Domain records for the weekly study grid, topic catalog and learner progress."""

from __future__ import annotations

import uuid
from datetime import date
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

EnergyLevel = Literal["high", "medium", "low"]

MINUTES_PER_DAY = 24 * 60
WEEK_DAYS = (1, 2, 3, 4, 5, 6, 7)


def to_minutes(clock: str) -> int:
    """Convert an ``HH:MM`` clock string (``24:00`` allowed) to minutes past midnight."""
    hours, sep, minutes = clock.partition(":")
    if not sep or not hours.isdigit() or not minutes.isdigit() or len(minutes) != 2:
        raise ValueError(f"Expected HH:MM clock time, got {clock!r}")
    value = int(hours) * 60 + int(minutes)
    if int(minutes) >= 60 or value > MINUTES_PER_DAY:
        raise ValueError(f"Clock time out of range: {clock!r}")
    return value


def format_minutes(minutes: int) -> str:
    clamped = max(0, min(minutes, MINUTES_PER_DAY))
    return f"{clamped // 60:02d}:{clamped % 60:02d}"


def energy_window(start_minute: int) -> EnergyLevel:
    """Classify a slot by the hour it starts in: mornings are high, afternoons medium."""
    hour = start_minute // 60
    if 8 <= hour <= 11:
        return "high"
    if 14 <= hour <= 17:
        return "medium"
    return "low"


def new_id() -> str:
    return str(uuid.uuid4())


class Subject(BaseModel):
    """Shared catalog entry; ``category`` carries the exam track (LGS, YKS, ...)."""

    id: str = Field(default_factory=new_id)
    name: str = Field(..., min_length=1)
    category: Optional[str] = None
    code: Optional[str] = None
    description: Optional[str] = None


class Topic(BaseModel):
    """Unit of study material belonging to one subject."""

    id: str = Field(default_factory=new_id)
    subject_id: str
    name: str = Field(..., min_length=1)
    avg_minutes: int = Field(..., gt=0)
    order: Optional[int] = None
    difficulty_score: int = Field(default=5, ge=0, le=10)
    priority: int = Field(default=5, ge=0, le=10)
    deadline: Optional[date] = None
    prerequisites: List[str] = Field(default_factory=list)
    energy_level: Optional[EnergyLevel] = None


class WeeklySlot(BaseModel):
    """Recurring day/time interval in a learner's week, assigned to a subject."""

    id: str = Field(default_factory=new_id)
    learner_id: str
    day: int = Field(..., ge=1, le=7)
    start: str
    end: str
    subject_id: str

    @field_validator("start", "end")
    @classmethod
    def _validate_clock(cls, value: str) -> str:
        return format_minutes(to_minutes(value))

    @model_validator(mode="after")
    def _check_interval(self) -> "WeeklySlot":
        if to_minutes(self.end) <= to_minutes(self.start):
            raise ValueError(f"Slot end {self.end} must be after start {self.start}")
        return self

    @property
    def start_minute(self) -> int:
        return to_minutes(self.start)

    @property
    def end_minute(self) -> int:
        return to_minutes(self.end)

    @property
    def duration(self) -> int:
        return self.end_minute - self.start_minute

    @property
    def energy_type(self) -> EnergyLevel:
        return energy_window(self.start_minute)


class TopicProgress(BaseModel):
    """Per-learner effort ledger for one topic, plus its review schedule."""

    id: str = Field(default_factory=new_id)
    learner_id: str
    topic_id: str
    completed: int = Field(default=0, ge=0)
    remaining: int = Field(default=0, ge=0)
    completed_flag: bool = False
    last_studied: Optional[date] = None
    review_count: int = Field(default=0, ge=0)
    next_review_date: Optional[date] = None


class PlannedEntry(BaseModel):
    """One allocated chunk of a slot; planner output, never persisted as-is."""

    scheduled_for: date
    start: str
    end: str
    subject_id: str
    topic_id: str
    allocated: int = Field(..., gt=0)
    remaining_after: int = Field(..., ge=0)


__all__ = [
    "EnergyLevel",
    "MINUTES_PER_DAY",
    "PlannedEntry",
    "Subject",
    "Topic",
    "TopicProgress",
    "WEEK_DAYS",
    "WeeklySlot",
    "energy_window",
    "format_minutes",
    "new_id",
    "to_minutes",
]
