"""Per-learner topic progress and the fixed spaced-repetition review curve."""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import TYPE_CHECKING, Callable, Dict, Iterable, List, Literal, Optional, Sequence, Tuple

from .errors import UnknownRecordError
from .models import Topic, TopicProgress
from .telemetry import emit_event

if TYPE_CHECKING:
    from .cache import StudyStore

logger = logging.getLogger(__name__)

# Days until the next review, indexed by review_count before it is incremented.
REVIEW_INTERVALS_DAYS = (1, 3, 7, 14, 30)
LATE_REVIEW_INTERVAL_DAYS = 60
DEFAULT_REVIEW_HORIZON_DAYS = 7

DeadlineUrgency = Literal["overdue", "urgent", "soon", "normal"]

Clock = Callable[[], date]


def review_interval_days(review_count: int) -> int:
    if 0 <= review_count < len(REVIEW_INTERVALS_DAYS):
        return REVIEW_INTERVALS_DAYS[review_count]
    return LATE_REVIEW_INTERVAL_DAYS


def fresh_progress(learner_id: str, topic: Topic) -> TopicProgress:
    return TopicProgress(
        learner_id=learner_id,
        topic_id=topic.id,
        completed=0,
        remaining=topic.avg_minutes,
        completed_flag=False,
    )


def seed_missing_progress(
    learner_id: str,
    topics: Iterable[Topic],
    existing: Iterable[TopicProgress],
) -> List[TopicProgress]:
    """Return a new row for every topic the learner has no progress row for yet."""
    known = {row.topic_id for row in existing if row.learner_id == learner_id}
    return [fresh_progress(learner_id, topic) for topic in topics if topic.id not in known]


def apply_minutes(row: TopicProgress, topic: Topic, minutes: int, today: date) -> TopicProgress:
    """Book ``minutes`` of study against ``row``.

    ``completed`` is capped at the topic's effort so ``completed + remaining``
    always equals it. Whenever the booking leaves nothing remaining (the first
    completion, or a later review pass over a completed topic) the review count
    advances and the next review is scheduled from today.
    """
    if minutes <= 0:
        raise ValueError("Studied minutes must be positive.")
    completed = min(topic.avg_minutes, row.completed + minutes)
    remaining = topic.avg_minutes - completed
    update: Dict[str, object] = {
        "completed": completed,
        "remaining": remaining,
        "completed_flag": row.completed_flag or remaining == 0,
        "last_studied": today,
    }
    if remaining == 0:
        update["review_count"] = row.review_count + 1
        update["next_review_date"] = today + timedelta(days=review_interval_days(row.review_count))
    return row.model_copy(update=update)


def reconcile_row(row: TopicProgress, topic: Topic, today: date) -> TopicProgress:
    """Re-derive ``remaining`` from the topic's current effort.

    A topic whose effort was edited keeps the minutes already studied, capped
    at the new effort. A row that this leaves with nothing remaining goes
    through the completion transition unless it was already completed.
    """
    completed = min(row.completed, topic.avg_minutes)
    remaining = topic.avg_minutes - completed
    if completed == row.completed and remaining == row.remaining:
        return row
    update: Dict[str, object] = {"completed": completed, "remaining": remaining}
    if remaining == 0 and not row.completed_flag:
        update["completed_flag"] = True
        update["review_count"] = row.review_count + 1
        update["next_review_date"] = today + timedelta(days=review_interval_days(row.review_count))
    return row.model_copy(update=update)


def reconcile_progress(
    rows: Iterable[TopicProgress],
    topics: Iterable[Topic],
    today: date,
) -> List[TopicProgress]:
    index = {topic.id: topic for topic in topics}
    return [reconcile_row(row, index[row.topic_id], today) if row.topic_id in index else row for row in rows]


def reset_row(row: TopicProgress, topic: Topic) -> TopicProgress:
    return row.model_copy(
        update={
            "completed": 0,
            "remaining": topic.avg_minutes,
            "completed_flag": False,
            "last_studied": None,
            "review_count": 0,
            "next_review_date": None,
        }
    )


def due_for_review(rows: Iterable[TopicProgress], today: date) -> List[TopicProgress]:
    return [
        row
        for row in rows
        if row.completed_flag and row.next_review_date is not None and row.next_review_date <= today
    ]


def upcoming_reviews(
    rows: Iterable[TopicProgress],
    today: date,
    horizon_days: int = DEFAULT_REVIEW_HORIZON_DAYS,
) -> List[TopicProgress]:
    horizon = today + timedelta(days=horizon_days)
    upcoming = [
        row
        for row in rows
        if row.completed_flag
        and row.next_review_date is not None
        and today < row.next_review_date <= horizon
    ]
    return sorted(upcoming, key=lambda row: row.next_review_date)  # type: ignore[arg-type, return-value]


def deadline_urgency(topic: Topic, today: date) -> Optional[DeadlineUrgency]:
    if topic.deadline is None:
        return None
    days_left = (topic.deadline - today).days
    if days_left < 0:
        return "overdue"
    if days_left <= 3:
        return "urgent"
    if days_left <= 7:
        return "soon"
    return "normal"


class ProgressTracker:
    """Owns completion state and review dates, writing through the study store."""

    def __init__(
        self,
        store: "StudyStore",
        *,
        clock: Clock = date.today,
        review_horizon_days: int = DEFAULT_REVIEW_HORIZON_DAYS,
    ) -> None:
        self._store = store
        self._clock = clock
        self._review_horizon_days = review_horizon_days

    def today(self) -> date:
        return self._clock()

    async def ensure_progress(self, learner_id: str) -> List[TopicProgress]:
        """Seed rows for topics the learner has never been scheduled against.

        Stored rows are re-derived against the current catalog first, so the
        write also repairs rows the backend still holds from before an effort
        edit.
        """
        rows, changed = self._reconciled_rows(learner_id)
        created = seed_missing_progress(learner_id, self._store.topics(), rows)
        if created or changed:
            await self._store.save_progress(learner_id, rows + created)
        if created:
            logger.info("Seeded %s progress rows for learner=%s", len(created), learner_id)
        return created

    async def update_progress(self, learner_id: str, topic_id: str, minutes: int) -> TopicProgress:
        return await self._rewrite(
            learner_id,
            topic_id,
            lambda row, topic: apply_minutes(row, topic, minutes, self.today()),
        )

    async def mark_completed(self, learner_id: str, topic_id: str) -> TopicProgress:
        """Book whatever effort is left so the topic goes through the completion path."""

        def _complete(row: TopicProgress, topic: Topic) -> TopicProgress:
            return apply_minutes(row, topic, max(row.remaining, 1), self.today())

        return await self._rewrite(learner_id, topic_id, _complete)

    async def reset_progress(self, learner_id: str, topic_id: str) -> TopicProgress:
        return await self._rewrite(learner_id, topic_id, reset_row)

    async def apply_many(self, learner_id: str, bookings: Sequence[tuple[str, int]]) -> List[TopicProgress]:
        """Book several ``(topic_id, minutes)`` pairs in a single store write."""
        topics = self._topic_index()
        rows = self._rows_with_seeds(learner_id)
        index = {row.topic_id: position for position, row in enumerate(rows)}
        today = self.today()
        touched: List[TopicProgress] = []
        for topic_id, minutes in bookings:
            topic = topics.get(topic_id)
            if topic is None:
                raise UnknownRecordError("topic", topic_id)
            position = index[topic_id]
            updated = apply_minutes(rows[position], topic, minutes, today)
            self._note_completion(rows[position], updated)
            rows[position] = updated
            touched.append(updated)
        if touched:
            await self._store.save_progress(learner_id, rows)
        return touched

    def get_topics_due_for_review(self, learner_id: str) -> List[TopicProgress]:
        return due_for_review(self._current_rows(learner_id), self.today())

    def get_upcoming_reviews(self, learner_id: str, horizon_days: Optional[int] = None) -> List[TopicProgress]:
        horizon = horizon_days if horizon_days is not None else self._review_horizon_days
        return upcoming_reviews(self._current_rows(learner_id), self.today(), horizon)

    def planning_snapshot(self, learner_id: str) -> List[TopicProgress]:
        """Rows as the planners should see them: re-derived, with unseeded topics as untouched.

        Nothing is written.
        """
        return self._rows_with_seeds(learner_id)

    def _topic_index(self) -> Dict[str, Topic]:
        return {topic.id: topic for topic in self._store.topics()}

    def _current_rows(self, learner_id: str) -> List[TopicProgress]:
        return reconcile_progress(self._store.progress(learner_id), self._store.topics(), self.today())

    def _reconciled_rows(self, learner_id: str) -> Tuple[List[TopicProgress], int]:
        """Re-derived rows plus how many differ from the stored ones; only called before a write."""
        stored = self._store.progress(learner_id)
        rows = reconcile_progress(stored, self._store.topics(), self.today())
        changed = 0
        for before, after in zip(stored, rows):
            if after is not before:
                changed += 1
                self._note_completion(before, after)
        return rows, changed

    def _rows_with_seeds(self, learner_id: str) -> List[TopicProgress]:
        rows = self._current_rows(learner_id)
        return rows + seed_missing_progress(learner_id, self._store.topics(), rows)

    async def _rewrite(
        self,
        learner_id: str,
        topic_id: str,
        change: Callable[[TopicProgress, Topic], TopicProgress],
    ) -> TopicProgress:
        topic = self._topic_index().get(topic_id)
        if topic is None:
            raise UnknownRecordError("topic", topic_id)
        rows = self._rows_with_seeds(learner_id)
        position = next(index for index, row in enumerate(rows) if row.topic_id == topic_id)
        updated = change(rows[position], topic)
        self._note_completion(rows[position], updated)
        rows[position] = updated
        await self._store.save_progress(learner_id, rows)
        return updated

    @staticmethod
    def _note_completion(before: TopicProgress, after: TopicProgress) -> None:
        if after.review_count > before.review_count:
            emit_event(
                "progress_completed",
                learner_id=after.learner_id,
                topic_id=after.topic_id,
                review_count=after.review_count,
                next_review_date=after.next_review_date,
                first_completion=not before.completed_flag,
            )


__all__ = [
    "LATE_REVIEW_INTERVAL_DAYS",
    "ProgressTracker",
    "REVIEW_INTERVALS_DAYS",
    "apply_minutes",
    "deadline_urgency",
    "due_for_review",
    "fresh_progress",
    "reconcile_progress",
    "reconcile_row",
    "reset_row",
    "review_interval_days",
    "seed_missing_progress",
    "upcoming_reviews",
]
