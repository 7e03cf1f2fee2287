"""Greedy week planners that pour topic effort into a learner's weekly slots.

Both planners walk the slots chronologically and fill each one chunk by chunk
with topics of the slot's subject. They only differ in how the next topic is
chosen: the basic planner consumes topics in catalogue order, the smart planner
scores eligible topics by energy fit and urgency. Planners are pure: they read
a snapshot and never persist progress.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import date, timedelta
from typing import TYPE_CHECKING, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .models import EnergyLevel, PlannedEntry, Topic, TopicProgress, WeeklySlot, format_minutes
from .telemetry import emit_event

if TYPE_CHECKING:
    from .cache import StudyStore
    from .progress import ProgressTracker

logger = logging.getLogger(__name__)

DEFAULT_ITERATION_GUARD = 200
LONG_TOPIC_MINUTES = 120

# (topic energy, slot energy) -> fit score.
ENERGY_MATCH: Dict[Tuple[EnergyLevel, EnergyLevel], int] = {
    ("high", "high"): 10,
    ("high", "medium"): 5,
    ("high", "low"): 0,
    ("medium", "high"): 7,
    ("medium", "medium"): 10,
    ("medium", "low"): 7,
    ("low", "high"): 3,
    ("low", "medium"): 7,
    ("low", "low"): 10,
}


def monday_of(day: date) -> date:
    return day - timedelta(days=day.weekday())


def date_for_slot(week_start: date, slot: WeeklySlot) -> date:
    return week_start + timedelta(days=slot.day - 1)


def catalogue_key(topic: Topic) -> Tuple[int, str, str, str]:
    return (topic.order if topic.order is not None else 0, topic.name.casefold(), topic.name, topic.id)


def urgency_score(topic: Topic, progress: Optional[TopicProgress], today: date) -> int:
    score = 0
    if topic.deadline is not None:
        days_until = (topic.deadline - today).days
        if days_until <= 7:
            score += 50
        elif days_until <= 14:
            score += 30
        elif days_until <= 30:
            score += 10
    score += topic.priority * 10
    score += topic.difficulty_score * 5
    if progress is not None:
        if progress.remaining > LONG_TOPIC_MINUTES:
            score += 20
        if progress.completed == 0:
            score += 15
    return score


def energy_match_score(topic: Topic, slot: WeeklySlot) -> int:
    return ENERGY_MATCH[(topic.energy_level or "medium", slot.energy_type)]


@dataclass
class _TopicState:
    remaining: int
    done: bool


class _SlotFillingPlanner:
    name = "base"

    def __init__(self, *, iteration_guard: int = DEFAULT_ITERATION_GUARD) -> None:
        self._iteration_guard = max(iteration_guard, 1)

    def plan(
        self,
        week_start: date,
        slots: Iterable[WeeklySlot],
        topics: Iterable[Topic],
        progress: Iterable[TopicProgress],
        *,
        today: Optional[date] = None,
    ) -> List[PlannedEntry]:
        """Fill ``slots`` for the week starting at ``week_start``.

        ``today`` anchors deadline maths; it defaults to ``week_start`` so the
        output depends on the arguments alone.
        """
        progress_rows = list(progress)
        topic_list = list(topics)
        reference_day = today or week_start
        state = {
            row.topic_id: _TopicState(remaining=row.remaining, done=row.completed_flag)
            for row in progress_rows
        }
        by_subject = self._topics_by_subject(topic_list, {row.topic_id: row for row in progress_rows}, reference_day)
        ordered_slots = sorted(slots, key=lambda slot: (slot.day, slot.start_minute, slot.id))

        entries: List[PlannedEntry] = []
        for slot in ordered_slots:
            entries.extend(self._fill_slot(week_start, slot, by_subject.get(slot.subject_id, []), state))
        return entries

    def _fill_slot(
        self,
        week_start: date,
        slot: WeeklySlot,
        candidates: Sequence[Topic],
        state: Dict[str, _TopicState],
    ) -> List[PlannedEntry]:
        entries: List[PlannedEntry] = []
        slot_left = slot.duration
        cursor = slot.start_minute
        scheduled_for = date_for_slot(week_start, slot)
        iterations = 0
        while slot_left > 0:
            if iterations >= self._iteration_guard:
                logger.warning(
                    "%s planner hit the iteration guard in slot %s (day=%s %s); stopping early.",
                    self.name,
                    slot.id,
                    slot.day,
                    slot.start,
                )
                break
            iterations += 1
            topic = self._select(slot, candidates, state)
            if topic is None:
                break
            topic_state = state[topic.id]
            allocated = min(slot_left, topic_state.remaining)
            topic_state.remaining -= allocated
            if topic_state.remaining == 0:
                topic_state.done = True
            entries.append(
                PlannedEntry(
                    scheduled_for=scheduled_for,
                    start=format_minutes(cursor),
                    end=format_minutes(cursor + allocated),
                    subject_id=slot.subject_id,
                    topic_id=topic.id,
                    allocated=allocated,
                    remaining_after=topic_state.remaining,
                )
            )
            slot_left -= allocated
            cursor += allocated
        return entries

    @staticmethod
    def _is_open(topic: Topic, state: Mapping[str, _TopicState]) -> bool:
        topic_state = state.get(topic.id)
        return topic_state is not None and not topic_state.done and topic_state.remaining > 0

    def _topics_by_subject(
        self,
        topics: Sequence[Topic],
        progress: Mapping[str, TopicProgress],
        today: date,
    ) -> Dict[str, List[Topic]]:
        grouped: Dict[str, List[Topic]] = {}
        for topic in sorted(topics, key=catalogue_key):
            grouped.setdefault(topic.subject_id, []).append(topic)
        return grouped

    def _select(
        self,
        slot: WeeklySlot,
        candidates: Sequence[Topic],
        state: Mapping[str, _TopicState],
    ) -> Optional[Topic]:
        raise NotImplementedError


class BasicPlanner(_SlotFillingPlanner):
    """FIFO consumption: the first unfinished topic in ``order``-then-name sequence."""

    name = "basic"

    def _select(
        self,
        slot: WeeklySlot,
        candidates: Sequence[Topic],
        state: Mapping[str, _TopicState],
    ) -> Optional[Topic]:
        for topic in candidates:
            if self._is_open(topic, state):
                return topic
        return None


class SmartPlanner(_SlotFillingPlanner):
    """Prerequisite-gated choice ranked by energy fit, then urgency and priority.

    Urgency is scored once from the input snapshot. Prerequisites are checked
    against the running plan, so finishing a prerequisite earlier in the week
    unlocks its dependents for later slots.
    """

    name = "smart"

    def __init__(self, *, iteration_guard: int = DEFAULT_ITERATION_GUARD) -> None:
        super().__init__(iteration_guard=iteration_guard)
        self._scores: Dict[str, int] = {}

    def _topics_by_subject(
        self,
        topics: Sequence[Topic],
        progress: Mapping[str, TopicProgress],
        today: date,
    ) -> Dict[str, List[Topic]]:
        known_ids = {topic.id for topic in topics}
        for topic in topics:
            for prerequisite in topic.prerequisites:
                if prerequisite == topic.id or prerequisite not in known_ids:
                    logger.warning(
                        "Topic %s lists unusable prerequisite %s; it stays locked.",
                        topic.id,
                        prerequisite,
                    )
        self._scores = {topic.id: urgency_score(topic, progress.get(topic.id), today) for topic in topics}
        grouped = super()._topics_by_subject(topics, progress, today)
        for subject_id, subject_topics in grouped.items():
            grouped[subject_id] = sorted(subject_topics, key=lambda topic: -self._scores[topic.id])
        return grouped

    def _prerequisites_met(self, topic: Topic, state: Mapping[str, _TopicState]) -> bool:
        for prerequisite in topic.prerequisites:
            prerequisite_state = state.get(prerequisite)
            if prerequisite_state is None or not prerequisite_state.done:
                return False
        return True

    def _select(
        self,
        slot: WeeklySlot,
        candidates: Sequence[Topic],
        state: Mapping[str, _TopicState],
    ) -> Optional[Topic]:
        eligible = [
            topic
            for topic in candidates
            if self._is_open(topic, state) and self._prerequisites_met(topic, state)
        ]
        if not eligible:
            return None
        eligible.sort(key=lambda topic: (-energy_match_score(topic, slot), -self._scores[topic.id]))
        return eligible[0]


class PlanningService:
    """Planner entry points over the store's current snapshot for one learner."""

    def __init__(
        self,
        store: "StudyStore",
        tracker: "ProgressTracker",
        *,
        iteration_guard: int = DEFAULT_ITERATION_GUARD,
    ) -> None:
        self._store = store
        self._tracker = tracker
        self._basic = BasicPlanner(iteration_guard=iteration_guard)
        self._smart = SmartPlanner(iteration_guard=iteration_guard)

    def plan_week(self, learner_id: str, week_start: date) -> List[PlannedEntry]:
        return self._run(self._basic, learner_id, week_start)

    def plan_week_smart(self, learner_id: str, week_start: date) -> List[PlannedEntry]:
        return self._run(self._smart, learner_id, week_start)

    async def commit_plan(self, learner_id: str, entries: Sequence[PlannedEntry]) -> List[TopicProgress]:
        """Book every planned chunk as studied time, in one progress write."""
        return await self._tracker.apply_many(
            learner_id,
            [(entry.topic_id, entry.allocated) for entry in entries],
        )

    def _run(self, planner: _SlotFillingPlanner, learner_id: str, week_start: date) -> List[PlannedEntry]:
        started = time.perf_counter()
        topics = self._store.topics()
        progress = self._tracker.planning_snapshot(learner_id)
        slots = self._store.slots(learner_id)
        entries = planner.plan(week_start, slots, topics, progress, today=self._tracker.today())
        emit_event(
            "plan_generated",
            learner_id=learner_id,
            planner=planner.name,
            week_start=week_start,
            slot_count=len(slots),
            entry_count=len(entries),
            allocated_minutes=sum(entry.allocated for entry in entries),
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return entries


__all__ = [
    "BasicPlanner",
    "DEFAULT_ITERATION_GUARD",
    "ENERGY_MATCH",
    "PlanningService",
    "SmartPlanner",
    "catalogue_key",
    "date_for_slot",
    "energy_match_score",
    "monday_of",
    "urgency_score",
]
