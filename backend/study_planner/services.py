"""Explicit wiring of the store and the services built on top of it."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Dict, Optional

from .allocation import PlanningService
from .cache import StudyStore
from .config import Settings
from .conflicts import GridConfig
from .progress import ProgressTracker
from .repositories import DatabaseStudyBackend, InMemoryStudyBackend, StudyBackend
from .schedule_editor import ScheduleEditor
from .templates import TemplateService

logger = logging.getLogger(__name__)


@dataclass
class StudyServices:
    settings: Settings
    grid: GridConfig
    store: StudyStore
    tracker: ProgressTracker
    planning: PlanningService
    templates: TemplateService
    editors: Dict[str, ScheduleEditor] = field(default_factory=dict)

    def editor(self, learner_id: str) -> ScheduleEditor:
        """One editing session (and history) per learner for the life of the process."""
        editor = self.editors.get(learner_id)
        if editor is None:
            editor = ScheduleEditor(
                self.store,
                learner_id,
                grid=self.grid,
                history_capacity=self.settings.history_capacity,
                suggestion_limit=self.settings.suggestion_limit,
                weekly_low_minutes=self.settings.weekly_low_minutes,
                weekly_high_minutes=self.settings.weekly_high_minutes,
            )
            self.editors[learner_id] = editor
        return editor


def build_backend(settings: Settings) -> StudyBackend:
    if settings.persistence_mode == "memory":
        return InMemoryStudyBackend()
    return DatabaseStudyBackend()


def build_services(
    settings: Settings,
    *,
    backend: Optional[StudyBackend] = None,
    clock: Callable[[], date] = date.today,
) -> StudyServices:
    grid = GridConfig.from_settings(settings)
    store = StudyStore(backend or build_backend(settings), clock=clock)
    tracker = ProgressTracker(store, clock=clock, review_horizon_days=settings.review_horizon_days)
    logger.info(
        "Study services ready (persistence=%s, grid=%s-%s/%smin)",
        settings.persistence_mode,
        settings.grid_open,
        settings.grid_close,
        settings.grid_step_minutes,
    )
    return StudyServices(
        settings=settings,
        grid=grid,
        store=store,
        tracker=tracker,
        planning=PlanningService(store, tracker, iteration_guard=settings.planner_iteration_guard),
        templates=TemplateService(store, grid=grid),
    )


__all__ = ["StudyServices", "build_backend", "build_services"]
