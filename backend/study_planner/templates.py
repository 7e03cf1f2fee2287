"""Built-in weekly programmes and their materialisation into subjects and slots."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from .conflicts import DEFAULT_GRID, GridConfig, find_overlapping, placement_problem
from .errors import UnknownRecordError
from .models import Subject, WeeklySlot, to_minutes
from .telemetry import emit_event

if TYPE_CHECKING:
    from .cache import StudyStore

logger = logging.getLogger(__name__)

ALL_CATEGORIES = {"all", "tümü"}


class TemplateSubject(BaseModel):
    key: str
    name: str
    category: str


class TemplateSlot(BaseModel):
    day: int = Field(..., ge=1, le=7)
    start: str
    end: str
    subject_key: str


class ScheduleTemplate(BaseModel):
    id: str
    name: str
    description: str
    category: str
    estimated_weekly_hours: float
    difficulty: str
    tags: List[str] = Field(default_factory=list)
    subjects: List[TemplateSubject]
    slots: List[TemplateSlot]


def _weekday_evenings(
    pairs: List[Tuple[str, str]], first: Tuple[str, str], second: Tuple[str, str]
) -> List[TemplateSlot]:
    slots: List[TemplateSlot] = []
    for day, (early, late) in enumerate(pairs, start=1):
        slots.append(TemplateSlot(day=day, start=first[0], end=first[1], subject_key=early))
        slots.append(TemplateSlot(day=day, start=second[0], end=second[1], subject_key=late))
    return slots


_LGS_SUBJECTS = [
    TemplateSubject(key="mat-lgs", name="Matematik", category="LGS"),
    TemplateSubject(key="fen-lgs", name="Fen Bilimleri", category="LGS"),
    TemplateSubject(key="tur-lgs", name="Türkçe", category="LGS"),
    TemplateSubject(key="sos-lgs", name="Sosyal Bilgiler", category="LGS"),
    TemplateSubject(key="ing-lgs", name="İngilizce", category="LGS"),
    TemplateSubject(key="din-lgs", name="Din Kültürü", category="LGS"),
]

_YKS_SUBJECTS = [
    TemplateSubject(key="tur-yks", name="Türkçe", category="YKS"),
    TemplateSubject(key="mat-yks", name="Matematik", category="YKS"),
    TemplateSubject(key="fiz-yks", name="Fizik", category="YKS"),
    TemplateSubject(key="kim-yks", name="Kimya", category="YKS"),
    TemplateSubject(key="biy-yks", name="Biyoloji", category="YKS"),
    TemplateSubject(key="tar-yks", name="Tarih", category="YKS"),
    TemplateSubject(key="cog-yks", name="Coğrafya", category="YKS"),
]

SCHEDULE_TEMPLATES: List[ScheduleTemplate] = [
    ScheduleTemplate(
        id="lgs-balanced",
        name="LGS Dengeli Program",
        description="Hafta içi günde 2,5 saat, hafta sonu 4 saat çalışma",
        category="LGS",
        estimated_weekly_hours=20.5,
        difficulty="Orta",
        tags=["lgs", "dengeli", "8.sınıf"],
        subjects=_LGS_SUBJECTS,
        slots=_weekday_evenings(
            [
                ("mat-lgs", "tur-lgs"),
                ("fen-lgs", "ing-lgs"),
                ("mat-lgs", "sos-lgs"),
                ("fen-lgs", "din-lgs"),
                ("mat-lgs", "tur-lgs"),
            ],
            ("17:00", "18:30"),
            ("19:00", "20:00"),
        )
        + [
            TemplateSlot(day=6, start="10:00", end="12:00", subject_key="mat-lgs"),
            TemplateSlot(day=6, start="14:00", end="16:00", subject_key="fen-lgs"),
            TemplateSlot(day=7, start="10:00", end="12:00", subject_key="sos-lgs"),
            TemplateSlot(day=7, start="14:00", end="16:00", subject_key="tur-lgs"),
        ],
    ),
    ScheduleTemplate(
        id="yks-intensive",
        name="YKS Yoğun Program",
        description="Hafta içi günde 3 saat, hafta sonu 5 saat çalışma",
        category="YKS",
        estimated_weekly_hours=25.0,
        difficulty="Zor",
        tags=["yks", "tyt", "ayt", "12.sınıf"],
        subjects=_YKS_SUBJECTS,
        slots=_weekday_evenings(
            [
                ("mat-yks", "tur-yks"),
                ("fiz-yks", "tar-yks"),
                ("mat-yks", "kim-yks"),
                ("biy-yks", "cog-yks"),
                ("mat-yks", "tur-yks"),
            ],
            ("18:00", "20:00"),
            ("20:30", "21:30"),
        )
        + [
            TemplateSlot(day=6, start="09:00", end="12:00", subject_key="mat-yks"),
            TemplateSlot(day=6, start="13:00", end="15:00", subject_key="fiz-yks"),
            TemplateSlot(day=7, start="09:00", end="12:00", subject_key="tur-yks"),
            TemplateSlot(day=7, start="13:00", end="15:00", subject_key="kim-yks"),
        ],
    ),
]


def list_templates(category: Optional[str] = None) -> List[ScheduleTemplate]:
    if not category or category.strip().casefold() in ALL_CATEGORIES:
        return list(SCHEDULE_TEMPLATES)
    wanted = category.strip().casefold()
    return [template for template in SCHEDULE_TEMPLATES if template.category.casefold() == wanted]


def get_template(template_id: str) -> ScheduleTemplate:
    for template in SCHEDULE_TEMPLATES:
        if template.id == template_id:
            return template
    raise UnknownRecordError("template", template_id)


def subject_code(name: str) -> str:
    return re.sub(r"\s+", "-", name.strip().lower())


@dataclass
class SkippedTemplateSlot:
    slot: TemplateSlot
    reason: str


@dataclass
class TemplateApplication:
    template_id: str
    learner_id: str
    created_subjects: List[Subject] = field(default_factory=list)
    added_slots: List[WeeklySlot] = field(default_factory=list)
    skipped_slots: List[SkippedTemplateSlot] = field(default_factory=list)
    replaced_existing: bool = False


class TemplateService:
    """Materialises a template for one learner through the study store."""

    def __init__(self, store: "StudyStore", *, grid: GridConfig = DEFAULT_GRID) -> None:
        self._store = store
        self._grid = grid

    async def apply_template(
        self,
        template_id: str,
        learner_id: str,
        replace_existing: bool = False,
    ) -> TemplateApplication:
        """Create missing subjects, then add the template's slots.

        Subjects are matched by case-insensitive name within the template's
        category. A slot that would overlap a kept slot (or fall off the grid)
        is skipped and reported instead of written. ``replace_existing`` drops
        all of the learner's slots first; it is destructive.
        """
        template = get_template(template_id)
        await self._store.ensure_loaded(learner_id)
        result = TemplateApplication(template_id=template.id, learner_id=learner_id, replaced_existing=replace_existing)

        subject_ids = await self._resolve_subjects(template, result)

        kept = [] if replace_existing else self._store.slots(learner_id)
        target = list(kept)
        for template_slot in template.slots:
            start = to_minutes(template_slot.start)
            duration = to_minutes(template_slot.end) - start
            problem = placement_problem(template_slot.day, start, duration, self._grid)
            if problem is None and find_overlapping(template_slot.day, start, duration, target):
                problem = "Overlaps an existing slot."
            if problem is not None:
                result.skipped_slots.append(SkippedTemplateSlot(slot=template_slot, reason=problem))
                continue
            slot = WeeklySlot(
                learner_id=learner_id,
                day=template_slot.day,
                start=template_slot.start,
                end=template_slot.end,
                subject_id=subject_ids[template_slot.subject_key],
            )
            target.append(slot)
            result.added_slots.append(slot)

        if result.added_slots or replace_existing:
            await self._store.sync_slots(learner_id, target)

        if result.skipped_slots:
            logger.info(
                "Template %s skipped %s of %s slots for learner=%s",
                template.id,
                len(result.skipped_slots),
                len(template.slots),
                learner_id,
            )
        emit_event(
            "template_applied",
            template_id=template.id,
            learner_id=learner_id,
            replace_existing=replace_existing,
            created_subjects=len(result.created_subjects),
            added_slots=len(result.added_slots),
            skipped_slots=len(result.skipped_slots),
        )
        return result

    async def _resolve_subjects(self, template: ScheduleTemplate, result: TemplateApplication) -> Dict[str, str]:
        existing = self._store.subjects()
        mapping: Dict[str, str] = {}
        for template_subject in template.subjects:
            match = next(
                (
                    subject
                    for subject in existing
                    if subject.name.casefold() == template_subject.name.casefold()
                    and subject.category == template_subject.category
                ),
                None,
            )
            if match is None:
                match = Subject(
                    name=template_subject.name,
                    category=template_subject.category,
                    code=subject_code(template_subject.name),
                    description=f"Added from template {template.name}",
                )
                result.created_subjects.append(match)
            mapping[template_subject.key] = match.id
        if result.created_subjects:
            await self._store.save_subjects([*existing, *result.created_subjects])
        return mapping


__all__ = [
    "SCHEDULE_TEMPLATES",
    "ScheduleTemplate",
    "SkippedTemplateSlot",
    "TemplateApplication",
    "TemplateService",
    "TemplateSlot",
    "TemplateSubject",
    "get_template",
    "list_templates",
    "subject_code",
]
