"""REST endpoints over the weekly grid, planners, progress, templates and catalog."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import asdict
from datetime import date
from typing import Any, Dict, Iterator, List, Optional

from fastapi import APIRouter, HTTPException, Query, Request, Response, status
from pydantic import BaseModel, Field, ValidationError

from .allocation import monday_of
from .conflicts import SuggestedCell
from .errors import (
    HistoryLockedError,
    PersistenceError,
    SlotValidationError,
    SubjectInUseError,
    UnknownRecordError,
)
from .history import HistoryEntry
from .models import EnergyLevel, PlannedEntry, Subject, Topic, TopicProgress
from .progress import deadline_urgency
from .schedule_editor import PlacementOutcome, ScheduleEditor
from .services import StudyServices
from .templates import ScheduleTemplate, TemplateApplication, list_templates

router = APIRouter(prefix="/api", tags=["study"])
logger = logging.getLogger(__name__)


class SlotCreateRequest(BaseModel):
    day: int = Field(..., ge=1, le=7)
    start: str
    end: str
    subject_id: str = Field(..., min_length=1)


class SlotMoveRequest(BaseModel):
    day: int = Field(..., ge=1, le=7)
    start: str


class SlotResizeRequest(BaseModel):
    end: str


class CommitPlanRequest(BaseModel):
    entries: List[PlannedEntry]


class StudyMinutesRequest(BaseModel):
    minutes: int = Field(..., gt=0, le=24 * 60)


class ApplyTemplateRequest(BaseModel):
    replace_existing: bool = False


class SubjectRequest(BaseModel):
    name: str = Field(..., min_length=1)
    category: Optional[str] = None
    code: Optional[str] = None
    description: Optional[str] = None


class SubjectPatchRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    category: Optional[str] = None
    code: Optional[str] = None
    description: Optional[str] = None


class TopicRequest(BaseModel):
    subject_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    avg_minutes: int = Field(..., gt=0)
    order: Optional[int] = None
    difficulty_score: int = Field(default=5, ge=0, le=10)
    priority: int = Field(default=5, ge=0, le=10)
    deadline: Optional[date] = None
    prerequisites: List[str] = Field(default_factory=list)
    energy_level: Optional[EnergyLevel] = None


class TopicPatchRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    avg_minutes: Optional[int] = Field(default=None, gt=0)
    order: Optional[int] = None
    difficulty_score: Optional[int] = Field(default=None, ge=0, le=10)
    priority: Optional[int] = Field(default=None, ge=0, le=10)
    deadline: Optional[date] = None
    prerequisites: Optional[List[str]] = None
    energy_level: Optional[EnergyLevel] = None


def _services(request: Request) -> StudyServices:
    return request.app.state.services


@contextmanager
def _domain_errors() -> Iterator[None]:
    try:
        yield
    except SlotValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=exc.reason) from exc
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=exc.errors(include_url=False, include_context=False, include_input=False),
        ) from exc
    except UnknownRecordError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except HistoryLockedError as exc:
        raise HTTPException(status_code=status.HTTP_423_LOCKED, detail=str(exc)) from exc
    except SubjectInUseError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except PersistenceError as exc:
        logger.warning("Persistence failure surfaced to client: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"The change could not be saved, please retry. ({exc})",
        ) from exc


def _cell_payload(cell: SuggestedCell) -> Dict[str, Any]:
    return {**asdict(cell), "start": cell.start, "end": cell.end}


def _placement_payload(outcome: PlacementOutcome) -> Dict[str, Any]:
    if outcome.applied:
        return {"status": outcome.status, "action": outcome.action, "slot": outcome.slot.model_dump()}
    raise HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={
            "message": "The slot overlaps an existing one.",
            "action": outcome.action,
            "slot": outcome.slot.model_dump(),
            "conflicts": [conflict.model_dump() for conflict in outcome.conflicts],
            "suggestions": [_cell_payload(cell) for cell in outcome.suggestions],
        },
    )


def _board_payload(editor: ScheduleEditor) -> Dict[str, Any]:
    load = editor.weekly_load()
    return {
        "learner_id": editor.learner_id,
        "slots": [slot.model_dump() for slot in sorted(editor.slots(), key=lambda s: (s.day, s.start_minute))],
        "weekly_load": {"total_minutes": load.total_minutes, "hours": load.hours, "status": load.status},
        "can_undo": editor.history.can_undo,
        "can_redo": editor.history.can_redo,
    }


def _history_payload(entry: HistoryEntry, current: Optional[HistoryEntry]) -> Dict[str, Any]:
    return {
        "action": entry.action,
        "label": entry.label,
        "timestamp": entry.timestamp.isoformat(),
        "slot_count": len(entry.snapshot),
        "current": entry is current,
    }


def _template_payload(template: ScheduleTemplate) -> Dict[str, Any]:
    return template.model_dump()


def _application_payload(result: TemplateApplication) -> Dict[str, Any]:
    return {
        "template_id": result.template_id,
        "learner_id": result.learner_id,
        "replaced_existing": result.replaced_existing,
        "created_subjects": [subject.model_dump() for subject in result.created_subjects],
        "added_slots": [slot.model_dump() for slot in result.added_slots],
        "skipped_slots": [
            {**skipped.slot.model_dump(), "reason": skipped.reason} for skipped in result.skipped_slots
        ],
    }


def _progress_payload(services: StudyServices, rows: List[TopicProgress]) -> List[Dict[str, Any]]:
    topics = {topic.id: topic for topic in services.store.topics()}
    today = services.tracker.today()
    payload = []
    for row in rows:
        topic = topics.get(row.topic_id)
        payload.append(
            {
                **row.model_dump(mode="json"),
                "topic_name": topic.name if topic else None,
                "deadline_urgency": deadline_urgency(topic, today) if topic else None,
            }
        )
    return payload


# Weekly grid -------------------------------------------------------------------


@router.get("/learners/{learner_id}/slots")
async def get_slots(learner_id: str, request: Request) -> Dict[str, Any]:
    services = _services(request)
    with _domain_errors():
        await services.store.ensure_loaded(learner_id)
    return _board_payload(services.editor(learner_id))


@router.post("/learners/{learner_id}/slots/load")
async def reload_slots(learner_id: str, request: Request) -> Dict[str, Any]:
    editor = _services(request).editor(learner_id)
    with _domain_errors():
        await editor.load()
    return _board_payload(editor)


@router.post("/learners/{learner_id}/slots", status_code=status.HTTP_201_CREATED)
async def add_slot(learner_id: str, payload: SlotCreateRequest, request: Request) -> Dict[str, Any]:
    editor = _services(request).editor(learner_id)
    with _domain_errors():
        outcome = await editor.add_slot(payload.day, payload.start, payload.end, payload.subject_id)
    return _placement_payload(outcome)


@router.patch("/learners/{learner_id}/slots/{slot_id}/move")
async def move_slot(learner_id: str, slot_id: str, payload: SlotMoveRequest, request: Request) -> Dict[str, Any]:
    editor = _services(request).editor(learner_id)
    with _domain_errors():
        outcome = await editor.move_slot(slot_id, payload.day, payload.start)
    return _placement_payload(outcome)


@router.patch("/learners/{learner_id}/slots/{slot_id}/resize")
async def resize_slot(learner_id: str, slot_id: str, payload: SlotResizeRequest, request: Request) -> Dict[str, Any]:
    editor = _services(request).editor(learner_id)
    with _domain_errors():
        outcome = await editor.resize_slot(slot_id, payload.end)
    return _placement_payload(outcome)


@router.delete("/learners/{learner_id}/slots/{slot_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_slot(learner_id: str, slot_id: str, request: Request) -> Response:
    editor = _services(request).editor(learner_id)
    with _domain_errors():
        await editor.remove_slot(slot_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/learners/{learner_id}/slots/undo")
async def undo(learner_id: str, request: Request) -> Dict[str, Any]:
    editor = _services(request).editor(learner_id)
    with _domain_errors():
        await editor.undo()
    return _board_payload(editor)


@router.post("/learners/{learner_id}/slots/redo")
async def redo(learner_id: str, request: Request) -> Dict[str, Any]:
    editor = _services(request).editor(learner_id)
    with _domain_errors():
        await editor.redo()
    return _board_payload(editor)


@router.get("/learners/{learner_id}/history")
def get_history(learner_id: str, request: Request) -> List[Dict[str, Any]]:
    editor = _services(request).editor(learner_id)
    current = editor.history.current_entry()
    return [_history_payload(entry, current) for entry in editor.history_entries()]


# Plans -------------------------------------------------------------------------


async def _plan(
    request: Request,
    learner_id: str,
    week_start: Optional[date],
    smart: bool,
) -> Dict[str, Any]:
    services = _services(request)
    start = week_start or monday_of(services.tracker.today())
    with _domain_errors():
        await services.store.ensure_loaded(learner_id)
    planner = services.planning.plan_week_smart if smart else services.planning.plan_week
    entries = planner(learner_id, start)
    return {
        "learner_id": learner_id,
        "week_start": start.isoformat(),
        "planner": "smart" if smart else "basic",
        "entries": [entry.model_dump(mode="json") for entry in entries],
    }


@router.get("/learners/{learner_id}/plans/basic")
async def plan_week(
    learner_id: str,
    request: Request,
    week_start: Optional[date] = Query(default=None),
) -> Dict[str, Any]:
    return await _plan(request, learner_id, week_start, smart=False)


@router.get("/learners/{learner_id}/plans/smart")
async def plan_week_smart(
    learner_id: str,
    request: Request,
    week_start: Optional[date] = Query(default=None),
) -> Dict[str, Any]:
    return await _plan(request, learner_id, week_start, smart=True)


@router.post("/learners/{learner_id}/plans/commit")
async def commit_plan(learner_id: str, payload: CommitPlanRequest, request: Request) -> List[Dict[str, Any]]:
    services = _services(request)
    with _domain_errors():
        await services.store.ensure_loaded(learner_id)
        rows = await services.planning.commit_plan(learner_id, payload.entries)
    return _progress_payload(services, rows)


# Progress ----------------------------------------------------------------------


@router.get("/learners/{learner_id}/progress")
async def get_progress(learner_id: str, request: Request) -> List[Dict[str, Any]]:
    services = _services(request)
    with _domain_errors():
        await services.store.ensure_loaded(learner_id)
        await services.tracker.ensure_progress(learner_id)
    return _progress_payload(services, services.store.progress(learner_id))


@router.post("/learners/{learner_id}/progress/{topic_id}")
async def record_study(
    learner_id: str,
    topic_id: str,
    payload: StudyMinutesRequest,
    request: Request,
) -> Dict[str, Any]:
    services = _services(request)
    with _domain_errors():
        await services.store.ensure_loaded(learner_id)
        row = await services.tracker.update_progress(learner_id, topic_id, payload.minutes)
    return _progress_payload(services, [row])[0]


@router.post("/learners/{learner_id}/progress/{topic_id}/complete")
async def complete_topic(learner_id: str, topic_id: str, request: Request) -> Dict[str, Any]:
    services = _services(request)
    with _domain_errors():
        await services.store.ensure_loaded(learner_id)
        row = await services.tracker.mark_completed(learner_id, topic_id)
    return _progress_payload(services, [row])[0]


@router.post("/learners/{learner_id}/progress/{topic_id}/reset")
async def reset_topic(learner_id: str, topic_id: str, request: Request) -> Dict[str, Any]:
    services = _services(request)
    with _domain_errors():
        await services.store.ensure_loaded(learner_id)
        row = await services.tracker.reset_progress(learner_id, topic_id)
    return _progress_payload(services, [row])[0]


@router.get("/learners/{learner_id}/reviews/due")
async def due_reviews(learner_id: str, request: Request) -> List[Dict[str, Any]]:
    services = _services(request)
    with _domain_errors():
        await services.store.ensure_loaded(learner_id)
    return _progress_payload(services, services.tracker.get_topics_due_for_review(learner_id))


@router.get("/learners/{learner_id}/reviews/upcoming")
async def upcoming_reviews(
    learner_id: str,
    request: Request,
    horizon_days: Optional[int] = Query(default=None, ge=1, le=90),
) -> List[Dict[str, Any]]:
    services = _services(request)
    with _domain_errors():
        await services.store.ensure_loaded(learner_id)
    return _progress_payload(services, services.tracker.get_upcoming_reviews(learner_id, horizon_days))


# Templates ---------------------------------------------------------------------


@router.get("/templates")
def get_templates(category: Optional[str] = Query(default=None)) -> List[Dict[str, Any]]:
    return [_template_payload(template) for template in list_templates(category)]


@router.post("/learners/{learner_id}/templates/{template_id}")
async def apply_template(
    learner_id: str,
    template_id: str,
    payload: ApplyTemplateRequest,
    request: Request,
) -> Dict[str, Any]:
    services = _services(request)
    editor = services.editor(learner_id)
    with _domain_errors():
        result = await editor.apply_template(services.templates, template_id, payload.replace_existing)
    return _application_payload(result)


# Catalog -----------------------------------------------------------------------


@router.get("/catalog/subjects")
async def get_subjects(request: Request) -> List[Subject]:
    services = _services(request)
    with _domain_errors():
        await services.store.ensure_loaded()
    return services.store.subjects()


@router.post("/catalog/subjects", status_code=status.HTTP_201_CREATED)
async def create_subject(payload: SubjectRequest, request: Request) -> Subject:
    services = _services(request)
    with _domain_errors():
        await services.store.ensure_loaded()
        return await services.store.add_subject(Subject(**payload.model_dump()))


@router.patch("/catalog/subjects/{subject_id}")
async def update_subject(subject_id: str, payload: SubjectPatchRequest, request: Request) -> Subject:
    services = _services(request)
    with _domain_errors():
        await services.store.ensure_loaded()
        return await services.store.update_subject(subject_id, payload.model_dump(exclude_unset=True))


@router.delete("/catalog/subjects/{subject_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_subject(
    subject_id: str,
    request: Request,
    include_topics: bool = Query(default=True),
) -> Response:
    services = _services(request)
    with _domain_errors():
        await services.store.ensure_loaded()
        await services.store.remove_subject(subject_id, with_topics=include_topics)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/catalog/topics")
async def get_topics(request: Request, subject_id: Optional[str] = Query(default=None)) -> List[Topic]:
    services = _services(request)
    with _domain_errors():
        await services.store.ensure_loaded()
    topics = services.store.topics()
    if subject_id is not None:
        topics = [topic for topic in topics if topic.subject_id == subject_id]
    return topics


@router.post("/catalog/topics", status_code=status.HTTP_201_CREATED)
async def create_topic(payload: TopicRequest, request: Request) -> Topic:
    services = _services(request)
    with _domain_errors():
        await services.store.ensure_loaded()
        if not any(subject.id == payload.subject_id for subject in services.store.subjects()):
            raise UnknownRecordError("subject", payload.subject_id)
        return await services.store.add_topic(Topic(**payload.model_dump()))


@router.patch("/catalog/topics/{topic_id}")
async def update_topic(topic_id: str, payload: TopicPatchRequest, request: Request) -> Topic:
    services = _services(request)
    with _domain_errors():
        await services.store.ensure_loaded()
        return await services.store.update_topic(topic_id, payload.model_dump(exclude_unset=True))


@router.delete("/catalog/topics/{topic_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_topic(topic_id: str, request: Request) -> Response:
    services = _services(request)
    with _domain_errors():
        await services.store.ensure_loaded()
        await services.store.remove_topic(topic_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


__all__ = ["router"]
