"""Persistence collaborators behind the study store."""

from .database_backend import DatabaseStudyBackend
from .memory_backend import InMemoryStudyBackend
from .study_backend import SLOT_PATCH_FIELDS, SlotPatch, StudyBackend
from .study_records import StudyRecordRepository, study_record_repository

__all__ = [
    "DatabaseStudyBackend",
    "InMemoryStudyBackend",
    "SLOT_PATCH_FIELDS",
    "SlotPatch",
    "StudyBackend",
    "StudyRecordRepository",
    "study_record_repository",
]
