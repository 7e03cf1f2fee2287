"""Exception taxonomy shared by the grid, cache and history layers."""

from __future__ import annotations


class StudyPlannerError(Exception):
    """Base class for engine errors."""


class SlotValidationError(StudyPlannerError, ValueError):
    """A placement was rejected before any write was attempted."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class PersistenceError(StudyPlannerError):
    """The backing store rejected a write; the cache has already been rolled back."""

    def __init__(self, collection: str, message: str) -> None:
        super().__init__(f"{collection}: {message}")
        self.collection = collection


class HistoryLockedError(StudyPlannerError):
    """Raised while a reverted snapshot is still being committed to the store."""


class SubjectInUseError(StudyPlannerError):
    """A subject referenced by topics or slots can only be renamed."""

    def __init__(self, subject_id: str, reason: str) -> None:
        super().__init__(f"Subject {subject_id} is in use: {reason}")
        self.subject_id = subject_id
        self.reason = reason


class UnknownRecordError(StudyPlannerError, LookupError):
    def __init__(self, kind: str, record_id: str) -> None:
        super().__init__(f"Unknown {kind}: {record_id}")
        self.kind = kind
        self.record_id = record_id


__all__ = [
    "HistoryLockedError",
    "PersistenceError",
    "SlotValidationError",
    "StudyPlannerError",
    "SubjectInUseError",
    "UnknownRecordError",
]
