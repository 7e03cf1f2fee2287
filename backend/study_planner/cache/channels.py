"""Typed publish/subscribe channels, one per cached collection."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import RLock
from typing import Callable, Generic, List, Literal, Optional, Tuple, TypeVar

from ..models import Subject, Topic, TopicProgress, WeeklySlot

logger = logging.getLogger(__name__)

ChangeName = Literal["subjects-changed", "topics-changed", "slots-changed", "progress-changed"]

RecordT = TypeVar("RecordT")


@dataclass(frozen=True)
class CollectionChanged(Generic[RecordT]):
    name: ChangeName
    learner_id: Optional[str]
    records: Tuple[RecordT, ...]


Subscriber = Callable[[CollectionChanged[RecordT]], None]


class ChangeChannel(Generic[RecordT]):
    def __init__(self, name: ChangeName) -> None:
        self.name = name
        self._subscribers: List[Subscriber[RecordT]] = []
        self._lock = RLock()

    def subscribe(self, subscriber: Subscriber[RecordT]) -> Callable[[], None]:
        """Register ``subscriber``; the returned callable unsubscribes it."""
        with self._lock:
            self._subscribers.append(subscriber)

        def _unsubscribe() -> None:
            with self._lock:
                if subscriber in self._subscribers:
                    self._subscribers.remove(subscriber)

        return _unsubscribe

    def publish(self, records: List[RecordT], *, learner_id: Optional[str] = None) -> CollectionChanged[RecordT]:
        event = CollectionChanged(name=self.name, learner_id=learner_id, records=tuple(records))
        with self._lock:
            subscribers = list(self._subscribers)
        for subscriber in subscribers:
            try:
                subscriber(event)
            except Exception:  # noqa: BLE001
                logger.exception("Subscriber to %s failed", self.name)
        return event

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)


class StoreChannels:
    def __init__(self) -> None:
        self.subjects: ChangeChannel[Subject] = ChangeChannel("subjects-changed")
        self.topics: ChangeChannel[Topic] = ChangeChannel("topics-changed")
        self.slots: ChangeChannel[WeeklySlot] = ChangeChannel("slots-changed")
        self.progress: ChangeChannel[TopicProgress] = ChangeChannel("progress-changed")


__all__ = ["ChangeChannel", "ChangeName", "CollectionChanged", "StoreChannels"]
