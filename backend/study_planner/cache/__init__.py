"""Cached, observable access to subjects, topics, slots and progress."""

from .channels import ChangeChannel, CollectionChanged, StoreChannels
from .collection_cache import CacheCell, CacheState, OptimisticWrite
from .store import StudyStore

__all__ = [
    "CacheCell",
    "CacheState",
    "ChangeChannel",
    "CollectionChanged",
    "OptimisticWrite",
    "StoreChannels",
    "StudyStore",
]
