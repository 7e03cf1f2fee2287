"""Stale-while-revalidate cache cells and the optimistic write command."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, List, Optional, TypeVar

from pydantic import BaseModel

from ..errors import PersistenceError
from ..telemetry import emit_event

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=BaseModel)
ResultT = TypeVar("ResultT")

Loader = Callable[[], Awaitable[List[RecordT]]]


class CacheState(str, Enum):
    UNPOPULATED = "unpopulated"
    STALE = "stale"
    FRESH = "fresh"


def _copy_records(records: List[RecordT]) -> List[RecordT]:
    return [record.model_copy(deep=True) for record in records]


def _settle_background_refresh(task: asyncio.Task[Any]) -> None:
    # refresh() has already logged and reported a failure; mark it retrieved.
    if not task.cancelled():
        task.exception()


@dataclass
class _CellSnapshot(Generic[RecordT]):
    records: List[RecordT]
    state: CacheState
    cached_at: Optional[datetime]


class CacheCell(Generic[RecordT]):
    """Mirror of one remote collection (optionally scoped to a learner).

    Reads never block: an unpopulated cell returns ``[]`` and starts a
    background load. Local writes bump a generation counter so a load that
    started before the write cannot overwrite it when it lands.
    """

    def __init__(self, collection: str, loader: Loader[RecordT], *, scope: Optional[str] = None) -> None:
        self.collection = collection
        self.scope = scope
        self._loader = loader
        self._records: List[RecordT] = []
        self._state = CacheState.UNPOPULATED
        self._cached_at: Optional[datetime] = None
        self._generation = 0
        self._inflight: Optional[asyncio.Task[List[RecordT]]] = None

    @property
    def state(self) -> CacheState:
        return self._state

    @property
    def cached_at(self) -> Optional[datetime]:
        return self._cached_at

    @property
    def refreshing(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def read(self) -> List[RecordT]:
        if self._state is CacheState.UNPOPULATED:
            self.schedule_refresh()
        return _copy_records(self._records)

    def peek(self) -> List[RecordT]:
        """Current contents without triggering a load."""
        return _copy_records(self._records)

    def invalidate(self) -> None:
        if self._state is CacheState.FRESH:
            self._state = CacheState.STALE
        self.schedule_refresh()

    def schedule_refresh(self) -> Optional[asyncio.Task[List[RecordT]]]:
        if self.refreshing:
            return self._inflight
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; %s refresh deferred until the next awaited load.", self._label)
            return None
        task = loop.create_task(self.refresh())
        task.add_done_callback(_settle_background_refresh)
        self._inflight = task
        return task

    async def refresh(self) -> List[RecordT]:
        """Load the collection now. Raises ``PersistenceError`` if the load fails."""
        generation = self._generation
        try:
            records = await self._loader()
        except Exception as exc:
            logger.warning("Refreshing %s failed: %s", self._label, exc)
            emit_event(
                "cache_refresh_failed",
                collection=self.collection,
                scope=self.scope,
                state=self._state,
                error=str(exc),
            )
            if self._state is CacheState.UNPOPULATED:
                # Settle on an empty stale cell so reads stop re-triggering loads.
                self._records = []
                self._state = CacheState.STALE
            raise PersistenceError(self.collection, f"refresh failed: {exc}") from exc
        if generation != self._generation:
            logger.debug("Discarding %s refresh overtaken by a local write.", self._label)
            return self.peek()
        self._set(_copy_records(list(records)))
        return self.peek()

    async def ensure_loaded(self) -> List[RecordT]:
        """Return fresh records, joining an in-flight refresh; a failed load raises ``PersistenceError``."""
        if self._state is CacheState.FRESH:
            return self.peek()
        if self.refreshing:
            assert self._inflight is not None
            return await asyncio.shield(self._inflight)
        return await self.refresh()

    async def wait_idle(self) -> None:
        task = self._inflight
        if task is not None and not task.done():
            await asyncio.wait({task})

    def replace(self, records: List[RecordT]) -> None:
        self._generation += 1
        self._set(_copy_records(records))

    def capture(self) -> _CellSnapshot[RecordT]:
        return _CellSnapshot(records=_copy_records(self._records), state=self._state, cached_at=self._cached_at)

    def restore(self, snapshot: _CellSnapshot[RecordT]) -> None:
        self._generation += 1
        self._records = _copy_records(snapshot.records)
        self._state = snapshot.state
        self._cached_at = snapshot.cached_at

    def _set(self, records: List[RecordT]) -> None:
        self._records = records
        self._state = CacheState.FRESH
        self._cached_at = datetime.now(timezone.utc)

    @property
    def _label(self) -> str:
        return self.collection if self.scope is None else f"{self.collection}[{self.scope}]"


class OptimisticWrite(Generic[RecordT, ResultT]):
    """Apply a change to a cell, await the remote write, revert on failure.

    ``change`` receives a copy of the current records and returns the new list.
    The pre-write snapshot is held until the remote outcome is known, so every
    caller gets the same rollback path.
    """

    def __init__(
        self,
        cell: CacheCell[RecordT],
        change: Callable[[List[RecordT]], List[RecordT]],
        remote: Callable[[], Awaitable[ResultT]],
        *,
        description: str,
    ) -> None:
        self.cell = cell
        self.change = change
        self.remote = remote
        self.description = description

    async def execute(self) -> ResultT:
        before = self.cell.capture()
        self.cell.replace(self.change(self.cell.peek()))
        try:
            return await self.remote()
        except Exception as exc:
            self.cell.restore(before)
            logger.warning(
                "Rolled back %s after remote write '%s' failed: %s",
                self.cell.collection,
                self.description,
                exc,
            )
            emit_event(
                "cache_write_rolled_back",
                collection=self.cell.collection,
                scope=self.cell.scope,
                operation=self.description,
                error=str(exc),
            )
            raise PersistenceError(self.cell.collection, f"{self.description} failed: {exc}") from exc


def describe_cell(cell: CacheCell[Any]) -> dict:
    return {
        "collection": cell.collection,
        "scope": cell.scope,
        "state": cell.state.value,
        "cached_at": cell.cached_at.isoformat() if cell.cached_at else None,
        "refreshing": cell.refreshing,
    }


__all__ = ["CacheCell", "CacheState", "OptimisticWrite", "describe_cell"]
