"""Connection pool counters surfaced through telemetry and the health route."""

from __future__ import annotations

import os
import time
import weakref
from dataclasses import dataclass
from typing import Dict, MutableMapping

from sqlalchemy import event
from sqlalchemy.engine import Engine

from ..telemetry import emit_event


@dataclass
class PoolCounters:
    connects: int = 0
    checkouts: int = 0
    checkins: int = 0
    last_emit: float = 0.0


_COUNTERS: MutableMapping[Engine, PoolCounters] = weakref.WeakKeyDictionary()


def _emit_interval() -> float:
    return float(os.getenv("STUDY_PLANNER_DB_TELEMETRY_INTERVAL", "30"))


def instrument_engine(engine: Engine) -> None:
    """Count pool activity and emit a ``db_pool_status`` event at most once per interval."""
    if engine in _COUNTERS:
        return
    counters = PoolCounters()
    _COUNTERS[engine] = counters

    def _report(trigger: str) -> None:
        now = time.time()
        interval = _emit_interval()
        if interval > 0 and (now - counters.last_emit) < interval:
            return
        counters.last_emit = now
        emit_event(
            "db_pool_status",
            trigger=trigger,
            status=_pool_status(engine),
            connects=counters.connects,
            checkouts=counters.checkouts,
            checkins=counters.checkins,
        )

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record) -> None:  # type: ignore[no-untyped-def]
        counters.connects += 1
        _report("connect")

    @event.listens_for(engine, "checkout")
    def _on_checkout(dbapi_connection, connection_record, connection_proxy) -> None:  # type: ignore[no-untyped-def]
        counters.checkouts += 1
        _report("checkout")

    @event.listens_for(engine, "checkin")
    def _on_checkin(dbapi_connection, connection_record) -> None:  # type: ignore[no-untyped-def]
        counters.checkins += 1
        _report("checkin")


def get_pool_snapshot(engine: Engine) -> Dict[str, object]:
    counters = _COUNTERS.get(engine, PoolCounters())
    return {
        "dialect": engine.dialect.name,
        "status": _pool_status(engine),
        "connects": counters.connects,
        "checkouts": counters.checkouts,
        "checkins": counters.checkins,
    }


def _pool_status(engine: Engine) -> str:
    try:
        return engine.pool.status()
    except Exception as exc:  # pragma: no cover - pool implementations without status()
        return f"unavailable: {exc}"


__all__ = ["PoolCounters", "get_pool_snapshot", "instrument_engine"]
