"""Connection pool counters for the ledger engine, reported via telemetry."""

from __future__ import annotations

import os
import time
from dataclasses import dataclass
from threading import Lock
from typing import Dict

from sqlalchemy import event
from sqlalchemy.engine import Engine

from ..telemetry import emit_event


@dataclass
class PoolCounters:
    connects: int = 0
    checkouts: int = 0
    checkins: int = 0
    last_emit: float = 0.0

    @property
    def in_use(self) -> int:
        return max(0, self.checkouts - self.checkins)


_COUNTERS: Dict[int, PoolCounters] = {}
_COUNTERS_LOCK = Lock()
_TELEMETRY_INTERVAL = float(os.getenv("QUESTLINE_DB_TELEMETRY_INTERVAL", "30"))


def instrument_engine(engine: Engine) -> None:
    """Count pool connects/checkouts/checkins and emit ``db_pool_status`` at most every interval."""
    with _COUNTERS_LOCK:
        if id(engine) in _COUNTERS:
            return
        counters = PoolCounters()
        _COUNTERS[id(engine)] = counters

    def report(trigger: str) -> None:
        now = time.time()
        if _TELEMETRY_INTERVAL > 0 and (now - counters.last_emit) < _TELEMETRY_INTERVAL:
            return
        counters.last_emit = now
        emit_event("db_pool_status", trigger=trigger, **_describe(engine, counters))

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record) -> None:  # type: ignore[no-untyped-def]
        counters.connects += 1
        report("connect")

    @event.listens_for(engine, "checkout")
    def _on_checkout(dbapi_connection, connection_record, connection_proxy) -> None:  # type: ignore[no-untyped-def]
        counters.checkouts += 1
        report("checkout")

    @event.listens_for(engine, "checkin")
    def _on_checkin(dbapi_connection, connection_record) -> None:  # type: ignore[no-untyped-def]
        counters.checkins += 1
        report("checkin")


def forget_engine(engine: Engine) -> None:
    with _COUNTERS_LOCK:
        _COUNTERS.pop(id(engine), None)


def get_pool_snapshot(engine: Engine) -> Dict[str, object]:
    counters = _COUNTERS.get(id(engine)) or PoolCounters()
    return _describe(engine, counters)


def _describe(engine: Engine, counters: PoolCounters) -> Dict[str, object]:
    try:
        pool_status = engine.pool.status()  # type: ignore[no-untyped-call]
    except Exception as exc:  # noqa: BLE001
        pool_status = f"unavailable: {exc}"
    return {
        "pool_class": type(engine.pool).__name__,
        "status": pool_status,
        "connects": counters.connects,
        "checkouts": counters.checkouts,
        "checkins": counters.checkins,
        "in_use": counters.in_use,
    }


__all__ = [
    "PoolCounters",
    "forget_engine",
    "get_pool_snapshot",
    "instrument_engine",
]
