"""Telemetry listener that persists progression milestones as audit events."""

from __future__ import annotations

import logging
from typing import Set

from .db.session import session_scope
from .repositories.ledger import ledger
from .telemetry import TelemetryEvent, register_listener

logger = logging.getLogger(__name__)

_MONITORED_EVENTS: Set[str] = {
    "key_unlocked",
    "level_completed",
    "submission_reviewed",
    "team_progress_reset",
    "points_recalculated",
}


def _persist_event(event: TelemetryEvent) -> None:
    if event.name not in _MONITORED_EVENTS:
        return
    payload = event.payload
    user_id = payload.get("user_id")
    team_id = payload.get("team_id")
    actor = payload.get("actor")
    try:
        with session_scope() as session:
            ledger.record_audit_event(
                session,
                event.name,
                payload,
                user_id=user_id if isinstance(user_id, str) else None,
                team_id=team_id if isinstance(team_id, str) else None,
                actor=actor if isinstance(actor, str) else None,
            )
    except Exception:  # noqa: BLE001
        logger.exception("Failed to persist audit event %s", event.name)


def install() -> None:
    register_listener(_persist_event)


install()

__all__ = ["_MONITORED_EVENTS", "install"]
