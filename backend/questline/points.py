"""Points cache re-derivation from the PointEntry ledger.

``User.point_total`` is a cache. The recalculator overwrites it with the sum
of the user's point entries and never writes ledger rows itself, so running
it any number of times against the same ledger yields the same totals.
"""

from __future__ import annotations

import logging
from contextlib import AbstractContextManager
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from .config import get_settings
from .db.session import session_scope
from .repositories.ledger import LedgerRepository, ledger

logger = logging.getLogger(__name__)

SessionScope = Callable[..., AbstractContextManager[Session]]


class RecalculationError(BaseModel):
    user_id: str
    error: str


class RecalculationReport(BaseModel):
    users_updated: int = 0
    users_changed: int = 0
    users_failed: int = 0
    errors: List[RecalculationError] = Field(default_factory=list)
    started_at: datetime
    finished_at: Optional[datetime] = None


class PointsRecalculator:
    def __init__(
        self,
        repository: LedgerRepository = ledger,
        session_factory: SessionScope = session_scope,
        error_limit: Optional[int] = None,
    ) -> None:
        self._repository = repository
        self._session_scope = session_factory
        self._error_limit = error_limit

    @property
    def error_limit(self) -> int:
        if self._error_limit is not None:
            return self._error_limit
        return get_settings().recalculation_error_limit

    def recalculate_user(self, session: Session, user_id: str) -> Tuple[int, bool]:
        """Overwrite one user's cached total; returns ``(total, changed)``.

        The user row is locked first: a concurrent transaction that already
        inserted a point entry holds the lock, so the sum below sees its row.
        """
        self._repository.lock_user(session, user_id)
        total = self._repository.sum_point_entries_by_user(session, user_id)
        changed = self._repository.set_user_point_total(session, user_id, total)
        return total, changed

    def recalculate_all(self) -> RecalculationReport:
        report = RecalculationReport(started_at=datetime.now(timezone.utc))
        with self._session_scope(commit=False) as session:
            user_ids = self._repository.list_user_ids(session)
        logger.info("Recalculating points for %s users", len(user_ids))

        limit = self.error_limit
        for user_id in user_ids:
            try:
                with self._session_scope() as session:
                    total, changed = self.recalculate_user(session, user_id)
            except Exception as exc:  # noqa: BLE001
                report.users_failed += 1
                if len(report.errors) < limit:
                    report.errors.append(RecalculationError(user_id=user_id, error=str(exc)))
                logger.exception("Points recalculation failed for user %s", user_id)
                continue
            report.users_updated += 1
            if changed:
                report.users_changed += 1
                logger.info("User %s point total corrected to %s", user_id, total)

        report.finished_at = datetime.now(timezone.utc)
        logger.info(
            "Points recalculation finished: updated=%s changed=%s failed=%s",
            report.users_updated,
            report.users_changed,
            report.users_failed,
        )
        return report


__all__ = ["PointsRecalculator", "RecalculationError", "RecalculationReport"]
