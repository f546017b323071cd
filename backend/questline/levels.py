"""Level lookups and the activation-window administration."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from .domain import Level, Task, as_utc
from .errors import InvalidWindowError, NotFoundError
from .repositories.ledger import LedgerRepository, ledger


def resolve_current_level(levels: Sequence[Level], now: datetime) -> Optional[Level]:
    """Pick the open level with the highest week, else the latest opened one."""
    now = as_utc(now)
    open_levels = [level for level in levels if level.state(now) == "open"]
    if open_levels:
        return max(open_levels, key=lambda level: level.week)
    started = [level for level in levels if as_utc(level.opens_at) <= now]
    if started:
        return max(started, key=lambda level: level.week)
    return None


class LevelDirectory:
    def __init__(self, repository: LedgerRepository = ledger) -> None:
        self._repository = repository

    def current_level(self, session: Session, now: datetime) -> Optional[Level]:
        return resolve_current_level(self._repository.list_levels(session), now)

    def require_current_level(self, session: Session, now: datetime) -> Level:
        level = self.current_level(session, now)
        if level is None:
            raise NotFoundError("level", "current")
        return level

    def level_by_week(self, session: Session, week: int) -> Level:
        level = self._repository.get_level_by_week(session, week)
        if level is None:
            raise NotFoundError("level", f"week {week}")
        return level

    def tasks(self, session: Session, level_id: str) -> List[Task]:
        self._repository.require_level(session, level_id)
        return self._repository.list_tasks(session, level_id)

    def set_window(self, session: Session, level_id: str, opens_at: datetime, closes_at: datetime) -> Level:
        if as_utc(closes_at) <= as_utc(opens_at):
            raise InvalidWindowError("closes_at must be later than opens_at")
        return self._repository.set_level_window(session, level_id, as_utc(opens_at), as_utc(closes_at))


level_directory = LevelDirectory()

__all__ = ["LevelDirectory", "level_directory", "resolve_current_level"]
