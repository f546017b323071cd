"""Team progress projection over the unlock log."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from .domain import Level, TeamProgress, WeeklyStat
from .levels import LevelDirectory, level_directory
from .repositories.ledger import LedgerRepository, ledger
from .unlock_engine import UnlockEngine

logger = logging.getLogger(__name__)


def progress_percentage(unlocked: int, key_bearing: int) -> int:
    if key_bearing <= 0:
        return 0
    return max(0, min(100, (unlocked * 100) // key_bearing))


class TeamProgressAggregator:
    """Derives team progress from the KeyUnlock and TaskCompletion logs.

    ``compute_progress`` is a pure read; ``refresh`` also rewrites the cached
    ``teams.progress``/``teams.unlocked_keys`` columns from that read.
    """

    def __init__(
        self,
        repository: LedgerRepository = ledger,
        levels: LevelDirectory = level_directory,
        unlock_engine: Optional[UnlockEngine] = None,
    ) -> None:
        self._repository = repository
        self._levels = levels
        self._unlock_engine = unlock_engine or UnlockEngine(repository)

    def compute_progress(
        self,
        session: Session,
        team_id: str,
        *,
        level_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> TeamProgress:
        team = self._repository.require_team(session, team_id)
        level: Optional[Level]
        if level_id is not None:
            level = self._repository.require_level(session, level_id)
        elif now is not None:
            level = self._levels.current_level(session, now)
        else:
            level = None

        unlocks = self._repository.list_key_unlocks(session, team.team_id)
        progress = TeamProgress(
            team_id=team.team_id,
            unlocked_keys=[unlock.key_id for unlock in unlocks],
            completed_weeks=self._completed_weeks(session, team.team_id),
            total_points=self._repository.sum_point_entries_by_users(session, team.member_ids),
            weekly_stats=self._weekly_stats(session, team.team_id, team.member_ids),
        )
        if level is None:
            return progress

        level_keys = [unlock.key_id for unlock in unlocks if unlock.level_id == level.level_id]
        key_bearing = self._repository.count_key_bearing_tasks(session, level.level_id)
        return progress.model_copy(
            update={
                "level_id": level.level_id,
                "week": level.week,
                "level_keys": level_keys,
                "percentage": progress_percentage(len(level_keys), key_bearing),
                "level_complete": level.week in progress.completed_weeks,
            }
        )

    def refresh(
        self,
        session: Session,
        team_id: str,
        *,
        level_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> TeamProgress:
        progress = self.compute_progress(session, team_id, level_id=level_id, now=now)
        self._repository.set_team_progress_cache(
            session, team_id, progress.percentage, progress.unlocked_keys
        )
        logger.debug(
            "Refreshed progress cache for team %s: %s%% keys=%s",
            team_id,
            progress.percentage,
            progress.unlocked_keys,
        )
        return progress

    def _weekly_stats(self, session: Session, team_id: str, member_ids: list[str]) -> list[WeeklyStat]:
        points = self._repository.sum_point_entries_by_week(session, member_ids)
        tasks = self._repository.completed_tasks_by_week(session, team_id)
        return [
            WeeklyStat(week=week, points=points.get(week, 0), tasks_completed=len(tasks.get(week, ())))
            for week in sorted(set(points) | set(tasks))
        ]

    def _completed_weeks(self, session: Session, team_id: str) -> list[int]:
        return [
            level.week
            for level in self._repository.list_levels(session)
            if self._unlock_engine.is_level_complete(session, team_id, level.level_id)
        ]


__all__ = ["TeamProgressAggregator", "progress_percentage"]
