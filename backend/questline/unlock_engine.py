"""Per (team, task) unlock state machine: ``Locked -> Unlocked``, never back.

The transition is a single guarded insert. Key-bearing tasks are guarded by
the (team, key) unique constraint on ``key_unlocks``; keyless tasks by the
(team, task) constraint on ``task_completions``. Whoever's insert the store
accepts first is the unlocking submission and the only one credited.
"""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel
from sqlalchemy.orm import Session

from .domain import ACCEPTED, Submission, Task
from .repositories.ledger import LedgerRepository, ledger

logger = logging.getLogger(__name__)


class UnlockStatus(str, Enum):
    UNLOCKED = "unlocked"
    ALREADY_UNLOCKED = "already_unlocked"
    NO_TEAM = "no_team"


class UnlockOutcome(BaseModel):
    status: UnlockStatus
    task_id: str
    team_id: Optional[str] = None
    key_id: Optional[str] = None
    points_awarded: int = 0
    level_complete: bool = False

    @property
    def unlocked(self) -> bool:
        return self.status == UnlockStatus.UNLOCKED


class UnlockEngine:
    def __init__(self, repository: LedgerRepository = ledger) -> None:
        self._repository = repository

    def apply(self, session: Session, submission: Submission, task: Task, *, now: datetime) -> UnlockOutcome:
        if submission.outcome != ACCEPTED:
            raise ValueError(f"Submission {submission.submission_id} is not accepted")
        team_id = submission.team_id
        if team_id is None:
            logger.info("Accepted submission %s has no team; nothing to unlock", submission.submission_id)
            return UnlockOutcome(status=UnlockStatus.NO_TEAM, task_id=task.task_id, key_id=task.key_id)

        if not self._claim(session, team_id, task, submission, now):
            logger.info(
                "Task %s already unlocked for team %s; submission %s has no further effect",
                task.task_id,
                team_id,
                submission.submission_id,
            )
            return UnlockOutcome(
                status=UnlockStatus.ALREADY_UNLOCKED,
                task_id=task.task_id,
                team_id=team_id,
                key_id=task.key_id,
                level_complete=self.is_level_complete(session, team_id, task.level_id),
            )

        points = 0
        if task.points > 0 and self._repository.insert_point_entry(
            session,
            submission.user_id,
            submission.submission_id,
            task_id=task.task_id,
            amount=task.points,
            created_at=now,
        ):
            points = task.points

        level_complete = self.is_level_complete(session, team_id, task.level_id)
        logger.info(
            "Team %s unlocked task %s (key=%s) via submission %s; +%s points to %s",
            team_id,
            task.task_id,
            task.key_id,
            submission.submission_id,
            points,
            submission.user_id,
        )
        return UnlockOutcome(
            status=UnlockStatus.UNLOCKED,
            task_id=task.task_id,
            team_id=team_id,
            key_id=task.key_id,
            points_awarded=points,
            level_complete=level_complete,
        )

    def is_level_complete(self, session: Session, team_id: str, level_id: str) -> bool:
        tasks = self._repository.list_tasks(session, level_id)
        if not tasks:
            return False
        keys = {unlock.key_id for unlock in self._repository.list_key_unlocks(session, team_id, level_id)}
        completed = self._repository.completed_task_ids(session, team_id, level_id)
        return all(
            (task.key_id in keys) if task.key_id else (task.task_id in completed) for task in tasks
        )

    def _claim(self, session: Session, team_id: str, task: Task, submission: Submission, now: datetime) -> bool:
        if task.key_id:
            return self._repository.try_insert_key_unlock(
                session,
                team_id,
                task.key_id,
                task_id=task.task_id,
                level_id=task.level_id,
                submission_id=submission.submission_id,
                unlocked_at=now,
            )
        return self._repository.try_insert_task_completion(
            session,
            team_id,
            task.task_id,
            level_id=task.level_id,
            submission_id=submission.submission_id,
            completed_at=now,
        )


__all__ = ["UnlockEngine", "UnlockOutcome", "UnlockStatus"]
