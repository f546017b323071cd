"""Database-backed ledger repository.

The core only talks to the store through :class:`LedgerRepository`. Ledger
rows (submissions, task completions, key unlocks, point entries) are only
ever inserted; the two guarded inserts rely on unique constraints instead of
a read-then-write check.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import Select, delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db.base import utcnow
from ..db.models import (
    AuditEventModel,
    KeyUnlockModel,
    LevelModel,
    PointEntryModel,
    SubmissionModel,
    TaskCompletionModel,
    TaskModel,
    TeamModel,
    UserModel,
)
from ..domain import (
    KeyUnlock,
    Level,
    Submission,
    SubmissionOutcome,
    Task,
    TaskCriteria,
    Team,
    User,
    as_utc,
)
from ..errors import NotFoundError

logger = logging.getLogger(__name__)


class LedgerRepository:
    """Persistence helper for the progression ledger."""

    # Lookups

    def get_user(self, session: Session, user_id: str) -> User | None:
        model = session.get(UserModel, user_id)
        return self._user_to_domain(model) if model else None

    def require_user(self, session: Session, user_id: str) -> User:
        user = self.get_user(session, user_id)
        if user is None:
            raise NotFoundError("user", user_id)
        return user

    def get_team(self, session: Session, team_id: str) -> Team | None:
        model = session.get(TeamModel, team_id)
        if model is None:
            return None
        return Team(
            team_id=model.id,
            name=model.name,
            slogan=model.slogan,
            member_ids=self.team_member_ids(session, model.id),
            progress=model.progress,
            unlocked_keys=list(model.unlocked_keys or []),
        )

    def require_team(self, session: Session, team_id: str) -> Team:
        team = self.get_team(session, team_id)
        if team is None:
            raise NotFoundError("team", team_id)
        return team

    def team_member_ids(self, session: Session, team_id: str) -> List[str]:
        stmt = (
            select(UserModel.id)
            .where(UserModel.team_id == team_id)
            .order_by(UserModel.team_joined_at.asc(), UserModel.name.asc())
        )
        return list(session.execute(stmt).scalars().all())

    def get_level(self, session: Session, level_id: str) -> Level | None:
        model = session.get(LevelModel, level_id)
        return self._level_to_domain(model) if model else None

    def require_level(self, session: Session, level_id: str) -> Level:
        level = self.get_level(session, level_id)
        if level is None:
            raise NotFoundError("level", level_id)
        return level

    def get_level_by_week(self, session: Session, week: int) -> Level | None:
        stmt = select(LevelModel).where(LevelModel.week == week)
        model = session.execute(stmt).scalar_one_or_none()
        return self._level_to_domain(model) if model else None

    def list_levels(self, session: Session) -> List[Level]:
        stmt = select(LevelModel).order_by(LevelModel.week.asc())
        return [self._level_to_domain(model) for model in session.execute(stmt).scalars().all()]

    def get_task(self, session: Session, task_id: str) -> Task | None:
        model = session.get(TaskModel, task_id)
        return self._task_to_domain(model) if model else None

    def require_task(self, session: Session, task_id: str) -> Task:
        task = self.get_task(session, task_id)
        if task is None:
            raise NotFoundError("task", task_id)
        return task

    def list_tasks(self, session: Session, level_id: str) -> List[Task]:
        stmt = (
            select(TaskModel)
            .where(TaskModel.level_id == level_id)
            .order_by(TaskModel.position.asc(), TaskModel.id.asc())
        )
        return [self._task_to_domain(model) for model in session.execute(stmt).scalars().all()]

    def count_key_bearing_tasks(self, session: Session, level_id: str) -> int:
        stmt = (
            select(func.count(TaskModel.id))
            .where(TaskModel.level_id == level_id)
            .where(TaskModel.key_id.is_not(None))
        )
        return int(session.execute(stmt).scalar_one())

    def list_user_ids(self, session: Session) -> List[str]:
        stmt = select(UserModel.id).order_by(UserModel.id.asc())
        return list(session.execute(stmt).scalars().all())

    # Submission log

    def insert_submission(
        self,
        session: Session,
        *,
        task: Task,
        user: User,
        payload: Dict[str, Any],
        outcome: SubmissionOutcome,
        reason: Optional[str] = None,
        message: Optional[str] = None,
        submitted_at: Optional[datetime] = None,
        reviewed_submission_id: Optional[str] = None,
        reviewer_id: Optional[str] = None,
    ) -> Submission:
        model = SubmissionModel(
            task_id=task.task_id,
            user_id=user.user_id,
            team_id=user.team_id,
            payload=dict(payload),
            outcome=outcome,
            reason=reason,
            message=message,
            submitted_at=submitted_at or utcnow(),
            reviewed_submission_id=reviewed_submission_id,
            reviewer_id=reviewer_id,
        )
        session.add(model)
        session.flush()
        return self._submission_to_domain(model)

    def get_submission(self, session: Session, submission_id: str) -> Submission | None:
        model = session.get(SubmissionModel, submission_id)
        return self._submission_to_domain(model) if model else None

    def require_submission(self, session: Session, submission_id: str) -> Submission:
        submission = self.get_submission(session, submission_id)
        if submission is None:
            raise NotFoundError("submission", submission_id)
        return submission

    def find_review(self, session: Session, submission_id: str) -> Submission | None:
        stmt = select(SubmissionModel).where(SubmissionModel.reviewed_submission_id == submission_id)
        model = session.execute(stmt).scalar_one_or_none()
        return self._submission_to_domain(model) if model else None

    def list_submissions(
        self,
        session: Session,
        *,
        user_id: Optional[str] = None,
        task_id: Optional[str] = None,
        outcome: Optional[SubmissionOutcome] = None,
    ) -> List[Submission]:
        stmt = select(SubmissionModel)
        if user_id is not None:
            stmt = stmt.where(SubmissionModel.user_id == user_id)
        if task_id is not None:
            stmt = stmt.where(SubmissionModel.task_id == task_id)
        if outcome is not None:
            stmt = stmt.where(SubmissionModel.outcome == outcome)
        stmt = stmt.order_by(SubmissionModel.submitted_at.asc(), SubmissionModel.id.asc())
        return [self._submission_to_domain(model) for model in session.execute(stmt).scalars().all()]

    # Unlock log

    def try_insert_key_unlock(
        self,
        session: Session,
        team_id: str,
        key_id: str,
        *,
        task_id: str,
        level_id: str,
        submission_id: str,
        unlocked_at: Optional[datetime] = None,
    ) -> bool:
        """Insert the (team, key) unlock; ``False`` when another submission already won."""
        row = KeyUnlockModel(
            team_id=team_id,
            key_id=key_id,
            task_id=task_id,
            level_id=level_id,
            submission_id=submission_id,
            unlocked_at=unlocked_at or utcnow(),
        )
        exists = select(KeyUnlockModel.id).where(
            KeyUnlockModel.team_id == team_id, KeyUnlockModel.key_id == key_id
        )
        return self._guarded_insert(session, row, exists)

    def try_insert_task_completion(
        self,
        session: Session,
        team_id: str,
        task_id: str,
        *,
        level_id: str,
        submission_id: str,
        completed_at: Optional[datetime] = None,
    ) -> bool:
        """Insert the (team, task) completion for keyless tasks."""
        row = TaskCompletionModel(
            team_id=team_id,
            task_id=task_id,
            level_id=level_id,
            submission_id=submission_id,
            completed_at=completed_at or utcnow(),
        )
        exists = select(TaskCompletionModel.id).where(
            TaskCompletionModel.team_id == team_id, TaskCompletionModel.task_id == task_id
        )
        return self._guarded_insert(session, row, exists)

    def list_key_unlocks(
        self, session: Session, team_id: str, level_id: Optional[str] = None
    ) -> List[KeyUnlock]:
        stmt = select(KeyUnlockModel).where(KeyUnlockModel.team_id == team_id)
        if level_id is not None:
            stmt = stmt.where(KeyUnlockModel.level_id == level_id)
        stmt = stmt.order_by(KeyUnlockModel.unlocked_at.asc(), KeyUnlockModel.id.asc())
        return [
            KeyUnlock(
                team_id=model.team_id,
                key_id=model.key_id,
                task_id=model.task_id,
                level_id=model.level_id,
                submission_id=model.submission_id,
                unlocked_at=as_utc(model.unlocked_at),
            )
            for model in session.execute(stmt).scalars().all()
        ]

    def completed_task_ids(self, session: Session, team_id: str, level_id: str) -> set[str]:
        stmt = select(TaskCompletionModel.task_id).where(
            TaskCompletionModel.team_id == team_id, TaskCompletionModel.level_id == level_id
        )
        return set(session.execute(stmt).scalars().all())

    def completed_tasks_by_week(self, session: Session, team_id: str) -> Dict[int, set[str]]:
        """Tasks the team finished per week, from both the unlock and completion logs."""
        unlocked = (
            select(LevelModel.week, KeyUnlockModel.task_id)
            .join(LevelModel, LevelModel.id == KeyUnlockModel.level_id)
            .where(KeyUnlockModel.team_id == team_id)
        )
        completed = (
            select(LevelModel.week, TaskCompletionModel.task_id)
            .join(LevelModel, LevelModel.id == TaskCompletionModel.level_id)
            .where(TaskCompletionModel.team_id == team_id)
        )
        weeks: Dict[int, set[str]] = {}
        for stmt in (unlocked, completed):
            for week, task_id in session.execute(stmt).all():
                weeks.setdefault(int(week), set()).add(task_id)
        return weeks

    def delete_team_unlocks(self, session: Session, team_id: str) -> int:
        removed = session.execute(delete(KeyUnlockModel).where(KeyUnlockModel.team_id == team_id))
        session.execute(delete(TaskCompletionModel).where(TaskCompletionModel.team_id == team_id))
        return int(removed.rowcount or 0)

    # Points ledger

    def insert_point_entry(
        self,
        session: Session,
        user_id: str,
        submission_id: str,
        *,
        task_id: str,
        amount: int,
        created_at: Optional[datetime] = None,
    ) -> bool:
        row = PointEntryModel(
            user_id=user_id,
            submission_id=submission_id,
            task_id=task_id,
            amount=amount,
            created_at=created_at or utcnow(),
        )
        exists = select(PointEntryModel.id).where(
            PointEntryModel.user_id == user_id, PointEntryModel.submission_id == submission_id
        )
        return self._guarded_insert(session, row, exists)

    def sum_point_entries_by_user(self, session: Session, user_id: str) -> int:
        stmt = select(func.coalesce(func.sum(PointEntryModel.amount), 0)).where(
            PointEntryModel.user_id == user_id
        )
        return int(session.execute(stmt).scalar_one())

    def sum_point_entries_by_users(self, session: Session, user_ids: Sequence[str]) -> int:
        if not user_ids:
            return 0
        stmt = select(func.coalesce(func.sum(PointEntryModel.amount), 0)).where(
            PointEntryModel.user_id.in_(list(user_ids))
        )
        return int(session.execute(stmt).scalar_one())

    def sum_point_entries_by_week(self, session: Session, user_ids: Sequence[str]) -> Dict[int, int]:
        if not user_ids:
            return {}
        stmt = (
            select(LevelModel.week, func.sum(PointEntryModel.amount))
            .join(TaskModel, TaskModel.id == PointEntryModel.task_id)
            .join(LevelModel, LevelModel.id == TaskModel.level_id)
            .where(PointEntryModel.user_id.in_(list(user_ids)))
            .group_by(LevelModel.week)
        )
        return {int(week): int(total or 0) for week, total in session.execute(stmt).all()}

    def count_point_entries(self, session: Session, *, user_id: Optional[str] = None) -> int:
        stmt = select(func.count(PointEntryModel.id))
        if user_id is not None:
            stmt = stmt.where(PointEntryModel.user_id == user_id)
        return int(session.execute(stmt).scalar_one())

    # Derived caches

    def lock_user(self, session: Session, user_id: str) -> None:
        """Take the user row lock so concurrent point sums serialise (FOR UPDATE)."""
        model = session.get(UserModel, user_id, with_for_update=True, populate_existing=True)
        if model is None:
            raise NotFoundError("user", user_id)

    def set_user_point_total(self, session: Session, user_id: str, total: int) -> bool:
        model = session.get(UserModel, user_id)
        if model is None:
            raise NotFoundError("user", user_id)
        if model.point_total == total:
            return False
        model.point_total = total
        session.flush()
        return True

    def set_team_progress_cache(
        self, session: Session, team_id: str, progress: int, unlocked_keys: Iterable[str]
    ) -> None:
        model = session.get(TeamModel, team_id)
        if model is None:
            raise NotFoundError("team", team_id)
        model.progress = progress
        model.unlocked_keys = list(unlocked_keys)
        session.flush()

    # Catalog

    def add_level(self, session: Session, level: Level) -> None:
        session.add(
            LevelModel(
                id=level.level_id,
                week=level.week,
                title=level.title,
                storyline=level.storyline,
                hint=level.hint,
                opens_at=level.opens_at,
                closes_at=level.closes_at,
            )
        )
        session.flush()

    def set_level_window(
        self, session: Session, level_id: str, opens_at: datetime, closes_at: datetime
    ) -> Level:
        model = session.get(LevelModel, level_id)
        if model is None:
            raise NotFoundError("level", level_id)
        model.opens_at = opens_at
        model.closes_at = closes_at
        session.flush()
        return self._level_to_domain(model)

    def add_task(self, session: Session, task: Task) -> None:
        session.add(
            TaskModel(
                id=task.task_id,
                level_id=task.level_id,
                position=task.position,
                title=task.title,
                description=task.description,
                criteria_kind=task.criteria.kind,
                criteria_params=dict(task.criteria.params),
                points=task.points,
                key_id=task.key_id,
            )
        )
        session.flush()

    def add_team(self, session: Session, team_id: str, name: str, slogan: Optional[str] = None) -> None:
        session.add(TeamModel(id=team_id, name=name, slogan=slogan, progress=0, unlocked_keys=[]))
        session.flush()

    def add_user(self, session: Session, user: User) -> None:
        session.add(
            UserModel(
                id=user.user_id,
                email=user.email.strip().lower(),
                name=user.name,
                role=user.role,
                title=user.title,
                team_id=user.team_id,
                team_joined_at=utcnow() if user.team_id else None,
                point_total=0,
            )
        )
        session.flush()

    # Audit

    def record_audit_event(
        self,
        session: Session,
        event_type: str,
        payload: Dict[str, Any],
        *,
        user_id: Optional[str] = None,
        team_id: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> None:
        session.add(
            AuditEventModel(
                user_id=user_id,
                team_id=team_id,
                event_type=event_type,
                payload=payload,
                actor=actor or "system",
            )
        )

    def recent_audit_events(
        self, session: Session, *, event_types: Optional[Iterable[str]] = None, limit: int = 50
    ) -> List[AuditEventModel]:
        stmt = select(AuditEventModel)
        if event_types is not None:
            stmt = stmt.where(AuditEventModel.event_type.in_(list(event_types)))
        stmt = stmt.order_by(AuditEventModel.created_at.desc()).limit(limit)
        return list(session.execute(stmt).scalars().all())

    # Internals

    def _guarded_insert(self, session: Session, row: object, exists: Select) -> bool:
        try:
            with session.begin_nested():
                session.add(row)
        except IntegrityError:
            if session.execute(exists).first() is None:
                raise
            logger.debug("Guarded insert lost to an existing %s row", type(row).__name__)
            return False
        return True

    @staticmethod
    def _user_to_domain(model: UserModel) -> User:
        return User(
            user_id=model.id,
            email=model.email,
            name=model.name,
            role=model.role,  # type: ignore[arg-type]
            title=model.title,
            team_id=model.team_id,
            point_total=model.point_total,
        )

    @staticmethod
    def _level_to_domain(model: LevelModel) -> Level:
        return Level(
            level_id=model.id,
            week=model.week,
            title=model.title,
            storyline=model.storyline,
            hint=model.hint,
            opens_at=as_utc(model.opens_at),
            closes_at=as_utc(model.closes_at),
        )

    @staticmethod
    def _task_to_domain(model: TaskModel) -> Task:
        return Task(
            task_id=model.id,
            level_id=model.level_id,
            position=model.position,
            title=model.title,
            description=model.description,
            criteria=TaskCriteria(kind=model.criteria_kind, params=dict(model.criteria_params or {})),
            points=model.points,
            key_id=model.key_id,
        )

    @staticmethod
    def _submission_to_domain(model: SubmissionModel) -> Submission:
        return Submission(
            submission_id=model.id,
            task_id=model.task_id,
            user_id=model.user_id,
            team_id=model.team_id,
            payload=dict(model.payload or {}),
            outcome=model.outcome,  # type: ignore[arg-type]
            reason=model.reason,
            message=model.message,
            reviewed_submission_id=model.reviewed_submission_id,
            reviewer_id=model.reviewer_id,
            submitted_at=as_utc(model.submitted_at),
        )


ledger = LedgerRepository()

__all__ = ["LedgerRepository", "ledger"]
