"""Core operations of the progression engine.

Every submission is processed in a single transaction: record the submission,
run the unlock state machine, credit points, refresh the team projection.
Telemetry is emitted only after that transaction commits.
"""

from __future__ import annotations

import logging
from contextlib import AbstractContextManager, contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .db.session import session_scope
from .domain import ACCEPTED, PENDING, Level, Submission, Task, TeamProgress, User
from .errors import ForbiddenError, ReviewConflictError, StoreUnavailableError
from .levels import LevelDirectory, level_directory
from .points import PointsRecalculator, RecalculationReport
from .progress import TeamProgressAggregator
from .repositories.ledger import LedgerRepository, ledger
from .telemetry import emit_event
from .unlock_engine import UnlockEngine, UnlockOutcome, UnlockStatus
from .validators import (
    REVIEW_REJECTED,
    Accepted,
    Outcome,
    Rejected,
    ValidationContext,
    ValidatorRegistry,
    validator_registry,
)

logger = logging.getLogger(__name__)

REVIEWER_ROLES = {"mod", "admin"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubmissionResult(BaseModel):
    submission: Submission
    unlock: Optional[UnlockOutcome] = None
    progress: Optional[TeamProgress] = None


class ProgressionService:
    def __init__(
        self,
        repository: LedgerRepository = ledger,
        validators: ValidatorRegistry = validator_registry,
        levels: LevelDirectory = level_directory,
        unlock_engine: Optional[UnlockEngine] = None,
        aggregator: Optional[TeamProgressAggregator] = None,
        recalculator: Optional[PointsRecalculator] = None,
        session_factory: Callable[..., AbstractContextManager[Session]] = session_scope,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repository = repository
        self._validators = validators
        self._levels = levels
        self._unlock_engine = unlock_engine or UnlockEngine(repository)
        self._aggregator = aggregator or TeamProgressAggregator(repository, levels, self._unlock_engine)
        self._recalculator = recalculator or PointsRecalculator(repository, session_factory)
        self._session_scope = session_factory
        self._clock = clock

    # Submissions

    def submit_task(
        self,
        task_id: str,
        payload: Mapping[str, Any],
        user_id: str,
        *,
        now: Optional[datetime] = None,
    ) -> SubmissionResult:
        now = now or self._clock()
        with self._store_guard("processing submission for task %s", task_id):
            with self._session_scope() as session:
                task = self._repository.require_task(session, task_id)
                user = self._repository.require_user(session, user_id)
                level = self._repository.require_level(session, task.level_id)
                outcome = self._validators.evaluate(task, payload, ValidationContext(user=user, level=level, now=now))
                submission = self._record(session, task, user, payload, outcome, now=now)
                result = self._settle(session, submission, task, now=now)

        self._emit_submission_events(result, level)
        return result

    def review_submission(
        self,
        submission_id: str,
        reviewer_id: str,
        *,
        accept: bool,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> SubmissionResult:
        """Append a reviewer verdict for a pending submission."""
        now = now or self._clock()
        with self._store_guard("reviewing submission %s", submission_id):
            with self._session_scope() as session:
                reviewer = self._repository.require_user(session, reviewer_id)
                if reviewer.role not in REVIEWER_ROLES:
                    raise ForbiddenError(f"User {reviewer_id} cannot review submissions")
                pending = self._repository.require_submission(session, submission_id)
                if pending.outcome != PENDING:
                    raise ReviewConflictError(f"Submission {submission_id} is not pending review")
                if self._repository.find_review(session, submission_id) is not None:
                    raise ReviewConflictError(f"Submission {submission_id} was already reviewed")

                task = self._repository.require_task(session, pending.task_id)
                level = self._repository.require_level(session, task.level_id)
                author = self._repository.require_user(session, pending.user_id).model_copy(
                    update={"team_id": pending.team_id}
                )
                outcome: Outcome = Accepted() if accept else Rejected(reason or REVIEW_REJECTED)
                verdict = self._record(
                    session,
                    task,
                    author,
                    pending.payload,
                    outcome,
                    now=now,
                    reviewed_submission_id=pending.submission_id,
                    reviewer_id=reviewer.user_id,
                )
                result = self._settle(session, verdict, task, now=now)

        emit_event(
            "submission_reviewed",
            submission_id=submission_id,
            verdict_id=result.submission.submission_id,
            outcome=result.submission.outcome,
            user_id=result.submission.user_id,
            team_id=result.submission.team_id,
            actor=reviewer_id,
        )
        self._emit_submission_events(result, level)
        return result

    # Reads

    def get_team_progress(self, team_id: str, *, level_id: Optional[str] = None) -> TeamProgress:
        with self._store_guard("reading progress of team %s", team_id):
            with self._session_scope(commit=False) as session:
                return self._aggregator.compute_progress(session, team_id, level_id=level_id, now=self._clock())

    def get_current_level(self) -> Level:
        with self._store_guard("resolving the current level"):
            with self._session_scope(commit=False) as session:
                return self._levels.require_current_level(session, self._clock())

    def get_level_by_week(self, week: int) -> Level:
        with self._store_guard("reading level of week %s", week):
            with self._session_scope(commit=False) as session:
                return self._levels.level_by_week(session, week)

    def list_level_tasks(self, level_id: str) -> List[Task]:
        with self._store_guard("listing tasks of level %s", level_id):
            with self._session_scope(commit=False) as session:
                return self._levels.tasks(session, level_id)

    def list_submissions(self, *, user_id: Optional[str] = None, task_id: Optional[str] = None) -> List[Submission]:
        with self._store_guard("listing submissions"):
            with self._session_scope(commit=False) as session:
                return self._repository.list_submissions(session, user_id=user_id, task_id=task_id)

    # Administration

    def trigger_full_recalculation(self) -> RecalculationReport:
        with self._store_guard("recalculating points"):
            report = self._recalculator.recalculate_all()
        emit_event(
            "points_recalculated",
            users_updated=report.users_updated,
            users_changed=report.users_changed,
            users_failed=report.users_failed,
        )
        return report

    def reset_team_progress(self, team_id: str, *, actor: str) -> TeamProgress:
        """Explicit administrative reset: the only way unlocked keys disappear."""
        with self._store_guard("resetting team %s", team_id):
            with self._session_scope() as session:
                self._repository.require_team(session, team_id)
                removed = self._repository.delete_team_unlocks(session, team_id)
                progress = self._aggregator.refresh(session, team_id, now=self._clock())
        logger.warning("Team %s progress reset by %s (%s keys removed)", team_id, actor, removed)
        emit_event("team_progress_reset", team_id=team_id, keys_removed=removed, actor=actor)
        return progress

    def set_level_window(self, level_id: str, opens_at: datetime, closes_at: datetime) -> Level:
        with self._store_guard("moving the window of level %s", level_id):
            with self._session_scope() as session:
                level = self._levels.set_window(session, level_id, opens_at, closes_at)
        logger.info("Level %s window set to %s - %s", level_id, level.opens_at, level.closes_at)
        return level

    # Internals

    @contextmanager
    def _store_guard(self, action: str, *args: Any) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            logger.exception("Ledger store failure while " + action, *args)
            raise StoreUnavailableError(str(exc)) from exc

    def _record(
        self,
        session: Session,
        task: Task,
        user: User,
        payload: Mapping[str, Any],
        outcome: Outcome,
        *,
        now: datetime,
        reviewed_submission_id: Optional[str] = None,
        reviewer_id: Optional[str] = None,
    ) -> Submission:
        reason = outcome.reason if isinstance(outcome, Rejected) else None
        message = getattr(outcome, "message", None)
        return self._repository.insert_submission(
            session,
            task=task,
            user=user,
            payload=dict(payload),
            outcome=outcome.status,
            reason=reason,
            message=message,
            submitted_at=now,
            reviewed_submission_id=reviewed_submission_id,
            reviewer_id=reviewer_id,
        )

    def _settle(self, session: Session, submission: Submission, task: Task, *, now: datetime) -> SubmissionResult:
        if submission.outcome != ACCEPTED:
            return SubmissionResult(submission=submission)

        unlock = self._unlock_engine.apply(session, submission, task, now=now)
        if unlock.points_awarded:
            self._recalculator.recalculate_user(session, submission.user_id)
        progress: Optional[TeamProgress] = None
        if unlock.status == UnlockStatus.UNLOCKED and unlock.team_id:
            # the cached percentage always tracks the current level
            progress = self._aggregator.refresh(session, unlock.team_id, now=now)
        return SubmissionResult(submission=submission, unlock=unlock, progress=progress)

    def _emit_submission_events(self, result: SubmissionResult, level: Level) -> None:
        submission = result.submission
        fields: Dict[str, Any] = {
            "submission_id": submission.submission_id,
            "task_id": submission.task_id,
            "user_id": submission.user_id,
            "team_id": submission.team_id,
            "outcome": submission.outcome,
            "reason": submission.reason,
        }
        emit_event("submission_recorded", **fields)
        unlock = result.unlock
        if unlock is None or not unlock.unlocked:
            return
        emit_event(
            "key_unlocked",
            submission_id=submission.submission_id,
            task_id=unlock.task_id,
            key_id=unlock.key_id,
            team_id=unlock.team_id,
            user_id=submission.user_id,
            points=unlock.points_awarded,
        )
        if unlock.level_complete:
            emit_event("level_completed", team_id=unlock.team_id, level_id=level.level_id, week=level.week)


progression_service = ProgressionService()

__all__ = ["ProgressionService", "SubmissionResult", "progression_service"]
