"""Domain models shared by the progression core and the HTTP layer."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

Role = Literal["user", "mod", "admin"]
LevelState = Literal["scheduled", "open", "closed"]
SubmissionOutcome = Literal["accepted", "rejected", "pending"]

ACCEPTED: SubmissionOutcome = "accepted"
REJECTED: SubmissionOutcome = "rejected"
PENDING: SubmissionOutcome = "pending"


def as_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime (SQLite drops tzinfo)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class User(BaseModel):
    user_id: str
    email: str
    name: str
    role: Role = "user"
    title: Optional[str] = None
    team_id: Optional[str] = None
    point_total: int = 0


class Team(BaseModel):
    team_id: str
    name: str
    slogan: Optional[str] = None
    member_ids: List[str] = Field(default_factory=list)
    progress: int = 0
    unlocked_keys: List[str] = Field(default_factory=list)


class TaskCriteria(BaseModel):
    """Tagged acceptance criteria: the ``kind`` selects the validator."""

    kind: str
    params: Dict[str, Any] = Field(default_factory=dict)


class Task(BaseModel):
    task_id: str
    level_id: str
    position: int = 0
    title: str
    description: str = ""
    criteria: TaskCriteria
    points: int = Field(default=0, ge=0)
    key_id: Optional[str] = None


class Level(BaseModel):
    level_id: str
    week: int
    title: str
    storyline: str = ""
    hint: Optional[str] = None
    opens_at: datetime
    closes_at: datetime

    def state(self, now: datetime) -> LevelState:
        now = as_utc(now)
        if now < as_utc(self.opens_at):
            return "scheduled"
        if now >= as_utc(self.closes_at):
            return "closed"
        return "open"


class Submission(BaseModel):
    submission_id: str
    task_id: str
    user_id: str
    team_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    outcome: SubmissionOutcome
    reason: Optional[str] = None
    message: Optional[str] = None
    reviewed_submission_id: Optional[str] = None
    reviewer_id: Optional[str] = None
    submitted_at: datetime


class KeyUnlock(BaseModel):
    team_id: str
    key_id: str
    task_id: str
    level_id: str
    submission_id: str
    unlocked_at: datetime


class PointEntry(BaseModel):
    user_id: str
    submission_id: str
    task_id: str
    amount: int
    created_at: datetime


class WeeklyStat(BaseModel):
    week: int
    points: int = 0
    tasks_completed: int = 0


class TeamProgress(BaseModel):
    team_id: str
    level_id: Optional[str] = None
    week: Optional[int] = None
    percentage: int = Field(default=0, ge=0, le=100)
    unlocked_keys: List[str] = Field(default_factory=list)
    level_keys: List[str] = Field(default_factory=list)
    level_complete: bool = False
    completed_weeks: List[int] = Field(default_factory=list)
    total_points: int = 0
    weekly_stats: List[WeeklyStat] = Field(default_factory=list)


__all__ = [
    "ACCEPTED",
    "KeyUnlock",
    "Level",
    "LevelState",
    "PENDING",
    "PointEntry",
    "REJECTED",
    "Role",
    "Submission",
    "SubmissionOutcome",
    "Task",
    "TaskCriteria",
    "Team",
    "TeamProgress",
    "User",
    "WeeklyStat",
    "as_utc",
]
