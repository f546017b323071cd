"""ORM models backing the Questline ledger store."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON

from .base import Base, TimestampMixin, utcnow

JSONType = JSON


def _uuid() -> str:
    return str(uuid.uuid4())


class TeamModel(TimestampMixin, Base):
    __tablename__ = "teams"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    slogan: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Derived caches, written only by the progress aggregator.
    progress: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    unlocked_keys: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)


class UserModel(TimestampMixin, Base):
    __tablename__ = "users"
    __table_args__ = (
        Index("ix_users_email", "email", unique=True),
        Index("ix_users_team", "team_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    role: Mapped[str] = mapped_column(String(16), default="user", nullable=False)
    title: Mapped[str | None] = mapped_column(String(128), nullable=True)
    team_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("teams.id", ondelete="SET NULL"), nullable=True
    )
    team_joined_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Derived cache, written only by the points recalculator.
    point_total: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class LevelModel(TimestampMixin, Base):
    __tablename__ = "levels"
    __table_args__ = (UniqueConstraint("week", name="uq_levels_week"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    week: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    storyline: Mapped[str] = mapped_column(Text, default="", nullable=False)
    hint: Mapped[str | None] = mapped_column(Text, nullable=True)
    opens_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    closes_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    tasks: Mapped[list["TaskModel"]] = relationship(
        back_populates="level", cascade="all, delete-orphan", order_by="TaskModel.position"
    )


class TaskModel(TimestampMixin, Base):
    __tablename__ = "tasks"
    __table_args__ = (
        Index("ix_tasks_level", "level_id"),
        UniqueConstraint("key_id", name="uq_tasks_key_id"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    level_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("levels.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    criteria_kind: Mapped[str] = mapped_column(String(32), nullable=False)
    criteria_params: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    key_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    level: Mapped[LevelModel] = relationship(back_populates="tasks")


class SubmissionModel(Base):
    __tablename__ = "submissions"
    __table_args__ = (
        Index("ix_submissions_user", "user_id"),
        Index("ix_submissions_task", "task_id"),
        Index("ix_submissions_submitted", "submitted_at"),
        UniqueConstraint("reviewed_submission_id", name="uq_submissions_reviewed"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    task_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    team_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("teams.id", ondelete="SET NULL"), nullable=True
    )
    payload: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    outcome: Mapped[str] = mapped_column(String(16), nullable=False)
    reason: Mapped[str | None] = mapped_column(String(64), nullable=True)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_submission_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("submissions.id", ondelete="SET NULL"), nullable=True
    )
    reviewer_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    submitted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )


class TaskCompletionModel(Base):
    __tablename__ = "task_completions"
    __table_args__ = (UniqueConstraint("team_id", "task_id", name="uq_task_completion_team_task"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    team_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("teams.id", ondelete="CASCADE"), nullable=False
    )
    task_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False
    )
    level_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("levels.id", ondelete="CASCADE"), nullable=False
    )
    submission_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False
    )
    completed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )


class KeyUnlockModel(Base):
    __tablename__ = "key_unlocks"
    __table_args__ = (
        UniqueConstraint("team_id", "key_id", name="uq_key_unlock_team_key"),
        Index("ix_key_unlocks_team_level", "team_id", "level_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    team_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("teams.id", ondelete="CASCADE"), nullable=False
    )
    key_id: Mapped[str] = mapped_column(String(64), nullable=False)
    task_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False
    )
    level_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("levels.id", ondelete="CASCADE"), nullable=False
    )
    submission_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False
    )
    unlocked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )


class PointEntryModel(Base):
    __tablename__ = "point_entries"
    __table_args__ = (
        UniqueConstraint("user_id", "submission_id", name="uq_point_entry_user_submission"),
        Index("ix_point_entries_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    submission_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False
    )
    task_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )


class AuditEventModel(Base):
    __tablename__ = "audit_events"
    __table_args__ = (Index("ix_audit_events_type", "event_type"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    team_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("teams.id", ondelete="SET NULL"), nullable=True
    )
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    actor: Mapped[str | None] = mapped_column(String(128))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


__all__ = [
    "AuditEventModel",
    "KeyUnlockModel",
    "LevelModel",
    "PointEntryModel",
    "SubmissionModel",
    "TaskCompletionModel",
    "TaskModel",
    "TeamModel",
    "UserModel",
]
