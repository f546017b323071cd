"""Ledger schema: catalog, submissions, unlock and points logs, audit events."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "20261018_01_ledger_schema"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "teams",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("slogan", sa.Text(), nullable=True),
        sa.Column("progress", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("unlocked_keys", sa.JSON(), nullable=False),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("role", sa.String(length=16), nullable=False, server_default="user"),
        sa.Column("title", sa.String(length=128), nullable=True),
        sa.Column("team_id", sa.String(length=36), sa.ForeignKey("teams.id", ondelete="SET NULL"), nullable=True),
        sa.Column("team_joined_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("point_total", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_team", "users", ["team_id"])

    op.create_table(
        "levels",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("week", sa.Integer(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("storyline", sa.Text(), nullable=False, server_default=""),
        sa.Column("hint", sa.Text(), nullable=True),
        sa.Column("opens_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("closes_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("week", name="uq_levels_week"),
    )

    op.create_table(
        "tasks",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("level_id", sa.String(length=36), sa.ForeignKey("levels.id", ondelete="CASCADE"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("criteria_kind", sa.String(length=32), nullable=False),
        sa.Column("criteria_params", sa.JSON(), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("key_id", sa.String(length=64), nullable=True),
        sa.UniqueConstraint("key_id", name="uq_tasks_key_id"),
    )
    op.create_index("ix_tasks_level", "tasks", ["level_id"])

    op.create_table(
        "submissions",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("task_id", sa.String(length=64), sa.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("team_id", sa.String(length=36), sa.ForeignKey("teams.id", ondelete="SET NULL"), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("outcome", sa.String(length=16), nullable=False),
        sa.Column("reason", sa.String(length=64), nullable=True),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column(
            "reviewed_submission_id",
            sa.String(length=36),
            sa.ForeignKey("submissions.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("reviewer_id", sa.String(length=36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("reviewed_submission_id", name="uq_submissions_reviewed"),
    )
    op.create_index("ix_submissions_user", "submissions", ["user_id"])
    op.create_index("ix_submissions_task", "submissions", ["task_id"])
    op.create_index("ix_submissions_submitted", "submissions", ["submitted_at"])

    op.create_table(
        "task_completions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("team_id", sa.String(length=36), sa.ForeignKey("teams.id", ondelete="CASCADE"), nullable=False),
        sa.Column("task_id", sa.String(length=64), sa.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False),
        sa.Column("level_id", sa.String(length=36), sa.ForeignKey("levels.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "submission_id", sa.String(length=36), sa.ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("team_id", "task_id", name="uq_task_completion_team_task"),
    )

    op.create_table(
        "key_unlocks",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("team_id", sa.String(length=36), sa.ForeignKey("teams.id", ondelete="CASCADE"), nullable=False),
        sa.Column("key_id", sa.String(length=64), nullable=False),
        sa.Column("task_id", sa.String(length=64), sa.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False),
        sa.Column("level_id", sa.String(length=36), sa.ForeignKey("levels.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "submission_id", sa.String(length=36), sa.ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("unlocked_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("team_id", "key_id", name="uq_key_unlock_team_key"),
    )
    op.create_index("ix_key_unlocks_team_level", "key_unlocks", ["team_id", "level_id"])

    op.create_table(
        "point_entries",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "submission_id", sa.String(length=36), sa.ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("task_id", sa.String(length=64), sa.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("user_id", "submission_id", name="uq_point_entry_user_submission"),
    )
    op.create_index("ix_point_entries_user", "point_entries", ["user_id"])

    op.create_table(
        "audit_events",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("team_id", sa.String(length=36), sa.ForeignKey("teams.id", ondelete="SET NULL"), nullable=True),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("actor", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    )
    op.create_index("ix_audit_events_type", "audit_events", ["event_type"])


def downgrade() -> None:
    op.drop_index("ix_audit_events_type", table_name="audit_events")
    op.drop_table("audit_events")
    op.drop_index("ix_point_entries_user", table_name="point_entries")
    op.drop_table("point_entries")
    op.drop_index("ix_key_unlocks_team_level", table_name="key_unlocks")
    op.drop_table("key_unlocks")
    op.drop_table("task_completions")
    op.drop_index("ix_submissions_submitted", table_name="submissions")
    op.drop_index("ix_submissions_task", table_name="submissions")
    op.drop_index("ix_submissions_user", table_name="submissions")
    op.drop_table("submissions")
    op.drop_index("ix_tasks_level", table_name="tasks")
    op.drop_table("tasks")
    op.drop_table("levels")
    op.drop_index("ix_users_team", table_name="users")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
    op.drop_table("teams")
