"""Catalog load: levels, tasks, teams and users from a JSON document.

Loading is additive. Missing rows are inserted; an existing level only has its
activation window updated; existing tasks, teams and users are left as-is.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, Field, ValidationError, model_validator
from sqlalchemy.orm import Session

from .domain import Level, Role, Task, TaskCriteria, User
from .errors import CatalogError
from .repositories.ledger import LedgerRepository, ledger
from .validators import validator_registry

logger = logging.getLogger(__name__)


class CatalogTask(BaseModel):
    id: str = Field(..., min_length=1, max_length=64)
    title: str
    description: str = ""
    criteria: TaskCriteria
    points: int = Field(default=0, ge=0)
    key_id: Optional[str] = Field(default=None, max_length=64)


class CatalogLevel(BaseModel):
    id: str = Field(..., min_length=1, max_length=36)
    week: int = Field(..., ge=1)
    title: str
    storyline: str = ""
    hint: Optional[str] = None
    opens_at: datetime
    closes_at: datetime
    tasks: List[CatalogTask] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_window(self) -> "CatalogLevel":
        if self.closes_at <= self.opens_at:
            raise ValueError(f"Level {self.id}: closes_at must be later than opens_at")
        return self


class CatalogTeam(BaseModel):
    id: str = Field(..., min_length=1, max_length=36)
    name: str
    slogan: Optional[str] = None


class CatalogUser(BaseModel):
    id: str = Field(..., min_length=1, max_length=36)
    email: str
    name: str
    role: Role = "user"
    title: Optional[str] = None
    team_id: Optional[str] = None


class Catalog(BaseModel):
    levels: List[CatalogLevel] = Field(default_factory=list)
    teams: List[CatalogTeam] = Field(default_factory=list)
    users: List[CatalogUser] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_references(self) -> "Catalog":
        _ensure_unique("level week", [level.week for level in self.levels])
        _ensure_unique("level id", [level.id for level in self.levels])
        tasks = [task for level in self.levels for task in level.tasks]
        _ensure_unique("task id", [task.id for task in tasks])
        _ensure_unique("key id", [task.key_id for task in tasks if task.key_id])
        _ensure_unique("team id", [team.id for team in self.teams])
        _ensure_unique("user id", [user.id for user in self.users])
        _ensure_unique("user email", [user.email.strip().lower() for user in self.users])

        known_kinds = validator_registry.kinds()
        for task in tasks:
            if task.criteria.kind not in known_kinds:
                raise ValueError(f"Task {task.id}: unknown criteria kind '{task.criteria.kind}'")

        team_ids = {team.id for team in self.teams}
        for user in self.users:
            if user.team_id is not None and user.team_id not in team_ids:
                raise ValueError(f"User {user.id}: unknown team '{user.team_id}'")
        return self


class CatalogSummary(BaseModel):
    levels_created: int = 0
    levels_updated: int = 0
    tasks_created: int = 0
    teams_created: int = 0
    users_created: int = 0


def _ensure_unique(label: str, values: List[Any]) -> None:
    seen: Set[Any] = set()
    for value in values:
        if value in seen:
            raise ValueError(f"Duplicate {label}: {value}")
        seen.add(value)


def parse_catalog(document: Dict[str, Any]) -> Catalog:
    try:
        return Catalog.model_validate(document)
    except ValidationError as exc:
        raise CatalogError(f"Invalid catalog: {exc}") from exc


def load_catalog(path: str | Path) -> Catalog:
    catalog_path = Path(path)
    try:
        document = json.loads(catalog_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise CatalogError(f"Unable to read catalog {catalog_path}: {exc}") from exc
    if not isinstance(document, dict):
        raise CatalogError(f"Catalog {catalog_path} must contain a JSON object")
    return parse_catalog(document)


def apply_catalog(session: Session, catalog: Catalog, repository: LedgerRepository = ledger) -> CatalogSummary:
    summary = CatalogSummary()

    for level_entry in catalog.levels:
        existing = repository.get_level(session, level_entry.id)
        if existing is None:
            clash = repository.get_level_by_week(session, level_entry.week)
            if clash is not None:
                raise CatalogError(f"Week {level_entry.week} already belongs to level {clash.level_id}")
            repository.add_level(
                session,
                Level(
                    level_id=level_entry.id,
                    week=level_entry.week,
                    title=level_entry.title,
                    storyline=level_entry.storyline,
                    hint=level_entry.hint,
                    opens_at=level_entry.opens_at,
                    closes_at=level_entry.closes_at,
                ),
            )
            summary.levels_created += 1
        elif (existing.opens_at, existing.closes_at) != (level_entry.opens_at, level_entry.closes_at):
            repository.set_level_window(session, level_entry.id, level_entry.opens_at, level_entry.closes_at)
            summary.levels_updated += 1

        for position, task_entry in enumerate(level_entry.tasks):
            current = repository.get_task(session, task_entry.id)
            if current is not None:
                if current.level_id != level_entry.id:
                    logger.warning("Task %s belongs to level %s; catalog entry ignored", current.task_id, current.level_id)
                continue
            repository.add_task(
                session,
                Task(
                    task_id=task_entry.id,
                    level_id=level_entry.id,
                    position=position,
                    title=task_entry.title,
                    description=task_entry.description,
                    criteria=task_entry.criteria,
                    points=task_entry.points,
                    key_id=task_entry.key_id,
                ),
            )
            summary.tasks_created += 1

    for team_entry in catalog.teams:
        if repository.get_team(session, team_entry.id) is None:
            repository.add_team(session, team_entry.id, team_entry.name, team_entry.slogan)
            summary.teams_created += 1

    for user_entry in catalog.users:
        if repository.get_user(session, user_entry.id) is None:
            repository.add_user(
                session,
                User(
                    user_id=user_entry.id,
                    email=user_entry.email,
                    name=user_entry.name,
                    role=user_entry.role,
                    title=user_entry.title,
                    team_id=user_entry.team_id,
                ),
            )
            summary.users_created += 1

    logger.info("Catalog applied: %s", summary.model_dump())
    return summary


__all__ = [
    "Catalog",
    "CatalogLevel",
    "CatalogSummary",
    "CatalogTask",
    "CatalogTeam",
    "CatalogUser",
    "apply_catalog",
    "load_catalog",
    "parse_catalog",
]
