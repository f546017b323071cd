from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator

import pytest

from questline.config import get_settings
from questline.db import models  # noqa: F401  registers the ledger tables
from questline.db.base import Base
from questline.db.session import dispose_engine, get_engine, session_scope
from questline.domain import Level, Task, TaskCriteria, User
from questline.repositories.ledger import ledger


@dataclass(frozen=True)
class World:
    now: datetime
    level_one: str = "level-1"
    level_two: str = "level-2"


def _setup_db(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    db_path = tmp_path / "questline.db"
    monkeypatch.setenv("QUESTLINE_DATABASE_URL", f"sqlite:///{db_path}")
    get_settings.cache_clear()
    dispose_engine()
    engine = get_engine()
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)


def seed_world(now: datetime) -> World:
    """Two teams, a teamless user, two reviewers and two weekly levels.

    Level 1 is open and holds two key-bearing tasks, one keyless vote and one
    moderated key-bearing task. Level 2 opens next week.
    """
    with session_scope() as session:
        ledger.add_team(session, "team-x", "Team X", "First to the vault")
        ledger.add_team(session, "team-y", "Team Y")
        for user in (
            User(user_id="user-a", email="a@example.com", name="Alice", team_id="team-x"),
            User(user_id="user-b", email="b@example.com", name="Bruno", team_id="team-x"),
            User(user_id="user-c", email="c@example.com", name="Chen", team_id="team-y"),
            User(user_id="user-solo", email="solo@example.com", name="Solo"),
            User(user_id="mod-1", email="mod@example.com", name="Mira", role="mod"),
            User(user_id="admin-1", email="admin@example.com", name="Ada", role="admin"),
        ):
            ledger.add_user(session, user)

        ledger.add_level(
            session,
            Level(
                level_id="level-1",
                week=1,
                title="The Gate",
                opens_at=now - timedelta(days=1),
                closes_at=now + timedelta(days=6),
            ),
        )
        ledger.add_level(
            session,
            Level(
                level_id="level-2",
                week=2,
                title="The Archive",
                opens_at=now + timedelta(days=6),
                closes_at=now + timedelta(days=13),
            ),
        )
        for task in (
            Task(
                task_id="t1",
                level_id="level-1",
                position=0,
                title="Crack the gate cipher",
                criteria=TaskCriteria(kind="cipher", params={"code": "OPEN-SESAME"}),
                points=10,
                key_id="K1",
            ),
            Task(
                task_id="t2",
                level_id="level-1",
                position=1,
                title="Name the first programmer",
                criteria=TaskCriteria(kind="answer", params={"answers": ["Ada Lovelace"]}),
                points=5,
                key_id="K2",
            ),
            Task(
                task_id="t-vote",
                level_id="level-1",
                position=2,
                title="Pick the team mascot",
                criteria=TaskCriteria(kind="choice", params={"choices": ["owl", "fox"]}),
                points=2,
            ),
            Task(
                task_id="t-photo",
                level_id="level-1",
                position=3,
                title="Team photo at the gate",
                criteria=TaskCriteria(kind="manual"),
                points=20,
                key_id="K3",
            ),
            Task(
                task_id="t-archive",
                level_id="level-2",
                position=0,
                title="Find the archive code",
                criteria=TaskCriteria(kind="qr", params={"codes": ["ARCHIVE-42"]}),
                points=15,
                key_id="K4",
            ),
        ):
            ledger.add_task(session, task)
    return World(now=now)


@pytest.fixture
def ledger_db(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    _setup_db(tmp_path, monkeypatch)
    yield
    dispose_engine()
    get_settings.cache_clear()


@pytest.fixture
def world(ledger_db: None) -> World:
    return seed_world(datetime.now(timezone.utc))
