from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import World
from questline.db.session import session_scope
from questline.domain import Level, Task, TaskCriteria
from questline.errors import NotFoundError
from questline.progress import TeamProgressAggregator, progress_percentage
from questline.progression import ProgressionService
from questline.repositories.ledger import ledger


def _service(world: World) -> ProgressionService:
    return ProgressionService(clock=lambda: world.now)


@pytest.mark.parametrize(
    ("unlocked", "key_bearing", "expected"),
    [(0, 0, 0), (0, 3, 0), (1, 3, 33), (2, 3, 66), (3, 3, 100), (4, 3, 100)],
)
def test_percentage_is_floored_and_clamped(unlocked: int, key_bearing: int, expected: int) -> None:
    assert progress_percentage(unlocked, key_bearing) == expected


def test_two_key_level_reaches_one_hundred_percent(world: World) -> None:
    with session_scope() as session:
        ledger.add_level(
            session,
            Level(
                level_id="level-side",
                week=3,
                title="Side quest",
                opens_at=world.now - timedelta(hours=1),
                closes_at=world.now + timedelta(hours=1),
            ),
        )
        for position, (task_id, code, key_id) in enumerate((("s1", "LEFT", "KS1"), ("s2", "RIGHT", "KS2"))):
            ledger.add_task(
                session,
                Task(
                    task_id=task_id,
                    level_id="level-side",
                    position=position,
                    title=task_id,
                    criteria=TaskCriteria(kind="cipher", params={"code": code}),
                    points=1,
                    key_id=key_id,
                ),
            )

    service = _service(world)
    half = service.submit_task("s1", {"code": "left"}, "user-a")
    assert half.progress is not None
    assert half.progress.percentage == 50
    assert half.unlock is not None and not half.unlock.level_complete

    done = service.submit_task("s2", {"code": "right"}, "user-b")
    assert done.progress is not None
    assert done.progress.percentage == 100
    assert done.progress.level_keys == ["KS1", "KS2"]
    assert done.progress.level_complete
    assert done.unlock is not None and done.unlock.level_complete

    progress = service.get_team_progress("team-x", level_id="level-side")
    assert progress.percentage == 100
    assert 3 in progress.completed_weeks


def test_current_level_progress_counts_only_key_bearing_tasks(world: World) -> None:
    service = _service(world)
    service.submit_task("t-vote", {"choice": "owl"}, "user-a")
    assert service.get_team_progress("team-x").percentage == 0

    service.submit_task("t1", {"code": "OPEN-SESAME"}, "user-a")
    progress = service.get_team_progress("team-x")
    assert progress.level_id == "level-1"
    assert progress.week == 1
    # K1 of K1, K2, K3
    assert progress.percentage == 33
    assert progress.total_points == 12
    assert not progress.level_complete


def test_progress_never_decreases_across_submissions(world: World) -> None:
    service = _service(world)
    observed = [service.get_team_progress("team-x").percentage]
    for task_id, payload, user_id in (
        ("t1", {"code": "nope"}, "user-a"),
        ("t1", {"code": "OPEN-SESAME"}, "user-a"),
        ("t1", {"code": "OPEN-SESAME"}, "user-b"),
        ("t2", {"answer": "Charles Babbage"}, "user-b"),
        ("t2", {"answer": "ada lovelace"}, "user-b"),
    ):
        service.submit_task(task_id, payload, user_id)
        observed.append(service.get_team_progress("team-x").percentage)

    assert observed == sorted(observed)
    assert observed[-1] == 66


def test_team_without_unlocks_and_no_current_level(ledger_db: None) -> None:
    with session_scope() as session:
        ledger.add_team(session, "team-z", "Team Z")
        progress = TeamProgressAggregator().compute_progress(session, "team-z")
    assert progress.percentage == 0
    assert progress.level_id is None
    assert progress.unlocked_keys == []
    assert progress.total_points == 0


def test_unknown_team_is_not_found(world: World) -> None:
    with pytest.raises(NotFoundError):
        _service(world).get_team_progress("team-missing")


def test_reset_clears_unlocks_but_keeps_points(world: World) -> None:
    service = _service(world)
    service.submit_task("t1", {"code": "OPEN-SESAME"}, "user-a")
    service.submit_task("t-vote", {"choice": "fox"}, "user-b")

    progress = service.reset_team_progress("team-x", actor="admin-1")

    assert progress.unlocked_keys == []
    assert progress.percentage == 0
    assert progress.total_points == 12
    with session_scope(commit=False) as session:
        assert ledger.completed_task_ids(session, "team-x", "level-1") == set()
        assert ledger.require_team(session, "team-x").unlocked_keys == []
        assert ledger.require_user(session, "user-a").point_total == 10

    again = service.submit_task("t1", {"code": "OPEN-SESAME"}, "user-b")
    assert again.unlock is not None and again.unlock.unlocked


def test_cache_tracks_the_current_level_when_an_older_level_is_still_open(world: World) -> None:
    service = _service(world)
    service.set_level_window("level-2", world.now - timedelta(hours=1), world.now + timedelta(days=7))

    result = service.submit_task("t1", {"code": "OPEN-SESAME"}, "user-a")

    assert result.progress is not None
    assert result.progress.level_id == "level-2"
    current = service.get_team_progress("team-x")
    assert current.level_id == "level-2"
    assert current.percentage == 0
    assert current.unlocked_keys == ["K1"]
    assert service.get_team_progress("team-x", level_id="level-1").percentage == 33
    with session_scope(commit=False) as session:
        team = ledger.require_team(session, "team-x")
        assert team.progress == current.percentage
        assert team.unlocked_keys == ["K1"]


def test_weekly_stats_split_points_and_tasks_by_week(world: World) -> None:
    service = _service(world)
    service.submit_task("t1", {"code": "OPEN-SESAME"}, "user-a")
    service.submit_task("t-vote", {"choice": "owl"}, "user-b")
    service.submit_task("t-vote", {"choice": "fox"}, "user-a")
    service.submit_task("t1", {"code": "OPEN-SESAME"}, "user-c")
    service.set_level_window("level-2", world.now - timedelta(hours=1), world.now + timedelta(days=7))
    service.submit_task("t-archive", {"code": "ARCHIVE-42"}, "user-b")

    progress = service.get_team_progress("team-x")

    assert [stat.model_dump() for stat in progress.weekly_stats] == [
        {"week": 1, "points": 12, "tasks_completed": 2},
        {"week": 2, "points": 15, "tasks_completed": 1},
    ]
    assert progress.total_points == sum(stat.points for stat in progress.weekly_stats)
    other = service.get_team_progress("team-y")
    assert [(stat.week, stat.points, stat.tasks_completed) for stat in other.weekly_stats] == [(1, 10, 1)]
