from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from conftest import World
from questline.domain import Level
from questline.errors import InvalidWindowError, NotFoundError
from questline.levels import resolve_current_level
from questline.progression import ProgressionService

NOW = datetime(2026, 3, 4, 12, 0, tzinfo=timezone.utc)


def _level(week: int, opens_in_days: int, length_days: int = 7) -> Level:
    opens_at = NOW + timedelta(days=opens_in_days)
    return Level(
        level_id=f"level-{week}",
        week=week,
        title=f"Week {week}",
        opens_at=opens_at,
        closes_at=opens_at + timedelta(days=length_days),
    )


def test_level_state_follows_the_window() -> None:
    level = _level(1, 0)
    assert level.state(NOW - timedelta(seconds=1)) == "scheduled"
    assert level.state(NOW) == "open"
    assert level.state(level.closes_at) == "closed"
    # naive datetimes are read as UTC
    assert level.state(NOW.replace(tzinfo=None)) == "open"


def test_current_level_prefers_the_highest_open_week() -> None:
    levels = [_level(1, -3, length_days=30), _level(2, -1), _level(3, 2)]
    assert resolve_current_level(levels, NOW).week == 2


def test_current_level_falls_back_to_latest_opened() -> None:
    levels = [_level(1, -20), _level(2, -10), _level(3, 5)]
    assert resolve_current_level(levels, NOW).week == 2


def test_no_current_level_before_the_season() -> None:
    assert resolve_current_level([_level(1, 3)], NOW) is None
    assert resolve_current_level([], NOW) is None


def test_service_level_lookups(world: World) -> None:
    service = ProgressionService(clock=lambda: world.now)

    assert service.get_current_level().level_id == "level-1"
    assert service.get_level_by_week(2).level_id == "level-2"
    assert [task.task_id for task in service.list_level_tasks("level-1")] == ["t1", "t2", "t-vote", "t-photo"]
    with pytest.raises(NotFoundError):
        service.get_level_by_week(9)
    with pytest.raises(NotFoundError):
        service.list_level_tasks("level-9")


def test_current_level_not_found_before_any_level_opens(world: World) -> None:
    service = ProgressionService(clock=lambda: world.now - timedelta(days=30))
    with pytest.raises(NotFoundError):
        service.get_current_level()


def test_set_level_window_opens_the_next_week(world: World) -> None:
    service = ProgressionService(clock=lambda: world.now)
    level = service.set_level_window("level-2", world.now - timedelta(minutes=5), world.now + timedelta(days=7))

    assert level.state(world.now) == "open"
    assert service.get_current_level().level_id == "level-2"
    accepted = service.submit_task("t-archive", {"code": "archive-42"}, "user-a")
    assert accepted.submission.outcome == "accepted"


def test_set_level_window_rejects_inverted_windows(world: World) -> None:
    service = ProgressionService(clock=lambda: world.now)
    with pytest.raises(InvalidWindowError):
        service.set_level_window("level-2", world.now, world.now)
    with pytest.raises(NotFoundError):
        service.set_level_window("level-9", world.now, world.now + timedelta(days=1))
