from __future__ import annotations

import threading
import warnings
from datetime import timedelta

import pytest
from sqlalchemy.exc import SADeprecationWarning

from conftest import World
from questline.db.session import session_scope
from questline.progression import ProgressionService
from questline.repositories.ledger import ledger
from questline.unlock_engine import UnlockEngine, UnlockStatus

CORRECT = {"code": "OPEN-SESAME"}


def _service(world: World) -> ProgressionService:
    return ProgressionService(clock=lambda: world.now)


def test_correct_submission_unlocks_key_and_credits_points(world: World) -> None:
    result = _service(world).submit_task("t1", CORRECT, "user-a")

    assert result.submission.outcome == "accepted"
    assert result.unlock is not None
    assert result.unlock.status == UnlockStatus.UNLOCKED
    assert result.unlock.key_id == "K1"
    assert result.unlock.points_awarded == 10
    assert result.progress is not None
    assert result.progress.unlocked_keys == ["K1"]

    with session_scope(commit=False) as session:
        assert [unlock.submission_id for unlock in ledger.list_key_unlocks(session, "team-x")] == [
            result.submission.submission_id
        ]
        assert ledger.sum_point_entries_by_user(session, "user-a") == 10
        assert ledger.require_user(session, "user-a").point_total == 10
        assert ledger.require_team(session, "team-x").unlocked_keys == ["K1"]


def test_wrong_submission_is_recorded_without_side_effects(world: World) -> None:
    result = _service(world).submit_task("t1", {"code": "WRONG"}, "user-c")

    assert result.submission.outcome == "rejected"
    assert result.submission.reason == "wrong_answer"
    assert result.unlock is None
    with session_scope(commit=False) as session:
        assert len(ledger.list_submissions(session, user_id="user-c")) == 1
        assert ledger.list_key_unlocks(session, "team-y") == []
        assert ledger.count_point_entries(session) == 0
        assert ledger.require_user(session, "user-c").point_total == 0


def test_teammate_resubmission_has_no_further_effect(world: World) -> None:
    service = _service(world)
    first = service.submit_task("t1", CORRECT, "user-a")
    second = service.submit_task("t1", CORRECT, "user-b")

    assert second.submission.outcome == "accepted"
    assert second.unlock is not None
    assert second.unlock.status == UnlockStatus.ALREADY_UNLOCKED
    assert second.unlock.points_awarded == 0
    assert second.progress is None
    with session_scope(commit=False) as session:
        unlocks = ledger.list_key_unlocks(session, "team-x")
        assert [unlock.submission_id for unlock in unlocks] == [first.submission.submission_id]
        assert ledger.count_point_entries(session) == 1
        assert ledger.require_user(session, "user-b").point_total == 0


def test_other_team_unlocks_the_same_key_independently(world: World) -> None:
    service = _service(world)
    service.submit_task("t1", CORRECT, "user-a")
    other = service.submit_task("t1", CORRECT, "user-c")

    assert other.unlock is not None
    assert other.unlock.status == UnlockStatus.UNLOCKED
    with session_scope(commit=False) as session:
        assert [unlock.key_id for unlock in ledger.list_key_unlocks(session, "team-y")] == ["K1"]


def test_teamless_user_is_recorded_but_unlocks_nothing(world: World) -> None:
    result = _service(world).submit_task("t1", CORRECT, "user-solo")

    assert result.submission.outcome == "accepted"
    assert result.unlock is not None
    assert result.unlock.status == UnlockStatus.NO_TEAM
    with session_scope(commit=False) as session:
        assert ledger.count_point_entries(session) == 0


def test_keyless_task_completes_at_most_once_per_team(world: World) -> None:
    service = _service(world)
    first = service.submit_task("t-vote", {"choice": "owl"}, "user-a")
    second = service.submit_task("t-vote", {"choice": "fox"}, "user-b")

    assert first.unlock is not None and first.unlock.status == UnlockStatus.UNLOCKED
    assert first.unlock.key_id is None
    assert first.unlock.points_awarded == 2
    assert second.unlock is not None and second.unlock.status == UnlockStatus.ALREADY_UNLOCKED
    with session_scope(commit=False) as session:
        assert ledger.completed_task_ids(session, "team-x", "level-1") == {"t-vote"}
        assert ledger.list_key_unlocks(session, "team-x") == []
        assert ledger.count_point_entries(session) == 1


def test_guarded_insert_reports_the_lost_race(world: World) -> None:
    result = _service(world).submit_task("t1", {"code": "WRONG"}, "user-a")
    submission_id = result.submission.submission_id

    with session_scope() as session:
        assert ledger.try_insert_key_unlock(
            session, "team-x", "K1", task_id="t1", level_id="level-1", submission_id=submission_id
        )
        assert not ledger.try_insert_key_unlock(
            session, "team-x", "K1", task_id="t1", level_id="level-1", submission_id=submission_id
        )
        assert ledger.insert_point_entry(session, "user-a", submission_id, task_id="t1", amount=10)
        assert not ledger.insert_point_entry(session, "user-a", submission_id, task_id="t1", amount=10)
        # the session stays usable after a lost race
        assert len(ledger.list_key_unlocks(session, "team-x")) == 1

    with session_scope(commit=False) as session:
        assert ledger.count_point_entries(session) == 1


def test_engine_refuses_submissions_that_were_not_accepted(world: World) -> None:
    result = _service(world).submit_task("t1", {"code": "WRONG"}, "user-a")
    with session_scope(commit=False) as session:
        task = ledger.require_task(session, "t1")
        with pytest.raises(ValueError):
            UnlockEngine().apply(session, result.submission, task, now=world.now)


def test_out_of_window_submission_is_rejected(world: World) -> None:
    service = _service(world)
    early = service.submit_task("t-archive", {"code": "ARCHIVE-42"}, "user-a")
    late = service.submit_task("t1", CORRECT, "user-a", now=world.now + timedelta(days=7))

    assert early.submission.reason == "level_not_open"
    assert late.submission.reason == "level_closed"
    with session_scope(commit=False) as session:
        assert ledger.list_key_unlocks(session, "team-x") == []


def test_concurrent_teammates_unlock_exactly_once(world: World) -> None:
    service = _service(world)
    barrier = threading.Barrier(2)
    results = {}
    errors = []

    def submit(user_id: str) -> None:
        try:
            barrier.wait(timeout=5)
            results[user_id] = service.submit_task("t1", CORRECT, user_id)
        except Exception as exc:  # noqa: BLE001
            errors.append(exc)

    threads = [threading.Thread(target=submit, args=(user_id,)) for user_id in ("user-a", "user-b")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert errors == []
    assert {result.submission.outcome for result in results.values()} == {"accepted"}
    statuses = sorted(result.unlock.status.value for result in results.values())
    assert statuses == ["already_unlocked", "unlocked"]
    winner = next(result for result in results.values() if result.unlock.unlocked)

    with session_scope(commit=False) as session:
        assert len(ledger.list_submissions(session, task_id="t1")) == 2
        unlocks = ledger.list_key_unlocks(session, "team-x")
        assert [unlock.submission_id for unlock in unlocks] == [winner.submission.submission_id]
        assert ledger.count_point_entries(session) == 1
        assert ledger.sum_point_entries_by_user(session, winner.submission.user_id) == 10


def test_submission_path_raises_no_sqlalchemy_deprecations(world: World) -> None:
    service = _service(world)
    with warnings.catch_warnings():
        warnings.simplefilter("error", SADeprecationWarning)
        result = service.submit_task("t1", {"code": "OPEN-SESAME"}, "user-a")
        service.set_level_window("level-2", world.now - timedelta(hours=1), world.now + timedelta(days=7))
    assert result.unlock is not None and result.unlock.unlocked
