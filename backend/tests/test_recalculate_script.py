from __future__ import annotations

import json

import pytest
from sqlalchemy.orm import Session

from conftest import World
from questline.db.session import session_scope
from questline.repositories.ledger import ledger
from scripts import recalculate_points


def test_script_prints_report_and_repairs_totals(world: World, capsys: pytest.CaptureFixture[str]) -> None:
    with session_scope() as session:
        ledger.set_user_point_total(session, "user-b", 12)

    assert recalculate_points.main([]) == 0

    report = json.loads(capsys.readouterr().out)
    assert report["users_updated"] == 6
    assert report["users_changed"] == 1
    assert report["errors"] == []
    with session_scope(commit=False) as session:
        assert ledger.require_user(session, "user-b").point_total == 0


def test_strict_mode_fails_on_user_errors(
    world: World, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    from questline.points import PointsRecalculator

    original = PointsRecalculator.recalculate_user

    def flaky(self: PointsRecalculator, session: Session, user_id: str) -> tuple[int, bool]:
        if user_id == "user-c":
            raise RuntimeError("boom")
        return original(self, session, user_id)

    monkeypatch.setattr(PointsRecalculator, "recalculate_user", flaky)

    assert recalculate_points.main([]) == 0
    assert recalculate_points.main(["--strict"]) == 1
    reports = [json.loads(line) for line in capsys.readouterr().out.splitlines()]
    assert [report["users_failed"] for report in reports] == [1, 1]


def test_fatal_error_exits_one(world: World, monkeypatch: pytest.MonkeyPatch) -> None:
    from questline.points import PointsRecalculator

    def unavailable(self: PointsRecalculator) -> None:
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(PointsRecalculator, "recalculate_all", unavailable)
    assert recalculate_points.main([]) == 1
