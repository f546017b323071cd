from __future__ import annotations

import types
from pathlib import Path

import pytest
from alembic.config import Config
from sqlalchemy import create_engine, inspect

from scripts import run_migrations as runner


def _config(monkeypatch: pytest.MonkeyPatch, url: str) -> Config:
    monkeypatch.setenv("QUESTLINE_DATABASE_URL", url)
    return runner.get_alembic_config(str(runner.BACKEND_ROOT / "alembic.ini"))


def test_resolve_database_url_prefers_env(monkeypatch: pytest.MonkeyPatch) -> None:
    config = _config(monkeypatch, "sqlite://")
    assert config.get_main_option("sqlalchemy.url") == runner.URL_PLACEHOLDER
    assert runner.resolve_database_url(config) == "sqlite://"
    assert config.get_main_option("sqlalchemy.url") == "sqlite://"


def test_resolve_database_url_requires_configuration(monkeypatch: pytest.MonkeyPatch) -> None:
    config = runner.get_alembic_config(str(runner.BACKEND_ROOT / "alembic.ini"))
    monkeypatch.delenv("QUESTLINE_DATABASE_URL", raising=False)
    with pytest.raises(RuntimeError):
        runner.resolve_database_url(config)


def test_wait_for_database_succeeds_with_sqlite(tmp_path: Path) -> None:
    runner.wait_for_database(f"sqlite:///{tmp_path / 'ready.sqlite'}", timeout=2, poll_interval=0.1)


def test_wait_for_database_times_out(monkeypatch: pytest.MonkeyPatch) -> None:
    class DummyEngine:
        def connect(self) -> types.SimpleNamespace:
            raise runner.OperationalError("SELECT 1", {}, Exception("boom"))

        def dispose(self) -> None:
            pass

    monkeypatch.setattr(runner, "create_engine", lambda *_, **__: DummyEngine())
    with pytest.raises(RuntimeError):
        runner.wait_for_database("postgresql://example", timeout=0, poll_interval=0)


def test_run_migrations_invokes_upgrade(monkeypatch: pytest.MonkeyPatch) -> None:
    config = _config(monkeypatch, "sqlite://")
    recorded: dict[str, object] = {}

    def fake_wait(url: str, *, timeout: int, poll_interval: float) -> None:
        recorded["wait"] = (url, timeout, poll_interval)

    def fake_upgrade(cfg: Config, revision: str) -> None:
        recorded["revision"] = revision
        recorded["script_location"] = cfg.get_main_option("script_location")

    monkeypatch.setattr(runner, "wait_for_database", fake_wait)
    monkeypatch.setattr(runner.command, "upgrade", fake_upgrade)

    runner.run_migrations("head", timeout=5, poll_interval=0.1, config=config, verify=False)

    assert recorded["revision"] == "head"
    assert recorded["wait"] == ("sqlite://", 5, 0.1)
    assert str(recorded["script_location"]).endswith("alembic")


def test_upgrade_creates_every_ledger_table(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    url = f"sqlite:///{tmp_path / 'migrated.sqlite'}"
    config = _config(monkeypatch, url)

    runner.run_migrations("head", timeout=2, poll_interval=0.1, config=config)

    engine = create_engine(url, future=True)
    try:
        tables = set(inspect(engine).get_table_names())
    finally:
        engine.dispose()
    assert {"submissions", "key_unlocks", "point_entries", "task_completions", "audit_events"} <= tables


def test_main_reports_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("QUESTLINE_DATABASE_URL", raising=False)
    assert runner.main(["--timeout", "0"]) == 1
