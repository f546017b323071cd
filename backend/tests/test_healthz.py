from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from questline.main import app


def test_health_reports_persistence_mode(ledger_db: None) -> None:
    response = TestClient(app).get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "persistence_mode": "sqlite"}


def test_database_health_endpoint_success(ledger_db: None) -> None:
    client = TestClient(app)
    response = client.get("/healthz/database")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["pool"]["checkouts"] >= 1
    assert payload["persistence_mode"] == "sqlite"


def test_database_health_endpoint_failure(ledger_db: None, monkeypatch: pytest.MonkeyPatch) -> None:
    client = TestClient(app)

    def raise_runtime_error():
        raise RuntimeError("QUESTLINE_DATABASE_URL must be configured before using the database.")

    monkeypatch.setattr("questline.main.get_engine", raise_runtime_error)
    response = client.get("/healthz/database")
    assert response.status_code == 503
    assert "QUESTLINE_DATABASE_URL" in response.json()["detail"]
