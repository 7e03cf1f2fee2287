from __future__ import annotations

from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from study_planner.config import Settings, get_settings
from study_planner.db import session as db_session
from study_planner.main import app


@pytest.fixture
def client() -> Iterator[TestClient]:
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _database_settings(url: str = "sqlite://") -> Settings:
    return Settings(STUDY_PLANNER_PERSISTENCE_MODE="database", STUDY_PLANNER_DATABASE_URL=url)


def test_health_reports_persistence_mode(client: TestClient) -> None:
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "persistence": "memory"}


def test_database_health_is_skipped_in_memory_mode(client: TestClient) -> None:
    response = client.get("/healthz/database")
    assert response.status_code == 200
    assert response.json()["status"] == "skipped"


def test_database_health_endpoint_success(client: TestClient, monkeypatch) -> None:
    settings = _database_settings()
    app.dependency_overrides[get_settings] = lambda: settings
    monkeypatch.setattr(db_session, "get_settings", lambda: settings)
    try:
        response = client.get("/healthz/database")
    finally:
        db_session.dispose_engine()

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["pool"]["dialect"] == "sqlite"
    assert {cell["collection"] for cell in payload["cache"]} >= {"subjects", "topics"}


def test_database_health_endpoint_failure(client: TestClient, monkeypatch) -> None:
    app.dependency_overrides[get_settings] = lambda: _database_settings()

    def raise_runtime_error() -> bool:
        raise RuntimeError("missing database url")

    monkeypatch.setattr("study_planner.main.check_connection", raise_runtime_error)
    response = client.get("/healthz/database")
    assert response.status_code == 503
    assert response.json()["detail"] == "Database unavailable: missing database url"
