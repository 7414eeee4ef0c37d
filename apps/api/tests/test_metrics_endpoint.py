from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from bdcrm.core.auth import AuthUser, get_current_user as auth_get_current_user
from bdcrm.core.config import get_settings
from bdcrm.core.database import Base, get_db
from bdcrm.main import app


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def configure_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("METRICS_ENABLED", "true")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def roles() -> list[str]:
    return ["system.metrics.read", "workpackages.write"]


@pytest.fixture()
def client(db_session: Session, roles: list[str]) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_auth_user() -> AuthUser:
        return AuthUser(sub="metrics-admin", roles=roles)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[auth_get_current_user] = override_auth_user

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def test_metrics_endpoint_exposes_http_and_timeline_metrics(client: TestClient) -> None:
    health = client.get("/health")
    assert health.status_code == 200

    created = client.post(
        "/api/workpackages",
        json={
            "title": "Metrics package",
            "effective_start_date": "2025-01-01",
            "phases": [
                {"name": "One", "position": 1, "items": [{"deliverable_label": "a", "quantity": 1, "estimated_hours_each": "8"}]},
                {"name": "Two", "position": 2, "items": [{"deliverable_label": "b", "quantity": 1, "estimated_hours_each": "8"}]},
            ],
        },
    )
    assert created.status_code == 201
    phases = created.json()["phases"]

    edited = client.patch(f"/api/workpackages/phases/{phases[0]['id']}/dates", json={"phase_total_duration": 3})
    assert edited.status_code == 200

    status_change = client.put(f"/api/workpackages/phases/{phases[1]['id']}/status", json={"status": "completed"})
    assert status_change.status_code == 200

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    body = metrics.text

    assert "http_requests_total" in body
    assert "http_request_duration_seconds" in body
    assert "workpackage_timeline_cascades_total" in body
    assert "workpackage_timeline_shifted_phases" in body
    assert "workpackage_duration_recomputes_total" in body

    assert 'path="/health"' in body
    assert 'path="/api/workpackages/phases/{id}/dates"' in body
    assert 'trigger="date_edit"' in body
    assert 'status="completed"' in body


@pytest.mark.parametrize("roles", [["workpackages.write"]])
def test_metrics_requires_permission(client: TestClient, roles: list[str]) -> None:
    response = client.get("/metrics")
    assert response.status_code == 403


def test_metrics_disabled(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("METRICS_ENABLED", "false")
    get_settings.cache_clear()

    response = client.get("/metrics")
    assert response.status_code == 404
