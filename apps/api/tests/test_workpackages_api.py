from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from bdcrm import events
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
def clear_stubs() -> Generator[None, None, None]:
    events.published_events.clear()
    get_settings.cache_clear()
    yield
    events.published_events.clear()
    get_settings.cache_clear()


@pytest.fixture()
def roles() -> list[str]:
    return ["workpackages.write"]


@pytest.fixture()
def client(db_session: Session, roles: list[str]) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_auth_user() -> AuthUser:
        return AuthUser(sub="planner-1", roles=roles)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[auth_get_current_user] = override_auth_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _create_work_package(client: TestClient, effective_start_date: str | None = "2025-01-01") -> dict:
    response = client.post(
        "/api/workpackages",
        json={
            "title": "Content programme",
            "effective_start_date": effective_start_date,
            "phases": [
                {
                    "name": "Research",
                    "position": 1,
                    "items": [{"deliverable_label": "Interview", "quantity": 5, "estimated_hours_each": "8"}],
                },
                {
                    "name": "Writing",
                    "position": 2,
                    "items": [{"deliverable_label": "Article", "quantity": 3, "estimated_hours_each": "8"}],
                },
            ],
        },
    )
    assert response.status_code == 201
    return response.json()


def test_create_work_package_schedules_phases(client: TestClient) -> None:
    work_package = _create_work_package(client)

    phases = work_package["phases"]
    assert [phase["position"] for phase in phases] == [1, 2]
    assert [(phase["estimated_start_date"], phase["estimated_end_date"]) for phase in phases] == [
        ("2025-01-01", "2025-01-06"),
        ("2025-01-07", "2025-01-10"),
    ]
    assert [phase["phase_total_duration"] for phase in phases] == [5, 3]

    fetched = client.get(f"/api/workpackages/{work_package['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["timeline_version"] == work_package["timeline_version"]


def test_create_rejects_duplicate_positions(client: TestClient) -> None:
    response = client.post(
        "/api/workpackages",
        json={
            "title": "Broken",
            "phases": [{"name": "A", "position": 1}, {"name": "B", "position": 1}],
        },
    )
    assert response.status_code == 422


def test_duration_patch_cascades(client: TestClient) -> None:
    work_package = _create_work_package(client)
    first_id = work_package["phases"][0]["id"]

    response = client.patch(f"/api/workpackages/phases/{first_id}/dates", json={"phase_total_duration": 8})
    assert response.status_code == 200
    assert response.json()["estimated_end_date"] == "2025-01-09"

    fetched = client.get(f"/api/workpackages/{work_package['id']}").json()
    second = fetched["phases"][1]
    assert (second["estimated_start_date"], second["estimated_end_date"]) == ("2025-01-10", "2025-01-13")
    assert fetched["timeline_version"] > work_package["timeline_version"]


def test_negative_duration_returns_error_envelope(client: TestClient) -> None:
    work_package = _create_work_package(client)
    first_id = work_package["phases"][0]["id"]

    response = client.patch(
        f"/api/workpackages/phases/{first_id}/dates",
        json={"phase_total_duration": -1},
        headers={"X-Correlation-Id": "corr-neg-1"},
    )
    assert response.status_code == 422
    body = response.json()
    assert body["code"] == "workpackage_phase_dates_failed"
    assert body["correlation_id"] == "corr-neg-1"
    assert "negative" in body["message"]


def test_non_integer_duration_rejected_by_schema(client: TestClient) -> None:
    work_package = _create_work_package(client)
    first_id = work_package["phases"][0]["id"]

    response = client.patch(f"/api/workpackages/phases/{first_id}/dates", json={"phase_total_duration": 2.5})
    assert response.status_code == 422


def test_status_update(client: TestClient) -> None:
    work_package = _create_work_package(client)
    first_id = work_package["phases"][0]["id"]

    response = client.put(f"/api/workpackages/phases/{first_id}/status", json={"status": "in_progress"})
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "in_progress"
    assert body["actual_start_date"] is not None

    invalid = client.put(f"/api/workpackages/phases/{first_id}/status", json={"status": "archived"})
    assert invalid.status_code == 422


def test_unknown_phase_returns_404_envelope(client: TestClient) -> None:
    response = client.put(f"/api/workpackages/phases/{uuid.uuid4()}/status", json={"status": "completed"})
    assert response.status_code == 404
    body = response.json()
    assert body["code"] == "workpackage_phase_status_failed"
    assert body["message"] == "phase not found"
    assert body["correlation_id"] == response.headers.get("x-correlation-id")


def test_effective_start_date_and_timeline(client: TestClient) -> None:
    work_package = _create_work_package(client, effective_start_date=None)
    assert all(phase["estimated_start_date"] is None for phase in work_package["phases"])

    updated = client.put(
        f"/api/workpackages/{work_package['id']}/effective-start-date",
        json={"effective_start_date": "2025-05-05"},
    )
    assert updated.status_code == 200
    assert updated.json()["phases"][0]["estimated_start_date"] == "2025-05-05"

    timeline = client.get(f"/api/workpackages/{work_package['id']}/timeline", params={"today": "2025-05-09"})
    assert timeline.status_code == 200
    body = timeline.json()
    assert body["estimated_start_date"] == "2025-05-05"
    assert body["estimated_end_date"] == "2025-05-14"
    assert body["current_phase_id"] == work_package["phases"][0]["id"]
    assert [phase["timeline_status"] for phase in body["phases"]] == ["due_soon", "on_track"]


def test_rebuild_and_recompute_endpoints(client: TestClient) -> None:
    work_package = _create_work_package(client)
    first_id = work_package["phases"][0]["id"]

    recomputed = client.post(f"/api/workpackages/phases/{first_id}/recompute-duration", json={"hours_override": "20"})
    assert recomputed.status_code == 200
    assert recomputed.json()["phase_total_duration"] == 3

    rebuilt = client.post(f"/api/workpackages/{work_package['id']}/timeline/rebuild")
    assert rebuilt.status_code == 200
    assert [(phase["estimated_start_date"], phase["estimated_end_date"]) for phase in rebuilt.json()] == [
        ("2025-01-01", "2025-01-04"),
        ("2025-01-05", "2025-01-08"),
    ]

    recompute_all = client.post(f"/api/workpackages/{work_package['id']}/phases/recompute-durations")
    assert recompute_all.status_code == 200
    assert [phase["phase_total_duration"] for phase in recompute_all.json()] == [5, 3]


@pytest.mark.parametrize("roles", [["guest"]])
def test_writes_require_role(client: TestClient, roles: list[str]) -> None:
    assert roles == ["guest"]
    response = client.post("/api/workpackages", json={"title": "No access"})
    assert response.status_code == 403
    assert response.json()["message"] == "Missing permission: workpackages.write"


def test_missing_work_package(client: TestClient) -> None:
    response = client.get(f"/api/workpackages/{uuid.uuid4()}/timeline")
    assert response.status_code == 404
    assert response.json()["code"] == "workpackage_timeline_read_failed"


def test_me_reports_timeline_permission(client: TestClient) -> None:
    response = client.get("/me")
    assert response.status_code == 200
    assert response.json() == {"sub": "planner-1", "roles": ["workpackages.write"], "can_edit_timelines": True}


def test_ready_checks_database(client: TestClient) -> None:
    response = client.get("/ready")
    assert response.status_code == 200
    assert response.json() == {"status": "ready"}
