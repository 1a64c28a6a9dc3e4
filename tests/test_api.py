"""Tests for the HTTP layer."""

import pytest
from fastapi.testclient import TestClient

from biodash.config import AppConfig, EngineConfig
from biodash.main import create_app, get_service
from biodash.service import DashboardService
from biodash.storage import JsonDocumentStore


@pytest.fixture
def client(service):
    app = create_app(AppConfig())
    app.dependency_overrides[get_service] = lambda: service
    return TestClient(app)


def _as(username: str):
    return {"X-Username": username}


def test_health(client) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_missing_identity(client) -> None:
    response = client.get("/user-glucose-agp/alice")
    assert response.status_code == 401


def test_glucose_agp(client) -> None:
    response = client.get("/user-glucose-agp/alice", headers=_as("alice"))
    assert response.status_code == 200
    body = response.json()
    assert body["statistics"]["percentBetween70And180"] == 100
    assert len(body["percentages"]["percentile_50"]) == 24
    assert body["percentages"]["percentile_50"][20] == 100


def test_cortisol_agp_without_readings(client) -> None:
    body = client.get("/user-cortisol-agp/alice", headers=_as("alice")).json()
    assert body["hasData"] is False
    assert body["statistics"]["percentBetween10And30"] == 0


def test_generic_agp_keeps_empty_hours_null(client) -> None:
    body = client.get(
        "/user-agp/bob/glucose", params={"startDate": "2024-03-01"}, headers=_as("dr_house")
    ).json()
    assert body["statistics"]["readingCount"] == 12
    assert body["percentages"]["percentile_50"][20] is None


def test_access_denied(client) -> None:
    response = client.get("/user-glucose-agp/alice", headers=_as("carol"))
    assert response.status_code == 403


def test_unknown_user(client) -> None:
    response = client.get("/user-glucose-agp/nobody", headers=_as("admin"))
    assert response.status_code == 404


def test_unsupported_biomarker(client) -> None:
    response = client.get("/user-agp/alice/insulin", headers=_as("admin"))
    assert response.status_code == 400
    assert "insulin" in response.json()["error"]


def test_compare_agp(client) -> None:
    response = client.get(
        "/compare-agp/glucose", params={"usernames": ["alice", "bob"]}, headers=_as("admin")
    )
    assert [r["username"] for r in response.json()] == ["alice", "bob"]


def test_applicable_ranges(client) -> None:
    body = client.get("/user-applicable-ranges/alice/glucose", headers=_as("alice")).json()
    assert body["useDefault"] is False
    assert body["matchedConditions"] == ["pregnancy"]


def test_population_analysis(client) -> None:
    body = client.get("/population-analysis/glucose", headers=_as("admin")).json()
    assert set(body) == {"pregnancy", "diabetes", "general", "overall"}
    assert body["overall"]["averageTimeInTarget"] == 66.7


def test_filtered_population_analysis(client) -> None:
    response = client.post(
        "/population-analysis/glucose",
        json={"genders": ["F"], "ageMin": 30},
        headers=_as("admin"),
    )
    body = response.json()
    assert body["general"]["userCount"] == 1
    assert body["overall"]["userCount"] == 1


def test_aggregated_distribution(client) -> None:
    response = client.post(
        "/aggregated-distribution/glucose",
        json={"movingAverageWindow": 3, "maxTimePoints": 4, "filters": {"userIDs": ["U2"]}},
        headers=_as("admin"),
    )
    body = response.json()
    assert body["userCount"] == 1
    assert len(body["timeSeries"]) == 4


def test_aggregated_distribution_bad_window(client) -> None:
    response = client.post(
        "/aggregated-distribution/glucose",
        json={"movingAverageWindow": "wide"},
        headers=_as("admin"),
    )
    assert response.status_code == 400


def test_store_outage(tmp_path) -> None:
    app = create_app(AppConfig())
    broken = DashboardService(
        JsonDocumentStore(str(tmp_path / "gone.json")), EngineConfig(display_timezone="UTC")
    )
    app.dependency_overrides[get_service] = lambda: broken
    response = TestClient(app).get("/population-analysis/glucose", headers=_as("admin"))
    assert response.status_code == 503
