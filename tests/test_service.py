"""Tests for the dashboard service."""

import pytest

from biodash.config import EngineConfig
from biodash.engine.cohort_filters import CohortFilters
from biodash.engine.models import EmptyHourPolicy
from biodash.service import AccessDeniedError, DashboardService
from biodash.storage import JsonDocumentStore, StoreUnavailableError, UserNotFoundError


class TestUserAgp:

    @pytest.mark.asyncio
    async def test_patient_views_own_report(self, service) -> None:
        report = await service.user_agp("alice", "alice", "glucose")
        assert report["ranges"]["useDefault"] is False
        assert report["statistics"]["readingCount"] == 12
        assert report["percentages"]["percentile_50"][20] == 100

    @pytest.mark.asyncio
    async def test_null_policy(self, service) -> None:
        report = await service.user_agp("alice", "alice", "glucose", EmptyHourPolicy.NULL)
        assert report["percentages"]["percentile_50"][20] is None

    @pytest.mark.asyncio
    async def test_patient_cannot_view_others(self, service) -> None:
        with pytest.raises(AccessDeniedError):
            await service.user_agp("carol", "alice", "glucose")

    @pytest.mark.asyncio
    async def test_unknown_user(self, service) -> None:
        with pytest.raises(UserNotFoundError):
            await service.user_agp("admin", "nobody", "glucose")

    @pytest.mark.asyncio
    async def test_unsupported_biomarker(self, service) -> None:
        with pytest.raises(ValueError):
            await service.user_agp("admin", "alice", "insulin")

    @pytest.mark.asyncio
    async def test_date_window(self, service) -> None:
        filters = CohortFilters.from_mapping({"startDate": "2024-03-02"})
        report = await service.user_agp("admin", "bob", "glucose", filters=filters)
        assert report["hasData"] is False

    @pytest.mark.asyncio
    async def test_date_window_uses_display_timezone(self, store) -> None:
        # bob's readings run 00:00-11:00 UTC on March 1, i.e. from 19:00 on Feb 29 in New York
        service = DashboardService(store, EngineConfig(display_timezone="America/New_York"))
        march_1 = CohortFilters.from_mapping({"startDate": "2024-03-01"})
        report = await service.user_agp("bob", "bob", "glucose", filters=march_1)
        assert report["statistics"]["readingCount"] == 7

        feb_29 = CohortFilters.from_mapping({"endDate": "2024-02-29"})
        report = await service.user_agp("bob", "bob", "glucose", filters=feb_29)
        assert report["statistics"]["readingCount"] == 5

    @pytest.mark.asyncio
    async def test_minutes_per_reading_from_config(self, store) -> None:
        service = DashboardService(store, EngineConfig(minutes_per_reading=5, display_timezone="UTC"))
        report = await service.user_agp("bob", "bob", "glucose")
        assert report["statistics"]["totalWearTimeMinutes"] == 60


@pytest.mark.asyncio
async def test_compare_agp(service) -> None:
    reports = await service.compare_agp("dr_house", ["alice", "bob"], "glucose")
    assert [r["username"] for r in reports] == ["alice", "bob"]
    assert reports[1]["statistics"]["percentAbove180"] == 50


@pytest.mark.asyncio
async def test_applicable_ranges(service) -> None:
    ranges = await service.applicable_ranges("dr_house", "alice", "glucose")
    assert ranges["matchedConditions"] == ["pregnancy"]
    assert ranges["ranges"]["target"] == {"min": 63, "max": 140}

    ranges = await service.applicable_ranges("admin", "bob", "glucose")
    assert ranges["useDefault"] is True
    assert ranges["conditions"] == ["type2_diabetes"]


class TestPopulation:

    @pytest.mark.asyncio
    async def test_admin_cohort(self, service) -> None:
        payload = await service.population_analysis("admin", "glucose")
        assert payload["overall"]["userCount"] == 3
        assert payload["overall"]["averageTimeInTarget"] == 66.7
        assert payload["pregnancy"]["userCount"] == 1

    @pytest.mark.asyncio
    async def test_doctor_cohort_excludes_other_patients(self, service) -> None:
        payload = await service.population_analysis("dr_house", "glucose")
        assert payload["overall"]["userCount"] == 2
        assert payload["general"]["userCount"] == 0

    @pytest.mark.asyncio
    async def test_filtered_cohort(self, service) -> None:
        payload = await service.population_analysis(
            "admin", "glucose", CohortFilters(genders=["F"])
        )
        assert payload["general"]["userCount"] == 2
        assert payload["pregnancy"]["userCount"] == 0

    @pytest.mark.asyncio
    async def test_min_observations_from_config(self, store) -> None:
        service = DashboardService(store, EngineConfig(min_observations_per_user=13))
        payload = await service.population_analysis("admin", "glucose")
        assert payload["overall"]["userCount"] == 0

    @pytest.mark.asyncio
    async def test_unknown_identity_gets_empty_cohort(self, service) -> None:
        payload = await service.population_analysis("mallory", "glucose")
        assert payload["overall"]["userCount"] == 0


@pytest.mark.asyncio
async def test_aggregated_distribution(service) -> None:
    result = await service.aggregated_distribution(
        "admin", "glucose", CohortFilters(arms=["left"]), moving_average_window=3
    )
    assert result["userCount"] == 2
    assert result["distribution"]["count"] == 24
    assert len(result["timeSeries"]) == 12


@pytest.mark.asyncio
async def test_store_outage_propagates(tmp_path) -> None:
    service = DashboardService(JsonDocumentStore(str(tmp_path / "gone.json")))
    with pytest.raises(StoreUnavailableError):
        await service.population_analysis("admin", "glucose")
