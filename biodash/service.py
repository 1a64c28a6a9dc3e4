"""
Dashboard service.

Boundary between the pure engine and the document store: fetches users,
sensor records and range configurations through an injected `DataAccess`,
then hands plain data to the engine. Per-user work in population requests
runs concurrently, bounded by a semaphore.
"""

import asyncio
from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog

from .config import EngineConfig
from .engine.cohort_filters import CohortFilters
from .engine.distribution import aggregate_distribution
from .engine.models import EmptyHourPolicy, UserRecord
from .engine.pipeline import build_agp_report
from .engine.population import aggregate_population, population_payload
from .engine.profiles import get_profile
from .engine.range_resolver import describe_applicable_ranges, lookup_from_mapping
from .storage import DataAccess


logger = structlog.get_logger(__name__)


class AccessDeniedError(PermissionError):
    """Raised when the caller may not see the requested user."""
    pass


class DashboardService:
    """
    Answers the dashboard's statistics requests for an authenticated identity.

    Authentication happens upstream; this class only checks that requested
    users are within the identity's accessible set.
    """

    def __init__(self, store: DataAccess, config: Optional[EngineConfig] = None) -> None:
        self.store = store
        self.config = config or EngineConfig()
        self.logger = logger.bind(component="dashboard_service")

    async def _authorized_user(self, identity: str, username: str) -> UserRecord:
        user, accessible = await asyncio.gather(
            self.store.get_user(username),
            self.store.accessible_usernames(identity),
        )
        if username not in accessible:
            raise AccessDeniedError(f"{identity} may not view {username}")
        return user

    async def _lookup(self, biomarker: str):
        return lookup_from_mapping(await self.store.get_range_configs(biomarker))

    async def user_agp(
        self,
        identity: str,
        username: str,
        biomarker: str,
        empty_hour_policy: EmptyHourPolicy = EmptyHourPolicy.MEAN_SCALED,
        filters: Optional[CohortFilters] = None,
    ) -> Dict[str, Any]:
        """AGP statistics and percentile bands for one user."""
        profile = get_profile(biomarker)
        user = await self._authorized_user(identity, username)
        record, lookup = await asyncio.gather(
            self.store.get_sensor_record(user.etag),
            self._lookup(profile.name),
        )
        report = build_agp_report(
            user,
            record,
            lookup,
            profile.name,
            empty_hour_policy=empty_hour_policy,
            tz=self.config.tzinfo(),
            minutes_per_reading=self.config.minutes_per_reading,
            filters=filters,
        )
        self.logger.info(
            "user_agp_computed",
            username=username,
            biomarker=profile.name,
            readings=report["statistics"]["readingCount"],
        )
        return report

    async def compare_agp(
        self,
        identity: str,
        usernames: Sequence[str],
        biomarker: str,
    ) -> List[Dict[str, Any]]:
        """Side-by-side AGP reports; empty hours stay null for comparison."""
        return list(await asyncio.gather(*[
            self.user_agp(identity, username, biomarker, EmptyHourPolicy.NULL)
            for username in usernames
        ]))

    async def applicable_ranges(
        self,
        identity: str,
        username: str,
        biomarker: str,
    ) -> Dict[str, Any]:
        """Which reference ranges apply to a user, and why."""
        profile = get_profile(biomarker)
        user = await self._authorized_user(identity, username)
        lookup = await self._lookup(profile.name)
        return describe_applicable_ranges(
            user.personal_attributes, user.device_attributes, profile.name, lookup
        )

    async def _fetch_cohort(
        self,
        identity: str,
        filters: CohortFilters,
    ) -> List[Tuple[UserRecord, Optional[Dict[str, Any]]]]:
        accessible = set(await self.store.accessible_usernames(identity))
        users = filters.filter_users([
            user for user in await self.store.list_users() if user.username in accessible
        ])
        semaphore = asyncio.Semaphore(self.config.max_concurrent_users)

        async def _fetch(user: UserRecord) -> Tuple[UserRecord, Optional[Dict[str, Any]]]:
            async with semaphore:
                return user, await self.store.get_sensor_record(user.etag)

        return list(await asyncio.gather(*[_fetch(user) for user in users]))

    async def population_analysis(
        self,
        identity: str,
        biomarker: str,
        filters: Optional[CohortFilters] = None,
    ) -> Dict[str, Any]:
        """Per-bucket time-in-range averages over the accessible cohort."""
        profile = get_profile(biomarker)
        filters = filters or CohortFilters()
        cohort, lookup = await asyncio.gather(
            self._fetch_cohort(identity, filters),
            self._lookup(profile.name),
        )
        summaries = aggregate_population(
            cohort,
            lookup,
            profile.name,
            filters,
            min_observations=self.config.min_observations_per_user,
            minutes_per_reading=self.config.minutes_per_reading,
            tz=self.config.tzinfo(),
        )
        self.logger.info(
            "population_analysis_computed",
            biomarker=profile.name,
            cohort_size=len(cohort),
            included=summaries["overall"].user_count,
            filtered=not filters.is_empty(),
        )
        return population_payload(summaries)

    async def aggregated_distribution(
        self,
        identity: str,
        biomarker: str,
        filters: Optional[CohortFilters] = None,
        moving_average_window: int = 5,
        max_time_points: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Pooled distribution and time series for the violin views."""
        profile = get_profile(biomarker)
        filters = filters or CohortFilters()
        cohort = await self._fetch_cohort(identity, filters)
        return aggregate_distribution(
            cohort,
            profile.name,
            filters,
            moving_average_window=moving_average_window,
            max_time_points=max_time_points,
            tz=self.config.tzinfo(),
        )
