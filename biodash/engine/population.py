"""
Population Aggregator

Runs the per-user pipeline (normalize -> resolve ranges -> statistics) over a
cohort and reduces the results to per-bucket time-in-range averages for the
population comparison view.
"""

import statistics
from dataclasses import dataclass
from datetime import tzinfo
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import structlog

from .attributes import derive_conditions
from .cohort_filters import CohortFilters
from .models import Condition, EmptyHourPolicy, PopulationSummary, UserRecord
from .profiles import round_half_up
from .range_resolver import RangeConfigLookup, resolve_ranges
from .reading_normalizer import normalize_record
from .statistics_engine import DEFAULT_MINUTES_PER_READING, compute_statistics


logger = structlog.get_logger(__name__)

# Users with fewer valid observations are left out of cohort averages
DEFAULT_MIN_OBSERVATIONS = 10

GROUP_PREGNANCY = "pregnancy"
GROUP_DIABETES = "diabetes"
GROUP_GENERAL = "general"
GROUPS = (GROUP_PREGNANCY, GROUP_DIABETES, GROUP_GENERAL)
OVERALL = "overall"


@dataclass
class UserTimeInRange:
    """Band-exclusive time-in-range percentages for one included user."""
    username: str
    group: str
    time_in_target: float
    time_high: float
    time_very_high: float
    time_low: float
    time_very_low: float


def assign_group(conditions: Iterable[Condition], filtered: bool = False) -> str:
    """
    Bucket a user. With filters everyone is `general`; otherwise pregnancy
    wins over diabetes, and everyone else is `general`.
    """
    if filtered:
        return GROUP_GENERAL
    conditions = set(conditions)
    if Condition.PREGNANCY in conditions:
        return GROUP_PREGNANCY
    if Condition.TYPE2_DIABETES in conditions:
        return GROUP_DIABETES
    return GROUP_GENERAL


def time_in_range_for_user(
    user: UserRecord,
    record: Optional[Mapping[str, Any]],
    lookup: RangeConfigLookup,
    biomarker: str,
    filters: Optional[CohortFilters] = None,
    min_observations: int = DEFAULT_MIN_OBSERVATIONS,
    minutes_per_reading: float = DEFAULT_MINUTES_PER_READING,
    tz: Optional[tzinfo] = None,
) -> Optional[UserTimeInRange]:
    """
    Compute one user's contribution to the population view.

    Sensors are kept separate (each channel is its own observation).
    Returns None when the user has fewer than `min_observations` valid
    observations.
    """
    filters = filters or CohortFilters()
    observations = filters.filter_observations(
        normalize_record(record, biomarker, merge_sensors=False), tz
    )
    if len(observations) < min_observations:
        logger.debug(
            "population_user_skipped",
            username=user.username,
            observations=len(observations),
            min_observations=min_observations,
        )
        return None

    thresholds = resolve_ranges(
        user.personal_attributes, user.device_attributes, biomarker, lookup
    )
    report = compute_statistics(
        observations,
        thresholds,
        biomarker,
        empty_hour_policy=EmptyHourPolicy.NULL,
        tz=tz,
        minutes_per_reading=minutes_per_reading,
    )
    stats = report.statistics
    conditions = derive_conditions(user.personal_attributes, user.device_attributes)

    return UserTimeInRange(
        username=user.username,
        group=assign_group(conditions, filtered=not filters.is_empty()),
        time_in_target=stats.percent_in_target,
        time_high=max(0, stats.percent_above_target - stats.percent_above_high),
        time_very_high=stats.percent_above_high,
        time_low=max(0, stats.percent_below_low - stats.percent_below_very_low),
        time_very_low=stats.percent_below_very_low,
    )


def _average(values: List[float]) -> float:
    if not values:
        return 0.0
    return round_half_up(statistics.fmean(values), 1)


def summarize(entries: List[UserTimeInRange]) -> PopulationSummary:
    """Average the five band figures across users, to one decimal."""
    return PopulationSummary(
        user_count=len(entries),
        average_time_in_target=_average([e.time_in_target for e in entries]),
        average_time_high=_average([e.time_high for e in entries]),
        average_time_very_high=_average([e.time_very_high for e in entries]),
        average_time_low=_average([e.time_low for e in entries]),
        average_time_very_low=_average([e.time_very_low for e in entries]),
    )


def reduce_groups(entries: Iterable[UserTimeInRange]) -> Dict[str, PopulationSummary]:
    """
    Per-bucket summaries for pregnancy/diabetes/general plus `overall`,
    which averages every included user across the three buckets.
    """
    entries = list(entries)
    summaries = {
        group: summarize([e for e in entries if e.group == group])
        for group in GROUPS
    }
    summaries[OVERALL] = summarize(entries)
    return summaries


def aggregate_population(
    cohort: Iterable[Tuple[UserRecord, Optional[Mapping[str, Any]]]],
    lookup: RangeConfigLookup,
    biomarker: str,
    filters: Optional[CohortFilters] = None,
    min_observations: int = DEFAULT_MIN_OBSERVATIONS,
    minutes_per_reading: float = DEFAULT_MINUTES_PER_READING,
    tz: Optional[tzinfo] = None,
) -> Dict[str, PopulationSummary]:
    """
    Aggregate a cohort of (user, sensor record) pairs.

    Users failing the filters' user-level predicates are left out; users
    with too few observations are skipped.
    """
    filters = filters or CohortFilters()
    entries = []
    for user, record in cohort:
        if not filters.matches_user(user):
            continue
        entry = time_in_range_for_user(
            user, record, lookup, biomarker, filters,
            min_observations=min_observations,
            minutes_per_reading=minutes_per_reading,
            tz=tz,
        )
        if entry is not None:
            entries.append(entry)

    return reduce_groups(entries)


def population_payload(summaries: Mapping[str, PopulationSummary]) -> Dict[str, Any]:
    return {name: summary.to_payload() for name, summary in summaries.items()}
