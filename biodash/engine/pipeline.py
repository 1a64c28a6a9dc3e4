"""
Per-user AGP Pipeline

Runs one user's sensor record through the engine:
1. Normalize the record (sensor channels merged into one value per reading)
2. Sort observations by time
3. Resolve the user's reference ranges
4. Compute statistics and the hourly percentile profile
5. Render the chart payload

Pure: the caller fetches the user, the record and the range configurations.
"""

from datetime import tzinfo
from typing import Any, Dict, Mapping, Optional

from .attributes import derive_conditions
from .cohort_filters import CohortFilters
from .models import EmptyHourPolicy, UserRecord
from .profiles import get_profile
from .range_resolver import RangeConfigLookup, resolve_ranges
from .reading_normalizer import normalize_record, sort_observations
from .statistics_engine import (
    DEFAULT_MINUTES_PER_READING,
    compute_statistics,
    statistics_payload,
)


def build_agp_report(
    user: UserRecord,
    record: Optional[Mapping[str, Any]],
    lookup: RangeConfigLookup,
    biomarker: str,
    empty_hour_policy: EmptyHourPolicy = EmptyHourPolicy.MEAN_SCALED,
    tz: Optional[tzinfo] = None,
    minutes_per_reading: float = DEFAULT_MINUTES_PER_READING,
    filters: Optional[CohortFilters] = None,
) -> Dict[str, Any]:
    """
    Build the AGP payload for one user and biomarker.

    Args:
        user: The user whose attributes select the reference ranges
        record: The user's raw sensor record (None gives an empty report)
        lookup: Range configuration lookup
        biomarker: "glucose" or "cortisol"
        empty_hour_policy: MEAN_SCALED for the per-biomarker AGP views,
            NULL for the comparison view
        tz: Timezone for hour-of-day bucketing
        minutes_per_reading: Wear time each reading stands for
        filters: Optional date window applied to the observations (days in `tz`)

    Returns:
        Dictionary containing:
        - statistics: summary block with the dashboard's legacy keys
        - percentages: percentile_5 ... percentile_95, 24 values each
        - ranges: thresholds in effect and whether they are the defaults
        - conditions: the user's canonical conditions
    """
    profile = get_profile(biomarker)
    observations = sort_observations(
        normalize_record(record, profile.name, merge_sensors=True)
    )
    if filters is not None:
        observations = filters.filter_observations(observations, tz)

    thresholds = resolve_ranges(
        user.personal_attributes, user.device_attributes, profile.name, lookup
    )
    report = compute_statistics(
        observations,
        thresholds,
        profile.name,
        empty_hour_policy=empty_hour_policy,
        tz=tz,
        minutes_per_reading=minutes_per_reading,
    )
    conditions = derive_conditions(user.personal_attributes, user.device_attributes)

    return {
        "username": user.username,
        "biomarker": profile.name,
        "unit": profile.unit,
        "hasData": bool(observations),
        "statistics": statistics_payload(report),
        "percentages": report.percentiles.to_payload(),
        "ranges": {
            "useDefault": thresholds is None,
            "thresholds": report.thresholds.to_document(profile.middle_band),
        },
        "conditions": sorted(c.value for c in conditions),
    }
