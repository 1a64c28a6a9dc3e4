"""
Statistics Engine

Computes the summary statistics and the AGP hourly percentile profile for a
batch of observations of one biomarker:
- Mean (precision depends on the biomarker)
- Percent of wear time below/within/above each clinical band, and the
  wear time (minutes) spent in each band
- Coefficient of variation
- Biomarker-specific derived metrics (GMI / A1C for glucose)
- 5/25/50/75/95th percentiles per hour of day

Everything biomarker-specific comes from a `BiomarkerProfile`, so glucose
and cortisol share one implementation.
"""

import statistics
from datetime import tzinfo
from typing import Any, Dict, List, Optional, Sequence

from .models import (
    PERCENTILES,
    BiomarkerReport,
    BiomarkerStatistics,
    EmptyHourPolicy,
    HourlyPercentileProfile,
    Observation,
    RangeThresholds,
)
from .profiles import MEAN_SCALED_FACTORS, BiomarkerProfile, get_profile, round_half_up
from .range_resolver import effective_thresholds


# Every reading is assumed to cover this much wear time
DEFAULT_MINUTES_PER_READING = 15


def percentile(sorted_values: Sequence[float], p: int) -> Optional[float]:
    """
    Integer percentile (1-99) by linear interpolation between the two
    nearest ranks, i.e. at `index = p/100 * (n - 1)`.
    """
    n = len(sorted_values)
    if n == 0:
        return None
    if n == 1:
        return float(sorted_values[0])
    return statistics.quantiles(sorted_values, n=100, method="inclusive")[p - 1]


def _percent(count: int, total: int, minutes_per_reading: float) -> int:
    if total == 0:
        return 0
    return round_half_up((count * minutes_per_reading) / (total * minutes_per_reading) * 100)


def compute_band_percentages(
    values: Sequence[float],
    thresholds: RangeThresholds,
    minutes_per_reading: float = DEFAULT_MINUTES_PER_READING,
) -> Dict[str, int]:
    """
    Cumulative percentage of wear time in each band.

    Returns keys percent_below_very_low, percent_below_low,
    percent_in_target, percent_above_target and percent_above_high.
    """
    total = len(values)
    counts = {
        "percent_below_very_low": sum(1 for v in values if v < thresholds.very_low_max),
        "percent_below_low": sum(1 for v in values if v < thresholds.low_max),
        "percent_in_target": sum(
            1 for v in values if thresholds.target_min <= v <= thresholds.target_max
        ),
        "percent_above_target": sum(1 for v in values if v > thresholds.target_max),
        "percent_above_high": sum(1 for v in values if v > thresholds.high_max),
    }
    return {
        key: _percent(count, total, minutes_per_reading)
        for key, count in counts.items()
    }


def coefficient_of_variation(values: Sequence[float]) -> int:
    """Population standard deviation as a percentage of the mean."""
    if not values:
        return 0
    mean = statistics.fmean(values)
    if mean == 0:
        return 0
    return round_half_up(statistics.pstdev(values) / mean * 100)


def compute_band_minutes(
    values: Sequence[float],
    thresholds: RangeThresholds,
    minutes_per_reading: float = DEFAULT_MINUTES_PER_READING,
) -> Dict[str, float]:
    """
    Wear time spent in each band, band-exclusive.

    Returns keys time_very_low_minutes, time_low_minutes,
    time_target_minutes, time_high_minutes and time_very_high_minutes.
    """
    counts = {
        "time_very_low_minutes": sum(1 for v in values if v < thresholds.very_low_max),
        "time_low_minutes": sum(
            1 for v in values if thresholds.very_low_max <= v < thresholds.low_max
        ),
        "time_target_minutes": sum(
            1 for v in values if thresholds.target_min <= v <= thresholds.target_max
        ),
        "time_high_minutes": sum(
            1 for v in values if thresholds.target_max < v <= thresholds.high_max
        ),
        "time_very_high_minutes": sum(1 for v in values if v > thresholds.high_max),
    }
    return {key: count * minutes_per_reading for key, count in counts.items()}


def compute_hourly_percentiles(
    observations: Sequence[Observation],
    empty_hour_policy: EmptyHourPolicy = EmptyHourPolicy.NULL,
    mean: float = 0.0,
    tz: Optional[tzinfo] = None,
    decimals: Optional[int] = None,
) -> HourlyPercentileProfile:
    """
    Group observations by local hour of day (all days collapsed) and compute
    the AGP percentile bands.

    Args:
        observations: Observations to profile
        empty_hour_policy: NULL leaves empty hours as None; MEAN_SCALED fills
            them with the mean times 0.7/0.85/1.0/1.15/1.3
        mean: Mean used by the MEAN_SCALED fallback
        tz: Timezone defining "local" hours (system local time when None)
        decimals: Round values to this many decimals (no rounding when None)
    """
    buckets: List[List[float]] = [[] for _ in range(24)]
    for obs in observations:
        buckets[obs.timestamp.astimezone(tz).hour].append(obs.value)

    def _round(value: Optional[float]) -> Optional[float]:
        if value is None or decimals is None:
            return value
        return round_half_up(value, decimals)

    profile = HourlyPercentileProfile()
    for hour, bucket in enumerate(buckets):
        if bucket:
            ordered = sorted(bucket)
            for p in PERCENTILES:
                profile.bands[p][hour] = _round(percentile(ordered, p))
        elif empty_hour_policy == EmptyHourPolicy.MEAN_SCALED:
            for p, factor in zip(PERCENTILES, MEAN_SCALED_FACTORS):
                profile.bands[p][hour] = _round(mean * factor)
    return profile


def empty_statistics(profile: BiomarkerProfile) -> BiomarkerStatistics:
    """All-zero statistics block for a biomarker with no observations."""
    stats = BiomarkerStatistics()
    if profile.derived_metrics(0.0).get("gmi") is not None:
        stats.gmi = 0
        stats.a1c = 0
    return stats


def compute_statistics(
    observations: Sequence[Observation],
    thresholds: Optional[RangeThresholds],
    biomarker: str,
    empty_hour_policy: EmptyHourPolicy = EmptyHourPolicy.NULL,
    tz: Optional[tzinfo] = None,
    minutes_per_reading: float = DEFAULT_MINUTES_PER_READING,
) -> BiomarkerReport:
    """
    Compute statistics and the hourly percentile profile for a biomarker.

    Args:
        observations: Normalized observations (any order)
        thresholds: Resolved ranges, or None to use the biomarker default
        biomarker: "glucose" or "cortisol"
        empty_hour_policy: Behaviour for hours without observations
        tz: Timezone for hour-of-day bucketing
        minutes_per_reading: Wear time each reading stands for

    Returns:
        BiomarkerReport; an empty input gives zeroed statistics and never raises
    """
    profile = get_profile(biomarker)
    resolved = effective_thresholds(thresholds, profile.name)

    if not observations:
        return BiomarkerReport(
            biomarker=profile.name,
            statistics=empty_statistics(profile),
            percentiles=compute_hourly_percentiles([], empty_hour_policy, 0.0, tz),
            thresholds=resolved,
        )

    values = [obs.value for obs in observations]
    raw_mean = statistics.fmean(values)
    timestamps = [obs.timestamp for obs in observations]
    wear_minutes = len(values) * minutes_per_reading

    stats = BiomarkerStatistics(
        reading_count=len(values),
        average=round_half_up(raw_mean, profile.mean_decimals),
        coefficient_of_variation=coefficient_of_variation(values),
        total_wear_time_minutes=wear_minutes,
        total_wear_time_hours=round_half_up(wear_minutes / 60, 1),
        start=min(timestamps),
        end=max(timestamps),
        **compute_band_percentages(values, resolved, minutes_per_reading),
        **compute_band_minutes(values, resolved, minutes_per_reading),
    )
    derived = profile.derived_metrics(raw_mean)
    stats.gmi = derived.get("gmi")
    stats.a1c = derived.get("a1c")

    percentiles = compute_hourly_percentiles(
        observations,
        empty_hour_policy=empty_hour_policy,
        mean=raw_mean,
        tz=tz,
        decimals=profile.mean_decimals,
    )

    return BiomarkerReport(
        biomarker=profile.name,
        statistics=stats,
        percentiles=percentiles,
        thresholds=resolved,
    )


def statistics_payload(report: BiomarkerReport) -> Dict[str, Any]:
    """Render statistics with the legacy keys the dashboard charts read."""
    profile = get_profile(report.biomarker)
    stats = report.statistics

    payload: Dict[str, Any] = {
        "average": stats.average,
        "readingCount": stats.reading_count,
        "coefficientOfVariationPercentage": stats.coefficient_of_variation,
        "totalWearTimeMinutes": stats.total_wear_time_minutes,
        "totalWearTimeHours": stats.total_wear_time_hours,
        "timeVeryLowMinutes": stats.time_very_low_minutes,
        "timeLowMinutes": stats.time_low_minutes,
        f"time{profile.middle_band.capitalize()}Minutes": stats.time_target_minutes,
        "timeHighMinutes": stats.time_high_minutes,
        "timeVeryHighMinutes": stats.time_very_high_minutes,
        "dateRange": {
            "start": stats.start.isoformat() if stats.start else None,
            "end": stats.end.isoformat() if stats.end else None,
        },
    }
    for field_name, key in profile.payload_keys.items():
        payload[key] = getattr(stats, field_name)
    if stats.gmi is not None:
        payload["gmi"] = stats.gmi
        payload["a1c"] = stats.a1c
    return payload
