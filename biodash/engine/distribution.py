"""
Distribution summaries for the violin-plot views.

Pools observations across a cohort, summarizes their distribution and
builds the per-time-point series (with a centred moving average) the
time-series violin chart is drawn from.
"""

import statistics
from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .cohort_filters import CohortFilters
from .models import Observation, UserRecord
from .reading_normalizer import normalize_record
from .statistics_engine import percentile


@dataclass
class DistributionSummary:
    count: int = 0
    mean: Optional[float] = None
    minimum: Optional[float] = None
    q1: Optional[float] = None
    median: Optional[float] = None
    q3: Optional[float] = None
    maximum: Optional[float] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "mean": self.mean,
            "min": self.minimum,
            "q1": self.q1,
            "median": self.median,
            "q3": self.q3,
            "max": self.maximum,
        }


@dataclass
class TimePoint:
    """All values recorded at one instant, across users and sensors."""
    timestamp: datetime
    values: List[float] = field(default_factory=list)

    @property
    def mean(self) -> Optional[float]:
        if not self.values:
            return None
        return statistics.fmean(self.values)


def summarize_distribution(values: Sequence[float]) -> DistributionSummary:
    """Count, mean, extremes and interpolated quartiles of a sample."""
    if not values:
        return DistributionSummary()
    ordered = sorted(values)
    return DistributionSummary(
        count=len(ordered),
        mean=statistics.fmean(ordered),
        minimum=ordered[0],
        q1=percentile(ordered, 25),
        median=percentile(ordered, 50),
        q3=percentile(ordered, 75),
        maximum=ordered[-1],
    )


def group_by_timestamp(observations: Iterable[Observation]) -> List[TimePoint]:
    """Collect values sharing an exact timestamp, ascending by time."""
    groups: Dict[datetime, TimePoint] = {}
    for obs in observations:
        point = groups.get(obs.timestamp)
        if point is None:
            point = groups[obs.timestamp] = TimePoint(obs.timestamp)
        point.values.append(obs.value)
    return [groups[ts] for ts in sorted(groups)]


def moving_average(points: Sequence[TimePoint], window: int) -> List[Optional[float]]:
    """
    Centred moving average of per-time-point means.

    Each position averages the means of the points within `window // 2`
    on either side (clipped at the ends). Points without values give None.
    """
    half = max(window, 1) // 2
    averages: List[Optional[float]] = []
    for index, point in enumerate(points):
        if point.mean is None:
            averages.append(None)
            continue
        start = max(0, index - half)
        end = min(len(points) - 1, index + half)
        window_means = [
            points[i].mean for i in range(start, end + 1)
            if points[i].mean is not None
        ]
        averages.append(statistics.fmean(window_means))
    return averages


def aggregate_distribution(
    cohort: Iterable[Tuple[UserRecord, Optional[Mapping[str, Any]]]],
    biomarker: str,
    filters: Optional[CohortFilters] = None,
    moving_average_window: int = 5,
    max_time_points: Optional[int] = None,
    tz: Optional[tzinfo] = None,
) -> Dict[str, Any]:
    """
    Pool every matching user's observations (sensors kept separate) and
    describe the resulting distribution and time series.

    Args:
        cohort: (user, sensor record) pairs the caller may see
        biomarker: "glucose" or "cortisol"
        filters: Cohort and date-window predicates
        moving_average_window: Width of the centred moving average
        max_time_points: Keep only the earliest N time points in the series
        tz: Zone whose calendar days the date window refers to
    """
    filters = filters or CohortFilters()
    pooled: List[Observation] = []
    usernames = set()

    for user, record in cohort:
        if not filters.matches_user(user):
            continue
        observations = filters.filter_observations(
            normalize_record(record, biomarker, merge_sensors=False), tz
        )
        if observations:
            usernames.add(user.username)
            pooled.extend(observations)

    points = group_by_timestamp(pooled)
    if max_time_points is not None and max_time_points >= 0:
        points = points[:max_time_points]
    averages = moving_average(points, moving_average_window)

    return {
        "biomarker": biomarker,
        "userCount": len(usernames),
        "distribution": summarize_distribution([o.value for o in pooled]).to_payload(),
        "timeSeries": [
            {
                "timestamp": point.timestamp.isoformat(),
                "values": list(point.values),
                "movingAverage": average,
            }
            for point, average in zip(points, averages)
        ],
    }
