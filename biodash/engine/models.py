"""
Data models for biomarker observations, reference ranges and statistics.

Defines the transient structures that flow through the engine: normalized
sensor observations, users with their free-form attributes, resolved
clinical thresholds, and the computed statistics/percentile blocks consumed
by the dashboard charts.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class Condition(str, Enum):
    """Clinical conditions that select condition-specific reference ranges."""

    PREGNANCY = "pregnancy"
    TYPE2_DIABETES = "type2_diabetes"
    SMOKING = "smoking"
    DRINKING = "drinking"
    HYPERTENSION = "hypertension"
    PEDIATRIC = "pediatric"


class EmptyHourPolicy(str, Enum):
    """
    What an hour-of-day bucket reports when it holds no observations.

    NULL is used by the population and comparison views, MEAN_SCALED by the
    per-biomarker AGP views (mean x 0.7/0.85/1.0/1.15/1.3).
    """

    NULL = "null"
    MEAN_SCALED = "mean_scaled"


@dataclass(frozen=True)
class Observation:
    """
    A single biomarker reading extracted from a raw sensor record.

    Attributes:
        timestamp: Timezone-aware time of the reading
        value: Biomarker value (mg/dL for glucose, ng/mL for cortisol)
        sensor_index: Physical channel the value came from (1 or 2)
    """
    timestamp: datetime
    value: float
    sensor_index: int = 1


@dataclass
class UserRecord:
    """
    A dashboard user as returned by the document store.

    Attributes:
        username: Unique login name
        personal_attributes: Sparse free-form medical/lifestyle attributes
        device_attributes: Device metadata (age, gender, arm, deviceID, userID)
        etag: Key of the user's current sensor record
    """
    username: str
    personal_attributes: Dict[str, Any] = field(default_factory=dict)
    device_attributes: Dict[str, Any] = field(default_factory=dict)
    etag: Optional[str] = None

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "UserRecord":
        return cls(
            username=str(doc.get("username", "")),
            personal_attributes=dict(
                doc.get("personal_information") or doc.get("personal_attributes") or {}
            ),
            device_attributes=dict(
                doc.get("device_info") or doc.get("device_attributes") or {}
            ),
            etag=doc.get("etag"),
        )


@dataclass(frozen=True)
class RangeThresholds:
    """
    The five boundaries of a biomarker's clinical bands.

    Bands, low to high: very low (< very_low_max), low (< low_max),
    target/normal (target_min..target_max), high (<= high_max) and very high
    (everything above high_max).
    """
    very_low_max: float
    low_max: float
    target_min: float
    target_max: float
    high_max: float

    def boundaries(self) -> Dict[str, float]:
        return {
            "very_low_max": self.very_low_max,
            "low_max": self.low_max,
            "target_min": self.target_min,
            "target_max": self.target_max,
            "high_max": self.high_max,
        }

    def to_document(self, middle_band: str = "target") -> Dict[str, Dict[str, float]]:
        """Render in the stored `{band: {min, max}}` layout."""
        return {
            "veryLow": {"min": 0, "max": self.very_low_max},
            "low": {"min": self.very_low_max, "max": self.low_max},
            middle_band: {"min": self.target_min, "max": self.target_max},
            "high": {"min": self.target_max, "max": self.high_max},
            "veryHigh": {"min": self.high_max, "max": None},
        }


@dataclass
class BiomarkerStatistics:
    """
    Summary statistics for one user's (or one cohort's) observations.

    Band percentages are cumulative: `percent_below_low` includes the very
    low readings and `percent_above_target` includes the very high ones.
    The `time_*_minutes` wear times are band-exclusive.
    """
    reading_count: int = 0
    average: float = 0
    percent_below_very_low: int = 0
    percent_below_low: int = 0
    percent_in_target: int = 0
    percent_above_target: int = 0
    percent_above_high: int = 0
    coefficient_of_variation: int = 0
    time_very_low_minutes: float = 0
    time_low_minutes: float = 0
    time_target_minutes: float = 0
    time_high_minutes: float = 0
    time_very_high_minutes: float = 0
    total_wear_time_minutes: float = 0
    total_wear_time_hours: float = 0
    gmi: Optional[float] = None
    a1c: Optional[float] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None


PERCENTILES = (5, 25, 50, 75, 95)


@dataclass
class HourlyPercentileProfile:
    """Per hour-of-day percentile bands; `bands[p][hour]` is a value or None."""
    bands: Dict[int, List[Optional[float]]] = field(
        default_factory=lambda: {p: [None] * 24 for p in PERCENTILES}
    )

    def to_payload(self) -> Dict[str, List[Optional[float]]]:
        return {f"percentile_{p}": list(self.bands[p]) for p in PERCENTILES}


@dataclass
class BiomarkerReport:
    """Statistics plus the AGP percentile profile for one set of observations."""
    biomarker: str
    statistics: BiomarkerStatistics
    percentiles: HourlyPercentileProfile
    thresholds: RangeThresholds


@dataclass
class PopulationSummary:
    """Averaged band-exclusive time-in-range figures for one cohort bucket."""
    user_count: int = 0
    average_time_in_target: float = 0.0
    average_time_high: float = 0.0
    average_time_very_high: float = 0.0
    average_time_low: float = 0.0
    average_time_very_low: float = 0.0

    def to_payload(self) -> Dict[str, Any]:
        return {
            "userCount": self.user_count,
            "averageTimeInTarget": self.average_time_in_target,
            "averageTimeHigh": self.average_time_high,
            "averageTimeVeryHigh": self.average_time_very_high,
            "averageTimeLow": self.average_time_low,
            "averageTimeVeryLow": self.average_time_very_low,
        }
