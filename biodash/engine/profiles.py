"""
Biomarker Profiles

Each supported biomarker is described by a `BiomarkerProfile`: its sensor
field names, default reference ranges, display precision, derived metrics
and the legacy payload keys the dashboard charts read. The statistics engine
is generic and takes everything biomarker-specific from here.
"""

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Dict, Optional, Tuple, Union

from .models import RangeThresholds


GLUCOSE = "glucose"
CORTISOL = "cortisol"

# Multipliers of the mean used for empty hour buckets (MEAN_SCALED policy),
# in percentile order 5/25/50/75/95.
MEAN_SCALED_FACTORS = (0.7, 0.85, 1.0, 1.15, 1.3)


def round_half_up(value: float, digits: int = 0) -> Union[int, float]:
    """
    Round with halves going up (2.5 -> 3), unlike Python's banker's rounding.

    Returns an int when `digits` is 0.
    """
    quantum = Decimal(1).scaleb(-digits)
    rounded = Decimal(repr(float(value))).quantize(quantum, rounding=ROUND_HALF_UP)
    if digits == 0:
        return int(rounded)
    return float(rounded)


def glucose_management_indicator(mean: float) -> Dict[str, Optional[float]]:
    """GMI from mean glucose; A1C is reported as the same figure."""
    gmi = round_half_up((mean + 46.7) / 28.7 * 10) / 10
    return {"gmi": gmi, "a1c": gmi}


def _no_derived_metrics(mean: float) -> Dict[str, Optional[float]]:
    return {"gmi": None, "a1c": None}


@dataclass(frozen=True)
class BiomarkerProfile:
    """
    Everything the engine needs to know about one biomarker.

    Attributes:
        name: Biomarker identifier ("glucose" or "cortisol")
        unit: Display unit
        sensor_fields: (new-scheme, old-scheme) field names per channel 1 and 2
        default_thresholds: Hardcoded ranges used when nothing is configured
        middle_band: Name of the in-range band in stored range documents
        mean_decimals: Rounding precision for the mean and percentiles
        payload_keys: Statistic name -> legacy key in the chart payload
        derived_metrics: Function of the mean returning extra metrics
    """
    name: str
    unit: str
    sensor_fields: Dict[int, Tuple[str, str]]
    default_thresholds: RangeThresholds
    middle_band: str
    mean_decimals: int
    payload_keys: Dict[str, str]
    derived_metrics: Callable[[float], Dict[str, Optional[float]]] = field(
        default=_no_derived_metrics
    )


GLUCOSE_PROFILE = BiomarkerProfile(
    name=GLUCOSE,
    unit="mg/dL",
    sensor_fields={
        1: ("Glucose(mg/dL)", "glucose1"),
        2: ("Glucose(mg/dL)_2", "glucose2"),
    },
    default_thresholds=RangeThresholds(
        very_low_max=54, low_max=70, target_min=70, target_max=180, high_max=250
    ),
    middle_band="target",
    mean_decimals=0,
    payload_keys={
        "percent_below_very_low": "percentBelow54",
        "percent_below_low": "percentBelow70",
        "percent_in_target": "percentBetween70And180",
        "percent_above_target": "percentAbove180",
        "percent_above_high": "percentAbove250",
    },
    derived_metrics=glucose_management_indicator,
)

CORTISOL_PROFILE = BiomarkerProfile(
    name=CORTISOL,
    unit="ng/mL",
    sensor_fields={
        1: ("Cortisol(ng/mL)", "cortisol1"),
        2: ("Cortisol(ng/mL)_2", "cortisol2"),
    },
    default_thresholds=RangeThresholds(
        very_low_max=5, low_max=10, target_min=10, target_max=30, high_max=50
    ),
    middle_band="normal",
    mean_decimals=3,
    payload_keys={
        "percent_below_very_low": "percentBelow5",
        "percent_below_low": "percentBelow10",
        "percent_in_target": "percentBetween10And30",
        "percent_above_target": "percentAbove30",
        "percent_above_high": "percentAbove50",
    },
)

PROFILES: Dict[str, BiomarkerProfile] = {
    GLUCOSE: GLUCOSE_PROFILE,
    CORTISOL: CORTISOL_PROFILE,
}


def get_profile(biomarker: str) -> BiomarkerProfile:
    """
    Look up the profile for a biomarker name (case-insensitive).

    Raises:
        ValueError: If the biomarker is not supported
    """
    key = (biomarker or "").strip().lower()
    if key not in PROFILES:
        raise ValueError(f"Unsupported biomarker: {biomarker!r}")
    return PROFILES[key]
