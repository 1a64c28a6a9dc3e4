"""
Range Resolver

Determines which clinical reference ranges apply to a user:
1. Derive the user's canonical condition set
2. Look up configured ranges for each (biomarker, condition) pair
3. Combine: none -> None, one -> as-is, several -> per-boundary average

Callers substitute the biomarker's hardcoded default when nothing resolves
(see `effective_thresholds`), so a reading can always be classified.
"""

import statistics
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

import structlog

from .attributes import derive_conditions
from .models import Condition, RangeThresholds
from .profiles import BiomarkerProfile, get_profile, round_half_up
from .reading_normalizer import parse_number


logger = structlog.get_logger(__name__)

BOUNDARIES = ("very_low_max", "low_max", "target_min", "target_max", "high_max")

ConfiguredRange = Union[RangeThresholds, Mapping[str, Any]]
RangeConfigLookup = Callable[[str, Condition], Optional[ConfiguredRange]]


def parse_range_document(
    doc: Optional[Mapping[str, Any]],
    middle_band: str = "target",
) -> Dict[str, Optional[float]]:
    """
    Read the five boundaries from a stored range document.

    Accepts `{veryLow: {max}, low: {max}, target|normal: {min, max}, high: {max}}`,
    optionally nested under a `ranges` key. Missing or non-numeric values
    come back as None.
    """
    doc = doc or {}
    if isinstance(doc.get("ranges"), Mapping):
        doc = doc["ranges"]

    def _band(name: str) -> Mapping[str, Any]:
        band = doc.get(name)
        return band if isinstance(band, Mapping) else {}

    middle = _band(middle_band) or _band("target") or _band("normal")

    return {
        "very_low_max": parse_number(_band("veryLow").get("max")),
        "low_max": parse_number(_band("low").get("max")),
        "target_min": parse_number(middle.get("min")),
        "target_max": parse_number(middle.get("max")),
        "high_max": parse_number(_band("high").get("max")),
    }


def _as_boundaries(config: ConfiguredRange, profile: BiomarkerProfile) -> Dict[str, Optional[float]]:
    if isinstance(config, RangeThresholds):
        return dict(config.boundaries())
    return parse_range_document(config, profile.middle_band)


def _fill_from_defaults(
    boundaries: Mapping[str, Optional[float]],
    profile: BiomarkerProfile,
) -> RangeThresholds:
    defaults = profile.default_thresholds.boundaries()
    return RangeThresholds(**{
        name: boundaries[name] if boundaries.get(name) is not None else defaults[name]
        for name in BOUNDARIES
    })


def average_thresholds(
    configs: Iterable[Mapping[str, Optional[float]]],
    profile: BiomarkerProfile,
) -> RangeThresholds:
    """
    Average each boundary independently across several configurations.

    Missing or non-positive values are left out of that boundary's mean;
    the mean is rounded half-up to an integer. A boundary with no usable
    value anywhere keeps the profile default.
    """
    configs = list(configs)
    averaged: Dict[str, Optional[float]] = {}
    for name in BOUNDARIES:
        values = [
            c[name] for c in configs
            if c.get(name) is not None and c[name] > 0
        ]
        averaged[name] = round_half_up(statistics.fmean(values)) if values else None
    return _fill_from_defaults(averaged, profile)


def matched_configurations(
    conditions: Iterable[Condition],
    biomarker: str,
    lookup: RangeConfigLookup,
) -> Dict[Condition, ConfiguredRange]:
    """Configured ranges for each condition that has one."""
    matches: Dict[Condition, ConfiguredRange] = {}
    for condition in sorted(conditions, key=lambda c: c.value):
        config = lookup(biomarker, condition)
        if config:
            matches[condition] = config
    return matches


def resolve_ranges(
    personal_attributes: Optional[Mapping[str, Any]],
    device_attributes: Optional[Mapping[str, Any]],
    biomarker: str,
    lookup: RangeConfigLookup,
) -> Optional[RangeThresholds]:
    """
    Resolve the reference ranges that apply to a user.

    Args:
        personal_attributes: Free-form personal/medical attributes
        device_attributes: Device metadata (may carry the age)
        biomarker: "glucose" or "cortisol"
        lookup: Configuration collaborator returning a range for
            (biomarker, condition) or None

    Returns:
        The combined thresholds, or None when no applicable condition has a
        configured range (the caller then uses the default)
    """
    profile = get_profile(biomarker)
    conditions = derive_conditions(personal_attributes, device_attributes)
    return combine_configurations(
        matched_configurations(conditions, profile.name, lookup), profile
    )


def combine_configurations(
    matches: Mapping[Condition, ConfiguredRange],
    profile: BiomarkerProfile,
) -> Optional[RangeThresholds]:
    """None for no match, the single match as-is, otherwise the average."""
    if not matches:
        return None

    boundaries = [_as_boundaries(config, profile) for config in matches.values()]
    if len(boundaries) == 1:
        resolved = _fill_from_defaults(boundaries[0], profile)
    else:
        resolved = average_thresholds(boundaries, profile)

    logger.debug(
        "ranges_resolved",
        biomarker=profile.name,
        conditions=[c.value for c in matches],
        thresholds=resolved.boundaries(),
    )
    return resolved


def effective_thresholds(
    thresholds: Optional[RangeThresholds],
    biomarker: str,
) -> RangeThresholds:
    """Resolved thresholds, or the biomarker's hardcoded default."""
    if thresholds is None:
        return get_profile(biomarker).default_thresholds
    return thresholds


def lookup_from_mapping(configs: Mapping[Any, ConfiguredRange]) -> RangeConfigLookup:
    """
    Build a lookup over ranges already fetched for one biomarker.

    Keys may be `Condition` members or their string values.
    """
    def _lookup(biomarker: str, condition: Condition) -> Optional[ConfiguredRange]:
        if condition in configs:
            return configs[condition]
        return configs.get(condition.value)

    return _lookup


def describe_applicable_ranges(
    personal_attributes: Optional[Mapping[str, Any]],
    device_attributes: Optional[Mapping[str, Any]],
    biomarker: str,
    lookup: RangeConfigLookup,
) -> Dict[str, Any]:
    """
    Payload for the dashboard's range panel: which conditions apply, which
    of them have configured ranges, and the ranges in effect.
    """
    profile = get_profile(biomarker)
    conditions = derive_conditions(personal_attributes, device_attributes)
    matches = matched_configurations(conditions, profile.name, lookup)
    matched: List[str] = [c.value for c in matches]
    resolved = combine_configurations(matches, profile)

    if resolved is None:
        message = f"Using default {profile.name} ranges"
    elif len(matched) == 1:
        message = f"Using {matched[0]} ranges for {profile.name}"
    else:
        message = f"Using averaged ranges for: {', '.join(matched)}"

    return {
        "useDefault": resolved is None,
        "ranges": effective_thresholds(resolved, biomarker).to_document(profile.middle_band),
        "conditions": sorted(c.value for c in conditions),
        "matchedConditions": matched,
        "message": message,
    }
