"""
Reading Normalizer

Converts raw sensor records from the document store into uniform
`Observation` lists for one biomarker:
- Finds the data-points array under either nesting convention
- Extracts timestamps from the several encodings records were written with
- Reads both sensor channels under the new and old field names
- Optionally merges the two channels into one scalar per reading

Malformed values are dropped silently; a record without data points
simply yields no observations.
"""

import math
import statistics
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from .models import Observation
from .profiles import get_profile


# Extended-JSON wrappers the store uses for numbers
NUMBER_WRAPPERS = ("$numberDouble", "$numberInt", "$numberLong", "$numberDecimal")


def unwrap_value(value: Any) -> Any:
    """Strip an extended-JSON number wrapper (`{"$numberInt": "7"}` -> "7")."""
    if isinstance(value, dict):
        for key in NUMBER_WRAPPERS:
            if key in value:
                return value[key]
        return None
    return value


def parse_number(value: Any) -> Optional[float]:
    """
    Parse a possibly wrapped numeric value.

    Returns None unless the value is a finite number. Booleans are not
    numbers here.
    """
    value = unwrap_value(value)
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def extract_data_points(record: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Return the record's data points, checking `data.data_points` then
    `data_snapshot.data_points`. Missing arrays give an empty list.
    """
    if not isinstance(record, dict):
        return []

    for container_key in ("data", "data_snapshot"):
        container = record.get(container_key)
        if isinstance(container, dict):
            points = container.get("data_points")
            if isinstance(points, list):
                return [p for p in points if isinstance(p, dict)]

    return []


def _from_epoch_ms(value: Any) -> Optional[datetime]:
    number = parse_number(value)
    if number is None:
        return None
    try:
        return datetime.fromtimestamp(number / 1000.0, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def _from_epoch_seconds(value: Any) -> Optional[datetime]:
    number = parse_number(value)
    if number is None:
        return None
    try:
        return datetime.fromtimestamp(int(number), tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def _from_date_like(value: Any) -> Optional[datetime]:
    """Accept datetimes, ISO-8601 strings and millisecond epoch numbers."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return _from_epoch_ms(text)
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        return _from_epoch_ms(value)
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_timestamp(point: Dict[str, Any]) -> Optional[datetime]:
    """
    Extract a data point's timestamp.

    Tried in order:
    1. timestamp.$date.$numberLong (millisecond epoch)
    2. timestamp.$date (ISO string or millisecond epoch)
    3. timestamp (ISO string, datetime or millisecond epoch)
    4. time (epoch seconds, possibly wrapped)

    Returns None if none of them yields a valid time.
    """
    raw = point.get("timestamp")

    if isinstance(raw, dict):
        date_wrapper = raw.get("$date")
        if isinstance(date_wrapper, dict) and "$numberLong" in date_wrapper:
            parsed = _from_epoch_ms(date_wrapper["$numberLong"])
            if parsed is not None:
                return parsed
        if date_wrapper is not None and not isinstance(date_wrapper, dict):
            parsed = _from_date_like(date_wrapper)
            if parsed is not None:
                return parsed
    elif raw is not None:
        parsed = _from_date_like(raw)
        if parsed is not None:
            return parsed

    if point.get("time") is not None:
        return _from_epoch_seconds(point["time"])

    return None


def read_channel(point: Dict[str, Any], field_names: Iterable[str]) -> Optional[float]:
    """Return the first finite value found under any of the field names."""
    for name in field_names:
        if name in point:
            value = parse_number(point[name])
            if value is not None:
                return value
    return None


def normalize_record(
    record: Optional[Dict[str, Any]],
    biomarker: str,
    merge_sensors: bool = False,
    substitute_missing_timestamps: bool = True,
    now: Optional[Callable[[], datetime]] = None,
) -> List[Observation]:
    """
    Normalize one raw sensor record into observations for a biomarker.

    Args:
        record: Raw record as stored (loosely typed, nested)
        biomarker: "glucose" or "cortisol"
        merge_sensors: Produce one value per data point (mean of both
            channels, or the single present one) instead of one observation
            per channel
        substitute_missing_timestamps: Stamp points whose time cannot be
            parsed with the current time; when False such points are dropped
        now: Clock used for substituted timestamps

    Returns:
        Observations in record order (not sorted)
    """
    profile = get_profile(biomarker)
    clock = now or (lambda: datetime.now(timezone.utc))

    observations: List[Observation] = []
    for point in extract_data_points(record):
        channels = {
            index: read_channel(point, names)
            for index, names in profile.sensor_fields.items()
        }
        present = {index: value for index, value in channels.items() if value is not None}
        if not present:
            continue

        timestamp = parse_timestamp(point)
        if timestamp is None:
            if not substitute_missing_timestamps:
                continue
            timestamp = clock()

        if merge_sensors:
            value = statistics.fmean(present.values())
            sensor_index = min(present) if len(present) == 1 else 1
            observations.append(Observation(timestamp, value, sensor_index))
        else:
            for index in sorted(present):
                observations.append(Observation(timestamp, present[index], index))

    return observations


def sort_observations(observations: Iterable[Observation]) -> List[Observation]:
    """Sort observations by timestamp (ascending), keeping channel order stable."""
    return sorted(observations, key=lambda o: o.timestamp)
