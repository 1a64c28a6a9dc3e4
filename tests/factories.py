"""Builders for raw sensor records, observations and store documents used in tests."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

from biodash.engine.models import Observation


BASE_TIME = datetime(2024, 3, 1, 0, 0, tzinfo=timezone.utc)
HOUR = timedelta(hours=1)


def make_record(points: List[Dict[str, Any]], nesting: str = "new") -> Dict[str, Any]:
    """Wrap data points under `data` (new) or `data_snapshot` (old)."""
    key = "data" if nesting == "new" else "data_snapshot"
    return {key: {"data_points": points}}


def hourly_points(
    values: Sequence[Optional[float]],
    field: str = "Glucose(mg/dL)",
    start: datetime = BASE_TIME,
    step: timedelta = HOUR,
    timestamp_style: str = "iso",
) -> List[Dict[str, Any]]:
    points = []
    for i, value in enumerate(values):
        ts = start + i * step
        if timestamp_style == "iso":
            point: Dict[str, Any] = {"timestamp": ts.isoformat()}
        elif timestamp_style == "number_long":
            point = {"timestamp": {"$date": {"$numberLong": str(int(ts.timestamp() * 1000))}}}
        elif timestamp_style == "epoch_seconds":
            point = {"time": {"$numberInt": str(int(ts.timestamp()))}}
        else:
            raise ValueError(timestamp_style)
        if value is not None:
            point[field] = value
        points.append(point)
    return points


def observations(
    values: Sequence[float],
    start: datetime = BASE_TIME,
    step: timedelta = HOUR,
) -> List[Observation]:
    return [Observation(start + i * step, float(v)) for i, v in enumerate(values)]


PREGNANCY_GLUCOSE_RANGES = {
    "ranges": {
        "veryLow": {"min": 0, "max": 50},
        "low": {"min": 50, "max": 63},
        "target": {"min": 63, "max": 140},
        "high": {"min": 140, "max": 200},
        "veryHigh": {"min": 200, "max": 400},
    }
}

DIABETES_GLUCOSE_RANGES = {
    "ranges": {
        "veryLow": {"min": 0, "max": 60},
        "low": {"min": 60, "max": 75},
        "target": {"min": 75, "max": 200},
        "high": {"min": 200, "max": 260},
        "veryHigh": {"min": 260, "max": 400},
    }
}


def store_document() -> Dict[str, Any]:
    """
    A small dashboard: an admin, a doctor with two patients, and three
    patients (pregnant, diabetic, neither) with 12 hourly glucose readings.
    """
    return {
        "users": [
            {"username": "admin", "role": "admin"},
            {"username": "dr_house", "role": "doctor", "patients": ["alice", "bob"]},
            {
                "username": "alice",
                "role": "patient",
                "personal_information": {"pregnant": "true"},
                "device_info": {
                    "age": {"$numberInt": "29"}, "gender": "F", "arm": "left",
                    "deviceID": "D1", "userID": "U1",
                },
                "etag": "etag-alice",
            },
            {
                "username": "bob",
                "role": "patient",
                "personal_information": {"Diabete": True},
                "device_info": {
                    "age": 45, "gender": "M", "arm": "right",
                    "deviceID": "D2", "userID": "U2",
                },
                "etag": "etag-bob",
            },
            {
                "username": "carol",
                "role": "patient",
                "personal_information": {"smokes": "no"},
                "device_info": {
                    "age": "38", "gender": "F", "arm": "left",
                    "deviceID": "D3", "userID": "U3",
                },
                "etag": "etag-carol",
            },
        ],
        "sensor_records": {
            "etag-alice": make_record(
                hourly_points([100] * 12, timestamp_style="number_long")
            ),
            "etag-bob": make_record(
                hourly_points([100] * 6 + [200] * 6, field="glucose1",
                              timestamp_style="epoch_seconds"),
                nesting="old",
            ),
            "etag-carol": make_record(hourly_points([50] * 3 + [60] * 3 + [100] * 6)),
        },
        "range_configs": {
            "glucose": {
                "default": {},
                "conditions": {"pregnancy": PREGNANCY_GLUCOSE_RANGES},
            },
        },
    }
