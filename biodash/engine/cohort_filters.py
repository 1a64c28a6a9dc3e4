"""
Cohort filters for population views.

Demographic and medical predicates (user/device IDs, gender, arm, age range,
condition flags) evaluated against each user's attributes, plus an optional
date window applied to observations.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, tzinfo
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .attributes import derive_conditions, get_age, is_truthy
from .models import Condition, Observation, UserRecord
from .reading_normalizer import unwrap_value


def _parse_date(value: Any) -> Optional[date]:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value).strip()[:10], "%Y-%m-%d").date()
    except ValueError:
        return None


def _parse_int(value: Any) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _as_list(value: Any) -> List[str]:
    if value in (None, ""):
        return []
    if isinstance(value, (list, tuple, set)):
        return [str(v) for v in value]
    return [str(value)]


@dataclass
class CohortFilters:
    """
    Optional predicates narrowing a cohort. Empty fields do not filter.

    Attributes:
        user_ids: Allowed device userID values
        device_ids: Allowed deviceID values
        genders: Allowed genders
        arms: Allowed arm values (sensor placement / study arm)
        age_min: Minimum age, inclusive
        age_max: Maximum age, inclusive
        conditions: Required condition states (True = must have, False = must not)
        start_date: First day of observations kept, inclusive
        end_date: Last day of observations kept, inclusive
    """
    user_ids: List[str] = field(default_factory=list)
    device_ids: List[str] = field(default_factory=list)
    genders: List[str] = field(default_factory=list)
    arms: List[str] = field(default_factory=list)
    age_min: Optional[int] = None
    age_max: Optional[int] = None
    conditions: Dict[Condition, bool] = field(default_factory=dict)
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "CohortFilters":
        """
        Parse a request body using the dashboard's camelCase keys
        (`userIDs`, `deviceIDs`, `genders`, `arms`, `ageMin`, `ageMax`,
        `startDate`, `endDate`). Condition flags are read from a
        `conditions` mapping or from top-level keys named after a condition.
        """
        data = data or {}
        conditions: Dict[Condition, bool] = {}
        raw_conditions = data.get("conditions") or {}
        for condition in Condition:
            for source in (raw_conditions, data):
                if condition.value in source and source[condition.value] not in (None, ""):
                    conditions[condition] = is_truthy(source[condition.value])
                    break

        return cls(
            user_ids=_as_list(data.get("userIDs", data.get("user_ids"))),
            device_ids=_as_list(data.get("deviceIDs", data.get("device_ids"))),
            genders=_as_list(data.get("genders")),
            arms=_as_list(data.get("arms")),
            age_min=_parse_int(data.get("ageMin", data.get("age_min"))),
            age_max=_parse_int(data.get("ageMax", data.get("age_max"))),
            conditions=conditions,
            start_date=_parse_date(data.get("startDate", data.get("start_date"))),
            end_date=_parse_date(data.get("endDate", data.get("end_date"))),
        )

    def is_empty(self) -> bool:
        return not (
            self.user_ids or self.device_ids or self.genders or self.arms
            or self.age_min is not None or self.age_max is not None
            or self.conditions
            or self.start_date is not None or self.end_date is not None
        )

    def matches_user(self, user: UserRecord) -> bool:
        """Evaluate the user-level predicates against one user."""
        device = user.device_attributes or {}

        def _device_value(key: str) -> Optional[str]:
            value = unwrap_value(device.get(key))
            return None if value is None else str(value)

        if self.user_ids and _device_value("userID") not in self.user_ids:
            return False
        if self.device_ids and _device_value("deviceID") not in self.device_ids:
            return False
        if self.genders and _device_value("gender") not in self.genders:
            return False
        if self.arms and _device_value("arm") not in self.arms:
            return False

        if self.age_min is not None or self.age_max is not None:
            age = get_age(user.personal_attributes, device)
            if age is None:
                return False
            if self.age_min is not None and age < self.age_min:
                return False
            if self.age_max is not None and age > self.age_max:
                return False

        if self.conditions:
            user_conditions = derive_conditions(user.personal_attributes, device)
            for condition, required in self.conditions.items():
                if (condition in user_conditions) != required:
                    return False

        return True

    def filter_users(self, users: Sequence[UserRecord]) -> List[UserRecord]:
        return [user for user in users if self.matches_user(user)]

    def filter_observations(
        self,
        observations: Sequence[Observation],
        tz: Optional[tzinfo] = None,
    ) -> List[Observation]:
        """
        Keep observations inside the date window (end date covers the whole
        day). Days are calendar days in `tz`, or system local time when None,
        the same zone the hourly profile is bucketed in.
        """
        if self.start_date is None and self.end_date is None:
            return list(observations)

        def _bound(day: date, at: time) -> datetime:
            if tz is None:
                return datetime.combine(day, at).astimezone()
            return datetime.combine(day, at, tzinfo=tz)

        start = _bound(self.start_date, time.min) if self.start_date else None
        end = _bound(self.end_date, time.max) if self.end_date else None
        return [
            obs for obs in observations
            if (start is None or obs.timestamp >= start)
            and (end is None or obs.timestamp <= end)
        ]
