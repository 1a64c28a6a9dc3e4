"""
Personal attribute normalization.

User attributes were written under many spellings over the years
(`Diabete`, `diabetes`, `High BP`, ...). This module folds them once into a
canonical set of `Condition` values so the rest of the engine never looks
at raw keys.
"""

import re
from typing import Any, Dict, FrozenSet, Mapping, Optional

from .models import Condition
from .reading_normalizer import unwrap_value


PEDIATRIC_AGE_LIMIT = 18

# Every spelling that has been seen for each condition flag
CONDITION_KEYS: Dict[Condition, tuple] = {
    Condition.PREGNANCY: ("pregnant", "Pregnant", "pregnancy", "Pregnancy", "is_pregnant"),
    Condition.TYPE2_DIABETES: (
        "diabetes", "Diabetes", "diabete", "Diabete",
        "type2_diabetes", "Type 2 Diabetes",
    ),
    Condition.SMOKING: ("smokes", "Smokes", "smoking", "Smoking", "smoker", "Smoker"),
    Condition.DRINKING: ("drinks", "Drinks", "drinking", "Drinking", "alcohol", "Alcohol"),
    Condition.HYPERTENSION: (
        "High BP", "high BP", "high_bp", "highBP",
        "hypertension", "Hypertension",
    ),
}

TRUTHY_STRINGS = {"true", "yes", "y", "1", "on", "t"}

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def is_truthy(value: Any) -> bool:
    """Interpret a loosely typed attribute flag."""
    value = unwrap_value(value)
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in TRUTHY_STRINGS
    return False


def parse_age(value: Any) -> Optional[int]:
    """
    Best-effort integer age: leading digits of a string, wrapped numbers,
    or plain numbers (truncated). Anything else gives None.
    """
    value = unwrap_value(value)
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return int(value)
        except (OverflowError, ValueError):
            return None
    match = _LEADING_INT.match(str(value))
    if not match:
        return None
    return int(match.group(1))


def get_age(
    personal_attributes: Optional[Mapping[str, Any]],
    device_attributes: Optional[Mapping[str, Any]] = None,
) -> Optional[int]:
    """Age from personal attributes first, then device attributes."""
    for source in (personal_attributes or {}, device_attributes or {}):
        for key in ("age", "Age"):
            if key in source:
                age = parse_age(source[key])
                if age is not None:
                    return age
    return None


def has_flag(attributes: Optional[Mapping[str, Any]], condition: Condition) -> bool:
    """True if any spelling of the condition's flag is set (logical OR)."""
    attributes = attributes or {}
    return any(is_truthy(attributes.get(key)) for key in CONDITION_KEYS.get(condition, ()))


def derive_conditions(
    personal_attributes: Optional[Mapping[str, Any]],
    device_attributes: Optional[Mapping[str, Any]] = None,
) -> FrozenSet[Condition]:
    """
    Build the canonical condition set for a user.

    Flag conditions come from personal attributes; `pediatric` applies when
    the parsed age is below 18.
    """
    conditions = {
        condition
        for condition in CONDITION_KEYS
        if has_flag(personal_attributes, condition)
    }

    age = get_age(personal_attributes, device_attributes)
    if age is not None and age < PEDIATRIC_AGE_LIMIT:
        conditions.add(Condition.PEDIATRIC)

    return frozenset(conditions)
