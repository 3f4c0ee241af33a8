from __future__ import annotations

import math
from datetime import date
from typing import Dict, Mapping, Optional

from .work_calendar import parse_date_or_none


def parse_override_hours(value: object) -> Optional[float]:
    """Return a usable override value or ``None`` for "no override"."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        hours = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(hours) or math.isinf(hours) or hours < 0:
        return None
    return hours


def normalize_overrides(raw: Optional[Mapping[object, object]]) -> Dict[date, float]:
    """Drop entries with unreadable dates or invalid hour values."""
    cleaned: Dict[date, float] = {}
    if not raw:
        return cleaned
    for key, value in raw.items():
        day = parse_date_or_none(key)
        hours = parse_override_hours(value)
        if day is None or hours is None:
            continue
        cleaned[day] = hours
    return cleaned


def apply_override_edit(
    overrides: Optional[Mapping[object, object]],
    day: date,
    raw_value: object,
) -> Dict[date, float]:
    """Apply one grid edit and return the new override mapping.

    Blank, non-numeric and negative input clears the override for ``day``.
    The mapping passed in is left untouched.
    """
    updated = normalize_overrides(overrides)
    hours = parse_override_hours(raw_value)
    if hours is None:
        updated.pop(day, None)
    else:
        updated[day] = hours
    return updated


def overrides_to_storage(overrides: Mapping[date, float]) -> Optional[Dict[str, float]]:
    """ISO-keyed copy for storage, ``None`` when nothing is overridden."""
    if not overrides:
        return None
    return {day.isoformat(): float(hours) for day, hours in sorted(overrides.items())}
