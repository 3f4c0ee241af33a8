from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Dict, FrozenSet, Mapping, Optional, Tuple, Union


DateLike = Union[date, str, None]

WEEKDAY_KEYS: Tuple[str, ...] = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")
DEFAULT_WORKING_DAYS: Tuple[str, ...] = ("mon", "tue", "wed", "thu", "fri")
FALLBACK_DAILY_CAPACITY = 8.0
DEFAULT_FORECAST_WEEKS = 24
DEFAULT_UNDER_UTILIZED_THRESHOLD = 0.7


class LoadSource(str, Enum):
    PROJECT = "project"
    MANUAL = "manual"


class WeekStatus(str, Enum):
    GAP = "gap"
    NORMAL = "normal"
    OVERLOAD = "overload"
    UNCLASSIFIED = "unclassified"


class DayLoadStatus(str, Enum):
    NON_WORKING = "non_working"
    OPEN = "open"
    BOOKED = "booked"
    AT = "at_capacity"
    OVER = "over_capacity"


def weekday_key(name: str) -> str:
    """Normalise ``"Monday"``, ``"MON"`` or ``"mon"`` to the three-letter key."""
    key = str(name).strip().lower()[:3]
    if key not in WEEKDAY_KEYS:
        raise ValueError(f"unknown weekday name '{name}'")
    return key


@dataclass(frozen=True)
class ProductionLoad:
    """A unit of committed shop work, either project-derived or entered by hand.

    Dates are kept as supplied; the allocator parses them and silently skips
    loads whose start date cannot be read.
    """

    id: str
    name: str
    source: LoadSource
    total_hours: float
    start_date: DateLike
    end_date: DateLike = None
    overrides: Mapping[object, object] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return f"{self.source.value}-{self.id}"

    @property
    def can_delete(self) -> bool:
        return self.source is LoadSource.MANUAL

    @property
    def is_bounded(self) -> bool:
        return self.end_date not in (None, "")


@dataclass(frozen=True)
class CapacitySettings:
    """Shop calendar and capacity configuration."""

    working_days: Tuple[str, ...] = DEFAULT_WORKING_DAYS
    holidays: FrozenSet[date] = frozenset()
    weekly_capacity_setting: float = 0.0
    daily_capacity_setting: Optional[float] = None
    weeks_to_forecast: int = DEFAULT_FORECAST_WEEKS
    under_utilized_threshold: float = DEFAULT_UNDER_UTILIZED_THRESHOLD
    logging_level: str = "INFO"

    @property
    def working_days_count(self) -> int:
        return len({weekday_key(day) for day in self.working_days})

    @property
    def inferred_daily_capacity(self) -> float:
        if self.daily_capacity_setting and self.daily_capacity_setting > 0:
            return float(self.daily_capacity_setting)
        count = self.working_days_count
        if self.weekly_capacity_setting > 0 and count > 0:
            return self.weekly_capacity_setting / count
        return 0.0

    @property
    def capacity_configured(self) -> bool:
        return self.inferred_daily_capacity > 0

    @property
    def daily_capacity_hours(self) -> float:
        inferred = self.inferred_daily_capacity
        return inferred if inferred > 0 else FALLBACK_DAILY_CAPACITY

    @property
    def weekly_capacity_hours(self) -> float:
        if self.weekly_capacity_setting > 0:
            return float(self.weekly_capacity_setting)
        return self.daily_capacity_hours * self.working_days_count


@dataclass(frozen=True)
class DailyAllocation:
    date: date
    hours: float


@dataclass(frozen=True)
class LoadAllocation:
    """Per-load allocator output."""

    load: ProductionLoad
    allocations: Tuple[DailyAllocation, ...] = ()
    mode: str = "skipped"
    unreconciled_hours: float = 0.0
    hit_iteration_limit: bool = False

    def hours_by_date(self) -> Dict[date, float]:
        return {item.date: item.hours for item in self.allocations}

    @property
    def total_allocated(self) -> float:
        return sum(item.hours for item in self.allocations)

    @property
    def is_reconciled(self) -> bool:
        return self.unreconciled_hours == 0.0 and not self.hit_iteration_limit


@dataclass(frozen=True)
class LoadContribution:
    key: str
    load_id: str
    name: str
    hours: float


@dataclass(frozen=True)
class DailyTotal:
    date: date
    total: float
    contributions: Tuple[LoadContribution, ...] = ()


@dataclass(frozen=True)
class WeeklySummary:
    week_index: int
    week_start: date
    used_hours: float
    capacity_hours: float
    status: WeekStatus
    breakdown: Tuple[LoadContribution, ...] = ()

    @property
    def utilization(self) -> Optional[float]:
        if self.capacity_hours <= 0:
            return None
        return self.used_hours / self.capacity_hours


@dataclass(frozen=True)
class GapRecommendation:
    """Hours the shop could still book into an under-utilised week."""

    week_index: int
    week_start: date
    week_end: date
    available_hours: float
    suggested_min_hours: float
    suggested_max_hours: float
