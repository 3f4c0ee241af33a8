from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional, Tuple

from .allocator import allocate_load
from .models import DailyTotal, DayLoadStatus, LoadAllocation, LoadContribution, ProductionLoad
from .work_calendar import WorkCalendar, start_of_week, week_dates

DAY_STATUS_TOLERANCE = 0.01


@dataclass(frozen=True)
class ScheduleResult:
    """Per-load allocations and their per-date merge."""

    load_allocations: Tuple[LoadAllocation, ...] = ()
    daily_totals: Dict[date, DailyTotal] = field(default_factory=dict)

    def total_for(self, day: date) -> float:
        entry = self.daily_totals.get(day)
        return entry.total if entry else 0.0

    def allocation_for(self, key: str) -> Optional[LoadAllocation]:
        for allocation in self.load_allocations:
            if allocation.load.key == key:
                return allocation
        return None

    @property
    def unreconciled(self) -> List[LoadAllocation]:
        return [item for item in self.load_allocations if not item.is_reconciled]


@dataclass(frozen=True)
class WeekDayCell:
    date: date
    hours: Optional[float]
    is_working_day: bool


@dataclass(frozen=True)
class WeekLoadRow:
    load: ProductionLoad
    days: Tuple[WeekDayCell, ...]

    @property
    def total_hours(self) -> float:
        return sum(cell.hours or 0.0 for cell in self.days)


def aggregate_schedule(
    loads: Iterable[ProductionLoad],
    calendar: WorkCalendar,
    daily_capacity_hours: float,
) -> ScheduleResult:
    allocations: List[LoadAllocation] = []
    contributions: Dict[date, List[LoadContribution]] = defaultdict(list)
    for load in loads:
        allocation = allocate_load(load, calendar, daily_capacity_hours)
        allocations.append(allocation)
        for item in allocation.allocations:
            contributions[item.date].append(LoadContribution(load.key, load.id, load.name, item.hours))
    totals = {
        day: DailyTotal(
            date=day,
            total=sum(entry.hours for entry in entries),
            contributions=tuple(entries),
        )
        for day, entries in sorted(contributions.items())
    }
    return ScheduleResult(load_allocations=tuple(allocations), daily_totals=totals)


def week_breakdown(
    schedule: ScheduleResult,
    calendar: WorkCalendar,
    any_day: date,
) -> List[WeekLoadRow]:
    """Editable per-load grid for the week containing ``any_day``.

    Loads with nothing scheduled in that week are left out.
    """
    days = week_dates(start_of_week(any_day))
    rows: List[WeekLoadRow] = []
    for allocation in schedule.load_allocations:
        by_date = allocation.hours_by_date()
        cells = []
        for day in days:
            working = calendar.is_working_day(day)
            cells.append(WeekDayCell(day, by_date.get(day) if working else None, working))
        if any(cell.hours is not None for cell in cells):
            rows.append(WeekLoadRow(load=allocation.load, days=tuple(cells)))
    return rows


def classify_day(
    day: date,
    hours: float,
    calendar: WorkCalendar,
    daily_capacity_hours: float,
) -> DayLoadStatus:
    if not calendar.is_working_day(day):
        return DayLoadStatus.NON_WORKING
    if daily_capacity_hours > 0:
        if hours > daily_capacity_hours + DAY_STATUS_TOLERANCE:
            return DayLoadStatus.OVER
        if hours > 0 and abs(hours - daily_capacity_hours) < DAY_STATUS_TOLERANCE:
            return DayLoadStatus.AT
    if hours > 0:
        return DayLoadStatus.BOOKED
    return DayLoadStatus.OPEN
