from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Optional, Sequence

import pandas as pd

from .aggregator import ScheduleResult, aggregate_schedule, classify_day
from .models import CapacitySettings, LoadAllocation, ProductionLoad
from .overrides import normalize_overrides
from .utilization import UtilizationReport, analyze_utilization
from .work_calendar import WorkCalendar

DATE_FMT = "%Y-%m-%d"


class ScheduleIntegrityError(RuntimeError):
    def __init__(self, allocations: Sequence[LoadAllocation]) -> None:
        names = ", ".join(f"{item.load.id} {item.load.name}" for item in allocations)
        super().__init__(f"Loads not fully scheduled: {names}")
        self.allocations = list(allocations)


@dataclass(frozen=True)
class SchedulePlan:
    settings: CapacitySettings
    calendar: WorkCalendar
    schedule: ScheduleResult
    report: UtilizationReport
    today: date

    @property
    def daily_capacity_hours(self) -> float:
        return self.settings.daily_capacity_hours

    @property
    def weekly_capacity_hours(self) -> float:
        return self.settings.weekly_capacity_hours


def plan(
    loads: Sequence[ProductionLoad],
    settings: CapacitySettings,
    today: Optional[date] = None,
    *,
    weeks_to_forecast: Optional[int] = None,
    strict: bool = False,
) -> SchedulePlan:
    """Run allocator, aggregator and utilization analysis for one snapshot of loads."""
    today = today or date.today()
    calendar = WorkCalendar.from_settings(settings)
    schedule = aggregate_schedule(loads, calendar, settings.daily_capacity_hours)
    if strict and schedule.unreconciled:
        raise ScheduleIntegrityError(schedule.unreconciled)
    report = analyze_utilization(
        schedule,
        calendar,
        settings.weekly_capacity_hours,
        settings.weeks_to_forecast if weeks_to_forecast is None else weeks_to_forecast,
        settings.under_utilized_threshold,
        today,
    )
    return SchedulePlan(
        settings=settings,
        calendar=calendar,
        schedule=schedule,
        report=report,
        today=today,
    )


def daily_totals_frame(result: SchedulePlan) -> pd.DataFrame:
    rows: List[Dict[str, object]] = []
    for day, entry in result.schedule.daily_totals.items():
        rows.append(
            {
                "date": day.strftime(DATE_FMT),
                "total_hours": round(entry.total, 4),
                "load_count": len(entry.contributions),
                "status": classify_day(day, entry.total, result.calendar, result.daily_capacity_hours).value,
            }
        )
    return pd.DataFrame(rows, columns=["date", "total_hours", "load_count", "status"])


def load_schedule_frame(result: SchedulePlan) -> pd.DataFrame:
    rows: List[Dict[str, object]] = []
    for allocation in result.schedule.load_allocations:
        load = allocation.load
        overridden = normalize_overrides(load.overrides)
        for item in allocation.allocations:
            rows.append(
                {
                    "load_id": load.id,
                    "load_name": load.name,
                    "source": load.source.value,
                    "mode": allocation.mode,
                    "date": item.date.strftime(DATE_FMT),
                    "hours": round(item.hours, 4),
                    "is_override": item.date in overridden,
                }
            )
    columns = ["load_id", "load_name", "source", "mode", "date", "hours", "is_override"]
    return pd.DataFrame(rows, columns=columns)


def weekly_summary_frame(result: SchedulePlan) -> pd.DataFrame:
    rows: List[Dict[str, object]] = []
    for week in result.report.weeks:
        utilization = week.utilization
        rows.append(
            {
                "week_index": week.week_index,
                "week_start": week.week_start.strftime(DATE_FMT),
                "used_hours": round(week.used_hours, 4),
                "capacity_hours": round(week.capacity_hours, 4),
                "utilization_pct": round(utilization * 100, 2) if utilization is not None else None,
                "status": week.status.value,
                "top_load": week.breakdown[0].name if week.breakdown else "",
            }
        )
    columns = [
        "week_index",
        "week_start",
        "used_hours",
        "capacity_hours",
        "utilization_pct",
        "status",
        "top_load",
    ]
    return pd.DataFrame(rows, columns=columns)
