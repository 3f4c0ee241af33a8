from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Dict, List, Tuple

from .aggregator import ScheduleResult
from .allocator import SKIPPED
from .models import GapRecommendation, LoadContribution, WeeklySummary, WeekStatus
from .work_calendar import WorkCalendar, start_of_week, week_dates

WEEKS_PER_MONTH = 4.345
CURRENT_WEEKS_WINDOW = 3
SUGGESTED_MIN_SHARE = 0.6


@dataclass(frozen=True)
class UtilizationReport:
    weeks: Tuple[WeeklySummary, ...]
    recommendations: Tuple[GapRecommendation, ...]
    backlog_months: float
    under_utilized_threshold: float

    def _with_status(self, status: WeekStatus) -> List[WeeklySummary]:
        return [week for week in self.weeks if week.status is status]

    @property
    def gap_weeks(self) -> List[WeeklySummary]:
        return self._with_status(WeekStatus.GAP)

    @property
    def overload_weeks(self) -> List[WeeklySummary]:
        return self._with_status(WeekStatus.OVERLOAD)

    @property
    def normal_weeks(self) -> List[WeeklySummary]:
        return self._with_status(WeekStatus.NORMAL)

    @property
    def current_gap_weeks(self) -> List[WeeklySummary]:
        return [week for week in self.gap_weeks if week.week_index <= CURRENT_WEEKS_WINDOW]

    @property
    def future_gap_weeks(self) -> List[WeeklySummary]:
        return [week for week in self.gap_weeks if week.week_index > CURRENT_WEEKS_WINDOW]

    def counts(self) -> Dict[str, int]:
        return {
            "gap": len(self.gap_weeks),
            "gap_current": len(self.current_gap_weeks),
            "gap_future": len(self.future_gap_weeks),
            "normal": len(self.normal_weeks),
            "overload": len(self.overload_weeks),
        }


def classify_week(used_hours: float, capacity_hours: float, threshold: float) -> WeekStatus:
    if capacity_hours <= 0:
        return WeekStatus.UNCLASSIFIED
    if used_hours / capacity_hours < threshold:
        return WeekStatus.GAP
    if used_hours > capacity_hours:
        return WeekStatus.OVERLOAD
    return WeekStatus.NORMAL


def _summarize_week(
    week_index: int,
    week_start: date,
    schedule: ScheduleResult,
    calendar: WorkCalendar,
    capacity_hours: float,
    threshold: float,
) -> WeeklySummary:
    used = 0.0
    per_load: "OrderedDict[str, LoadContribution]" = OrderedDict()
    for day in week_dates(week_start):
        if not calendar.is_working_day(day):
            continue
        entry = schedule.daily_totals.get(day)
        if entry is None:
            continue
        used += entry.total
        for part in entry.contributions:
            previous = per_load.get(part.key)
            hours = part.hours + (previous.hours if previous else 0.0)
            per_load[part.key] = LoadContribution(part.key, part.load_id, part.name, hours)
    breakdown = sorted(
        (item for item in per_load.values() if item.hours > 0),
        key=lambda item: item.hours,
        reverse=True,
    )
    return WeeklySummary(
        week_index=week_index,
        week_start=week_start,
        used_hours=used,
        capacity_hours=capacity_hours,
        status=classify_week(used, capacity_hours, threshold),
        breakdown=tuple(breakdown),
    )


def recommend_gap_fill(weeks: List[WeeklySummary]) -> List[GapRecommendation]:
    recommendations: List[GapRecommendation] = []
    for week in weeks:
        if week.status is not WeekStatus.GAP:
            continue
        available = week.capacity_hours - week.used_hours
        recommendations.append(
            GapRecommendation(
                week_index=week.week_index,
                week_start=week.week_start,
                week_end=week.week_start + timedelta(days=6),
                available_hours=available,
                suggested_min_hours=max(0.0, available * SUGGESTED_MIN_SHARE),
                suggested_max_hours=available,
            )
        )
    return recommendations


def backlog_months(total_hours: float, weekly_capacity_hours: float) -> float:
    monthly_capacity = weekly_capacity_hours * WEEKS_PER_MONTH
    if monthly_capacity <= 0:
        return 0.0
    return total_hours / monthly_capacity


def analyze_utilization(
    schedule: ScheduleResult,
    calendar: WorkCalendar,
    weekly_capacity_hours: float,
    weeks_to_forecast: int,
    under_utilized_threshold: float,
    today: date,
) -> UtilizationReport:
    if weeks_to_forecast < 0:
        raise ValueError("weeks_to_forecast must not be negative")
    if not (0 <= under_utilized_threshold <= 1):
        raise ValueError("under_utilized_threshold must be in [0, 1]")
    capacity = weekly_capacity_hours if calendar.has_working_days else 0.0
    first_week = start_of_week(today)
    weeks = [
        _summarize_week(
            idx,
            first_week + timedelta(weeks=idx),
            schedule,
            calendar,
            capacity,
            under_utilized_threshold,
        )
        for idx in range(weeks_to_forecast)
    ]
    committed = sum(
        item.load.total_hours for item in schedule.load_allocations if item.mode != SKIPPED
    )
    return UtilizationReport(
        weeks=tuple(weeks),
        recommendations=tuple(recommend_gap_fill(weeks)),
        backlog_months=backlog_months(committed, capacity),
        under_utilized_threshold=under_utilized_threshold,
    )
