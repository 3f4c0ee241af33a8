"""Per-load daily allocation.

A load with an end date is spread over the working days of its window
(bounded mode); a load without one is burned down day by day at the daily
capacity (unbounded mode). Overrides are honoured exactly as long as the
load's remaining budget covers them.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple

from .models import FALLBACK_DAILY_CAPACITY, DailyAllocation, LoadAllocation, ProductionLoad
from .overrides import normalize_overrides
from .work_calendar import MAX_DAY_STEPS, MAX_LOOKAHEAD_DAYS, WorkCalendar, parse_date_or_none

logger = logging.getLogger(__name__)

EPSILON = 1e-6

BOUNDED = "bounded"
UNBOUNDED = "unbounded"
SKIPPED = "skipped"


def allocate_load(
    load: ProductionLoad,
    calendar: WorkCalendar,
    daily_capacity_hours: float,
) -> LoadAllocation:
    start = parse_date_or_none(load.start_date)
    if start is None:
        logger.debug("load %s skipped: unreadable start date %r", load.id, load.start_date)
        return LoadAllocation(load=load, mode=SKIPPED)
    if load.total_hours is None or load.total_hours <= 0:
        return LoadAllocation(load=load, mode=SKIPPED)
    if load.is_bounded:
        end = parse_date_or_none(load.end_date) or start
        return _allocate_bounded(load, calendar, start, end)
    capacity = daily_capacity_hours if daily_capacity_hours and daily_capacity_hours > 0 else FALLBACK_DAILY_CAPACITY
    return _allocate_unbounded(load, calendar, start, capacity)


def _bounded_dates(calendar: WorkCalendar, start: date, end: date) -> List[date]:
    dates = calendar.working_dates_between(start, end)
    if dates:
        return dates
    fallback = calendar.next_working_date(start, MAX_LOOKAHEAD_DAYS)
    return [fallback] if fallback is not None else []


def _future_demand_and_auto_days(
    override_values: Sequence[Optional[float]],
) -> Tuple[List[float], List[int]]:
    """Backward pass: override hours strictly after each slot, auto slots from each slot on."""
    size = len(override_values)
    future_demand = [0.0] * size
    auto_days = [0] * size
    running = 0.0
    auto_count = 0
    for idx in range(size - 1, -1, -1):
        value = override_values[idx]
        future_demand[idx] = running
        if value is None:
            auto_count += 1
        else:
            running += value
        auto_days[idx] = auto_count
    return future_demand, auto_days


def _allocate_bounded(
    load: ProductionLoad,
    calendar: WorkCalendar,
    start: date,
    end: date,
) -> LoadAllocation:
    dates = _bounded_dates(calendar, start, end)
    if not dates:
        return LoadAllocation(load=load, mode=BOUNDED)

    overrides = normalize_overrides(load.overrides)
    override_values = [overrides.get(day) for day in dates]
    future_demand, auto_days = _future_demand_and_auto_days(override_values)

    remaining = float(load.total_hours)
    hours: List[float] = []
    for idx, value in enumerate(override_values):
        budget = max(remaining, 0.0)
        if value is not None:
            amount = min(value, budget)
        else:
            reserved = min(future_demand[idx], budget)
            amount = max(0.0, remaining - reserved) / max(auto_days[idx], 1)
        hours.append(amount)
        remaining -= amount

    unreconciled = _settle_residual(hours, override_values[-1] is not None, remaining)
    if unreconciled:
        logger.warning(
            "load %s: %.2f h could not be reconciled with its overrides",
            load.id,
            unreconciled,
        )
    allocations = tuple(DailyAllocation(day, amount) for day, amount in zip(dates, hours))
    return LoadAllocation(
        load=load,
        allocations=allocations,
        mode=BOUNDED,
        unreconciled_hours=unreconciled,
    )


def _settle_residual(hours: List[float], last_is_override: bool, residual: float) -> float:
    """Fold what is left after the walk into the last day where allowed.

    An overridden last day keeps its exact value. Returns the part of the
    residual that could not be placed (positive when hours are missing).
    """
    if not last_is_override:
        current = hours[-1]
        placed = max(0.0, current + residual)
        hours[-1] = placed
        residual -= placed - current
    if abs(residual) <= EPSILON:
        return 0.0
    return residual


def _allocate_unbounded(
    load: ProductionLoad,
    calendar: WorkCalendar,
    start: date,
    capacity: float,
) -> LoadAllocation:
    if not calendar.has_working_days:
        return LoadAllocation(load=load, mode=UNBOUNDED)

    # Overrides on non-working days or before the start are never visited.
    overrides: Dict[date, float] = {
        day: value
        for day, value in normalize_overrides(load.overrides).items()
        if day >= start and calendar.is_working_day(day)
    }
    pending = set(overrides)
    remaining = float(load.total_hours)
    allocations: List[DailyAllocation] = []

    for day in calendar.iter_working_dates(start, max_steps=MAX_DAY_STEPS):
        if remaining <= 0 and not pending:
            break
        budget = max(remaining, 0.0)
        value = overrides.get(day)
        if value is not None:
            amount = min(value, budget)
            pending.discard(day)
        else:
            amount = min(capacity, budget)
        allocations.append(DailyAllocation(day, amount))
        remaining -= amount

    hit_limit = remaining > EPSILON or bool(pending)
    if hit_limit:
        logger.warning(
            "load %s: stopped after %d day steps with %.2f h unallocated",
            load.id,
            MAX_DAY_STEPS,
            max(remaining, 0.0),
        )
    return LoadAllocation(
        load=load,
        allocations=tuple(allocations),
        mode=UNBOUNDED,
        unreconciled_hours=max(remaining, 0.0) if hit_limit else 0.0,
        hit_iteration_limit=hit_limit,
    )
