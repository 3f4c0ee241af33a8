from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import FrozenSet, Iterable, Iterator, List, Optional

from dateutil import parser as dateparser
from dateutil.relativedelta import MO, relativedelta

from .models import WEEKDAY_KEYS, CapacitySettings, weekday_key

MAX_LOOKAHEAD_DAYS = 730
MAX_DAY_STEPS = 5000


def parse_date_or_none(value: object) -> Optional[date]:
    """Best-effort conversion of a stored date value; ``None`` when unreadable."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, float) and math.isnan(value):
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        return dateparser.isoparse(text).date()
    except (ValueError, TypeError, OverflowError):
        return None


def start_of_week(value: date) -> date:
    """Monday of the week containing ``value``; Sunday closes the week."""
    return value + relativedelta(weekday=MO(-1))


def week_dates(week_start: date) -> List[date]:
    return [week_start + timedelta(days=offset) for offset in range(7)]


@dataclass(frozen=True)
class WorkCalendar:
    """Working-day predicate over a weekday set and a holiday list."""

    working_weekdays: FrozenSet[int]
    holidays: FrozenSet[date] = frozenset()

    @classmethod
    def from_names(cls, working_days: Iterable[str], holidays: Iterable[date] = ()) -> "WorkCalendar":
        weekdays = frozenset(WEEKDAY_KEYS.index(weekday_key(name)) for name in working_days)
        return cls(working_weekdays=weekdays, holidays=frozenset(holidays))

    @classmethod
    def from_settings(cls, settings: CapacitySettings) -> "WorkCalendar":
        return cls.from_names(settings.working_days, settings.holidays)

    @property
    def has_working_days(self) -> bool:
        return bool(self.working_weekdays)

    def is_working_day(self, value: date) -> bool:
        return value.weekday() in self.working_weekdays and value not in self.holidays

    def iter_working_dates(
        self,
        start: date,
        end: Optional[date] = None,
        *,
        max_steps: int = MAX_DAY_STEPS,
    ) -> Iterator[date]:
        """Yield working dates from ``start`` onwards.

        With ``end`` the sequence stops after ``end`` (inclusive). Without it the
        walk stops after ``max_steps`` calendar days so that a calendar with no
        working days cannot loop forever.
        """
        cursor = start
        steps = 0
        while steps < max_steps:
            if end is not None and cursor > end:
                return
            if self.is_working_day(cursor):
                yield cursor
            cursor += timedelta(days=1)
            steps += 1

    def working_dates_between(self, start: date, end: date) -> List[date]:
        if end < start:
            return []
        span = (end - start).days + 1
        return list(self.iter_working_dates(start, end, max_steps=span))

    def next_working_date(self, start: date, max_lookahead_days: int = MAX_LOOKAHEAD_DAYS) -> Optional[date]:
        return next(self.iter_working_dates(start, max_steps=max_lookahead_days), None)
