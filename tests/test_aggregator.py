from datetime import date

import pytest

from production_scheduler.aggregator import aggregate_schedule, classify_day, week_breakdown
from production_scheduler.models import DayLoadStatus, LoadSource

from conftest import FRIDAY, MONDAY


@pytest.fixture
def two_loads(make_load):
    return [
        make_load(total_hours=100, end=FRIDAY, load_id="A", name="Alpha"),
        make_load(total_hours=16, load_id="B", name="Bravo", source=LoadSource.PROJECT),
    ]


class TestAggregateSchedule:
    def test_daily_totals_are_summed(self, calendar, two_loads):
        result = aggregate_schedule(two_loads, calendar, 8)
        assert result.total_for(MONDAY) == pytest.approx(28)
        assert result.total_for(date(2025, 3, 4)) == pytest.approx(28)
        assert result.total_for(date(2025, 3, 5)) == pytest.approx(20)
        assert result.total_for(date(2025, 3, 8)) == 0.0

    def test_contributions_are_itemised(self, calendar, two_loads):
        result = aggregate_schedule(two_loads, calendar, 8)
        parts = result.daily_totals[MONDAY].contributions
        assert [(p.load_id, p.name) for p in parts] == [("A", "Alpha"), ("B", "Bravo")]
        assert [p.hours for p in parts] == [pytest.approx(20), 8]

    def test_totals_are_in_date_order(self, calendar, two_loads):
        result = aggregate_schedule(two_loads, calendar, 8)
        days = list(result.daily_totals)
        assert days == sorted(days)

    def test_skipped_loads_keep_their_slot(self, calendar, make_load):
        loads = [make_load(start="bad", load_id="X"), make_load(total_hours=8, load_id="Y")]
        result = aggregate_schedule(loads, calendar, 8)
        assert [item.load.id for item in result.load_allocations] == ["X", "Y"]
        assert result.allocation_for("manual-X").allocations == ()
        assert result.total_for(MONDAY) == 8

    def test_allocation_lookup_by_key(self, calendar, make_load):
        loads = [
            make_load(total_hours=8, load_id="1", source=LoadSource.PROJECT),
            make_load(total_hours=16, load_id="1"),
        ]
        result = aggregate_schedule(loads, calendar, 8)
        assert result.allocation_for("project-1").total_allocated == 8
        assert result.allocation_for("manual-1").total_allocated == 16
        assert [p.key for p in result.daily_totals[MONDAY].contributions] == ["project-1", "manual-1"]

    def test_empty_input(self, calendar):
        result = aggregate_schedule([], calendar, 8)
        assert result.daily_totals == {}
        assert result.unreconciled == []

    def test_unreconciled_loads_listed(self, calendar, make_load):
        overrides = {MONDAY: 1, date(2025, 3, 4): 1}
        load = make_load(total_hours=10, end=date(2025, 3, 4), overrides=overrides)
        result = aggregate_schedule([load], calendar, 8)
        assert [item.load.id for item in result.unreconciled] == ["L1"]


class TestWeekBreakdown:
    def test_rows_cover_seven_days(self, calendar, two_loads):
        result = aggregate_schedule(two_loads, calendar, 8)
        rows = week_breakdown(result, calendar, date(2025, 3, 6))
        assert [row.load.id for row in rows] == ["A", "B"]
        alpha = rows[0]
        assert len(alpha.days) == 7
        assert alpha.days[0].date == MONDAY
        assert alpha.days[5].is_working_day is False
        assert alpha.days[5].hours is None
        assert alpha.total_hours == pytest.approx(100)

    def test_days_without_allocation_are_none(self, calendar, two_loads):
        result = aggregate_schedule(two_loads, calendar, 8)
        bravo = week_breakdown(result, calendar, MONDAY)[1]
        assert [cell.hours for cell in bravo.days[:3]] == [8, 8, None]

    def test_loads_outside_week_are_omitted(self, calendar, two_loads):
        result = aggregate_schedule(two_loads, calendar, 8)
        assert week_breakdown(result, calendar, date(2025, 3, 12)) == []


class TestClassifyDay:
    @pytest.mark.parametrize(
        "hours, expected",
        [
            (0, DayLoadStatus.OPEN),
            (4, DayLoadStatus.BOOKED),
            (8, DayLoadStatus.AT),
            (8.005, DayLoadStatus.AT),
            (8.5, DayLoadStatus.OVER),
        ],
    )
    def test_working_day_statuses(self, calendar, hours, expected):
        assert classify_day(MONDAY, hours, calendar, 8) is expected

    def test_non_working_day(self, calendar):
        assert classify_day(date(2025, 3, 8), 10, calendar, 8) is DayLoadStatus.NON_WORKING
