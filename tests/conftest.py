from datetime import date

import pytest

from production_scheduler.models import CapacitySettings, LoadSource, ProductionLoad
from production_scheduler.work_calendar import WorkCalendar

MONDAY = date(2025, 3, 3)
FRIDAY = date(2025, 3, 7)


@pytest.fixture
def calendar():
    """Mon-Fri calendar with no holidays."""
    return WorkCalendar.from_names(["mon", "tue", "wed", "thu", "fri"])


@pytest.fixture
def settings():
    return CapacitySettings(weekly_capacity_setting=200.0)


@pytest.fixture
def make_load():
    def _make(total_hours=100.0, start=MONDAY, end=None, overrides=None, load_id="L1", name="Load 1",
              source=LoadSource.MANUAL):
        return ProductionLoad(
            id=load_id,
            name=name,
            source=source,
            total_hours=total_hours,
            start_date=start,
            end_date=end,
            overrides=overrides or {},
        )

    return _make
