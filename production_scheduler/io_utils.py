from __future__ import annotations

import json
import logging
import math
import uuid
from datetime import date
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import pandas as pd
from dateutil import parser as dateparser

from .models import (
    DEFAULT_FORECAST_WEEKS,
    DEFAULT_UNDER_UTILIZED_THRESHOLD,
    DEFAULT_WORKING_DAYS,
    CapacitySettings,
    LoadSource,
    ProductionLoad,
    weekday_key,
)
from .overrides import overrides_to_storage
from .work_calendar import WorkCalendar, parse_date_or_none

logger = logging.getLogger(__name__)

CONFIG_FILE = "config.json"
PROJECTS_FILE = "projects.csv"
ENTRIES_FILE = "production_entries.json"

BACKLOG_STATUSES = {"awarded", "in_progress"}
FAB_HOURS_COLUMNS = ("fab_hours", "remaining_shop_hours", "estimated_shop_hours_total")
START_ANCHOR_COLUMNS = ("fab_window_start", "projected_start_date", "decision_date")
OVERRIDES_COLUMN = "fab_daily_overrides"

_PROJECT_REQUIRED_COLUMNS = {"id", "project_name", "status"}


class InvalidEntryError(ValueError):
    """Raised when a manual production entry cannot be accepted."""


def _require_columns(df: pd.DataFrame, required: Iterable[str], source: str) -> None:
    missing = [col for col in required if col not in df.columns]
    if missing:
        raise ValueError(f"{source} missing required columns: {', '.join(sorted(missing))}")


def _is_missing(value: object) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and value.strip() == ""


def _parse_bool(value: object, default: bool = False) -> bool:
    if _is_missing(value):
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "t", "1", "yes", "y"}:
            return True
        if lowered in {"false", "f", "0", "no", "n"}:
            return False
    raise ValueError(f"cannot interpret boolean value '{value}'")


def _parse_iso_date(value: object, field_name: str) -> date:
    try:
        return dateparser.isoparse(str(value)).date()
    except (ValueError, TypeError, OverflowError) as exc:
        raise ValueError(f"invalid date in '{field_name}': {value}") from exc


def _positive_number(value: object) -> float:
    if _is_missing(value) or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number) or number <= 0:
        return 0.0
    return number


def _parse_overrides_cell(value: object, load_id: str) -> Dict[str, object]:
    if _is_missing(value):
        return {}
    if isinstance(value, Mapping):
        return dict(value)
    try:
        parsed = json.loads(str(value))
    except json.JSONDecodeError:
        logger.warning("load %s: ignoring unreadable overrides %r", load_id, value)
        return {}
    if not isinstance(parsed, dict):
        logger.warning("load %s: overrides must be a JSON object", load_id)
        return {}
    return parsed


def _number_setting(data: Mapping[str, object], key: str) -> float:
    value = data.get(key)
    if value is None:
        return 0.0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be a number")
    if value < 0:
        raise ValueError(f"{key} must not be negative")
    return float(value)


def load_settings(path: str | Path) -> CapacitySettings:
    data = json.loads(Path(path).read_text())
    if not isinstance(data, dict):
        raise ValueError("config file must be a JSON object")

    weekly = _number_setting(data, "shop_capacity_hours_per_week")
    daily = _number_setting(data, "shop_capacity_hours_per_day")

    weeks = data.get("backlog_forecast_weeks", DEFAULT_FORECAST_WEEKS)
    if isinstance(weeks, bool) or not isinstance(weeks, int) or weeks <= 0:
        raise ValueError("backlog_forecast_weeks must be a positive integer")

    threshold = data.get("under_utilized_threshold", DEFAULT_UNDER_UTILIZED_THRESHOLD)
    if isinstance(threshold, bool) or not isinstance(threshold, (int, float)):
        raise ValueError("under_utilized_threshold must be a number")
    threshold = float(threshold)
    if not (0 <= threshold <= 1):
        raise ValueError("under_utilized_threshold must be in [0, 1]")

    working_days_raw = data.get("working_days") or list(DEFAULT_WORKING_DAYS)
    if not isinstance(working_days_raw, list):
        raise ValueError("working_days must be an array of weekday names")
    working_days: List[str] = []
    for name in working_days_raw:
        key = weekday_key(str(name))
        if key not in working_days:
            working_days.append(key)

    holidays_raw = data.get("holidays") or []
    if not isinstance(holidays_raw, list):
        raise ValueError("holidays must be an array of ISO date strings")
    holidays = frozenset(
        _parse_iso_date(value, "holidays") for value in holidays_raw if not _is_missing(value)
    )

    logging_level = data.get("logging_level", "INFO")
    if not isinstance(logging_level, str):
        raise ValueError("logging_level must be a string")

    return CapacitySettings(
        working_days=tuple(working_days),
        holidays=holidays,
        weekly_capacity_setting=weekly,
        daily_capacity_setting=daily or None,
        weeks_to_forecast=weeks,
        under_utilized_threshold=threshold,
        logging_level=logging_level,
    )


def load_projects(path: str | Path) -> pd.DataFrame:
    df = pd.read_csv(path, dtype={"id": str})
    _require_columns(df, _PROJECT_REQUIRED_COLUMNS, PROJECTS_FILE)
    for col in (*FAB_HOURS_COLUMNS, *START_ANCHOR_COLUMNS, "fab_window_end", "archived", OVERRIDES_COLUMN):
        if col not in df.columns:
            df[col] = None
    for col in FAB_HOURS_COLUMNS:
        df[col] = pd.to_numeric(df[col], errors="coerce")
    return df


def fab_hours_for(row: Mapping[str, object]) -> float:
    """First positive figure among the fab-hours columns."""
    for col in FAB_HOURS_COLUMNS:
        hours = _positive_number(row.get(col))
        if hours > 0:
            return hours
    return 0.0


def _first_present(row: Mapping[str, object], columns: Sequence[str]) -> Optional[str]:
    for col in columns:
        value = row.get(col)
        if not _is_missing(value):
            return str(value).strip()
    return None


def loads_from_projects(df: pd.DataFrame) -> List[ProductionLoad]:
    loads: List[ProductionLoad] = []
    for row in df.to_dict(orient="records"):
        load_id = row.get("id")
        if _is_missing(load_id):
            continue
        load_id = str(load_id).strip()
        status = "" if _is_missing(row.get("status")) else str(row["status"]).strip().lower()
        if status not in BACKLOG_STATUSES or _parse_bool(row.get("archived")):
            continue
        total_hours = fab_hours_for(row)
        start = _first_present(row, START_ANCHOR_COLUMNS)
        if total_hours <= 0 or start is None:
            logger.debug("project %s has no fab hours or start anchor", load_id)
            continue
        name = row.get("project_name")
        loads.append(
            ProductionLoad(
                id=load_id,
                name="Untitled Project" if _is_missing(name) else str(name),
                source=LoadSource.PROJECT,
                total_hours=total_hours,
                start_date=start,
                end_date=_first_present(row, ("fab_window_end",)),
                overrides=_parse_overrides_cell(row.get(OVERRIDES_COLUMN), load_id),
            )
        )
    return loads


def load_production_entries(path: str | Path) -> List[Dict[str, object]]:
    data = json.loads(Path(path).read_text())
    if not isinstance(data, list):
        raise ValueError("production entries file must be a JSON array")
    for entry in data:
        if not isinstance(entry, dict):
            raise ValueError("production entries must be objects")
    return data


def loads_from_entries(entries: Iterable[Mapping[str, object]]) -> List[ProductionLoad]:
    loads: List[ProductionLoad] = []
    for entry in entries:
        entry_id = entry.get("id")
        start = entry.get("start_date")
        total_hours = _positive_number(entry.get("total_hours"))
        if _is_missing(entry_id) or _is_missing(start) or total_hours <= 0:
            continue
        end = entry.get("end_date")
        loads.append(
            ProductionLoad(
                id=str(entry_id),
                name=str(entry.get("project_name") or ""),
                source=LoadSource.MANUAL,
                total_hours=total_hours,
                start_date=str(start),
                end_date=None if _is_missing(end) else str(end),
                overrides=_parse_overrides_cell(entry.get("overrides"), str(entry_id)),
            )
        )
    return loads


def load_portfolio(input_dir: str | Path) -> Tuple[CapacitySettings, List[ProductionLoad]]:
    """Read config, projects and manual entries from a portfolio ``input/`` directory."""
    input_path = Path(input_dir)
    config_path = input_path / CONFIG_FILE
    if not config_path.is_file():
        raise ValueError(f"{CONFIG_FILE} not found at {config_path}")
    settings = load_settings(config_path)
    loads: List[ProductionLoad] = []
    projects_path = input_path / PROJECTS_FILE
    if projects_path.is_file():
        loads.extend(loads_from_projects(load_projects(projects_path)))
    entries_path = input_path / ENTRIES_FILE
    if entries_path.is_file():
        loads.extend(loads_from_entries(load_production_entries(entries_path)))
    return settings, loads


def validate_production_entry(
    project_name: str,
    start_date: object,
    end_date: object,
    total_hours: object,
    calendar: WorkCalendar,
    daily_capacity_hours: float,
) -> List[str]:
    """Check a manual entry before it is stored; returns non-fatal warnings."""
    if not str(project_name or "").strip() or _is_missing(start_date) or _is_missing(total_hours):
        raise InvalidEntryError("project name, start date, and total hours are required")
    hours = _positive_number(total_hours)
    if hours <= 0:
        raise InvalidEntryError("total hours must be greater than zero")
    start = parse_date_or_none(start_date)
    if start is None:
        raise InvalidEntryError("start date is not a valid date")
    warnings: List[str] = []
    if _is_missing(end_date):
        return warnings
    end = parse_date_or_none(end_date)
    if end is None:
        raise InvalidEntryError("end date is not a valid date")
    if end < start:
        raise InvalidEntryError("end date cannot be before start date")
    working_dates = calendar.working_dates_between(start, end)
    if not working_dates:
        raise InvalidEntryError("no working days exist between the start and end dates")
    if daily_capacity_hours > 0:
        max_capacity = len(working_dates) * daily_capacity_hours
        if hours > max_capacity:
            warnings.append(
                f"{hours:,.2f} hrs exceeds the available capacity ({max_capacity:,.2f} hrs) "
                "between these dates; the load will overbook those days"
            )
    return warnings


def add_production_entry(
    input_dir: str | Path,
    settings: CapacitySettings,
    project_name: str,
    start_date: object,
    end_date: object,
    total_hours: object,
) -> Tuple[Dict[str, object], List[str]]:
    """Validate a new manual entry and append it to the portfolio's entries file."""
    calendar = WorkCalendar.from_settings(settings)
    warnings = validate_production_entry(
        project_name, start_date, end_date, total_hours, calendar, settings.daily_capacity_hours
    )
    end = None if _is_missing(end_date) else parse_date_or_none(end_date)
    entry: Dict[str, object] = {
        "id": uuid.uuid4().hex,
        "project_name": str(project_name).strip(),
        "start_date": parse_date_or_none(start_date).isoformat(),
        "end_date": end.isoformat() if end else None,
        "total_hours": _positive_number(total_hours),
        "overrides": None,
    }
    path = Path(input_dir) / ENTRIES_FILE
    entries = load_production_entries(path) if path.is_file() else []
    entries.append(entry)
    path.write_text(json.dumps(entries, indent=2) + "\n")
    for warning in warnings:
        logger.warning("entry %s: %s", entry["project_name"], warning)
    return entry, warnings


def save_load_overrides(
    input_dir: str | Path,
    source: LoadSource,
    load_id: str,
    overrides: Mapping[date, float],
) -> None:
    """Write one load's override map back to the portfolio file it came from."""
    stored = overrides_to_storage(overrides)
    input_path = Path(input_dir)
    if source is LoadSource.MANUAL:
        path = input_path / ENTRIES_FILE
        entries = load_production_entries(path)
        for entry in entries:
            if str(entry.get("id")) == load_id:
                entry["overrides"] = stored
                break
        else:
            raise KeyError(load_id)
        path.write_text(json.dumps(entries, indent=2) + "\n")
        return
    path = input_path / PROJECTS_FILE
    # Every other cell is written back exactly as read.
    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    _require_columns(df, _PROJECT_REQUIRED_COLUMNS, PROJECTS_FILE)
    mask = df["id"].str.strip() == load_id
    if not mask.any():
        raise KeyError(load_id)
    if OVERRIDES_COLUMN not in df.columns:
        df[OVERRIDES_COLUMN] = ""
    df.loc[mask, OVERRIDES_COLUMN] = json.dumps(stored) if stored else ""
    write_csv(df, path)


def ensure_directory(path: str | Path) -> Path:
    target = Path(path)
    target.mkdir(parents=True, exist_ok=True)
    return target


def write_csv(df: pd.DataFrame, path: str | Path) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False)
