from __future__ import annotations

import os
from datetime import date
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from flask import Flask, jsonify, request

from production_scheduler import engine
from production_scheduler.aggregator import classify_day, week_breakdown
from production_scheduler.engine import SchedulePlan
from production_scheduler.io_utils import (
    CONFIG_FILE,
    add_production_entry,
    load_portfolio,
    save_load_overrides,
)
from production_scheduler.models import LoadSource, ProductionLoad
from production_scheduler.overrides import apply_override_edit, overrides_to_storage
from production_scheduler.work_calendar import parse_date_or_none


def _default_projects_root() -> Path:
    return (Path(__file__).resolve().parent.parent / "portfolios").resolve()


def _resolve_projects_root() -> Path:
    env_value = os.getenv("PROJECTS_ROOT")
    if env_value:
        return Path(env_value).expanduser().resolve()
    return _default_projects_root()


def _validate_within_root(path: Path, root: Path) -> None:
    try:
        path.relative_to(root)
    except ValueError as exc:
        raise ValueError(f"Portfolio directory must be inside {root}") from exc


def _check_input_dir(project_dir: Path) -> Tuple[Path, List[str]]:
    input_dir = project_dir / "input"
    if not (input_dir / CONFIG_FILE).is_file():
        return input_dir, [CONFIG_FILE]
    return input_dir, []


def _list_project_dirs(root: Path) -> List[Dict[str, object]]:
    entries: List[Dict[str, object]] = []
    if not root.exists():
        return entries
    for child in sorted(root.iterdir()):
        if not child.is_dir():
            continue
        input_dir, missing = _check_input_dir(child)
        entries.append(
            {
                "name": child.relative_to(root).as_posix(),
                "input_dir": input_dir.as_posix(),
                "is_valid": not missing,
            }
        )
    return entries


def _portfolio_input_dir(root: Path, portfolio_name: str) -> Path:
    portfolio_path = (root / portfolio_name).resolve()
    _validate_within_root(portfolio_path, root)
    if not portfolio_path.is_dir():
        raise FileNotFoundError(f"Portfolio not found: {portfolio_name}")
    input_dir, missing = _check_input_dir(portfolio_path)
    if missing:
        raise FileNotFoundError(f"Portfolio {portfolio_name} has no {CONFIG_FILE}")
    return input_dir


def _date_arg(name: str) -> Optional[date]:
    raw = request.args.get(name)
    if raw is None:
        return None
    parsed = parse_date_or_none(raw)
    if parsed is None:
        raise ValueError(f"{name} must be an ISO date")
    return parsed


def _load_to_dict(load: ProductionLoad) -> Dict[str, object]:
    return {
        "id": load.id,
        "key": load.key,
        "name": load.name,
        "source": load.source.value,
        "can_delete": load.can_delete,
    }


def _plan_to_dict(result: SchedulePlan) -> Dict[str, object]:
    report = result.report
    return {
        "today": result.today.isoformat(),
        "weekly_capacity_hours": result.weekly_capacity_hours,
        "daily_capacity_hours": result.daily_capacity_hours,
        "capacity_configured": result.settings.capacity_configured,
        "backlog_months": report.backlog_months,
        "daily_totals": [
            {
                "date": day.isoformat(),
                "total_hours": entry.total,
                "status": classify_day(
                    day, entry.total, result.calendar, result.daily_capacity_hours
                ).value,
                "loads": [
                    {"key": part.key, "load_id": part.load_id, "name": part.name, "hours": part.hours}
                    for part in entry.contributions
                ],
            }
            for day, entry in result.schedule.daily_totals.items()
        ],
        "weeks": [
            {
                "week_index": week.week_index,
                "week_start": week.week_start.isoformat(),
                "used_hours": week.used_hours,
                "capacity_hours": week.capacity_hours,
                "utilization": week.utilization,
                "status": week.status.value,
                "breakdown": [
                    {"key": part.key, "load_id": part.load_id, "name": part.name, "hours": part.hours}
                    for part in week.breakdown
                ],
            }
            for week in report.weeks
        ],
        "counts": report.counts(),
        "recommendations": [
            {
                "week_index": rec.week_index,
                "week_start": rec.week_start.isoformat(),
                "week_end": rec.week_end.isoformat(),
                "available_hours": rec.available_hours,
                "suggested_min_hours": rec.suggested_min_hours,
                "suggested_max_hours": rec.suggested_max_hours,
            }
            for rec in report.recommendations
        ],
        "unreconciled": [
            {
                **_load_to_dict(item.load),
                "unreconciled_hours": item.unreconciled_hours,
                "hit_iteration_limit": item.hit_iteration_limit,
            }
            for item in result.schedule.unreconciled
        ],
    }


def create_app() -> Flask:
    app = Flask(__name__)
    projects_root = _resolve_projects_root()
    app.config["PROJECTS_ROOT"] = projects_root

    @app.get("/dirs")
    def directories():
        dirs = _list_project_dirs(projects_root)
        return jsonify({"projects": dirs})

    @app.get("/api/schedule/<portfolio_name>")
    def get_schedule(portfolio_name: str):
        try:
            input_dir = _portfolio_input_dir(projects_root, portfolio_name)
            settings, loads = load_portfolio(input_dir)
            result = engine.plan(loads, settings, _date_arg("today"))
        except FileNotFoundError as exc:
            return jsonify({"error": str(exc)}), 404
        except (ValueError, OSError) as exc:
            return jsonify({"error": str(exc)}), 400
        return jsonify(_plan_to_dict(result))

    @app.get("/api/week/<portfolio_name>")
    def get_week(portfolio_name: str):
        """Per-load breakdown of the week containing ``date``."""
        try:
            input_dir = _portfolio_input_dir(projects_root, portfolio_name)
            selected = _date_arg("date") or date.today()
            settings, loads = load_portfolio(input_dir)
            result = engine.plan(loads, settings, selected, weeks_to_forecast=0)
        except FileNotFoundError as exc:
            return jsonify({"error": str(exc)}), 404
        except (ValueError, OSError) as exc:
            return jsonify({"error": str(exc)}), 400
        rows = week_breakdown(result.schedule, result.calendar, selected)
        return jsonify(
            {
                "date": selected.isoformat(),
                "loads": [
                    {
                        **_load_to_dict(row.load),
                        "total_hours": row.total_hours,
                        "days": [
                            {
                                "date": cell.date.isoformat(),
                                "hours": cell.hours,
                                "is_working_day": cell.is_working_day,
                            }
                            for cell in row.days
                        ],
                    }
                    for row in rows
                ],
            }
        )

    @app.post("/api/overrides/<portfolio_name>")
    def save_override(portfolio_name: str):
        """Apply one daily-hours edit and write it back to the load's input file."""
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return jsonify({"error": "request body must be a JSON object"}), 400
        load_id = data.get("load_id")
        day = parse_date_or_none(data.get("date"))
        try:
            source = LoadSource(data.get("source"))
        except ValueError:
            return jsonify({"error": "source must be 'project' or 'manual'"}), 400
        if not load_id or day is None:
            return jsonify({"error": "load_id and a valid date are required"}), 400
        try:
            input_dir = _portfolio_input_dir(projects_root, portfolio_name)
            _, loads = load_portfolio(input_dir)
            load = next(
                (item for item in loads if item.id == str(load_id) and item.source is source),
                None,
            )
            if load is None:
                return jsonify({"error": f"load {load_id} not found"}), 404
            updated = apply_override_edit(load.overrides, day, data.get("value"))
            save_load_overrides(input_dir, source, load.id, updated)
        except (FileNotFoundError, KeyError) as exc:
            return jsonify({"error": f"not found: {exc}"}), 404
        except (ValueError, OSError) as exc:
            return jsonify({"error": str(exc)}), 400
        return jsonify({"success": True, "overrides": overrides_to_storage(updated)})

    @app.post("/api/entries/<portfolio_name>")
    def create_entry(portfolio_name: str):
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return jsonify({"error": "request body must be a JSON object"}), 400
        try:
            input_dir = _portfolio_input_dir(projects_root, portfolio_name)
            settings, _ = load_portfolio(input_dir)
            entry, warnings = add_production_entry(
                input_dir,
                settings,
                data.get("project_name"),
                data.get("start_date"),
                data.get("end_date"),
                data.get("total_hours"),
            )
        except FileNotFoundError as exc:
            return jsonify({"error": str(exc)}), 404
        except (ValueError, OSError) as exc:
            return jsonify({"error": str(exc)}), 400
        return jsonify({"entry": entry, "warnings": warnings}), 201

    return app


if __name__ == "__main__":
    create_app().run(debug=True)
