from __future__ import annotations

import argparse
import logging
import sys
from datetime import date
from pathlib import Path
from typing import List, Optional, Tuple

from . import engine
from .engine import SchedulePlan, ScheduleIntegrityError
from .io_utils import (
    CONFIG_FILE,
    ENTRIES_FILE,
    PROJECTS_FILE,
    ensure_directory,
    load_production_entries,
    load_projects,
    load_settings,
    loads_from_entries,
    loads_from_projects,
    write_csv,
)
from .models import ProductionLoad
from .work_calendar import parse_date_or_none


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Production capacity schedule (JSON/CSV in, CSV out, no UI)."
    )
    parser.add_argument(
        "--project-dir",
        help="Portfolio directory containing input/ and output/ subfolders",
    )
    parser.add_argument("--config", help="Path to capacity config JSON (overrides project-dir default)")
    parser.add_argument("--projects", help="Path to projects CSV (overrides project-dir default)")
    parser.add_argument("--entries", help="Path to manual production entries JSON (overrides project-dir default)")
    parser.add_argument(
        "--outdir",
        default=None,
        help="Output directory for generated files (default: <project-dir>/output or ./out)",
    )
    parser.add_argument("--today", help="Reference date (YYYY-MM-DD) for the first forecast week")
    parser.add_argument("--weeks", type=int, help="Override backlog_forecast_weeks from the config")
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Fail if any load cannot be fully reconciled with its overrides",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Compute and print summary without writing output files",
    )
    return parser.parse_args(argv)


def _resolve_io_paths(
    args: argparse.Namespace,
) -> Tuple[Path, Optional[Path], Optional[Path], Path]:
    project_dir = Path(args.project_dir).resolve() if args.project_dir else None
    if project_dir and not project_dir.exists():
        raise ValueError(f"project directory not found: {project_dir}")
    input_dir = project_dir / "input" if project_dir else None

    def _pick(path_value: Optional[str], default_name: str) -> Optional[Path]:
        if path_value:
            return Path(path_value)
        if input_dir:
            return input_dir / default_name
        return None

    config_path = _pick(args.config, CONFIG_FILE)
    if config_path is None:
        raise ValueError("missing required input path: --config (or provide --project-dir)")
    if not config_path.exists():
        raise ValueError(f"config file not found at {config_path}")

    projects_path = _pick(args.projects, PROJECTS_FILE)
    entries_path = _pick(args.entries, ENTRIES_FILE)
    for label, path, explicit in (
        ("projects", projects_path, args.projects),
        ("entries", entries_path, args.entries),
    ):
        if explicit and not path.exists():
            raise ValueError(f"{label} file not found at {path}")
    if projects_path is not None and not projects_path.exists():
        projects_path = None
    if entries_path is not None and not entries_path.exists():
        entries_path = None

    if args.outdir:
        outdir = Path(args.outdir)
    elif project_dir:
        outdir = project_dir / "output"
    else:
        outdir = Path("out")

    return config_path, projects_path, entries_path, outdir


def _configure_logging(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(levelname)s %(message)s")


def _load_inputs(projects_path: Optional[Path], entries_path: Optional[Path]) -> List[ProductionLoad]:
    loads: List[ProductionLoad] = []
    if projects_path is not None:
        loads.extend(loads_from_projects(load_projects(projects_path)))
    if entries_path is not None:
        loads.extend(loads_from_entries(load_production_entries(entries_path)))
    return loads


def _print_dry_run_summary(result: SchedulePlan) -> None:
    settings = result.settings
    report = result.report
    capacity_label = f"{result.weekly_capacity_hours:,.1f} hrs/week"
    if not settings.capacity_configured:
        capacity_label += " (not configured, using fallback)"
    print(f"Weekly capacity: {capacity_label}")
    print(f"Backlog: {report.backlog_months:.1f} months")
    if not report.weeks:
        print("No forecast weeks.")
        return
    print("Forecast weeks:")
    for week in report.weeks:
        utilization = week.utilization
        pct = f"{utilization * 100:5.1f}%" if utilization is not None else "  n/a "
        print(
            f"- {week.week_start.isoformat()} {week.used_hours:8.1f} / "
            f"{week.capacity_hours:.1f} hrs {pct} {week.status.value}"
        )
    counts = report.counts()
    print(
        f"\nGap weeks: {counts['gap']} ({counts['gap_current']} in the next 4 weeks), "
        f"overload weeks: {counts['overload']}"
    )
    unreconciled = result.schedule.unreconciled
    if unreconciled:
        print("\nUnreconciled loads:")
        for item in unreconciled:
            print(f"- {item.load.id} {item.load.name}: {item.unreconciled_hours:.2f} hrs")


def _write_report_markdown(result: SchedulePlan, outdir: Path) -> Path:
    path = outdir / "schedule_report.md"
    report = result.report
    lines: List[str] = ["# Production Schedule", ""]
    lines.append(f"- Reference date: {result.today.isoformat()}")
    lines.append(f"- Weekly capacity: {result.weekly_capacity_hours:,.1f} hrs")
    lines.append(f"- Backlog: {report.backlog_months:.1f} months")
    if not result.settings.capacity_configured:
        lines.append("- Capacity not configured; daily fallback of 8 hrs in use")
    lines.append("")

    lines.append("## Gap Weeks")
    lines.append("")
    if not report.recommendations:
        lines.append("No under-utilised weeks.")
    for rec in report.recommendations:
        lines.append(f"- **{rec.week_start.isoformat()} – {rec.week_end.isoformat()}**")
        lines.append(f"  - Available: {rec.available_hours:,.1f} hrs")
        lines.append(
            f"  - Suggested bids: {rec.suggested_min_hours:,.1f}–{rec.suggested_max_hours:,.1f} hrs"
        )
    lines.append("")

    lines.append("## Overload Weeks")
    lines.append("")
    if not report.overload_weeks:
        lines.append("No overbooked weeks.")
    for week in report.overload_weeks:
        over = week.used_hours - week.capacity_hours
        lines.append(f"- **{week.week_start.isoformat()}**: {over:,.1f} hrs over capacity")
        for part in week.breakdown:
            lines.append(f"  - {part.name}: {part.hours:,.1f} hrs")
    lines.append("")

    unreconciled = result.schedule.unreconciled
    if unreconciled:
        lines.append("## Unreconciled Loads")
        lines.append("")
        for item in unreconciled:
            reason = "iteration limit reached" if item.hit_iteration_limit else "overrides do not match total hours"
            lines.append(f"- **{item.load.id} – {item.load.name}**: {item.unreconciled_hours:,.2f} hrs ({reason})")
    path.write_text("\n".join(lines).strip() + "\n")
    return path


def main(argv: Optional[List[str]] = None) -> None:
    args = _parse_args(argv)
    try:
        config_path, projects_path, entries_path, outdir = _resolve_io_paths(args)
        settings = load_settings(config_path)
        loads = _load_inputs(projects_path, entries_path)
        today: Optional[date] = None
        if args.today:
            today = parse_date_or_none(args.today)
            if today is None:
                raise ValueError(f"invalid --today value: {args.today}")
        if args.weeks is not None and args.weeks < 0:
            raise ValueError("--weeks must not be negative")
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(2)

    _configure_logging(settings.logging_level)
    try:
        result = engine.plan(
            loads,
            settings,
            today,
            weeks_to_forecast=args.weeks,
            strict=args.strict,
        )
    except ScheduleIntegrityError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)

    if args.dry_run:
        _print_dry_run_summary(result)
        return

    outdir_path = ensure_directory(outdir)
    outputs = (
        ("daily_totals.csv", engine.daily_totals_frame(result)),
        ("load_schedule.csv", engine.load_schedule_frame(result)),
        ("weekly_utilization.csv", engine.weekly_summary_frame(result)),
    )
    for name, frame in outputs:
        path = outdir_path / name
        write_csv(frame, path)
        print(f"Wrote {path}")
    print(f"Wrote {_write_report_markdown(result, outdir_path)}")


if __name__ == "__main__":
    main()
