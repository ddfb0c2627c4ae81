from __future__ import annotations
import csv
import datetime as dt
import io
import json
from typing import Any, Dict, Iterable, List, Mapping, Optional, TextIO

from .report import PartialInfo, TrendEntry, render_stats_section
from .stats import WEEKDAY_NAMES, StatsSummary

SUMMARY_FIELDS = [
    "period_key", "label", "start", "end",
    "total_days", "total_count", "success_days", "zero_days",
    "avg_per_day", "max_count", "max_count_date",
    "streak_days", "trailing_streak",
]


def load_records_file(path: str) -> Dict[str, Any]:
    """Accept either {"data": {...}} (the /records response) or a bare {"YYYY-MM-DD": count} map."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict) and isinstance(data.get("data"), dict):
        return data["data"]
    if isinstance(data, dict):
        return data
    raise ValueError("Records file must be an object mapping dates to counts")


def write_records_csv(out: TextIO, records: Mapping[dt.date, int]) -> None:
    w = csv.writer(out)
    w.writerow(["date", "weekday", "count"])
    for d in sorted(records):
        w.writerow([d.isoformat(), WEEKDAY_NAMES[(d.weekday() + 1) % 7], int(records[d])])


def records_csv(records: Mapping[dt.date, int]) -> str:
    buf = io.StringIO()
    write_records_csv(buf, records)
    return buf.getvalue()


def _summary_row(key: str, label: str, start: dt.date, end: dt.date, s: StatsSummary) -> List[Any]:
    return [
        key, label, start.isoformat(), end.isoformat(),
        s.total_days, s.total_count, s.success_days, s.zero_days,
        round(s.avg_per_day, 3), s.max_count,
        s.max_count_date.isoformat() if s.max_count_date else "",
        s.streak_days, s.trailing_streak,
    ]


def write_summary_csv(
    path: str,
    key: str,
    label: str,
    start: dt.date,
    end: dt.date,
    stats: StatsSummary,
) -> str:
    """One-row summary plus a per-weekday table in `{path}` and `{path[:-4]}-weekday.csv`."""
    with open(path, "w", newline="", encoding="utf-8") as f:
        w = csv.writer(f)
        w.writerow(SUMMARY_FIELDS)
        w.writerow(_summary_row(key, label, start, end, stats))

    weekday_path = path[:-4] + "-weekday.csv" if path.endswith(".csv") else path + "-weekday.csv"
    with open(weekday_path, "w", newline="", encoding="utf-8") as f:
        w = csv.writer(f)
        w.writerow(["weekday", "count", "days_observed"])
        for day in range(7):
            b = stats.day_of_week_stats[day]
            w.writerow([WEEKDAY_NAMES[day], b.count, b.days_observed])
    return weekday_path


def write_report_markdown(
    path: str,
    label: str,
    stats: StatsSummary,
    partial: Optional[PartialInfo] = None,
    previous: Iterable[TrendEntry] = (),
) -> None:
    lines = [render_stats_section(label, stats, partial)]
    previous = list(previous)
    if previous:
        lines.append("")
        lines.append("### Previous Periods")
        lines.append("")
        lines.append("| Period | Total | Avg/day | Success days | Zero days |")
        lines.append("|---|---:|---:|---:|---:|")
        for p in previous:
            lines.append(
                f"| {p.label} | {p.stats.total_count} | {p.stats.avg_per_day:.2f} | "
                f"{p.stats.success_days} | {p.stats.zero_days} |"
            )
    with open(path, "w", encoding="utf-8") as f:
        f.write("\n".join(lines) + "\n")


def write_report_json(path: str, payload: Dict[str, Any]) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, default=str)
