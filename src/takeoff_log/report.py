from __future__ import annotations
import datetime as dt
from typing import Callable, List, Mapping, Optional

from pydantic import BaseModel

from .periods import Period, period_for_offset, resolve_period, shift_anchor
from .stats import WEEKDAY_NAMES, StatsSummary, aggregate, most_active_weekday

TREND_PERIODS = 3

PERIOD_NAMES = {"week": "Weekly", "month": "Monthly", "quarter": "Quarterly", "year": "Yearly"}

REPORT_SYSTEM_PROMPT = """You are a witty, warm personal health coach reviewing a user's "takeoff log",
a private habit tracker where each day holds a count from 0 to 5 (0 = none that day).

## Calendar
- ISO 8601 weeks: Monday starts the week, week 1 contains the year's first Thursday.
- The timezone is fixed to UTC+8. The current date and time are given with the data.

## Task
Write the analysis part of a periodic report from the statistics provided.

## Style
1. Friendly and light, never preachy or judgemental.
2. Short and focused.
3. Treat the habit as a normal part of life; moderation is the theme.

## Sections
1. **Patterns**: interesting regularities (busy weekdays, streaks, trend vs previous periods).
2. **Advice**: one or two practical suggestions grounded in the data.
3. **Encouragement**: a light closing line.

## Output
- Markdown, under 300 words, emoji allowed.
"""

FetchRange = Callable[[dt.date, dt.date], Mapping[dt.date, int]]


class PartialInfo(BaseModel):
    actual_data_days: int
    full_period_days: int


class TrendEntry(BaseModel):
    label: str
    stats: StatsSummary


class ReportContext(BaseModel):
    period: Period
    effective_end: dt.date
    stats: StatsSummary
    partial: Optional[PartialInfo] = None
    previous: List[TrendEntry] = []
    record_count: int = 0


# ---------------------------
# Context
# ---------------------------

def clamp_to_today(period: Period, today: dt.date) -> tuple[dt.date, Optional[PartialInfo]]:
    """Effective end for the current period and the partial-period disclosure, if any."""
    if today < period.end:
        actual = max((today - period.start).days + 1, 0)
        return today, PartialInfo(actual_data_days=actual, full_period_days=period.days)
    return period.end, None


def previous_summaries(
    report_type: str, anchor: dt.date, fetch_range: FetchRange, count: int = TREND_PERIODS
) -> List[TrendEntry]:
    out: List[TrendEntry] = []
    for i in range(1, count + 1):
        prev = resolve_period(report_type, shift_anchor(report_type, anchor, -i))
        data = fetch_range(prev.start, prev.end)
        out.append(TrendEntry(label=prev.label, stats=aggregate(data, prev.start, prev.end)))
    return out


def build_report_context(
    report_type: str,
    today: dt.date,
    fetch_range: FetchRange,
    period_offset: int = 0,
) -> ReportContext:
    anchor = shift_anchor(report_type, today, period_offset)
    period = resolve_period(report_type, anchor)

    end, partial = period.end, None
    if period_offset == 0:
        end, partial = clamp_to_today(period, today)

    previous = previous_summaries(report_type, anchor, fetch_range)
    data = fetch_range(period.start, end)
    stats = aggregate(data, period.start, end)
    return ReportContext(
        period=period,
        effective_end=end,
        stats=stats,
        partial=partial,
        previous=previous,
        record_count=len(data),
    )


def previous_period(report_type: str, today: dt.date) -> Period:
    """The last fully elapsed period of this type, the one a pending report refers to."""
    return period_for_offset(report_type, today, -1)


# ---------------------------
# Rendering
# ---------------------------

def _overview_lines(stats: StatsSummary) -> List[str]:
    day, count = most_active_weekday(stats)
    most_active = f"{WEEKDAY_NAMES[day]} ({count} total)" if day is not None else "none"
    max_suffix = f" ({stats.max_count_date.isoformat()})" if stats.max_count_date else ""
    return [
        f"- Days covered (unrecorded days count as 0): {stats.total_days}",
        f"- Total count: {stats.total_count}",
        f"- Success days: {stats.success_days}",
        f"- Zero days: {stats.zero_days}",
        f"- Average per day: {stats.avg_per_day:.2f}",
        f"- Best day: {stats.max_count}{max_suffix}",
        f"- Longest streak: {stats.streak_days} days",
        f"- Ongoing streak: {stats.trailing_streak} days",
        f"- Most active weekday: {most_active}",
    ]


def _weekday_lines(stats: StatsSummary) -> List[str]:
    lines = []
    for day in range(7):
        b = stats.day_of_week_stats[day]
        lines.append(f"- {WEEKDAY_NAMES[day]}: {b.count} total over {b.days_observed} days")
    return lines


def _partial_note(partial: PartialInfo) -> str:
    return (
        f"> Note: this period is still in progress; data covers {partial.actual_data_days} "
        f"of {partial.full_period_days} days."
    )


def render_stats_section(label: str, stats: StatsSummary, partial: Optional[PartialInfo] = None) -> str:
    lines = [f"## {label} Report"]
    if partial:
        lines.append(_partial_note(partial))
        lines.append("")
    lines.append("### Overview")
    lines.extend(_overview_lines(stats))
    lines.append("")
    lines.append("### By Weekday")
    lines.extend(_weekday_lines(stats))
    return "\n".join(lines)


def render_empty_report(label: str, partial_end: Optional[dt.date] = None) -> str:
    note = f"(as of {partial_end.isoformat()}) " if partial_end else ""
    return (
        f"## {label} Report\n\n"
        f"{note}No records in this period yet.\n\n"
        "Start logging days on the calendar to get a meaningful report."
    )


def combine_report(stats_md: str, narrative: Optional[str]) -> str:
    return f"{stats_md}\n\n{narrative}" if narrative else stats_md


def build_analysis_prompt(
    report_type: str,
    label: str,
    stats: StatsSummary,
    previous: Optional[List[TrendEntry]] = None,
    current_time: Optional[str] = None,
    partial: Optional[PartialInfo] = None,
    refresh_token: Optional[str] = None,
) -> str:
    """User prompt for the narrative service. All numbers come from `stats`."""
    lines = [
        'Write the "Patterns", "Advice" and "Encouragement" sections of the report. '
        "Do not repeat the overview, and do not mention weeks or dates that disagree with the data.",
        "Quote numbers only from the statistics below; if unsure about a number, leave it out.",
        "Use exactly this layout:",
        "### Patterns",
        "...",
        "### Advice",
        "...",
        "### Encouragement",
        "...",
        "",
        "Basics:",
        f"- Report type: {PERIOD_NAMES.get(report_type, report_type)}",
        f"- Period: {label}",
        f"- Current time: {current_time or 'not provided'}",
    ]
    if partial:
        lines.append(
            f"- The period is incomplete: {partial.actual_data_days} of {partial.full_period_days} days so far. "
            "Analyse what exists and remind the user these are figures to date."
        )
    if refresh_token:
        lines.append(f"- Request id: {refresh_token}")

    lines.append("")
    lines.append("Statistics:")
    lines.extend(_overview_lines(stats))
    lines.append("")
    lines.append("By weekday:")
    lines.extend(_weekday_lines(stats))

    if previous:
        lines.append("")
        lines.append("Previous periods (for trend comparison):")
        for p in previous:
            lines.append("")
            lines.append(p.label)
            lines.append(f"- Total count: {p.stats.total_count}")
            lines.append(f"- Average per day: {p.stats.avg_per_day:.2f}")
            lines.append(f"- Success days: {p.stats.success_days}")
            lines.append(f"- Zero days: {p.stats.zero_days}")
    return "\n".join(lines)
