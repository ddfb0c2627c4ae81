from __future__ import annotations
import datetime as dt
from typing import Dict, Mapping, Optional

from pydantic import BaseModel, Field

WEEKDAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


class WeekdayStats(BaseModel):
    count: int = 0
    days_observed: int = 0


def _empty_weekdays() -> Dict[int, WeekdayStats]:
    return {i: WeekdayStats() for i in range(7)}


class StatsSummary(BaseModel):
    total_days: int = 0
    total_count: int = 0
    success_days: int = 0
    zero_days: int = 0
    avg_per_day: float = 0.0
    max_count: int = 0
    max_count_date: Optional[dt.date] = None
    # longest run anywhere in the window
    streak_days: int = 0
    # run still going on the window's last day
    trailing_streak: int = 0
    day_of_week_stats: Dict[int, WeekdayStats] = Field(default_factory=_empty_weekdays)


def sunday_index(d: dt.date) -> int:
    """Weekday with Sunday=0..Saturday=6."""
    return (d.weekday() + 1) % 7


def most_active_weekday(summary: StatsSummary) -> tuple[Optional[int], int]:
    """Return (weekday, count) of the busiest weekday, or (None, 0) if there is none."""
    best, best_count = None, 0
    for day in range(7):
        bucket = summary.day_of_week_stats.get(day)
        if bucket and bucket.count > best_count:
            best, best_count = day, bucket.count
    return best, best_count


def aggregate(records: Mapping[dt.date, int], start: dt.date, end: dt.date) -> StatsSummary:
    """
    Descriptive statistics for every day in [start, end].
    Dates missing from `records` count as 0.
    """
    total_days = (end - start).days + 1
    if total_days <= 0:
        return StatsSummary()

    total_count = 0
    success_days = 0
    zero_days = 0
    max_count = 0
    max_count_date: Optional[dt.date] = None
    streak = 0
    max_streak = 0
    weekdays = _empty_weekdays()

    for i in range(total_days):
        day = start + dt.timedelta(days=i)
        value = int(records.get(day, 0) or 0)
        bucket = weekdays[sunday_index(day)]
        bucket.days_observed += 1

        if value > 0:
            success_days += 1
            total_count += value
            bucket.count += value
            if value > max_count:
                max_count = value
                max_count_date = day
            streak += 1
            max_streak = max(max_streak, streak)
        else:
            zero_days += 1
            streak = 0

    return StatsSummary(
        total_days=total_days,
        total_count=total_count,
        success_days=success_days,
        zero_days=zero_days,
        avg_per_day=total_count / total_days,
        max_count=max_count,
        max_count_date=max_count_date,
        streak_days=max_streak,
        trailing_streak=streak,
        day_of_week_stats=weekdays,
    )
