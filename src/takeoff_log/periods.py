from __future__ import annotations
import calendar
import datetime as dt
from typing import Literal, Optional, get_args

from pydantic import BaseModel, ConfigDict

ReportType = Literal["week", "month", "quarter", "year"]
REPORT_TYPES: tuple[str, ...] = get_args(ReportType)

# The product's day boundary is defined in China Standard Time.
UTC8 = dt.timezone(dt.timedelta(hours=8))


class Period(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: ReportType
    start: dt.date
    end: dt.date  # inclusive
    label: str
    key: str

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1


# ---------------------------
# Helpers
# ---------------------------

def today_utc8(now: Optional[dt.datetime] = None) -> dt.date:
    """Calendar date in UTC+8, whatever the server's local zone is."""
    now = now or dt.datetime.now(dt.timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=dt.timezone.utc)
    return now.astimezone(UTC8).date()


def now_utc8_iso(now: Optional[dt.datetime] = None) -> str:
    now = now or dt.datetime.now(dt.timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=dt.timezone.utc)
    return now.astimezone(UTC8).replace(microsecond=0).isoformat()


def _last_day(year: int, month: int) -> dt.date:
    return dt.date(year, month, calendar.monthrange(year, month)[1])


def _add_months(d: dt.date, months: int) -> dt.date:
    # clamp to the target month's length (Mar 31 - 1 month -> Feb 28/29)
    idx = d.year * 12 + (d.month - 1) + months
    year, month = divmod(idx, 12)
    month += 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return dt.date(year, month, day)


def _check_type(report_type: str) -> None:
    if report_type not in REPORT_TYPES:
        raise ValueError(f"Unknown report type: {report_type!r}")


def shift_anchor(report_type: str, anchor: dt.date, steps: int) -> dt.date:
    """Move `anchor` by `steps` periods of `report_type` (negative = back in time)."""
    _check_type(report_type)
    if report_type == "week":
        return anchor + dt.timedelta(days=7 * steps)
    if report_type == "month":
        return _add_months(anchor, steps)
    if report_type == "quarter":
        return _add_months(anchor, 3 * steps)
    return _add_months(anchor, 12 * steps)


# ---------------------------
# Resolver
# ---------------------------

def resolve_period(report_type: str, anchor: dt.date) -> Period:
    _check_type(report_type)
    year, month = anchor.year, anchor.month

    if report_type == "week":
        # Mon=0..Sun=6, so Sunday rolls back six days like any other weekday
        monday = anchor - dt.timedelta(days=anchor.weekday())
        iso_year, iso_week, _ = monday.isocalendar()
        return Period(
            type="week",
            start=monday,
            end=monday + dt.timedelta(days=6),
            label=f"Week {iso_week}, {iso_year}",
            key=f"{iso_year}-W{iso_week:02d}",
        )

    if report_type == "month":
        return Period(
            type="month",
            start=dt.date(year, month, 1),
            end=_last_day(year, month),
            label=f"{calendar.month_name[month]} {year}",
            key=f"{year}-M{month:02d}",
        )

    if report_type == "quarter":
        q = (month - 1) // 3
        first_month = q * 3 + 1
        return Period(
            type="quarter",
            start=dt.date(year, first_month, 1),
            end=_last_day(year, first_month + 2),
            label=f"Q{q + 1} {year}",
            key=f"{year}-Q{q + 1}",
        )

    return Period(
        type="year",
        start=dt.date(year, 1, 1),
        end=dt.date(year, 12, 31),
        label=str(year),
        key=str(year),
    )


def period_for_offset(report_type: str, today: dt.date, offset: int = 0) -> Period:
    """0 = the period containing `today`, -1 = the one before, and so on."""
    return resolve_period(report_type, shift_anchor(report_type, today, offset))
