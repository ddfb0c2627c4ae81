from __future__ import annotations
import datetime as dt
from typing import Any, Dict, Iterable, Mapping, Optional

MAX_COUNT = 5


def parse_date(value: Any) -> dt.date:
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    return dt.date.fromisoformat(str(value).strip()[:10])


def validate_count(count: Any) -> int:
    try:
        n = int(count)
    except (TypeError, ValueError):
        raise ValueError(f"Count must be an integer, got {count!r}")
    if n < 0 or n > MAX_COUNT:
        raise ValueError(f"Count must be between 0 and {MAX_COUNT}, got {n}")
    return n


def next_count(current: Optional[int]) -> Optional[int]:
    """
    Calendar tap cycle: unset -> 1 -> 2 -> ... -> 5 -> 0 -> unset.
    None means the record is removed.
    """
    if current is None:
        return 1
    if 1 <= current < MAX_COUNT:
        return current + 1
    if current == MAX_COUNT:
        return 0
    return None


def ensure_not_future(day: dt.date, today: dt.date) -> None:
    if day > today:
        raise ValueError(f"Cannot record future date {day.isoformat()}")


def to_date_map(data: Mapping[str, Any]) -> Dict[dt.date, int]:
    """{"YYYY-MM-DD": count} -> {date: count}; null counts are dropped."""
    out: Dict[dt.date, int] = {}
    for k, v in data.items():
        if v is None:
            continue
        out[parse_date(k)] = int(v)
    return out


def to_str_map(records: Mapping[dt.date, int]) -> Dict[str, int]:
    return {d.isoformat(): int(v) for d, v in sorted(records.items())}


def in_range(records: Iterable[tuple[dt.date, int]], start: dt.date, end: dt.date) -> Dict[dt.date, int]:
    return {d: v for d, v in records if start <= d <= end}
