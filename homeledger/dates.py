from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Union

DateLike = Union[str, date, datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def now_iso() -> str:
    return utcnow().strftime("%Y-%m-%dT%H:%M:%SZ")


def to_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip()[:10])


def parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return to_date(value)
    except ValueError:
        return None


def add_months(d: date, months: int) -> date:
    # Jan 31 + 1 month lands on the last day of February
    idx = d.month - 1 + months
    year = d.year + idx // 12
    month = idx % 12 + 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def month_key(d: DateLike) -> str:
    return to_date(d).strftime("%Y-%m")


def previous_month(d: DateLike) -> str:
    return month_key(to_date(d).replace(day=1) - timedelta(days=1))


def month_keys_back(d: DateLike, count: int) -> list:
    """Oldest first: month_keys_back('2024-03-10', 3) -> ['2024-01', '2024-02', '2024-03']."""
    first = to_date(d).replace(day=1)
    return [month_key(add_months(first, -i)) for i in range(count - 1, -1, -1)]


def months_between(start: date, end: date) -> int:
    return (end.year - start.year) * 12 + (end.month - start.month)
