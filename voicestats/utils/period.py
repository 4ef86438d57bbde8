"""
Calendar period keys for voice statistics.

Keys come in three shapes, all anchored to the organizational timezone:
'2025-W03' (ISO week), '2025-01' (month) and '2025' (year). Statistics are
attributed to the period a session *started* in.
"""
from __future__ import annotations

import calendar
import re
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Dict, Tuple, Union

from .time import utc

PERIOD_TYPES = ("week", "month", "year")

_WEEK_KEY = re.compile(r"^(\d{4})-W(\d{2})$")
_MONTH_KEY = re.compile(r"^(\d{4})-(\d{2})$")
_YEAR_KEY = re.compile(r"^(\d{4})$")

Instant = Union[datetime, date]


def _unsupported(period_type: str) -> ValueError:
    return ValueError(f"Unsupported period type: {period_type!r}")


def local_date(when: Instant, tz: tzinfo) -> date:
    """Calendar date of ``when`` in ``tz``. Plain dates pass through untouched."""
    if isinstance(when, datetime):
        return utc(when).astimezone(tz).date()
    return when


def iso_week(d: date) -> Tuple[int, int]:
    """
    (iso_year, week) for a calendar date.

    Shift to the Thursday of d's own week; the ISO year is that Thursday's
    year, and the week number counts from the Thursday of the week holding
    January 4.
    """
    thursday = d + timedelta(days=3 - d.weekday())
    jan4 = date(thursday.year, 1, 4)
    first_thursday = jan4 + timedelta(days=3 - jan4.weekday())
    return thursday.year, 1 + round((thursday - first_thursday).days / 7)


def weeks_in_year(year: int) -> int:
    # December 28 is always in the last ISO week of its year.
    return iso_week(date(year, 12, 28))[1]


def week_key(d: date) -> str:
    year, week = iso_week(d)
    return f"{year}-W{week:02d}"


def month_key(d: date) -> str:
    return f"{d.year}-{d.month:02d}"


def year_key(d: date) -> str:
    return f"{d.year:04d}"


def period_key(when: Instant, period_type: str, tz: tzinfo) -> str:
    d = local_date(when, tz)
    if period_type == "week":
        return week_key(d)
    if period_type == "month":
        return month_key(d)
    if period_type == "year":
        return year_key(d)
    raise _unsupported(period_type)


def _parse_key(period_type: str, key: str) -> Tuple[int, int]:
    """Return (year, n) where n is the week or month number (0 for years)."""
    pattern = {"week": _WEEK_KEY, "month": _MONTH_KEY, "year": _YEAR_KEY}.get(period_type)
    if pattern is None:
        raise _unsupported(period_type)
    m = pattern.match(key or "")
    if not m:
        raise ValueError(f"Malformed {period_type} key: {key!r}")
    year = int(m.group(1))
    n = int(m.group(2)) if period_type != "year" else 0
    if period_type == "week" and not 1 <= n <= weeks_in_year(year):
        raise ValueError(f"Week out of range for {year}: {key!r}")
    if period_type == "month" and not 1 <= n <= 12:
        raise ValueError(f"Month out of range: {key!r}")
    return year, n


def period_bounds(period_type: str, key: str) -> Tuple[date, date]:
    """Inclusive (first_day, last_day) of a period."""
    year, n = _parse_key(period_type, key)
    if period_type == "week":
        # January 4 is always inside week 1; its Monday starts week 1.
        jan4 = date(year, 1, 4)
        start = jan4 - timedelta(days=jan4.weekday()) + timedelta(weeks=n - 1)
        return start, start + timedelta(days=6)
    if period_type == "month":
        last = calendar.monthrange(year, n)[1]
        return date(year, n, 1), date(year, n, last)
    return date(year, 1, 1), date(year, 12, 31)


def previous_period_key(period_type: str, key: str) -> str:
    year, n = _parse_key(period_type, key)
    if period_type == "week":
        if n == 1:
            return f"{year - 1}-W{weeks_in_year(year - 1):02d}"
        return f"{year}-W{n - 1:02d}"
    if period_type == "month":
        if n == 1:
            return f"{year - 1}-12"
        return f"{year}-{n - 1:02d}"
    return f"{year - 1:04d}"


def next_period_key(period_type: str, key: str) -> str:
    year, n = _parse_key(period_type, key)
    if period_type == "week":
        if n == weeks_in_year(year):
            return f"{year + 1}-W01"
        return f"{year}-W{n + 1:02d}"
    if period_type == "month":
        if n == 12:
            return f"{year + 1}-01"
        return f"{year}-{n + 1:02d}"
    return f"{year + 1:04d}"


def period_window_utc(period_type: str, key: str, tz: tzinfo) -> Tuple[datetime, datetime]:
    """Half-open UTC instant window [start, end) covering a period in ``tz``."""
    first, last = period_bounds(period_type, key)
    return day_window_utc(first, tz)[0], day_window_utc(last, tz)[1]


def day_window_utc(d: date, tz: tzinfo) -> Tuple[datetime, datetime]:
    start = datetime.combine(d, time.min, tzinfo=tz)
    end = datetime.combine(d + timedelta(days=1), time.min, tzinfo=tz)
    return utc(start), utc(end)


def statistics_date(join_time: datetime, tz: tzinfo) -> str:
    """'YYYY-MM-DD' of the day a session started on, in ``tz``."""
    return local_date(join_time, tz).isoformat()


def current_period_keys(now: datetime, tz: tzinfo) -> Dict[str, str]:
    d = local_date(now, tz)
    return {
        "week": week_key(d),
        "month": month_key(d),
        "year": year_key(d),
        "date": d.isoformat(),
    }


def is_within_period(when: Instant, period_type: str, key: str) -> bool:
    """Compare calendar dates only; datetimes are reduced to their date part."""
    d = when.date() if isinstance(when, datetime) else when
    first, last = period_bounds(period_type, key)
    return first <= d <= last


def infer_period_type(days: int) -> str:
    """Granularity a ranking window of ``days`` days is served from."""
    if days <= 7:
        return "week"
    if days <= 31:
        return "month"
    return "year"
