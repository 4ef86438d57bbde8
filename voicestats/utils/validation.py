from __future__ import annotations

import math
import re
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Tuple, Union

from ..errors import INVALID_DATE_RANGE, INVALID_GUILD_ID, ValidationError
from .time import parse_date_or_datetime

METRICS = ("duration", "sessions", "started_sessions")
SUMMARY_TYPES = ("daily", "weekly", "monthly")

MAX_RANGE_DAYS = 365
MAX_TIMELINE_DAYS = 7
MAX_LIMIT = 100

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_DATETIME_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}")
_SNOWFLAKE_RE = re.compile(r"^\d{17,19}$")


def validate_metric(metric: Optional[str]) -> str:
    if metric not in METRICS:
        raise ValidationError(
            "metric",
            f"metric must be one of: {', '.join(METRICS)}",
            value=metric,
        )
    return metric


def validate_summary_type(kind: Optional[str]) -> str:
    if not kind:
        raise ValidationError("type", "type is required (daily, weekly, monthly)")
    if kind not in SUMMARY_TYPES:
        raise ValidationError(
            "type",
            f"type must be one of: {', '.join(SUMMARY_TYPES)}",
            value=kind,
        )
    return kind


def validate_guild_id(value: Union[str, int]) -> int:
    if not _SNOWFLAKE_RE.match(str(value)):
        raise ValidationError(
            "guildId", "guild id must be a 17-19 digit snowflake",
            value=str(value), code=INVALID_GUILD_ID,
        )
    return int(value)


def _parse_bound(field: str, raw: Optional[str]) -> Union[date, datetime]:
    if not raw or not (_DATE_RE.match(raw) or _DATETIME_RE.match(raw)):
        raise ValidationError(
            field, f"{field} must be YYYY-MM-DD or an ISO 8601 datetime",
            value=raw, code=INVALID_DATE_RANGE,
        )
    try:
        return parse_date_or_datetime(raw)
    except ValueError:
        raise ValidationError(
            field, f"{field} is not a valid date", value=raw, code=INVALID_DATE_RANGE
        ) from None


def _as_instant(v: Union[date, datetime]) -> datetime:
    if isinstance(v, datetime):
        return v
    return datetime(v.year, v.month, v.day, tzinfo=timezone.utc)


def validate_date_range(
    from_: Optional[str], to: Optional[str], max_days: int = MAX_RANGE_DAYS
) -> Tuple[Union[date, datetime], Union[date, datetime], int]:
    """
    Parse and check a from/to pair.
    Returns (from, to, span_in_days) with the span rounded up to whole days.
    """
    start = _parse_bound("from", from_)
    end = _parse_bound("to", to)
    a, b = _as_instant(start), _as_instant(end)
    if a >= b:
        raise ValidationError(
            "from", "from must be earlier than to",
            value=from_, code=INVALID_DATE_RANGE,
        )
    days = math.ceil((b - a) / timedelta(days=1))
    if days > max_days:
        raise ValidationError(
            "to", f"range must not exceed {max_days} days",
            value=to, code=INVALID_DATE_RANGE,
        )
    return start, end, days


def validate_timeline_window(from_: Optional[str], to: Optional[str]) -> Tuple[datetime, datetime]:
    start, end, _ = validate_date_range(from_, to, max_days=MAX_TIMELINE_DAYS)
    return _as_instant(start), _as_instant(end)


def clamp_limit(limit: Optional[int], default: int) -> int:
    if limit is None:
        limit = default
    return min(max(int(limit), 1), MAX_LIMIT)


def validate_pagination(
    limit: Optional[int], offset: Optional[int], default_limit: int = 30
) -> Tuple[int, int]:
    return clamp_limit(limit, default_limit), max(int(offset or 0), 0)
