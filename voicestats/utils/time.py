from __future__ import annotations
from datetime import date, datetime, timezone
from typing import Union


def utc(dt: datetime) -> datetime:
    """Timezone-aware UTC datetime; naive input is taken to be UTC already."""
    return dt.astimezone(timezone.utc) if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def now_utc() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def to_iso(dt: datetime) -> str:
    # Second resolution keeps stored strings lexicographically ordered.
    return utc(dt).isoformat(timespec="seconds")


def from_iso(s: str) -> datetime:
    return utc(datetime.fromisoformat(s.replace("Z", "+00:00")))


def parse_date_or_datetime(s: str) -> Union[date, datetime]:
    """'YYYY-MM-DD' -> date, anything longer -> aware UTC datetime."""
    if len(s) == 10:
        return date.fromisoformat(s)
    return from_iso(s)


def format_duration(seconds: int) -> str:
    h, rem = divmod(max(0, int(seconds)), 3600)
    m, s = divmod(rem, 60)
    if h:
        return f"{h}h {m:02d}m"
    if m:
        return f"{m}m {s:02d}s"
    return f"{s}s"
