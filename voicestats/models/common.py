from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from typing import Any, Optional, Type

from ..errors import RowDecodeError


def now_iso_utc() -> str:
    """Current UTC timestamp as ISO8601 (seconds resolution)."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def column(
    row: sqlite3.Row,
    name: str,
    kind: Type,
    entity: str,
    *,
    nullable: bool = False,
) -> Any:
    """
    Read one column and check its type.
    SQLite hands booleans back as 0/1, so ``bool`` columns accept ints.
    """
    try:
        value = row[name]
    except (IndexError, KeyError) as e:
        raise RowDecodeError(entity, name, None, e) from e
    if value is None:
        if nullable:
            return None
        raise RowDecodeError(entity, name, value)
    if kind is bool:
        if isinstance(value, int) and value in (0, 1):
            return bool(value)
        raise RowDecodeError(entity, name, value)
    if kind is int and isinstance(value, bool):
        raise RowDecodeError(entity, name, value)
    if not isinstance(value, kind):
        raise RowDecodeError(entity, name, value)
    return value


def iso_column(row: sqlite3.Row, name: str, entity: str, *, nullable: bool = False) -> Optional[datetime]:
    raw = column(row, name, str, entity, nullable=nullable)
    if raw is None:
        return None
    try:
        dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError as e:
        raise RowDecodeError(entity, name, raw, e) from e
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


__all__ = ["column", "iso_column", "now_iso_utc"]
