from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from ..utils.time import from_iso, to_iso, utc
from .common import column, iso_column

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActivityRecord:
    """
    One user's single continuous occupancy of one channel.
    ``leave_time`` and ``duration`` stay None while the user is connected.
    """

    id: int
    guild_id: int
    user_id: int
    username: str
    channel_id: int
    session_id: Optional[int]
    join_time: datetime
    leave_time: Optional[datetime]
    duration: Optional[int]
    is_session_starter: bool
    is_active: bool

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ActivityRecord":
        e = "ActivityRecord"
        return cls(
            id=column(row, "id", int, e),
            guild_id=column(row, "guild_id", int, e),
            user_id=column(row, "user_id", int, e),
            username=column(row, "username", str, e),
            channel_id=column(row, "channel_id", int, e),
            session_id=column(row, "session_id", int, e, nullable=True),
            join_time=iso_column(row, "join_time", e),
            leave_time=iso_column(row, "leave_time", e, nullable=True),
            duration=column(row, "duration", int, e, nullable=True),
            is_session_starter=column(row, "is_session_starter", bool, e),
            is_active=column(row, "is_active", bool, e),
        )


# ---------- writes ----------


def open_activity(
    con: sqlite3.Connection,
    guild_id: int,
    user_id: int,
    username: str,
    channel_id: int,
    session_id: Optional[int],
    join_time: datetime,
    is_session_starter: bool,
) -> ActivityRecord:
    cur = con.execute(
        """
        INSERT INTO user_voice_activities (
            guild_id, user_id, username, channel_id, session_id,
            join_time, is_session_starter, is_active
        ) VALUES (?, ?, ?, ?, ?, ?, ?, 1)
        """,
        (
            guild_id,
            user_id,
            username,
            channel_id,
            session_id,
            to_iso(join_time),
            int(is_session_starter),
        ),
    )
    if cur.lastrowid is None:
        raise RuntimeError("Failed to get lastrowid for new voice activity")
    return get_activity(con, cur.lastrowid)


def close_activity(con: sqlite3.Connection, activity_id: int, leave_time: datetime) -> Optional[ActivityRecord]:
    """
    Close an open record. Duration is whole seconds, clamped to >= 0.
    Returns None if the record was already closed.
    """
    current = get_activity(con, activity_id)
    if not current.is_active:
        return None
    duration = max(0, int((utc(leave_time) - current.join_time).total_seconds()))
    cur = con.execute(
        """
        UPDATE user_voice_activities
        SET leave_time = ?, duration = ?, is_active = 0
        WHERE id = ? AND is_active = 1
        """,
        (to_iso(leave_time), duration, activity_id),
    )
    if cur.rowcount == 0:
        return None
    return get_activity(con, activity_id)


# ---------- reads ----------


def get_activity(con: sqlite3.Connection, activity_id: int) -> ActivityRecord:
    row = con.execute(
        "SELECT * FROM user_voice_activities WHERE id = ?", (activity_id,)
    ).fetchone()
    if row is None:
        raise LookupError(f"voice activity {activity_id} not found")
    return ActivityRecord.from_row(row)


def get_active_activity(
    con: sqlite3.Connection, guild_id: int, user_id: int, channel_id: int
) -> Optional[ActivityRecord]:
    row = con.execute(
        """
        SELECT * FROM user_voice_activities
        WHERE guild_id = ? AND user_id = ? AND channel_id = ? AND is_active = 1
        """,
        (guild_id, user_id, channel_id),
    ).fetchone()
    return ActivityRecord.from_row(row) if row else None


def active_for_guild(con: sqlite3.Connection, guild_id: int) -> List[ActivityRecord]:
    rows = con.execute(
        """
        SELECT * FROM user_voice_activities
        WHERE guild_id = ? AND is_active = 1
        ORDER BY join_time, id
        """,
        (guild_id,),
    ).fetchall()
    return [ActivityRecord.from_row(r) for r in rows]


def count_active_in_channel(con: sqlite3.Connection, guild_id: int, channel_id: int) -> int:
    row = con.execute(
        """
        SELECT COUNT(*) FROM user_voice_activities
        WHERE guild_id = ? AND channel_id = ? AND is_active = 1
        """,
        (guild_id, channel_id),
    ).fetchone()
    return int(row[0])


def records_in_window(
    con: sqlite3.Connection, guild_id: int, from_: datetime, to: datetime
) -> List[ActivityRecord]:
    """
    Records that start inside the window and either end inside it or are
    still open. Ordered by user, then join time.
    """
    lo, hi = to_iso(from_), to_iso(to)
    rows = con.execute(
        """
        SELECT * FROM user_voice_activities
        WHERE guild_id = ?
          AND join_time >= ?
          AND (leave_time <= ? OR (leave_time IS NULL AND join_time <= ?))
        ORDER BY user_id, join_time, id
        """,
        (guild_id, lo, hi, hi),
    ).fetchall()
    return [ActivityRecord.from_row(r) for r in rows]


def closed_in_range(
    con: sqlite3.Connection, guild_id: int, start: datetime, end: datetime
) -> List[ActivityRecord]:
    """Closed records whose join_time is in the half-open window [start, end)."""
    rows = con.execute(
        """
        SELECT * FROM user_voice_activities
        WHERE guild_id = ? AND join_time >= ? AND join_time < ?
          AND leave_time IS NOT NULL
        ORDER BY join_time, id
        """,
        (guild_id, to_iso(start), to_iso(end)),
    ).fetchall()
    return [ActivityRecord.from_row(r) for r in rows]


def page_by_user(
    con: sqlite3.Connection, guild_id: int, limit: int, offset: int
) -> List[ActivityRecord]:
    """One page of the ledger in (user_id, join_time) order, for batch scans."""
    rows = con.execute(
        """
        SELECT * FROM user_voice_activities
        WHERE guild_id = ?
        ORDER BY user_id, join_time, id
        LIMIT ? OFFSET ?
        """,
        (guild_id, limit, offset),
    ).fetchall()
    return [ActivityRecord.from_row(r) for r in rows]


# ---------- merge tracking ----------

# merged_periods bit per aggregate granularity
MERGE_BITS = {"week": 1, "month": 2, "year": 4}
ALL_MERGED = 7


def claim_merge(con: sqlite3.Connection, activity_id: int, period_type: str) -> bool:
    """
    Mark one granularity of a record as merged. False when it already was, so
    the caller must not add it again. Ids with no ledger row are always claimed.
    """
    bit = MERGE_BITS[period_type]
    cur = con.execute(
        """
        UPDATE user_voice_activities
        SET merged_periods = merged_periods | ?
        WHERE id = ? AND (merged_periods & ?) = 0
        """,
        (bit, activity_id, bit),
    )
    if cur.rowcount:
        return True
    exists = con.execute(
        "SELECT 1 FROM user_voice_activities WHERE id = ?", (activity_id,)
    ).fetchone()
    return exists is None


def closed_ids(con: sqlite3.Connection, guild_id: int) -> List[int]:
    rows = con.execute(
        """
        SELECT id FROM user_voice_activities
        WHERE guild_id = ? AND leave_time IS NOT NULL
        ORDER BY id
        """,
        (guild_id,),
    ).fetchall()
    return [int(r[0]) for r in rows]


def mark_all_merged(con: sqlite3.Connection, guild_id: int) -> int:
    """Flag every closed record of a guild as already in the aggregates."""
    cur = con.execute(
        """
        UPDATE user_voice_activities
        SET merged_periods = ?
        WHERE guild_id = ? AND leave_time IS NOT NULL
        """,
        (ALL_MERGED, guild_id),
    )
    return cur.rowcount


def first_closed_join(con: sqlite3.Connection, guild_id: int) -> Optional[datetime]:
    row = con.execute(
        """
        SELECT MIN(join_time) FROM user_voice_activities
        WHERE guild_id = ? AND leave_time IS NOT NULL
        """,
        (guild_id,),
    ).fetchone()
    return from_iso(row[0]) if row and row[0] else None
