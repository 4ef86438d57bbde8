from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from ..db import Database
from ..utils.period import PERIOD_TYPES
from . import activity
from .common import column, now_iso_utc

log = logging.getLogger(__name__)

# metric name (as the dashboard spells it) -> aggregate column
METRIC_COLUMNS: Dict[str, str] = {
    "duration": "total_duration",
    "sessions": "session_count",
    "started_sessions": "started_session_count",
}


@dataclass(frozen=True)
class PeriodAggregate:
    id: int
    guild_id: int
    user_id: int
    username: str
    period_type: str
    period_key: str
    total_duration: int
    session_count: int
    started_session_count: int
    longest_session: int
    average_session: int
    last_activity_id: Optional[int]
    updated_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "PeriodAggregate":
        e = "PeriodAggregate"
        return cls(
            id=column(row, "id", int, e),
            guild_id=column(row, "guild_id", int, e),
            user_id=column(row, "user_id", int, e),
            username=column(row, "username", str, e),
            period_type=column(row, "period_type", str, e),
            period_key=column(row, "period_key", str, e),
            total_duration=column(row, "total_duration", int, e),
            session_count=column(row, "session_count", int, e),
            started_session_count=column(row, "started_session_count", int, e),
            longest_session=column(row, "longest_session", int, e),
            average_session=column(row, "average_session", int, e),
            last_activity_id=column(row, "last_activity_id", int, e, nullable=True),
            updated_at=column(row, "updated_at", str, e),
        )

    def metric(self, name: str) -> int:
        return getattr(self, METRIC_COLUMNS[name])


@dataclass(frozen=True)
class ClosedActivity:
    """What a merge needs to know about one closed ledger record."""

    duration: int
    is_session_starter: bool
    activity_id: int


@dataclass
class AggregateTotals:
    """Recomputed counters for one (user, period) key, written by rebuilds."""

    user_id: int
    username: str
    period_type: str
    period_key: str
    total_duration: int = 0
    session_count: int = 0
    started_session_count: int = 0
    longest_session: int = 0
    last_activity_id: Optional[int] = None

    def add(self, duration: int, is_session_starter: bool, activity_id: int) -> None:
        self.total_duration += duration
        self.session_count += 1
        self.started_session_count += 1 if is_session_starter else 0
        self.longest_session = max(self.longest_session, duration)
        self.last_activity_id = activity_id

    @property
    def average_session(self) -> int:
        return self.total_duration // self.session_count if self.session_count else 0


# Single statement: SQLite applies the whole upsert atomically, so two closes
# racing on the same key can't lose an increment. Inside DO UPDATE, bare
# column names are the stored row's values before this update.
_MERGE_SQL = """
INSERT INTO period_user_stats (
    guild_id, user_id, username, period_type, period_key,
    total_duration, session_count, started_session_count,
    longest_session, average_session, last_activity_id, updated_at
) VALUES (?, ?, ?, ?, ?, ?, 1, ?, ?, ?, ?, ?)
ON CONFLICT(guild_id, user_id, period_type, period_key) DO UPDATE SET
    username              = excluded.username,
    total_duration        = total_duration + excluded.total_duration,
    session_count         = session_count + 1,
    started_session_count = started_session_count + excluded.started_session_count,
    longest_session       = MAX(longest_session, excluded.longest_session),
    average_session       = (total_duration + excluded.total_duration) / (session_count + 1),
    last_activity_id      = excluded.last_activity_id,
    updated_at            = excluded.updated_at
"""


class PeriodStatsStore:
    """Per-(guild, user, period) counters, fed by closed ledger records."""

    def __init__(self, db: Database) -> None:
        self.db = db

    # ---------- writes ----------

    def merge_period_activity(
        self,
        guild_id: int,
        user_id: int,
        username: str,
        period_type: str,
        period_key: str,
        closed: ClosedActivity,
    ) -> bool:
        """
        Add one closed record to one aggregate. Returns False (and changes
        nothing) when that record was already counted for this granularity.
        """
        if period_type not in PERIOD_TYPES:
            raise ValueError(f"Unsupported period type: {period_type!r}")
        duration = max(0, int(closed.duration))
        with self.db.connect() as con:
            if not activity.claim_merge(con, closed.activity_id, period_type):
                log.debug(
                    "period_stats.merge skip activity=%s %s=%s already counted",
                    closed.activity_id, period_type, period_key,
                )
                return False
            con.execute(
                _MERGE_SQL,
                (
                    guild_id,
                    user_id,
                    username,
                    period_type,
                    period_key,
                    duration,
                    1 if closed.is_session_starter else 0,
                    duration,
                    duration,
                    closed.activity_id,
                    now_iso_utc(),
                ),
            )
        log.debug(
            "period_stats.merge gid=%s uid=%s %s=%s +%ss",
            guild_id, user_id, period_type, period_key, duration,
        )
        return True

    def replace_for_guild(self, guild_id: int, rows: Iterable[AggregateTotals]) -> int:
        """Drop a guild's aggregates and write recomputed ones in one transaction."""
        with self.db.connect(immediate=True) as con:
            return self.replace_rows(con, guild_id, rows)

    @staticmethod
    def replace_rows(con: sqlite3.Connection, guild_id: int, rows: Iterable[AggregateTotals]) -> int:
        """``replace_for_guild`` on a caller's transaction."""
        now = now_iso_utc()
        batch = [
            (
                guild_id,
                r.user_id,
                r.username,
                r.period_type,
                r.period_key,
                r.total_duration,
                r.session_count,
                r.started_session_count,
                r.longest_session,
                r.average_session,
                r.last_activity_id,
                now,
            )
            for r in rows
        ]
        con.execute("DELETE FROM period_user_stats WHERE guild_id = ?", (guild_id,))
        con.executemany(
            """
            INSERT INTO period_user_stats (
                guild_id, user_id, username, period_type, period_key,
                total_duration, session_count, started_session_count,
                longest_session, average_session, last_activity_id, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            batch,
        )
        return len(batch)

    # ---------- reads ----------

    def get(
        self, guild_id: int, user_id: int, period_type: str, period_key: str
    ) -> Optional[PeriodAggregate]:
        with self.db.connect() as con:
            row = con.execute(
                """
                SELECT * FROM period_user_stats
                WHERE guild_id = ? AND user_id = ? AND period_type = ? AND period_key = ?
                """,
                (guild_id, user_id, period_type, period_key),
            ).fetchone()
        return PeriodAggregate.from_row(row) if row else None

    def top(
        self,
        guild_id: int,
        period_type: str,
        period_key: str,
        metric: str,
        limit: Optional[int] = None,
    ) -> List[PeriodAggregate]:
        """
        Rows for one period, best first by ``metric``. Equal values keep row id
        order; there is no further tie-break.
        """
        col = METRIC_COLUMNS[metric]
        sql = f"""
            SELECT * FROM period_user_stats
            WHERE guild_id = ? AND period_type = ? AND period_key = ?
            ORDER BY {col} DESC, id ASC
        """
        params: Tuple = (guild_id, period_type, period_key)
        if limit is not None:
            sql += " LIMIT ?"
            params += (limit,)
        with self.db.connect() as con:
            rows = con.execute(sql, params).fetchall()
        return [PeriodAggregate.from_row(r) for r in rows]

    def all_for_period(
        self, guild_id: int, period_type: str, period_key: str, metric: str
    ) -> List[PeriodAggregate]:
        return self.top(guild_id, period_type, period_key, metric, limit=None)

    def period_totals(self, guild_id: int, period_type: str, period_key: str) -> Tuple[int, int]:
        """(distinct participants, summed duration) for one period."""
        with self.db.connect() as con:
            row = con.execute(
                """
                SELECT COUNT(DISTINCT user_id), COALESCE(SUM(total_duration), 0)
                FROM period_user_stats
                WHERE guild_id = ? AND period_type = ? AND period_key = ?
                """,
                (guild_id, period_type, period_key),
            ).fetchone()
        return int(row[0] or 0), int(row[1] or 0)
