from __future__ import annotations

import logging
import sqlite3
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo
from typing import Any, Dict, List, Optional, Tuple

from . import config
from .db import Database
from .models import activity
from .models.activity import ActivityRecord
from .models.common import column, now_iso_utc
from .utils.period import (
    day_window_utc,
    local_date,
    month_key,
    period_bounds,
    period_window_utc,
    previous_period_key,
    statistics_date,
    week_key,
)
from .utils.time import to_iso
from .utils.validation import validate_date_range, validate_pagination, validate_summary_type

log = logging.getLogger(__name__)

# summary type -> (table, key column, start column, end column)
_TABLES: Dict[str, Tuple[str, str, str, str]] = {
    "daily": ("daily_activity_summaries", "activity_date", "activity_date", "activity_date"),
    "weekly": ("weekly_activity_summaries", "week_key", "week_start", "week_end"),
    "monthly": ("monthly_activity_summaries", "month_key", "month_start", "month_end"),
}


@dataclass(frozen=True)
class PeriodStats:
    total_duration: int
    total_participants: int
    total_sessions: int
    longest_session: int
    top_user_id: Optional[int]
    top_username: Optional[str]
    top_user_duration: int
    by_day: Dict[str, int]


def period_stats(records: List[ActivityRecord], tz: tzinfo) -> PeriodStats:
    """Totals over closed records; each counts against the day it started on."""
    per_user: Dict[int, int] = defaultdict(int)
    names: Dict[int, str] = {}
    by_day: Dict[str, int] = defaultdict(int)
    longest = 0
    for rec in records:
        d = rec.duration or 0
        per_user[rec.user_id] += d
        names[rec.user_id] = rec.username
        by_day[statistics_date(rec.join_time, tz)] += d
        longest = max(longest, d)

    top_id: Optional[int] = None
    top_dur = 0
    for uid, dur in per_user.items():
        if top_id is None or dur > top_dur:
            top_id, top_dur = uid, dur

    return PeriodStats(
        total_duration=sum(per_user.values()),
        total_participants=len(per_user),
        total_sessions=len(records),
        longest_session=longest,
        top_user_id=top_id,
        top_username=names.get(top_id) if top_id is not None else None,
        top_user_duration=top_dur,
        by_day=dict(by_day),
    )


@dataclass(frozen=True)
class SummaryItem:
    id: int
    key: str
    start: str
    end: str
    total_duration: int
    total_participants: int
    total_sessions: int
    longest_session: int
    top_user_id: Optional[int]
    top_username: Optional[str]
    top_user_duration: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "SummaryItem":
        e = "SummaryItem"
        return cls(
            id=column(row, "id", int, e),
            key=column(row, "period_key", str, e),
            start=column(row, "period_start", str, e),
            end=column(row, "period_end", str, e),
            total_duration=column(row, "total_duration", int, e),
            total_participants=column(row, "total_participants", int, e),
            total_sessions=column(row, "total_sessions", int, e),
            longest_session=column(row, "longest_session", int, e),
            top_user_id=column(row, "top_user_id", int, e, nullable=True),
            top_username=column(row, "top_username", str, e, nullable=True),
            top_user_duration=column(row, "top_user_duration", int, e),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "period": {"key": self.key, "start": self.start, "end": self.end},
            "metrics": {
                "totalDuration": self.total_duration,
                "totalParticipants": self.total_participants,
                "totalSessions": self.total_sessions,
                "longestSession": self.longest_session,
            },
            "topUser": (
                {
                    "userId": str(self.top_user_id),
                    "username": self.top_username,
                    "duration": self.top_user_duration,
                }
                if self.top_user_id is not None
                else None
            ),
        }


@dataclass(frozen=True)
class SummaryPage:
    summary_type: str
    items: List[SummaryItem]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + self.limit < self.total

    def to_dict(self) -> Dict[str, Any]:
        return {"summaries": [i.to_dict() for i in self.items]}

    def meta(self) -> Dict[str, Any]:
        return {"total": self.total, "hasMore": self.has_more, "summaryType": self.summary_type}


class SummaryService:
    """Daily/weekly/monthly roll-ups of the ledger, stored for the dashboard."""

    def __init__(self, db: Database, tz: tzinfo) -> None:
        self.db = db
        self.tz = tz

    def _closed(self, guild_id: int, start: datetime, end: datetime) -> List[ActivityRecord]:
        with self.db.connect() as con:
            return activity.closed_in_range(con, guild_id, start, end)

    # ---------- builders ----------

    def build_daily(self, guild_id: int, day: date) -> PeriodStats:
        start, end = day_window_utc(day, self.tz)
        stats = period_stats(self._closed(guild_id, start, end), self.tz)
        with self.db.connect() as con:
            con.execute(
                """
                INSERT INTO daily_activity_summaries (
                    guild_id, activity_date, period_start, period_end,
                    total_duration, total_participants, total_sessions, longest_session,
                    top_user_id, top_username, top_user_duration, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(guild_id, activity_date) DO UPDATE SET
                    period_start=excluded.period_start,
                    period_end=excluded.period_end,
                    total_duration=excluded.total_duration,
                    total_participants=excluded.total_participants,
                    total_sessions=excluded.total_sessions,
                    longest_session=excluded.longest_session,
                    top_user_id=excluded.top_user_id,
                    top_username=excluded.top_username,
                    top_user_duration=excluded.top_user_duration
                """,
                (
                    guild_id, day.isoformat(), to_iso(start), to_iso(end),
                    stats.total_duration, stats.total_participants, stats.total_sessions,
                    stats.longest_session, stats.top_user_id, stats.top_username,
                    stats.top_user_duration, now_iso_utc(),
                ),
            )
        log.info("summary.daily gid=%s day=%s sessions=%d", guild_id, day, stats.total_sessions)
        return stats

    def build_weekly(self, guild_id: int, week_key: str) -> PeriodStats:
        first, last = period_bounds("week", week_key)
        stats = period_stats(self._closed(guild_id, *period_window_utc("week", week_key, self.tz)), self.tz)
        with self.db.connect() as con:
            con.execute(
                """
                INSERT INTO weekly_activity_summaries (
                    guild_id, week_key, week_start, week_end,
                    total_duration, total_participants, total_sessions, longest_session,
                    average_daily_duration, top_user_id, top_username, top_user_duration,
                    created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(guild_id, week_key) DO UPDATE SET
                    total_duration=excluded.total_duration,
                    total_participants=excluded.total_participants,
                    total_sessions=excluded.total_sessions,
                    longest_session=excluded.longest_session,
                    average_daily_duration=excluded.average_daily_duration,
                    top_user_id=excluded.top_user_id,
                    top_username=excluded.top_username,
                    top_user_duration=excluded.top_user_duration
                """,
                (
                    guild_id, week_key, first.isoformat(), last.isoformat(),
                    stats.total_duration, stats.total_participants, stats.total_sessions,
                    stats.longest_session, stats.total_duration // 7,
                    stats.top_user_id, stats.top_username, stats.top_user_duration,
                    now_iso_utc(),
                ),
            )
        log.info("summary.weekly gid=%s week=%s sessions=%d", guild_id, week_key, stats.total_sessions)
        return stats

    def build_monthly(self, guild_id: int, month_key: str) -> PeriodStats:
        first, last = period_bounds("month", month_key)
        stats = period_stats(self._closed(guild_id, *period_window_utc("month", month_key, self.tz)), self.tz)
        days = (last - first).days + 1
        best_day: Optional[str] = None
        best_dur = 0
        for d in sorted(stats.by_day):
            if stats.by_day[d] > best_dur:
                best_day, best_dur = d, stats.by_day[d]
        with self.db.connect() as con:
            con.execute(
                """
                INSERT INTO monthly_activity_summaries (
                    guild_id, month_key, month_start, month_end,
                    total_duration, total_participants, total_sessions, longest_session,
                    average_daily_duration, most_active_day_date, most_active_day_duration,
                    top_user_id, top_username, top_user_duration, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(guild_id, month_key) DO UPDATE SET
                    total_duration=excluded.total_duration,
                    total_participants=excluded.total_participants,
                    total_sessions=excluded.total_sessions,
                    longest_session=excluded.longest_session,
                    average_daily_duration=excluded.average_daily_duration,
                    most_active_day_date=excluded.most_active_day_date,
                    most_active_day_duration=excluded.most_active_day_duration,
                    top_user_id=excluded.top_user_id,
                    top_username=excluded.top_username,
                    top_user_duration=excluded.top_user_duration
                """,
                (
                    guild_id, month_key, first.isoformat(), last.isoformat(),
                    stats.total_duration, stats.total_participants, stats.total_sessions,
                    stats.longest_session, stats.total_duration // days,
                    best_day, best_dur,
                    stats.top_user_id, stats.top_username, stats.top_user_duration,
                    now_iso_utc(),
                ),
            )
        log.info("summary.monthly gid=%s month=%s sessions=%d", guild_id, month_key, stats.total_sessions)
        return stats

    # ---------- scheduling ----------

    def build_closed_periods(self, guild_id: int, now: datetime) -> Tuple[str, str, str]:
        """
        Build the day, ISO week and month that most recently ended as of
        ``now`` (org timezone). Returns their keys.
        """
        today = local_date(now, self.tz)
        day = today - timedelta(days=1)
        week = previous_period_key("week", week_key(today))
        month = previous_period_key("month", month_key(today))
        self.build_daily(guild_id, day)
        self.build_weekly(guild_id, week)
        self.build_monthly(guild_id, month)
        return day.isoformat(), week, month

    def rebuild_all(self, guild_id: int, now: datetime) -> int:
        """
        Rebuild every finished day, week and month from the guild's first
        closed record up to ``now``. Returns the number of summary rows written.
        """
        with self.db.connect() as con:
            first = activity.first_closed_join(con, guild_id)
        if first is None:
            return 0
        today = local_date(now, self.tz)
        this_week, this_month = week_key(today), month_key(today)
        weeks: List[str] = []
        months: List[str] = []
        written = 0
        day = local_date(first, self.tz)
        while day < today:
            self.build_daily(guild_id, day)
            written += 1
            wk, mk = week_key(day), month_key(day)
            if wk != this_week and wk not in weeks:
                weeks.append(wk)
            if mk != this_month and mk not in months:
                months.append(mk)
            day += timedelta(days=1)
        for wk in weeks:
            self.build_weekly(guild_id, wk)
        for mk in months:
            self.build_monthly(guild_id, mk)
        written += len(weeks) + len(months)
        log.info("summary.rebuild gid=%s rows=%d", guild_id, written)
        return written

    # ---------- reads ----------

    def list_summaries(
        self,
        guild_id: int,
        summary_type: str,
        from_: Optional[str] = None,
        to: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> SummaryPage:
        summary_type = validate_summary_type(summary_type)
        limit, offset = validate_pagination(limit, offset, config.SUMMARIES_DEFAULT_LIMIT)
        table, key_col, start_col, end_col = _TABLES[summary_type]

        where = "guild_id = ?"
        params: List[Any] = [guild_id]
        # the date filter only applies when both ends are given
        if from_ and to:
            validate_date_range(from_, to)
            where += f" AND {start_col} >= ? AND {start_col} <= ?"
            params.extend([from_[:10], to[:10]])

        with self.db.connect() as con:
            total = int(con.execute(f"SELECT COUNT(*) FROM {table} WHERE {where}", params).fetchone()[0])
            rows = con.execute(
                f"""
                SELECT id, {key_col} AS period_key, {start_col} AS period_start,
                       {end_col} AS period_end, total_duration, total_participants,
                       total_sessions, longest_session, top_user_id, top_username,
                       top_user_duration
                FROM {table}
                WHERE {where}
                ORDER BY {start_col} DESC
                LIMIT ? OFFSET ?
                """,
                (*params, limit, offset),
            ).fetchall()

        items = [SummaryItem.from_row(r) for r in rows]
        return SummaryPage(summary_type, items, total, limit, offset)
