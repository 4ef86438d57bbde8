from __future__ import annotations

import os
import sqlite3
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from . import config

log = logging.getLogger("voicestats.db")


# ----------------------------
# Schema
# ----------------------------
SCHEMA_SQL = (
    # one row per non-empty occupancy interval of a channel
    """
    CREATE TABLE IF NOT EXISTS voice_sessions (
        id          INTEGER PRIMARY KEY AUTOINCREMENT,
        guild_id    INTEGER NOT NULL,
        channel_id  INTEGER NOT NULL,
        start_time  TEXT    NOT NULL,  -- ISO UTC
        end_time    TEXT,              -- ISO UTC, NULL while occupied
        is_active   INTEGER NOT NULL DEFAULT 1,
        created_at  TEXT    NOT NULL DEFAULT (datetime('now'))
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_voice_sessions_active
    ON voice_sessions (guild_id, channel_id, is_active)
    """,
    # the ledger: one row per user per continuous channel occupancy
    """
    CREATE TABLE IF NOT EXISTS user_voice_activities (
        id                  INTEGER PRIMARY KEY AUTOINCREMENT,
        guild_id            INTEGER NOT NULL,
        user_id             INTEGER NOT NULL,
        username            TEXT    NOT NULL,
        channel_id          INTEGER NOT NULL,
        session_id          INTEGER REFERENCES voice_sessions(id),
        join_time           TEXT    NOT NULL,  -- ISO UTC
        leave_time          TEXT,              -- ISO UTC, NULL while connected
        duration            INTEGER,           -- seconds, NULL while connected
        is_session_starter  INTEGER NOT NULL DEFAULT 0,
        is_active           INTEGER NOT NULL DEFAULT 1,
        merged_periods      INTEGER NOT NULL DEFAULT 0,  -- bit per period type already merged
        created_at          TEXT    NOT NULL DEFAULT (datetime('now'))
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS uq_user_voice_activities_active
    ON user_voice_activities (guild_id, user_id, channel_id)
    WHERE is_active = 1
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_user_voice_activities_join
    ON user_voice_activities (guild_id, join_time)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_user_voice_activities_user
    ON user_voice_activities (guild_id, user_id, join_time)
    """,
    """
    CREATE TABLE IF NOT EXISTS period_user_stats (
        id                      INTEGER PRIMARY KEY AUTOINCREMENT,
        guild_id                INTEGER NOT NULL,
        user_id                 INTEGER NOT NULL,
        username                TEXT    NOT NULL,
        period_type             TEXT    NOT NULL,  -- week | month | year
        period_key              TEXT    NOT NULL,  -- 2025-W03 | 2025-01 | 2025
        total_duration          INTEGER NOT NULL DEFAULT 0,
        session_count           INTEGER NOT NULL DEFAULT 0,
        started_session_count   INTEGER NOT NULL DEFAULT 0,
        longest_session         INTEGER NOT NULL DEFAULT 0,
        average_session         INTEGER NOT NULL DEFAULT 0,
        last_activity_id        INTEGER,
        updated_at              TEXT    NOT NULL,
        UNIQUE (guild_id, user_id, period_type, period_key)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_period_user_stats_lookup
    ON period_user_stats (guild_id, period_type, period_key)
    """,
    """
    CREATE TABLE IF NOT EXISTS daily_activity_summaries (
        id                  INTEGER PRIMARY KEY AUTOINCREMENT,
        guild_id            INTEGER NOT NULL,
        activity_date       TEXT    NOT NULL,  -- YYYY-MM-DD
        period_start        TEXT    NOT NULL,  -- ISO UTC
        period_end          TEXT    NOT NULL,  -- ISO UTC
        total_duration      INTEGER NOT NULL DEFAULT 0,
        total_participants  INTEGER NOT NULL DEFAULT 0,
        total_sessions      INTEGER NOT NULL DEFAULT 0,
        longest_session     INTEGER NOT NULL DEFAULT 0,
        top_user_id         INTEGER,
        top_username        TEXT,
        top_user_duration   INTEGER NOT NULL DEFAULT 0,
        created_at          TEXT    NOT NULL,
        UNIQUE (guild_id, activity_date)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS weekly_activity_summaries (
        id                      INTEGER PRIMARY KEY AUTOINCREMENT,
        guild_id                INTEGER NOT NULL,
        week_key                TEXT    NOT NULL,
        week_start              TEXT    NOT NULL,  -- YYYY-MM-DD
        week_end                TEXT    NOT NULL,  -- YYYY-MM-DD
        total_duration          INTEGER NOT NULL DEFAULT 0,
        total_participants      INTEGER NOT NULL DEFAULT 0,
        total_sessions          INTEGER NOT NULL DEFAULT 0,
        longest_session         INTEGER NOT NULL DEFAULT 0,
        average_daily_duration  INTEGER NOT NULL DEFAULT 0,
        top_user_id             INTEGER,
        top_username            TEXT,
        top_user_duration       INTEGER NOT NULL DEFAULT 0,
        created_at              TEXT    NOT NULL,
        UNIQUE (guild_id, week_key)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS monthly_activity_summaries (
        id                          INTEGER PRIMARY KEY AUTOINCREMENT,
        guild_id                    INTEGER NOT NULL,
        month_key                   TEXT    NOT NULL,
        month_start                 TEXT    NOT NULL,  -- YYYY-MM-DD
        month_end                   TEXT    NOT NULL,  -- YYYY-MM-DD
        total_duration              INTEGER NOT NULL DEFAULT 0,
        total_participants          INTEGER NOT NULL DEFAULT 0,
        total_sessions              INTEGER NOT NULL DEFAULT 0,
        longest_session             INTEGER NOT NULL DEFAULT 0,
        average_daily_duration      INTEGER NOT NULL DEFAULT 0,
        most_active_day_date        TEXT,
        most_active_day_duration    INTEGER NOT NULL DEFAULT 0,
        top_user_id                 INTEGER,
        top_username                TEXT,
        top_user_duration           INTEGER NOT NULL DEFAULT 0,
        created_at                  TEXT    NOT NULL,
        UNIQUE (guild_id, month_key)
    )
    """,
)


# ----------------------------
# Migration helpers
# ----------------------------
def _columns(con: sqlite3.Connection, table: str) -> list[str]:
    return [r[1] for r in con.execute(f"PRAGMA table_info({table})").fetchall()]


def _ensure_column(con: sqlite3.Connection, table: str, column: str, ddl: str) -> None:
    if column not in _columns(con, table):
        con.execute(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}")


# ----------------------------
# Freshness guard
# ----------------------------
def _is_fresh_db(path: str) -> bool:
    """A missing or zero-byte file; nothing was ever persisted there."""
    try:
        return os.path.getsize(path) == 0
    except OSError:
        return True


# ----------------------------
# Public: Database
# ----------------------------
class Database:
    """
    Thin handle on the SQLite store. Components receive one of these at
    construction time; nothing in the package opens the database on its own.
    """

    def __init__(
        self,
        path: Optional[str] = None,
        *,
        require_persistence: Optional[bool] = None,
        busy_timeout_ms: int = 10_000,
    ) -> None:
        self.path = os.path.abspath(path or config.BOT_DB_PATH)
        if require_persistence is None:
            require_persistence = os.getenv("DB_REQUIRE_PERSISTENCE") == "1"
        self.require_persistence = require_persistence
        self.busy_timeout_ms = busy_timeout_ms

    def _open(self) -> sqlite3.Connection:
        con = sqlite3.connect(self.path, timeout=self.busy_timeout_ms / 1000)
        con.row_factory = sqlite3.Row
        con.execute("PRAGMA foreign_keys=ON")
        con.execute("PRAGMA synchronous=NORMAL")
        con.execute(f"PRAGMA busy_timeout={int(self.busy_timeout_ms)}")
        return con

    @contextmanager
    def connect(self, *, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        """
        Yield a connection; commit on success, roll back on error, always close.
        Everything executed inside one ``with`` block is a single transaction.
        ``immediate`` takes the write lock up front, for read-then-write blocks.
        """
        con = self._open()
        try:
            if immediate:
                con.execute("BEGIN IMMEDIATE")
            yield con
            con.commit()
        except BaseException:
            con.rollback()
            raise
        finally:
            con.close()

    def ensure_schema(self) -> None:
        """
        Idempotently create the tables and indexes the stats engine uses.

        With ``require_persistence`` set, a database file that does not exist
        yet (or is empty) is refused instead of created, so a missing volume
        mount can't silently start the bot on a blank store.
        """
        if self.require_persistence and _is_fresh_db(self.path):
            raise RuntimeError(
                f"Refusing to start on fresh DB: {self.path}. "
                "Set BOT_DB_PATH to a persistent location (e.g. a Docker volume) "
                "or unset DB_REQUIRE_PERSISTENCE."
            )

        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        with sqlite3.connect(self.path, timeout=5) as con:
            cur = con.cursor()
            cur.execute("PRAGMA journal_mode=WAL")
            journal = cur.execute("PRAGMA journal_mode").fetchone()[0]
            for ddl in SCHEMA_SQL:
                cur.execute(ddl)
            # ledgers created before merges were tracked per record
            _ensure_column(
                con, "user_voice_activities", "merged_periods", "INTEGER NOT NULL DEFAULT 0"
            )
            con.commit()
        con.close()

        try:
            size = os.stat(self.path).st_size
        except FileNotFoundError:
            size = 0
        log.info("db.open path=%s size=%d journal=%s", self.path, size, journal)
