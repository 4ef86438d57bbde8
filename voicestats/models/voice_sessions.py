from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ..utils.time import to_iso
from .common import column, iso_column

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class VoiceSession:
    """One continuous non-empty occupancy interval of a channel."""

    id: int
    guild_id: int
    channel_id: int
    start_time: datetime
    end_time: Optional[datetime]
    is_active: bool

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "VoiceSession":
        e = "VoiceSession"
        return cls(
            id=column(row, "id", int, e),
            guild_id=column(row, "guild_id", int, e),
            channel_id=column(row, "channel_id", int, e),
            start_time=iso_column(row, "start_time", e),
            end_time=iso_column(row, "end_time", e, nullable=True),
            is_active=column(row, "is_active", bool, e),
        )


def start_session(con: sqlite3.Connection, guild_id: int, channel_id: int, when: datetime) -> int:
    """Record a 0 -> 1 occupancy transition. Returns the new session id."""
    cur = con.execute(
        """
        INSERT INTO voice_sessions (guild_id, channel_id, start_time, is_active)
        VALUES (?, ?, ?, 1)
        """,
        (guild_id, channel_id, to_iso(when)),
    )
    if cur.lastrowid is None:
        raise RuntimeError("Failed to get lastrowid for new voice session")
    return cur.lastrowid


def get_active_session(
    con: sqlite3.Connection, guild_id: int, channel_id: int
) -> Optional[VoiceSession]:
    row = con.execute(
        """
        SELECT * FROM voice_sessions
        WHERE guild_id = ? AND channel_id = ? AND is_active = 1
        ORDER BY start_time DESC
        LIMIT 1
        """,
        (guild_id, channel_id),
    ).fetchone()
    return VoiceSession.from_row(row) if row else None


def end_session(con: sqlite3.Connection, session_id: int, when: datetime) -> None:
    """Record the 1 -> 0 occupancy transition."""
    con.execute(
        "UPDATE voice_sessions SET end_time = ?, is_active = 0 WHERE id = ? AND is_active = 1",
        (to_iso(when), session_id),
    )
    log.debug("voice_session.end id=%s", session_id)
