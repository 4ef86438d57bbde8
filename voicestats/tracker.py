from __future__ import annotations

import logging
from datetime import datetime, tzinfo
from typing import Collection, List, Optional, Tuple

from .db import Database
from .models import activity, voice_sessions
from .models.activity import ActivityRecord
from .models.period_stats import ClosedActivity, PeriodStatsStore
from .utils.period import PERIOD_TYPES, period_key

log = logging.getLogger(__name__)


class ActivityTracker:
    """
    Writes the ledger on join/leave and fans every closed record out into the
    week/month/year aggregates.

    The ledger write always commits before any merge runs. If a merge fails the
    record stays closed in the ledger and the aggregates can be rebuilt from it.
    """

    def __init__(self, db: Database, tz: tzinfo, store: Optional[PeriodStatsStore] = None) -> None:
        self.db = db
        self.tz = tz
        self.store = store or PeriodStatsStore(db)

    def record_join(
        self,
        guild_id: int,
        user_id: int,
        username: str,
        channel_id: int,
        when: datetime,
    ) -> ActivityRecord:
        with self.db.connect(immediate=True) as con:
            existing = activity.get_active_activity(con, guild_id, user_id, channel_id)
            if existing is not None:
                log.debug(
                    "activity.join duplicate gid=%s uid=%s cid=%s id=%s",
                    guild_id, user_id, channel_id, existing.id,
                )
                return existing

            session = voice_sessions.get_active_session(con, guild_id, channel_id)
            starter = session is None
            session_id = (
                voice_sessions.start_session(con, guild_id, channel_id, when)
                if starter
                else session.id
            )
            record = activity.open_activity(
                con, guild_id, user_id, username, channel_id, session_id, when, starter
            )
        log.info(
            "activity.open id=%s gid=%s uid=%s cid=%s starter=%s",
            record.id, guild_id, user_id, channel_id, starter,
        )
        return record

    def record_leave(
        self,
        guild_id: int,
        user_id: int,
        channel_id: int,
        when: datetime,
    ) -> Optional[ActivityRecord]:
        """Close the user's open record in this channel, then merge it."""
        with self.db.connect(immediate=True) as con:
            current = activity.get_active_activity(con, guild_id, user_id, channel_id)
            if current is None:
                log.debug(
                    "activity.leave without open record gid=%s uid=%s cid=%s",
                    guild_id, user_id, channel_id,
                )
                return None
            closed = self._close(con, current, when)
        if closed is not None:
            self.apply_closed_activity(closed)
        return closed

    def close_dangling(
        self,
        guild_id: int,
        when: datetime,
        keep: Collection[Tuple[int, int]] = (),
    ) -> List[ActivityRecord]:
        """
        Close the open records of a guild, e.g. after the observer lost state.
        ``(user_id, channel_id)`` pairs in ``keep`` are still connected and stay open.
        """
        with self.db.connect(immediate=True) as con:
            stale = [
                r
                for r in activity.active_for_guild(con, guild_id)
                if (r.user_id, r.channel_id) not in keep
            ]
            closed = [c for c in (self._close(con, r, when) for r in stale) if c is not None]
        for record in closed:
            self.apply_closed_activity(record)
        if closed:
            log.info("activity.close_dangling gid=%s closed=%d", guild_id, len(closed))
        return closed

    def _close(self, con, record: ActivityRecord, when: datetime) -> Optional[ActivityRecord]:
        closed = activity.close_activity(con, record.id, when)
        if closed is None:
            return None
        if record.session_id is not None and not activity.count_active_in_channel(
            con, record.guild_id, record.channel_id
        ):
            voice_sessions.end_session(con, record.session_id, when)
        log.info(
            "activity.close id=%s gid=%s uid=%s duration=%ss",
            closed.id, closed.guild_id, closed.user_id, closed.duration,
        )
        return closed

    def apply_closed_activity(self, record: ActivityRecord) -> None:
        """
        One merge per granularity, keyed by the period the record *started* in.
        Granularities the record was already merged into are skipped.
        """
        if record.leave_time is None or record.duration is None:
            raise ValueError(f"activity {record.id} is still open")
        closed = ClosedActivity(
            duration=record.duration,
            is_session_starter=record.is_session_starter,
            activity_id=record.id,
        )
        for period_type in PERIOD_TYPES:
            key = period_key(record.join_time, period_type, self.tz)
            try:
                self.store.merge_period_activity(
                    record.guild_id, record.user_id, record.username, period_type, key, closed
                )
            except Exception:
                log.exception(
                    "period merge failed activity=%s %s=%s; ledger row kept for rebuild",
                    record.id, period_type, key,
                )
                raise
