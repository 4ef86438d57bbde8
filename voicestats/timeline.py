"""
Per-user voice timeline for a window of at most seven days, built from the
raw ledger.

Open sessions are clipped to the window end (in the response only, never in
storage). When a user has overlapping records the first one seen (by join
time) is kept and later overlapping ones are dropped as-is; their spans are not
unioned.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .db import Database
from .models import activity
from .models.activity import ActivityRecord
from .utils.channel_resolver import ChannelDirectory, placeholder_name
from .utils.time import now_utc, to_iso
from .utils.validation import validate_timeline_window

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class TimelineSession:
    join_time: datetime
    leave_time: datetime
    duration: int
    channel_id: int
    channel_name: str
    is_session_starter: bool
    is_active: bool

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return start <= self.leave_time and end >= self.join_time

    def to_dict(self) -> Dict[str, Any]:
        return {
            "joinTime": to_iso(self.join_time),
            "leaveTime": to_iso(self.leave_time),
            "duration": self.duration,
            "channelId": str(self.channel_id),
            "channelName": self.channel_name,
            "isSessionStarter": self.is_session_starter,
            "isActive": self.is_active,
        }


@dataclass
class TimelineActivity:
    user_id: int
    username: str
    sessions: List[TimelineSession] = field(default_factory=list)

    @property
    def total_duration(self) -> int:
        return sum(s.duration for s in self.sessions)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": str(self.user_id),
            "username": self.username,
            "sessions": [s.to_dict() for s in self.sessions],
        }


@dataclass(frozen=True)
class MostActiveUser:
    user_id: int
    username: str
    duration: int


@dataclass(frozen=True)
class TimelineSummary:
    total_duration: int
    total_participants: int
    total_sessions: int
    longest_session: int
    most_active_user: Optional[MostActiveUser]

    def to_dict(self) -> Dict[str, Any]:
        top = self.most_active_user
        return {
            "totalDuration": self.total_duration,
            "totalParticipants": self.total_participants,
            "totalSessions": self.total_sessions,
            "longestSession": self.longest_session,
            "mostActiveUser": (
                {"userId": str(top.user_id), "username": top.username, "duration": top.duration}
                if top
                else None
            ),
        }


@dataclass(frozen=True)
class Timeline:
    activities: List[TimelineActivity]
    summary: TimelineSummary
    window_from: datetime
    window_to: datetime
    generated_at: datetime
    discarded_overlaps: int

    @property
    def active_sessions_count(self) -> int:
        return sum(1 for a in self.activities for s in a.sessions if s.is_active)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "activities": [a.to_dict() for a in self.activities],
            "summary": self.summary.to_dict(),
        }

    def meta(self) -> Dict[str, Any]:
        return {
            "period": {"from": to_iso(self.window_from), "to": to_iso(self.window_to)},
            "generatedAt": to_iso(self.generated_at),
            "activeSessionsCount": self.active_sessions_count,
            "discardedOverlaps": self.discarded_overlaps,
        }


def summarize(activities: List[TimelineActivity]) -> TimelineSummary:
    sessions = [s for a in activities for s in a.sessions]
    top: Optional[MostActiveUser] = None
    for a in activities:
        if not a.sessions:
            continue
        total = a.total_duration
        if top is None or total > top.duration:
            top = MostActiveUser(a.user_id, a.username, total)
    return TimelineSummary(
        total_duration=sum(s.duration for s in sessions),
        total_participants=sum(1 for a in activities if a.sessions),
        total_sessions=len(sessions),
        longest_session=max((s.duration for s in sessions), default=0),
        most_active_user=top,
    )


class TimelineReconstructor:
    def __init__(self, db: Database, directory: Optional[ChannelDirectory] = None) -> None:
        self.db = db
        self.directory = directory

    def build_timeline(self, guild_id: int, from_: str, to: str) -> Timeline:
        start, end = validate_timeline_window(from_, to)
        return self.build_for_window(guild_id, start, end)

    def build_for_window(self, guild_id: int, start: datetime, end: datetime) -> Timeline:
        with self.db.connect() as con:
            records = activity.records_in_window(con, guild_id, start, end)

        names: Dict[int, str] = {}
        by_user: Dict[int, TimelineActivity] = {}
        discarded = 0

        for rec in records:
            user = by_user.get(rec.user_id)
            if user is None:
                user = by_user[rec.user_id] = TimelineActivity(rec.user_id, rec.username)

            session = self._session(rec, end, guild_id, names)
            if any(s.overlaps(session.join_time, session.leave_time) for s in user.sessions):
                discarded += 1
                continue
            user.sessions.append(session)

        if discarded:
            log.debug("timeline gid=%s dropped %d overlapping record(s)", guild_id, discarded)

        activities = list(by_user.values())
        return Timeline(
            activities=activities,
            summary=summarize(activities),
            window_from=start,
            window_to=end,
            generated_at=now_utc(),
            discarded_overlaps=discarded,
        )

    def _session(
        self, rec: ActivityRecord, window_end: datetime, guild_id: int, names: Dict[int, str]
    ) -> TimelineSession:
        if rec.leave_time is not None:
            leave = rec.leave_time
            duration = rec.duration if rec.duration is not None else 0
        else:
            leave = window_end
            duration = max(0, int((window_end - rec.join_time).total_seconds()))

        if rec.channel_id not in names:
            names[rec.channel_id] = self._channel_name(guild_id, rec.channel_id)

        return TimelineSession(
            join_time=rec.join_time,
            leave_time=leave,
            duration=duration,
            channel_id=rec.channel_id,
            channel_name=names[rec.channel_id],
            is_session_starter=rec.is_session_starter,
            is_active=rec.leave_time is None,
        )

    def _channel_name(self, guild_id: int, channel_id: int) -> str:
        if self.directory is None:
            return placeholder_name(channel_id)
        try:
            name = self.directory.channel_name(guild_id, channel_id)
        except Exception as e:
            log.warning("channel lookup failed gid=%s cid=%s: %s", guild_id, channel_id, e)
            name = None
        return name or placeholder_name(channel_id)
