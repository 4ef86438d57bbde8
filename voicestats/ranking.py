"""
Voice rankings for a time window, optionally compared with the period before.

The window's length picks the aggregate granularity (week, month or year) and
the window's start picks the period key; the ranking itself is read straight
from the per-period aggregates.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import tzinfo
from typing import Any, Dict, List, Optional

from . import config
from .models.period_stats import PeriodAggregate, PeriodStatsStore
from .utils.period import infer_period_type, period_bounds, period_key, previous_period_key
from .utils.validation import clamp_limit, validate_date_range, validate_metric

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RankingComparison:
    previous_value: int
    change: int
    change_percentage: Optional[int]
    rank_change: Optional[int]
    is_new: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "previousValue": self.previous_value,
            "change": self.change,
            "changePercentage": self.change_percentage,
            "rankChange": self.rank_change,
            "isNew": self.is_new,
        }


@dataclass(frozen=True)
class RankingEntry:
    rank: int
    user_id: int
    username: str
    value: int
    session_count: int
    longest_session: int
    comparison: Optional[RankingComparison] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "rank": self.rank,
            "userId": str(self.user_id),
            "username": self.username,
            "value": self.value,
            "sessionCount": self.session_count,
            "longestSession": self.longest_session,
        }
        # absent, not null, when no comparison was asked for
        if self.comparison is not None:
            out["comparison"] = self.comparison.to_dict()
        return out


@dataclass(frozen=True)
class RankingResult:
    rankings: List[RankingEntry]
    period: Dict[str, Any]
    metric: str
    period_type: str
    current_period: str
    previous_period: Optional[str]
    total_participants: int
    server_total_duration: int
    has_comparison: bool = field(default=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rankings": [r.to_dict() for r in self.rankings],
            "period": self.period,
        }

    def meta(self) -> Dict[str, Any]:
        return {
            "totalParticipants": self.total_participants,
            "serverTotalDuration": self.server_total_duration,
            "metric": self.metric,
            "hasComparison": self.has_comparison,
            "periodType": self.period_type,
            "currentPeriod": self.current_period,
            "previousPeriod": self.previous_period,
        }


def compare_entry(current_value: int, current_rank: int, previous: Optional[tuple]) -> RankingComparison:
    """``previous`` is (value, rank) from the prior period, or None if absent."""
    if previous is None:
        return RankingComparison(
            previous_value=0,
            change=current_value,
            change_percentage=None,
            rank_change=None,
            is_new=True,
        )
    prev_value, prev_rank = previous
    change = current_value - prev_value
    # half-up, so 12.5% reports as 13 and -12.5% as -12
    pct = math.floor(change / prev_value * 100 + 0.5) if prev_value > 0 else None
    return RankingComparison(
        previous_value=prev_value,
        change=change,
        change_percentage=pct,
        rank_change=prev_rank - current_rank,  # positive = moved up
        is_new=False,
    )


class RankingComputator:
    def __init__(self, store: PeriodStatsStore, tz: tzinfo) -> None:
        self.store = store
        self.tz = tz

    def compute_ranking(
        self,
        guild_id: int,
        metric: str,
        from_: str,
        to: str,
        limit: Optional[int] = None,
        with_comparison: bool = True,
    ) -> RankingResult:
        metric = validate_metric(metric)
        start, _end, days = validate_date_range(from_, to)
        limit = clamp_limit(limit, config.RANKING_DEFAULT_LIMIT)

        period_type = infer_period_type(days)
        current = period_key(start, period_type, self.tz)

        rows = self.store.top(guild_id, period_type, current, metric, limit)

        previous_key: Optional[str] = None
        previous: Dict[int, tuple] = {}
        if with_comparison:
            previous_key = previous_period_key(period_type, current)
            # Only users already in the current top-N are ever looked up here;
            # someone who dropped out of the top-N is not reported.
            for rank, row in enumerate(
                self.store.all_for_period(guild_id, period_type, previous_key, metric), 1
            ):
                previous[row.user_id] = (row.metric(metric), rank)

        rankings = [
            self._entry(rank, row, metric, previous if with_comparison else None)
            for rank, row in enumerate(rows, 1)
        ]

        participants, total_duration = self.store.period_totals(guild_id, period_type, current)

        period: Dict[str, Any] = {"from": from_, "to": to}
        if previous_key is not None:
            p_start, p_end = period_bounds(period_type, previous_key)
            period["previous"] = {"from": p_start.isoformat(), "to": p_end.isoformat()}

        log.debug(
            "ranking gid=%s metric=%s %s=%s rows=%d compare=%s",
            guild_id, metric, period_type, current, len(rankings), with_comparison,
        )
        return RankingResult(
            rankings=rankings,
            period=period,
            metric=metric,
            period_type=period_type,
            current_period=current,
            previous_period=previous_key,
            total_participants=participants,
            server_total_duration=total_duration,
            has_comparison=with_comparison,
        )

    @staticmethod
    def _entry(
        rank: int,
        row: PeriodAggregate,
        metric: str,
        previous: Optional[Dict[int, tuple]],
    ) -> RankingEntry:
        value = row.metric(metric)
        comparison = None
        if previous is not None:
            comparison = compare_entry(value, rank, previous.get(row.user_id))
        return RankingEntry(
            rank=rank,
            user_id=row.user_id,
            username=row.username,
            value=value,
            session_count=row.session_count,
            longest_session=row.longest_session,
            comparison=comparison,
        )
