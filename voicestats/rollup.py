from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import tzinfo
from typing import Dict, Iterator, List, Optional, Set, Tuple

from . import config
from .db import Database
from .errors import RollupCancelled
from .models import activity
from .models.activity import ActivityRecord
from .models.period_stats import AggregateTotals, PeriodStatsStore
from .utils.period import PERIOD_TYPES, period_key

log = logging.getLogger(__name__)


@dataclass
class UserTotals:
    user_id: int
    username: str
    total_duration: int = 0
    session_count: int = 0
    started_session_count: int = 0
    longest_session: int = 0

    def add(self, rec: ActivityRecord) -> None:
        d = rec.duration or 0
        if d <= 0:
            return
        self.total_duration += d
        self.session_count += 1
        self.longest_session = max(self.longest_session, d)
        if rec.is_session_starter:
            self.started_session_count += 1


class BatchRollupScanner:
    """
    Recompute totals from the ledger page by page. Nothing is incremented in
    place, so running it again over the same ledger gives the same result.
    Each page is its own read; no transaction or lock is held between pages.
    """

    def __init__(self, db: Database, tz: tzinfo, store: Optional[PeriodStatsStore] = None) -> None:
        self.db = db
        self.tz = tz
        self.store = store or PeriodStatsStore(db)

    def _pages(
        self,
        guild_id: int,
        batch_size: int,
        cancel: Optional[threading.Event],
    ) -> Iterator[List[ActivityRecord]]:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        offset = 0
        pages = 0
        # joins landing mid-scan shift later rows into the next page
        seen: Set[int] = set()
        while True:
            if cancel is not None and cancel.is_set():
                log.info("rollup gid=%s cancelled after %d page(s)", guild_id, pages)
                raise RollupCancelled(pages)
            with self.db.connect() as con:
                page = activity.page_by_user(con, guild_id, batch_size, offset)
            pages += 1
            log.debug("rollup gid=%s page=%d offset=%d rows=%d", guild_id, pages, offset, len(page))
            fresh = [r for r in page if r.id not in seen]
            seen.update(r.id for r in fresh)
            if fresh:
                yield fresh
            if len(page) < batch_size:
                return
            offset += batch_size

    def rebuild_user_totals(
        self,
        guild_id: int,
        batch_size: int = config.ROLLUP_BATCH_SIZE,
        cancel: Optional[threading.Event] = None,
    ) -> List[UserTotals]:
        totals: Dict[int, UserTotals] = {}
        for page in self._pages(guild_id, batch_size, cancel):
            for rec in page:
                t = totals.get(rec.user_id)
                if t is None:
                    t = totals[rec.user_id] = UserTotals(rec.user_id, rec.username)
                t.add(rec)
        log.info("rollup.user_totals gid=%s users=%d", guild_id, len(totals))
        return list(totals.values())

    def _accumulate(self, acc: Dict[Tuple[int, str, str], AggregateTotals], rec: ActivityRecord) -> None:
        for period_type in PERIOD_TYPES:
            key = period_key(rec.join_time, period_type, self.tz)
            t = acc.get((rec.user_id, period_type, key))
            if t is None:
                t = acc[(rec.user_id, period_type, key)] = AggregateTotals(
                    rec.user_id, rec.username, period_type, key
                )
            # latest join wins for display name
            t.username = rec.username
            t.add(rec.duration, rec.is_session_starter, rec.id)

    def rebuild_period_aggregates(
        self,
        guild_id: int,
        batch_size: int = config.ROLLUP_BATCH_SIZE,
        cancel: Optional[threading.Event] = None,
    ) -> int:
        """
        Rebuild every week/month/year aggregate of a guild from closed ledger
        records. Returns the number of aggregate rows written.

        Records that close while the pages are being read are picked up again
        under the write lock, right before the swap, and every closed record
        is flagged as merged so a live merge still in flight for one of them
        becomes a no-op instead of counting it twice.
        """
        acc: Dict[Tuple[int, str, str], AggregateTotals] = {}
        counted: Set[int] = set()
        for page in self._pages(guild_id, batch_size, cancel):
            for rec in page:
                if rec.duration is None or rec.leave_time is None:
                    continue
                counted.add(rec.id)
                self._accumulate(acc, rec)

        with self.db.connect(immediate=True) as con:
            late = [i for i in activity.closed_ids(con, guild_id) if i not in counted]
            for activity_id in late:
                self._accumulate(acc, activity.get_activity(con, activity_id))
            activity.mark_all_merged(con, guild_id)
            written = self.store.replace_rows(con, guild_id, acc.values())
        log.info("rollup.period_aggregates gid=%s rows=%d late=%d", guild_id, written, len(late))
        return written
