from __future__ import annotations

import logging
import uuid
from datetime import tzinfo
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from voicestats import config
from voicestats.db import Database
from voicestats.models.period_stats import PeriodStatsStore
from voicestats.ranking import RankingComputator
from voicestats.summaries import SummaryService
from voicestats.timeline import TimelineReconstructor
from voicestats.utils.channel_resolver import ChannelDirectory, StaticChannelDirectory
from voicestats.utils.time import now_utc, to_iso
from voicestats.utils.validation import validate_guild_id

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/guilds/{guild_id}/statistics", tags=["statistics"])


# ---------- dependencies (overridable in tests) ----------


def get_db() -> Database:
    return Database()


def get_tz() -> tzinfo:
    return config.STATS_TZ


def get_directory() -> ChannelDirectory:
    # The dashboard has no gateway cache; unknown channels get placeholder names.
    return StaticChannelDirectory()


def envelope(data: Dict[str, Any], meta: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {
        "data": data,
        "meta": {
            "timestamp": to_iso(now_utc()),
            "requestId": str(uuid.uuid4()),
            **(meta or {}),
        },
    }


# ---------- routes ----------


@router.get("/rankings")
def rankings(
    guild_id: str,
    metric: str = "duration",
    from_: Optional[str] = Query(None, alias="from"),
    to: Optional[str] = None,
    limit: Optional[int] = None,
    compare: bool = True,
    db: Database = Depends(get_db),
    tz: tzinfo = Depends(get_tz),
):
    gid = validate_guild_id(guild_id)
    result = RankingComputator(PeriodStatsStore(db), tz).compute_ranking(
        gid, metric, from_, to, limit=limit, with_comparison=compare
    )
    return envelope(result.to_dict(), result.meta())


@router.get("/timeline")
def timeline(
    guild_id: str,
    from_: Optional[str] = Query(None, alias="from"),
    to: Optional[str] = None,
    db: Database = Depends(get_db),
    directory: ChannelDirectory = Depends(get_directory),
):
    gid = validate_guild_id(guild_id)
    tl = TimelineReconstructor(db, directory).build_timeline(gid, from_, to)
    return envelope(tl.to_dict(), tl.meta())


@router.get("/summaries")
def summaries(
    guild_id: str,
    type: Optional[str] = None,
    from_: Optional[str] = Query(None, alias="from"),
    to: Optional[str] = None,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
    db: Database = Depends(get_db),
    tz: tzinfo = Depends(get_tz),
):
    gid = validate_guild_id(guild_id)
    page = SummaryService(db, tz).list_summaries(
        gid, type, from_=from_, to=to, limit=limit, offset=offset
    )
    return envelope(page.to_dict(), page.meta())
