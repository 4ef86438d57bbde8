from __future__ import annotations
import os
from dateutil import tz

DATA_DIR = os.getenv("DATA_DIR", "./data")
os.makedirs(DATA_DIR, exist_ok=True)


# Every period boundary (week/month/year keys, daily summaries) is computed in
# this zone, never in the host's local zone.
STATS_TZ_NAME = os.getenv("STATS_TZ", "Asia/Tokyo")
STATS_TZ = tz.gettz(STATS_TZ_NAME)
if STATS_TZ is None:
    raise RuntimeError(f"Unknown STATS_TZ: {STATS_TZ_NAME!r}")

BOT_DB_PATH = os.getenv("BOT_DB_PATH", os.path.join(DATA_DIR, "voicestats.sqlite3"))

ROLLUP_BATCH_SIZE = int(os.getenv("ROLLUP_BATCH_SIZE", "1000"))
RANKING_DEFAULT_LIMIT = int(os.getenv("RANKING_DEFAULT_LIMIT", "10"))
SUMMARIES_DEFAULT_LIMIT = int(os.getenv("SUMMARIES_DEFAULT_LIMIT", "30"))
