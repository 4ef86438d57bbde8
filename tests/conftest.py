import pytest
from dateutil import tz

from voicestats.db import Database
from voicestats.models.period_stats import PeriodStatsStore
from voicestats.tracker import ActivityTracker

TOKYO = tz.gettz("Asia/Tokyo")


@pytest.fixture
def tokyo():
    return TOKYO


@pytest.fixture
def db(tmp_path):
    d = Database(str(tmp_path / "stats.sqlite3"), require_persistence=False)
    d.ensure_schema()
    return d


@pytest.fixture
def store(db):
    return PeriodStatsStore(db)


@pytest.fixture
def tracker(db, store):
    return ActivityTracker(db, TOKYO, store)
