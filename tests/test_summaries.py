from datetime import date, datetime, timedelta, timezone

import pytest

from voicestats.errors import ValidationError
from voicestats.summaries import SummaryService

GID = 123456789012345678
CH = 223456789012345678


def _span(tracker, uid, name, join, seconds):
    tracker.record_join(GID, uid, name, CH, join)
    tracker.record_leave(GID, uid, CH, join + timedelta(seconds=seconds))


@pytest.fixture
def service(db, tokyo):
    return SummaryService(db, tokyo)


@pytest.fixture
def january(tracker):
    # Tokyo 2025-01-13 09:00 and 11:00
    _span(tracker, 1, "alice", datetime(2025, 1, 13, 0, 0, tzinfo=timezone.utc), 3600)
    _span(tracker, 2, "bob", datetime(2025, 1, 13, 2, 0, tzinfo=timezone.utc), 1800)
    # Tokyo 2025-01-14 00:30, still the 13th in UTC
    _span(tracker, 2, "bob", datetime(2025, 1, 13, 15, 30, tzinfo=timezone.utc), 600)


def test_daily_uses_org_timezone_days(service, january):
    stats = service.build_daily(GID, date(2025, 1, 13))
    assert stats.total_duration == 5400
    assert stats.total_participants == 2
    assert stats.total_sessions == 2
    assert stats.longest_session == 3600
    assert (stats.top_user_id, stats.top_username, stats.top_user_duration) == (1, "alice", 3600)

    stats = service.build_daily(GID, date(2025, 1, 14))
    assert stats.total_duration == 600


def test_daily_rebuild_overwrites(service, tracker, january):
    service.build_daily(GID, date(2025, 1, 13))
    _span(tracker, 3, "carol", datetime(2025, 1, 13, 5, 0, tzinfo=timezone.utc), 7200)
    service.build_daily(GID, date(2025, 1, 13))
    page = service.list_summaries(GID, "daily")
    assert page.total == 1
    (item,) = page.items
    assert item.total_duration == 12600
    assert item.top_user_id == 3


def test_weekly(service, january):
    stats = service.build_weekly(GID, "2025-W03")
    assert stats.total_duration == 6000
    (item,) = service.list_summaries(GID, "weekly").items
    assert item.to_dict()["period"] == {"key": "2025-W03", "start": "2025-01-13", "end": "2025-01-19"}
    assert item.to_dict()["metrics"]["totalSessions"] == 3


def test_monthly_picks_busiest_day(service, db, january):
    service.build_monthly(GID, "2025-01")
    with db.connect() as con:
        row = con.execute(
            "SELECT * FROM monthly_activity_summaries WHERE guild_id = ?", (GID,)
        ).fetchone()
    assert row["average_daily_duration"] == 6000 // 31
    assert row["most_active_day_date"] == "2025-01-13"
    assert row["most_active_day_duration"] == 5400
    assert row["month_start"] == "2025-01-01" and row["month_end"] == "2025-01-31"


def test_weekly_average_is_over_seven_days(service, db, january):
    service.build_weekly(GID, "2025-W03")
    with db.connect() as con:
        avg = con.execute("SELECT average_daily_duration FROM weekly_activity_summaries").fetchone()[0]
    assert avg == 6000 // 7


def test_empty_period_has_no_top_user(service):
    service.build_daily(GID, date(2025, 3, 1))
    (item,) = service.list_summaries(GID, "daily").items
    assert item.to_dict()["topUser"] is None
    assert item.total_sessions == 0


def test_list_is_newest_first_and_paginated(service):
    for day in range(1, 6):
        service.build_daily(GID, date(2025, 1, day))

    page = service.list_summaries(GID, "daily", limit=2)
    assert [i.key for i in page.items] == ["2025-01-05", "2025-01-04"]
    assert page.meta() == {"total": 5, "hasMore": True, "summaryType": "daily"}

    last = service.list_summaries(GID, "daily", limit=2, offset=4)
    assert [i.key for i in last.items] == ["2025-01-01"]
    assert last.has_more is False


def test_list_date_filter_needs_both_ends(service):
    for day in range(1, 6):
        service.build_daily(GID, date(2025, 1, day))
    filtered = service.list_summaries(GID, "daily", from_="2025-01-02", to="2025-01-03")
    assert [i.key for i in filtered.items] == ["2025-01-03", "2025-01-02"]
    assert service.list_summaries(GID, "daily", from_="2025-01-02").total == 5


def test_list_is_scoped_to_guild(service):
    service.build_daily(GID, date(2025, 1, 1))
    assert service.list_summaries(GID + 1, "daily").total == 0


@pytest.mark.parametrize("kind", [None, "", "hourly"])
def test_list_rejects_unknown_type(service, kind):
    with pytest.raises(ValidationError) as exc:
        service.list_summaries(GID, kind)
    assert exc.value.field == "type"


def test_build_closed_periods_covers_the_day_week_and_month_just_ended(service, january):
    # Monday 2025-01-20 12:00 in Tokyo
    now = datetime(2025, 1, 20, 3, 0, tzinfo=timezone.utc)
    assert service.build_closed_periods(GID, now) == ("2025-01-19", "2025-W03", "2024-12")

    (week,) = service.list_summaries(GID, "weekly").items
    assert (week.key, week.total_duration) == ("2025-W03", 6000)
    (day,) = service.list_summaries(GID, "daily").items
    assert (day.key, day.total_sessions) == ("2025-01-19", 0)
    (month,) = service.list_summaries(GID, "monthly").items
    assert month.key == "2024-12"


def test_rebuild_all_writes_every_finished_period(service, january):
    # Monday 2025-02-03 in Tokyo; January 13 to February 2 are finished
    now = datetime(2025, 2, 3, 3, 0, tzinfo=timezone.utc)
    assert service.rebuild_all(GID, now) == 21 + 3 + 1

    assert service.list_summaries(GID, "daily", limit=100).total == 21
    weeks = [i.key for i in service.list_summaries(GID, "weekly").items]
    assert weeks == ["2025-W05", "2025-W04", "2025-W03"]
    (month,) = service.list_summaries(GID, "monthly").items
    assert (month.key, month.total_duration) == ("2025-01", 6000)


def test_rebuild_all_on_empty_ledger(service):
    assert service.rebuild_all(GID, datetime(2025, 2, 3, tzinfo=timezone.utc)) == 0
