import pytest

from voicestats.errors import INVALID_DATE_RANGE, ValidationError
from voicestats.models.period_stats import ClosedActivity
from voicestats.ranking import RankingComputator, compare_entry

GID = 123456789012345678


def _seed(store, user_id, name, key, *durations, period_type="week", starter=False):
    for i, d in enumerate(durations):
        store.merge_period_activity(
            GID, user_id, name, period_type, key, ClosedActivity(d, starter and i == 0, i + 1)
        )


@pytest.fixture
def ranking(store, tokyo):
    return RankingComputator(store, tokyo)


@pytest.fixture
def seeded(store):
    _seed(store, 1, "alice", "2025-W03", 3600, 3600, starter=True)
    _seed(store, 2, "bob", "2025-W03", 3600)
    _seed(store, 3, "carol", "2025-W02", 9000)
    _seed(store, 1, "alice", "2025-W02", 5400)
    return store


def test_week_ranking_with_comparison(ranking, seeded):
    result = ranking.compute_ranking(GID, "duration", "2025-01-13", "2025-01-19")
    assert result.period_type == "week"
    assert result.current_period == "2025-W03"
    assert result.previous_period == "2025-W02"

    alice, bob = result.rankings
    assert (alice.rank, alice.user_id, alice.value) == (1, 1, 7200)
    assert alice.session_count == 2 and alice.longest_session == 3600
    c = alice.comparison
    assert c.previous_value == 5400
    assert c.change == 1800
    assert c.change_percentage == 33
    assert c.rank_change == 1  # was 2nd behind carol
    assert c.is_new is False

    assert (bob.rank, bob.value) == (2, 3600)
    assert bob.comparison.is_new is True
    assert bob.comparison.previous_value == 0
    assert bob.comparison.change == 3600
    assert bob.comparison.change_percentage is None
    assert bob.comparison.rank_change is None

    # carol dropped out of the current period and is not reported
    assert [r.user_id for r in result.rankings] == [1, 2]


def test_result_serialization(ranking, seeded):
    result = ranking.compute_ranking(GID, "duration", "2025-01-13", "2025-01-19")
    data = result.to_dict()
    assert data["period"] == {
        "from": "2025-01-13",
        "to": "2025-01-19",
        "previous": {"from": "2025-01-06", "to": "2025-01-12"},
    }
    first = data["rankings"][0]
    assert first["userId"] == "1"
    assert first["comparison"]["changePercentage"] == 33
    assert result.meta() == {
        "totalParticipants": 2,
        "serverTotalDuration": 10800,
        "metric": "duration",
        "hasComparison": True,
        "periodType": "week",
        "currentPeriod": "2025-W03",
        "previousPeriod": "2025-W02",
    }


def test_comparison_is_omitted_when_not_requested(ranking, seeded):
    result = ranking.compute_ranking(
        GID, "duration", "2025-01-13", "2025-01-19", with_comparison=False
    )
    assert all("comparison" not in r for r in result.to_dict()["rankings"])
    assert "previous" not in result.period
    assert result.previous_period is None
    assert result.meta()["hasComparison"] is False


def test_other_metrics(ranking, seeded):
    result = ranking.compute_ranking(GID, "started_sessions", "2025-01-13", "2025-01-19")
    assert [(r.user_id, r.value) for r in result.rankings] == [(1, 1), (2, 0)]
    result = ranking.compute_ranking(GID, "sessions", "2025-01-13", "2025-01-19")
    assert [(r.user_id, r.value) for r in result.rankings] == [(1, 2), (2, 1)]


def test_window_length_picks_granularity(ranking, store):
    _seed(store, 1, "alice", "2025-01", 100, period_type="month")
    _seed(store, 1, "alice", "2025", 100, period_type="year")
    month = ranking.compute_ranking(GID, "duration", "2025-01-01", "2025-01-31")
    assert (month.period_type, month.current_period, month.previous_period) == ("month", "2025-01", "2024-12")
    year = ranking.compute_ranking(GID, "duration", "2025-01-01", "2025-06-30")
    assert (year.period_type, year.current_period) == ("year", "2025")
    assert year.rankings[0].comparison.is_new


def test_limit_is_clamped(ranking, store):
    for uid in range(1, 6):
        _seed(store, uid, f"u{uid}", "2025-W03", uid * 10)
    assert len(ranking.compute_ranking(GID, "duration", "2025-01-13", "2025-01-19", limit=2).rankings) == 2
    assert len(ranking.compute_ranking(GID, "duration", "2025-01-13", "2025-01-19", limit=0).rankings) == 1
    assert len(ranking.compute_ranking(GID, "duration", "2025-01-13", "2025-01-19", limit=500).rankings) == 5


def test_ranks_are_dense_and_ties_are_stable(ranking, store):
    _seed(store, 5, "e", "2025-W03", 600)
    _seed(store, 4, "d", "2025-W03", 600)
    _seed(store, 6, "f", "2025-W03", 900)
    first = ranking.compute_ranking(GID, "duration", "2025-01-13", "2025-01-19")
    again = ranking.compute_ranking(GID, "duration", "2025-01-13", "2025-01-19")
    assert [r.rank for r in first.rankings] == [1, 2, 3]
    assert [r.user_id for r in first.rankings] == [6, 5, 4]
    assert [r.to_dict() for r in again.rankings] == [r.to_dict() for r in first.rankings]


def test_empty_period(ranking):
    result = ranking.compute_ranking(GID, "duration", "2025-01-13", "2025-01-19")
    assert result.rankings == []
    assert result.meta()["totalParticipants"] == 0


@pytest.mark.parametrize("metric, from_, to, field", [
    ("xp", "2025-01-13", "2025-01-19", "metric"),
    ("duration", "2025-01-19", "2025-01-13", "from"),
    ("duration", "2025-01-13", "2025-01-13", "from"),
    ("duration", "2024-01-01", "2025-06-01", "to"),
    ("duration", None, "2025-01-13", "from"),
    ("duration", "yesterday", "2025-01-13", "from"),
])
def test_invalid_input(ranking, metric, from_, to, field):
    with pytest.raises(ValidationError) as exc:
        ranking.compute_ranking(GID, metric, from_, to)
    assert exc.value.field == field


def test_date_errors_carry_range_code(ranking):
    with pytest.raises(ValidationError) as exc:
        ranking.compute_ranking(GID, "duration", "2025-01-19", "2025-01-13")
    assert exc.value.code == INVALID_DATE_RANGE


def test_compare_entry_rounds_half_up():
    assert compare_entry(1125, 1, (1000, 1)).change_percentage == 13
    assert compare_entry(875, 1, (1000, 1)).change_percentage == -12
    assert compare_entry(50, 3, (0, 1)).change_percentage is None
    assert compare_entry(50, 3, (0, 1)).rank_change == -2
