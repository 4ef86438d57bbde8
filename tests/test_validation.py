from datetime import date, datetime, timezone

import pytest

from voicestats.errors import (
    INVALID_DATE_RANGE,
    INVALID_GUILD_ID,
    VALIDATION_ERROR,
    ValidationError,
)
from voicestats.utils.validation import (
    MAX_LIMIT,
    clamp_limit,
    validate_date_range,
    validate_guild_id,
    validate_metric,
    validate_pagination,
    validate_timeline_window,
)


def test_guild_id():
    assert validate_guild_id("123456789012345678") == 123456789012345678
    assert validate_guild_id(123456789012345678) == 123456789012345678
    for bad in ("abc", "123", "12345678901234567890", "-123456789012345678"):
        with pytest.raises(ValidationError) as exc:
            validate_guild_id(bad)
        assert exc.value.code == INVALID_GUILD_ID


def test_metric():
    assert validate_metric("sessions") == "sessions"
    with pytest.raises(ValidationError) as exc:
        validate_metric("messages")
    assert exc.value.code == VALIDATION_ERROR
    assert exc.value.to_dict() == {
        "code": VALIDATION_ERROR,
        "message": exc.value.message,
        "details": {"field": "metric", "value": "messages"},
    }


def test_date_range_accepts_dates_and_datetimes():
    start, end, days = validate_date_range("2025-01-13", "2025-01-19")
    assert (start, end, days) == (date(2025, 1, 13), date(2025, 1, 19), 6)

    start, end, days = validate_date_range("2025-01-13T12:00:00Z", "2025-01-14T13:00:00+00:00")
    assert start == datetime(2025, 1, 13, 12, tzinfo=timezone.utc)
    assert days == 2


@pytest.mark.parametrize("from_, to", [
    ("2025-01-13", "2025-01-13"),
    ("2025-01-14", "2025-01-13"),
    ("2025-02-30", "2025-03-01"),
    ("13/01/2025", "2025-03-01"),
    ("", "2025-03-01"),
    ("2024-01-01", "2025-01-02"),
])
def test_date_range_rejections(from_, to):
    with pytest.raises(ValidationError) as exc:
        validate_date_range(from_, to)
    assert exc.value.code == INVALID_DATE_RANGE


def test_timeline_window_is_at_most_a_week():
    start, end = validate_timeline_window("2025-01-13", "2025-01-20")
    assert start.tzinfo is not None and (end - start).days == 7
    with pytest.raises(ValidationError):
        validate_timeline_window("2025-01-13", "2025-01-20T00:00:01Z")


def test_limits_and_offsets():
    assert clamp_limit(None, 10) == 10
    assert clamp_limit(0, 10) == 1
    assert clamp_limit(1000, 10) == MAX_LIMIT
    assert validate_pagination(None, None) == (30, 0)
    assert validate_pagination(5, -3) == (5, 0)
