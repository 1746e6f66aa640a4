from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from config import get_settings
from errors import ValidationError
from periods import month_period, parse_date_param, parse_timestamp, resolve_range


def test_month_period_handles_december_and_leap_years() -> None:
    december = month_period(2024, 12)
    assert (december.start, december.end) == (date(2024, 12, 1), date(2024, 12, 31))
    assert month_period(2024, 2).end == date(2024, 2, 29)
    assert month_period(2025, 2).end == date(2025, 2, 28)
    assert month_period(9999, 12).end == date(9999, 12, 31)

    start, end = month_period(2025, 7).window()
    assert start == datetime(2025, 7, 1, 0, 0, 0)
    assert end == datetime(2025, 7, 31, 23, 59, 59, 999000)


def test_date_params_accept_plain_dates_and_timestamps() -> None:
    assert parse_date_param("2025-07-01") == date(2025, 7, 1)
    assert parse_date_param("2025-07-01T18:30:00") == date(2025, 7, 1)

    with pytest.raises(ValidationError):
        parse_date_param("")
    with pytest.raises(ValidationError):
        parse_date_param("July 1st")


def test_aware_timestamps_are_stored_in_server_local_time() -> None:
    tz = ZoneInfo(get_settings().timezone)
    expected = (
        datetime(2025, 7, 10, 10, 0, tzinfo=timezone.utc)
        .astimezone(tz)
        .replace(tzinfo=None)
    )

    assert parse_timestamp("2025-07-10T10:00:00Z") == expected
    assert parse_timestamp("2025-07-10T10:00:00") == datetime(2025, 7, 10, 10, 0)
    assert parse_timestamp("2025-07-10") == datetime(2025, 7, 10)


def test_range_must_be_ordered() -> None:
    period = resolve_range("2025-07-01", "2025-07-31")
    assert (period.start, period.end) == (date(2025, 7, 1), date(2025, 7, 31))

    with pytest.raises(ValidationError):
        resolve_range("2025-07-31", "2025-07-01")
