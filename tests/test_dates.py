"""Tests for the timestamp helpers."""

from datetime import date, datetime, timezone

import pytest

from ledgersync.utils.dates import parse_date, parse_timestamp


@pytest.mark.parametrize(
    "value,microsecond",
    [
        ("2025-03-12T12:00:00.12345+00:00", 123450),
        ("2025-03-12T12:00:00.1Z", 100000),
        ("2025-03-12T12:00:00.123456789+00:00", 123456),
        ("2025-03-12T12:00:00+00:00", 0),
    ],
)
def test_parse_timestamp_any_fraction_length(value, microsecond):
    parsed = parse_timestamp(value)

    assert parsed.tzinfo is not None
    assert parsed.microsecond == microsecond


def test_parse_timestamp_naive_is_utc():
    assert parse_timestamp("2025-03-12 12:00:00") == datetime(2025, 3, 12, 12, tzinfo=timezone.utc)


def test_unix_seconds():
    assert parse_date(1735689600) == date(2025, 1, 1)


@pytest.mark.parametrize("value", [10**20, float("inf"), float("nan")])
def test_out_of_range_unix_seconds_raise_value_error(value):
    with pytest.raises(ValueError):
        parse_date(value)
