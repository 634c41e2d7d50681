from __future__ import annotations

from datetime import date, datetime, time

import pytest

from outbreak_engine.epicurve.dates import (
    Granularity,
    bin_end,
    bin_start,
    format_bin_label,
    parse_date_value,
    parse_record_timestamp,
    parse_time_of_day,
    resolve_granularity,
)


def test_parse_date_value_reads_bare_dates_as_local_midnight() -> None:
    assert parse_date_value("2024-01-05") == datetime(2024, 1, 5)
    assert parse_date_value(" 2024-01-05 ") == datetime(2024, 1, 5)
    assert parse_date_value(date(2024, 1, 5)) == datetime(2024, 1, 5)


def test_parse_date_value_keeps_time_components() -> None:
    assert parse_date_value("2024-01-05T14:30:00") == datetime(2024, 1, 5, 14, 30)
    assert parse_date_value(datetime(2024, 1, 5, 9)) == datetime(2024, 1, 5, 9)


def test_parse_date_value_returns_none_for_unusable_values() -> None:
    assert parse_date_value(None) is None
    assert parse_date_value("") is None
    assert parse_date_value("not a date") is None
    assert parse_date_value("2024-02-30") is None
    assert parse_date_value(True) is None
    assert parse_date_value(42) is None


def test_parse_time_of_day_handles_24_hour_and_meridiem_forms() -> None:
    assert parse_time_of_day("08:15") == time(8, 15)
    assert parse_time_of_day("2:30 PM") == time(14, 30)
    assert parse_time_of_day("12:00 am") == time(0, 0)
    assert parse_time_of_day("23:59:59") == time(23, 59, 59)
    assert parse_time_of_day("25:00") is None
    assert parse_time_of_day("noon") is None
    assert parse_time_of_day(None) is None


def test_parse_record_timestamp_attaches_time_only_to_date_only_values() -> None:
    assert parse_record_timestamp("2024-01-05", "08:15", attach_time=True) == datetime(
        2024, 1, 5, 8, 15
    )
    assert parse_record_timestamp("2024-01-05", "08:15") == datetime(2024, 1, 5)
    assert parse_record_timestamp("2024-01-05T10:00:00", "08:15", attach_time=True) == datetime(
        2024, 1, 5, 10
    )
    assert parse_record_timestamp("2024-01-05", "later", attach_time=True) == datetime(2024, 1, 5)


def test_weekly_bins_start_on_sunday_for_cdc_and_monday_for_iso() -> None:
    wednesday = datetime(2024, 1, 10, 15, 45)

    cdc = bin_start(wednesday, Granularity.weekly_cdc)
    iso = bin_start(wednesday, Granularity.weekly_iso)

    assert cdc == datetime(2024, 1, 7)
    assert cdc.weekday() == 6
    assert iso == datetime(2024, 1, 8)
    assert iso.weekday() == 0


def test_sunday_belongs_to_the_previous_iso_week() -> None:
    sunday = datetime(2024, 1, 7, 12)

    assert bin_start(sunday, Granularity.weekly_cdc) == datetime(2024, 1, 7)
    assert bin_start(sunday, Granularity.weekly_iso) == datetime(2024, 1, 1)


def test_sub_daily_bins_align_to_their_width() -> None:
    moment = datetime(2024, 1, 5, 14, 30)

    assert bin_start(moment, Granularity.hourly) == datetime(2024, 1, 5, 14)
    assert bin_start(moment, Granularity.six_hour) == datetime(2024, 1, 5, 12)
    assert bin_start(moment, Granularity.twelve_hour) == datetime(2024, 1, 5, 12)
    assert bin_end(moment, Granularity.six_hour) == datetime(2024, 1, 5, 18)
    assert bin_end(moment, Granularity.daily) == datetime(2024, 1, 6)


def test_format_bin_label_adds_hour_for_sub_daily_granularity() -> None:
    start = datetime(2024, 1, 5, 14)

    assert format_bin_label(start, Granularity.daily) == "Jan 5"
    assert format_bin_label(start, Granularity.hourly) == "Jan 5 14:00"


def test_resolve_granularity_rejects_unknown_values() -> None:
    assert resolve_granularity("6hour") is Granularity.six_hour
    with pytest.raises(ValueError, match="Unsupported granularity"):
        resolve_granularity("monthly")
