from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from outbreak_engine.epicurve.annotations import Annotation, new_annotation
from outbreak_engine.epicurve.binning import build_epicurve, epicurve_table, extend_range
from outbreak_engine.epicurve.dates import Granularity, bin_start, parse_date_value
from outbreak_engine.records import make_record

ONSETS = [
    "2024-01-01",
    "2024-01-02",
    "2024-01-02",
    "2024-01-03",
    "2024-01-05",
    "2024-01-05",
    "2024-01-05",
    "2024-01-07",
    "2024-01-09",
    "2024-01-10",
    "2024-01-12",
    "2024-01-14",
]


def _records(onsets: list[str | None] | None = None, sexes: list[str | None] | None = None):
    values = ONSETS if onsets is None else onsets
    return [
        make_record(
            index + 1,
            onset=onset,
            sex=(sexes[index] if sexes is not None else None),
        )
        for index, onset in enumerate(values)
    ]


def test_daily_curve_pads_two_bins_on_each_side() -> None:
    curve = build_epicurve(_records(), "onset", "daily")

    assert len(curve.bins) == 18
    assert curve.bins[0].start == datetime(2023, 12, 30)
    assert curve.bins[-1].end == datetime(2024, 1, 17)
    assert curve.date_range.start == datetime(2023, 12, 30)
    assert curve.date_range.end == datetime(2024, 1, 17)
    by_day = {item.start.date().isoformat(): item.total for item in curve.bins}
    assert by_day["2024-01-05"] == 3
    assert by_day["2024-01-02"] == 2
    assert by_day["2024-01-04"] == 0
    assert by_day["2023-12-30"] == 0
    assert curve.max_count == 3
    assert curve.valid_count == 12
    assert curve.excluded_count == 0


@pytest.mark.parametrize("granularity", list(Granularity))
def test_bins_are_contiguous_and_aligned_for_every_granularity(granularity: Granularity) -> None:
    records = _records(["2024-01-01T03:20:00", "2024-01-03T17:05:00", "2024-01-20T09:00:00"])

    curve = build_epicurve(records, "onset", granularity)

    assert curve.bins
    for left, right in zip(curve.bins, curve.bins[1:]):
        assert left.end == right.start
    for item in curve.bins:
        assert bin_start(item.start, granularity) == item.start
    assert sum(item.total for item in curve.bins) == 3


def test_every_record_lands_in_exactly_one_bin() -> None:
    curve = build_epicurve(_records(), "onset", "weekly-cdc")

    seen = [record.id for item in curve.bins for record in item.records]
    assert sorted(seen, key=int) == [str(index) for index in range(1, 13)]
    assert all(item.start.weekday() == 6 for item in curve.bins)


def test_weekly_iso_bins_start_on_monday() -> None:
    curve = build_epicurve(_records(), "onset", Granularity.weekly_iso)

    assert all(item.start.weekday() == 0 for item in curve.bins)
    assert sum(item.total for item in curve.bins) == 12


def test_stratified_curve_counts_missing_values_as_unknown() -> None:
    records = _records(
        ["2024-01-01", "2024-01-01", "2024-01-02", "2024-01-02"],
        ["F", "M", None, "F"],
    )

    curve = build_epicurve(records, "onset", "daily", stratify_key="sex")

    assert curve.strata_keys == ("F", "M", "Unknown")
    first_day = next(item for item in curve.bins if item.start == datetime(2024, 1, 1))
    second_day = next(item for item in curve.bins if item.start == datetime(2024, 1, 2))
    assert first_day.count("F") == 1
    assert first_day.count("M") == 1
    assert second_day.count("Unknown") == 1
    assert second_day.total == 2


def test_annotations_outside_the_data_extend_the_range() -> None:
    annotation = new_annotation("intervention", "2024-01-20", annotation_id="closure")

    curve = build_epicurve(_records(), "onset", "daily", annotations=[annotation])

    assert len(curve.bins) == 24
    assert curve.bins[-1].start == datetime(2024, 1, 22)
    assert curve.valid_count == 12


def test_extend_range_includes_end_dates_and_plain_datetimes() -> None:
    window = new_annotation("exposure", "2023-12-20", end_date="2023-12-28")

    extended = extend_range(
        datetime(2024, 1, 1),
        datetime(2024, 1, 14),
        [window, datetime(2024, 2, 1)],
    )

    assert extended.start == datetime(2023, 12, 20)
    assert extended.end == datetime(2024, 2, 1)


def test_plain_date_events_extend_the_range_like_annotations() -> None:
    curve = build_epicurve(_records(), "onset", "daily", annotations=[date(2024, 1, 20)])

    assert len(curve.bins) == 24
    assert curve.bins[-1].start == datetime(2024, 1, 22)
    assert curve.valid_count == 12


def test_timezone_aware_annotation_dates_are_compared_as_local_time() -> None:
    moment = datetime(2024, 1, 20, 12, tzinfo=timezone.utc)
    annotation = Annotation(id="notice", type="intervention", date=moment, label="Notice")

    curve = build_epicurve(_records(), "onset", "daily", annotations=[annotation])

    local = parse_date_value(moment)
    assert local is not None and local.tzinfo is None
    assert curve.bins[0].start <= local < curve.bins[-1].end
    assert curve.valid_count == 12


def test_records_without_valid_dates_are_excluded_and_counted() -> None:
    records = _records(["2024-01-01", "unknown", None, "", "2024-01-03"])

    curve = build_epicurve(records, "onset", "daily")

    assert curve.valid_count == 2
    assert curve.excluded_count == 3


def test_empty_input_yields_no_bins() -> None:
    curve = build_epicurve(_records(["bad", None]), "onset", "daily")

    assert curve.bins == ()
    assert curve.max_count == 1
    assert curve.strata_keys == ()
    assert curve.excluded_count == 2
    assert build_epicurve([], "onset", "daily").bins == ()


def test_time_column_places_date_only_onsets_in_sub_daily_bins() -> None:
    records = [
        make_record(1, onset="2024-01-05", onset_time="08:15"),
        make_record(2, onset="2024-01-05", onset_time="2:40 PM"),
        make_record(3, onset="2024-01-05", onset_time=None),
    ]

    curve = build_epicurve(records, "onset", "hourly", time_key="onset_time", padding_bins=0)

    counts = {item.start: item.total for item in curve.bins if item.total}
    assert counts == {
        datetime(2024, 1, 5, 0): 1,
        datetime(2024, 1, 5, 8): 1,
        datetime(2024, 1, 5, 14): 1,
    }
    assert curve.bins[0].label == "Jan 5 0:00"


def test_repeated_builds_are_identical() -> None:
    records = _records()

    first = build_epicurve(records, "onset", "daily", stratify_key="sex")
    second = build_epicurve(records, "onset", "daily", stratify_key="sex")

    assert first == second


def test_unknown_granularity_raises() -> None:
    with pytest.raises(ValueError, match="Unsupported granularity"):
        build_epicurve(_records(), "onset", "monthly")


def test_epicurve_table_has_one_row_per_bin_with_stratum_columns() -> None:
    records = _records(["2024-01-01", "2024-01-02"], ["F", "M"])

    table = epicurve_table(build_epicurve(records, "onset", "daily", stratify_key="sex"))

    assert list(table.columns) == [
        "bin_start",
        "bin_end",
        "label",
        "total",
        "stratum__F",
        "stratum__M",
    ]
    assert len(table) == 6
    assert table["total"].sum() == 2
    assert table["label"].iloc[0] == "Dec 30"
