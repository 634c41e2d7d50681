from __future__ import annotations

import math

import pytest

from outbreak_engine.attack_rates import (
    attack_rate_table,
    case_definition_columns,
    compute_attack_rates,
    detect_case_definition,
    format_ci,
    format_rate,
    stratum_sort_key,
)
from outbreak_engine.proportion_stats import wilson_score_interval
from outbreak_engine.records import ColumnDescriptor, make_record

RECORDS = [
    make_record(1, ill="Yes", age_group="5-9"),
    make_record(2, ill="No", age_group="5-9"),
    make_record(3, ill="Yes", age_group="10-19"),
    make_record(4, ill="Yes", age_group="10-19"),
    make_record(5, ill="No", age_group="10-19"),
    make_record(6, ill="No", age_group=None),
    make_record(7, ill="Yes", age_group="Adult"),
]


def test_overall_rate_uses_record_count_as_proxy_population() -> None:
    result = compute_attack_rates(RECORDS, "ill", ["Yes"])

    assert len(result.strata) == 1
    overall = result.strata[0]
    assert overall.label == "Overall"
    assert overall.cases == 4
    assert overall.population == 7
    assert overall.rate == pytest.approx(4 / 7)
    assert (overall.ci_lower, overall.ci_upper) == pytest.approx(wilson_score_interval(4, 7))
    assert result.total == overall


def test_overall_population_override() -> None:
    result = compute_attack_rates(RECORDS, "ill", ["Yes"], overall_population=40)

    assert result.total.population == 40
    assert result.total.rate == pytest.approx(0.1)


def test_stratified_rates_are_sorted_numerically_then_alphabetically() -> None:
    result = compute_attack_rates(RECORDS, "ill", ["Yes"], stratify_key="age_group")

    assert [stratum.label for stratum in result.strata] == ["5-9", "10-19", "Adult", "Unknown"]
    counts = {stratum.label: (stratum.cases, stratum.population) for stratum in result.strata}
    assert counts == {"5-9": (1, 2), "10-19": (2, 3), "Adult": (1, 1), "Unknown": (0, 1)}
    assert result.total.label == "Total"
    assert (result.total.cases, result.total.population) == (4, 7)


def test_rate_equals_cases_over_population_when_population_is_positive() -> None:
    result = compute_attack_rates(
        RECORDS,
        "ill",
        ["Yes"],
        stratify_key="age_group",
        populations={"10-19": 30, "Adult": 0},
    )

    by_label = {stratum.label: stratum for stratum in result.strata}
    assert by_label["10-19"].rate == pytest.approx(2 / 30)
    assert by_label["Adult"].rate is None
    assert by_label["Adult"].ci_lower is None
    assert result.total.population == 2 + 30 + 0 + 1


def test_without_proxy_denominator_unknown_populations_have_no_rate() -> None:
    result = compute_attack_rates(
        RECORDS,
        "ill",
        ["Yes"],
        stratify_key="age_group",
        populations={"5-9": 10},
        proxy_denominator=False,
    )

    by_label = {stratum.label: stratum for stratum in result.strata}
    assert by_label["5-9"].rate == pytest.approx(0.1)
    assert by_label["10-19"].population is None
    assert by_label["10-19"].rate is None
    assert result.total.population is None
    assert result.total.rate is None
    assert result.has_rates


def test_no_case_values_counts_no_cases() -> None:
    result = compute_attack_rates(RECORDS, "ill", [])

    assert result.total.cases == 0
    assert result.total.rate == 0.0
    assert result.total.ci_lower == 0.0


def test_stratum_sort_key_orders_numeric_prefixes_first() -> None:
    labels = ["b", "20+", "A", "3", "10-19"]

    assert sorted(labels, key=stratum_sort_key) == ["3", "10-19", "20+", "A", "b"]


def test_attack_rate_table_marks_missing_rates_as_nan() -> None:
    result = compute_attack_rates(
        RECORDS,
        "ill",
        ["Yes"],
        stratify_key="age_group",
        populations={"Adult": 0},
    )

    table = attack_rate_table(result)

    assert list(table["stratum"]) == ["5-9", "10-19", "Adult", "Unknown", "Total"]
    adult = table[table["stratum"] == "Adult"].iloc[0]
    assert math.isnan(adult["ci_half_width"])
    assert table[table["stratum"] == "5-9"].iloc[0]["ci_half_width"] > 0


def test_rate_formatting() -> None:
    assert format_rate(0.5) == "50.00%"
    assert format_rate(None) == "-"
    assert format_ci(0.1, 0.25) == "10.00-25.00%"
    assert format_ci(None, 0.2) == "-"


COLUMNS = [
    ColumnDescriptor("case_id", "Case ID", "text"),
    ColumnDescriptor("onset", "Onset", "date"),
    ColumnDescriptor("case_status", "Case status", "text"),
    ColumnDescriptor("ill", "Ill", "text"),
    ColumnDescriptor("outcome", "Outcome", "text"),
    ColumnDescriptor("age", "Age", "number"),
    ColumnDescriptor("temperature", "Temperature", "number"),
]

DETECTION_RECORDS = [
    make_record(
        index,
        case_id=f"C{index}",
        onset=f"2024-01-0{index}",
        case_status=("Confirmed", "Probable", "Not a case")[index % 3],
        ill="Yes" if index % 2 else "No",
        outcome="Recovered" if index % 4 else "Died",
        age=20 + index,
        temperature=37.0 + index / 10,
    )
    for index in range(1, 9)
]


def test_case_definition_columns_exclude_dates_ids_and_non_age_numbers() -> None:
    keys = [column.key for column in case_definition_columns(COLUMNS, DETECTION_RECORDS)]

    assert keys == ["case_status", "ill", "outcome", "age"]


def test_detect_case_definition_prefers_columns_with_case_values() -> None:
    guess = detect_case_definition(COLUMNS, DETECTION_RECORDS)

    assert guess.best is not None
    assert guess.best.key == "ill"
    assert guess.best.case_values == ("Yes",)
    assert [candidate.key for candidate in guess.alternates] == ["case_status", "outcome"]
    assert guess.alternates[0].case_values == ("Probable", "Not a case", "Confirmed")
    assert guess.alternates[1].case_values == ()


def test_detect_case_definition_without_matches() -> None:
    columns = [ColumnDescriptor("sex", "Sex", "text")]
    records = [make_record(1, sex="F"), make_record(2, sex="M")]

    guess = detect_case_definition(columns, records)

    assert guess.best is None
    assert guess.alternates == ()
