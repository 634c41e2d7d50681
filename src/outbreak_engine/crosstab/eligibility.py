from __future__ import annotations

from typing import Sequence

from outbreak_engine.crosstab.tabulate import unique_values
from outbreak_engine.records import CaseRecord, ColumnDescriptor

MIN_CATEGORIES = 2
MAX_CATEGORIES = 30
MAX_NUMERIC_CATEGORIES = 20

COORDINATE_FRAGMENTS = ("latitude", "longitude", "lat", "lon", "long")


def looks_like_identifier(column: ColumnDescriptor) -> bool:
    key = column.key.lower()
    label = column.label.lower()
    if key == "id" or key.endswith("_id") or "participant" in key:
        return True
    return "id" in label and len(label.split(" ")) <= 2


def looks_like_coordinate(column: ColumnDescriptor) -> bool:
    key = column.key.lower()
    return any(fragment in key for fragment in COORDINATE_FRAGMENTS)


def _raw_distinct_count(records: Sequence[CaseRecord], key: str) -> int:
    return len({repr(record[key]) for record in records})


def is_eligible_variable(
    column: ColumnDescriptor,
    records: Sequence[CaseRecord],
    *,
    min_categories: int = MIN_CATEGORIES,
    max_categories: int = MAX_CATEGORIES,
) -> bool:
    if looks_like_identifier(column) or looks_like_coordinate(column):
        return False
    if column.type == "number":
        if _raw_distinct_count(records, column.key) > MAX_NUMERIC_CATEGORIES:
            return False
    distinct = len(unique_values(records, column.key))
    return min_categories <= distinct <= max_categories


def eligible_variables(
    columns: Sequence[ColumnDescriptor],
    records: Sequence[CaseRecord],
    *,
    min_categories: int = MIN_CATEGORIES,
    max_categories: int = MAX_CATEGORIES,
) -> list[ColumnDescriptor]:
    """Columns that can act as row/column variables of a two-way table."""
    return [
        column
        for column in columns
        if is_eligible_variable(
            column,
            records,
            min_categories=min_categories,
            max_categories=max_categories,
        )
    ]


def high_cardinality_variables(
    records: Sequence[CaseRecord],
    keys: Sequence[str],
    *,
    max_categories: int = MAX_CATEGORIES,
) -> list[str]:
    """Selected keys with more distinct present values than a categorical table supports."""
    return [
        key
        for key in dict.fromkeys(keys)
        if key and len(unique_values(records, key)) > max_categories
    ]
