from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Sequence

import pandas as pd

from outbreak_engine.missing import MISSING_LABEL, is_missing, value_key
from outbreak_engine.proportion_stats import DEFAULT_SMALL_CELL_THRESHOLD, small_cell_mask
from outbreak_engine.records import CaseRecord

LOGGER = logging.getLogger(__name__)

DEFAULT_VALUE_OF_INTEREST = "Yes"


class DenominatorPolicy(str, Enum):
    total = "total"
    valid = "valid"

    @property
    def label(self) -> str:
        return "Total records" if self is DenominatorPolicy.total else "Valid records only"


def resolve_policy(value: DenominatorPolicy | str) -> DenominatorPolicy:
    if isinstance(value, DenominatorPolicy):
        return value
    try:
        return DenominatorPolicy(str(value))
    except ValueError:
        raise ValueError(
            f"Unsupported denominator policy: {value!r} (expected 'total' or 'valid')"
        ) from None


@dataclass(frozen=True)
class RowVariableConfig:
    expanded: bool = True
    value_of_interest: str = ""


@dataclass
class CrossTabCell:
    count: int = 0
    row_percent: float = 0.0
    col_percent: float = 0.0
    total_percent: float = 0.0


@dataclass
class CrossTabResult:
    row_variable: str
    col_variable: str
    row_values: list[str]
    col_values: list[str]
    cells: dict[tuple[str, str], CrossTabCell]
    row_totals: dict[str, int]
    col_totals: dict[str, int]
    grand_total: int = 0
    missing_row_count: int = 0
    missing_col_count: int = 0
    missing_both_count: int = 0
    config: RowVariableConfig = field(default_factory=RowVariableConfig)

    def cell(self, row_value: str, col_value: str) -> CrossTabCell:
        return self.cells.get((row_value, col_value), CrossTabCell())

    def small_cells(
        self, threshold: int = DEFAULT_SMALL_CELL_THRESHOLD
    ) -> list[tuple[str, str, int]]:
        keys = list(self.cells)
        flags = small_cell_mask([self.cells[key].count for key in keys], threshold=threshold)
        return [
            (row_value, col_value, self.cells[(row_value, col_value)].count)
            for (row_value, col_value), flagged in zip(keys, flags)
            if flagged
        ]


def unique_values(records: Sequence[CaseRecord], key: str) -> list[str]:
    """Distinct present values of ``key`` in first-encounter order."""
    seen: dict[str, None] = {}
    for record in records:
        value = record[key]
        if not is_missing(value):
            seen.setdefault(value_key(value), None)
    return list(seen)


def default_row_config(records: Sequence[CaseRecord], key: str) -> RowVariableConfig:
    values = unique_values(records, key)
    if DEFAULT_VALUE_OF_INTEREST in values:
        return RowVariableConfig(expanded=True, value_of_interest=DEFAULT_VALUE_OF_INTEREST)
    return RowVariableConfig(expanded=True, value_of_interest=values[0] if values else "")


def build_crosstab(
    records: Sequence[CaseRecord],
    row_key: str,
    col_key: str,
    config: RowVariableConfig | None = None,
    policy: DenominatorPolicy | str = DenominatorPolicy.valid,
    *,
    normalize_grand_total: bool = False,
) -> CrossTabResult:
    """Tabulate ``row_key`` against ``col_key``.

    Under the ``valid`` policy and in condensed mode, records that are left out
    of the cells still count towards ``grand_total`` unless
    ``normalize_grand_total`` is set, in which case it equals the sum of the row
    totals.
    """
    resolved = resolve_policy(policy)
    row_config = config or default_row_config(records, row_key)
    include_missing = resolved is DenominatorPolicy.total

    if row_config.expanded:
        row_values = unique_values(records, row_key)
        if include_missing:
            row_values.append(MISSING_LABEL)
    else:
        row_values = [row_config.value_of_interest]
    col_values = unique_values(records, col_key)
    if include_missing:
        col_values.append(MISSING_LABEL)

    cells = {(rv, cv): CrossTabCell() for rv in row_values for cv in col_values}
    row_totals = {rv: 0 for rv in row_values}
    col_totals = {cv: 0 for cv in col_values}
    displayed = set(row_values)

    grand_total = 0
    missing_row = missing_col = missing_both = 0
    for record in records:
        row_raw = record[row_key]
        col_raw = record[col_key]
        row_missing = is_missing(row_raw)
        col_missing = is_missing(col_raw)
        missing_row += int(row_missing)
        missing_col += int(col_missing)
        missing_both += int(row_missing and col_missing)

        grand_total += 1
        if not include_missing and (row_missing or col_missing):
            continue
        row_value = MISSING_LABEL if row_missing else value_key(row_raw)
        col_value = MISSING_LABEL if col_missing else value_key(col_raw)
        if row_value not in displayed:
            continue

        cells[(row_value, col_value)].count += 1
        row_totals[row_value] += 1
        col_totals[col_value] += 1

    if normalize_grand_total:
        grand_total = sum(row_totals.values())

    for (row_value, col_value), cell in cells.items():
        row_total = row_totals[row_value]
        col_total = col_totals[col_value]
        cell.row_percent = (cell.count / row_total) * 100 if row_total > 0 else 0.0
        cell.col_percent = (cell.count / col_total) * 100 if col_total > 0 else 0.0
        cell.total_percent = (cell.count / grand_total) * 100 if grand_total > 0 else 0.0

    return CrossTabResult(
        row_variable=row_key,
        col_variable=col_key,
        row_values=row_values,
        col_values=col_values,
        cells=cells,
        row_totals=row_totals,
        col_totals=col_totals,
        grand_total=grand_total,
        missing_row_count=missing_row,
        missing_col_count=missing_col,
        missing_both_count=missing_both,
        config=row_config,
    )


def build_crosstabs(
    records: Sequence[CaseRecord],
    row_keys: Sequence[str],
    col_key: str,
    configs: Mapping[str, RowVariableConfig] | None = None,
    policy: DenominatorPolicy | str = DenominatorPolicy.valid,
    *,
    normalize_grand_total: bool = False,
) -> list[CrossTabResult]:
    if not row_keys or not col_key:
        return []
    configs = configs or {}
    results = [
        build_crosstab(
            records,
            row_key,
            col_key,
            configs.get(row_key),
            policy,
            normalize_grand_total=normalize_grand_total,
        )
        for row_key in row_keys
    ]
    flagged = sum(len(result.small_cells()) for result in results)
    if flagged:
        LOGGER.debug("%d cross-tab cells have counts below the small-cell threshold", flagged)
    return results


def has_small_cells(
    results: Sequence[CrossTabResult],
    threshold: int = DEFAULT_SMALL_CELL_THRESHOLD,
) -> bool:
    return any(result.small_cells(threshold) for result in results)


def crosstab_table(
    result: CrossTabResult,
    threshold: int = DEFAULT_SMALL_CELL_THRESHOLD,
) -> pd.DataFrame:
    rows = [
        {
            "row_variable": result.row_variable,
            "row_value": row_value,
            "col_value": col_value,
            "count": cell.count,
            "row_percent": cell.row_percent,
            "col_percent": cell.col_percent,
            "total_percent": cell.total_percent,
        }
        for (row_value, col_value), cell in result.cells.items()
    ]
    table = pd.DataFrame(
        rows,
        columns=[
            "row_variable",
            "row_value",
            "col_value",
            "count",
            "row_percent",
            "col_percent",
            "total_percent",
        ],
    )
    table["is_small_cell"] = small_cell_mask(table["count"], threshold=threshold)
    return table
