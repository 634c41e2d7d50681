from __future__ import annotations

import math
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Mapping, Sequence

from outbreak_engine.crosstab.tabulate import (
    CrossTabCell,
    CrossTabResult,
    DenominatorPolicy,
    resolve_policy,
)

LARGE_SAMPLE_SIZE = 1000


def format_sig_figs(value: float, sig_figs: int = 2) -> str:
    if not math.isfinite(value) or value == 0:
        return "0"
    magnitude = math.floor(math.log10(abs(value)))
    precision = sig_figs - 1 - magnitude
    if precision < 0:
        scale = 10 ** (-precision)
        return str(int(math.floor(value / scale + 0.5)) * scale)
    quantum = Decimal(1).scaleb(-precision)
    return str(Decimal(value).quantize(quantum, rounding=ROUND_HALF_UP))


def format_percent(value: float, sample_size: int) -> str:
    """Two significant figures, three once the table holds 1000+ records."""
    return format_sig_figs(value, 3 if sample_size >= LARGE_SAMPLE_SIZE else 2)


def format_cell(
    cell: CrossTabCell,
    grand_total: int,
    *,
    show_row_percent: bool = True,
    show_col_percent: bool = True,
    show_total_percent: bool = False,
) -> str:
    text = str(cell.count)
    parts: list[str] = []
    if show_row_percent:
        parts.append(f"Row: {format_percent(cell.row_percent, grand_total)}%")
    if show_col_percent:
        parts.append(f"Col: {format_percent(cell.col_percent, grand_total)}%")
    if show_total_percent:
        parts.append(f"Total: {format_percent(cell.total_percent, grand_total)}%")
    if parts:
        text += f" ({'; '.join(parts)})"
    return text


def iso_timestamp(moment: datetime | None = None) -> str:
    """UTC timestamp with millisecond precision and a ``Z`` suffix."""
    value = (moment or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def export_filename(moment: datetime | None = None) -> str:
    return f"two_way_tables_{iso_timestamp(moment)[:10]}.csv"


def _quoted(values: Sequence[str]) -> str:
    return ",".join('"' + str(value).replace('"', '""') + '"' for value in values)


def crosstabs_to_csv(
    results: Sequence[CrossTabResult],
    col_label: str,
    policy: DenominatorPolicy | str,
    *,
    row_labels: Mapping[str, str] | None = None,
    show_row_percent: bool = True,
    show_col_percent: bool = True,
    show_total_percent: bool = False,
    timestamp: datetime | None = None,
) -> str:
    if not results:
        return ""
    resolved = resolve_policy(policy)
    labels = row_labels or {}

    lines = [
        "# Two-Way Tables Export",
        f"# Timestamp: {iso_timestamp(timestamp)}",
        f"# Column Variable: {col_label}",
        f"# Denominator: {resolved.label}",
        "",
    ]
    for result in results:
        row_label = labels.get(result.row_variable, result.row_variable)
        lines.append("")
        lines.append(f"# Row Variable: {row_label}")
        lines.append(_quoted([row_label, *result.col_values, "Row Total"]))
        for row_value in result.row_values:
            row = [row_value]
            for col_value in result.col_values:
                row.append(
                    format_cell(
                        result.cell(row_value, col_value),
                        result.grand_total,
                        show_row_percent=show_row_percent,
                        show_col_percent=show_col_percent,
                        show_total_percent=show_total_percent,
                    )
                )
            row.append(str(result.row_totals.get(row_value, 0)))
            lines.append(_quoted(row))
        totals = ["Column Total"]
        totals += [str(result.col_totals.get(col_value, 0)) for col_value in result.col_values]
        totals.append(str(result.grand_total))
        lines.append(_quoted(totals))
    return "\n".join(lines) + "\n"
