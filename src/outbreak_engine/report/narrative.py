from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Sequence

from jinja2 import Environment, FileSystemLoader, select_autoescape

from outbreak_engine.attack_rates import AttackRateResult, format_ci, format_rate
from outbreak_engine.crosstab.tabulate import CrossTabResult
from outbreak_engine.epicurve.binning import EpiCurveData
from outbreak_engine.epicurve.dates import Granularity, resolve_granularity
from outbreak_engine.epicurve.milestones import CaseMilestones, ExposureWindow
from outbreak_engine.proportion_stats import DEFAULT_CONFIDENCE, DEFAULT_SMALL_CELL_THRESHOLD

NARRATIVE_TEMPLATE = "narrative.txt.j2"
DEFAULT_TITLE = "Outbreak summary"


def _template_env() -> Environment:
    templates_path = Path(__file__).resolve().parent / "templates"
    return Environment(
        loader=FileSystemLoader(str(templates_path)),
        autoescape=select_autoescape(enabled_extensions=("html", "xml")),
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
    )


def _day(value: datetime | None) -> str | None:
    return value.strftime("%Y-%m-%d") if value is not None else None


def _moment(value: datetime, granularity: Granularity) -> str:
    if granularity.is_sub_daily:
        return value.strftime("%Y-%m-%d %H:%M")
    return value.strftime("%Y-%m-%d")


def _days(value: float) -> str:
    return f"{value:g}"


def _curve_context(
    curve: EpiCurveData,
    granularity: Granularity,
    stratify_key: str | None,
) -> dict[str, Any]:
    context: dict[str, Any] = {
        "granularity": granularity.value,
        "bin_count": len(curve.bins),
        "valid_count": curve.valid_count,
        "excluded_count": curve.excluded_count,
        "total_records": curve.valid_count + curve.excluded_count,
        "stratify_key": stratify_key,
        "strata": list(curve.strata_keys),
    }
    if curve.bins:
        peak = max(curve.bins, key=lambda item: item.total)
        context.update(
            range_start=_moment(curve.date_range.start, granularity),
            range_end=_moment(curve.date_range.end, granularity),
            peak_count=peak.total,
            peak_label=peak.label,
        )
    return context


def _exposure_context(window: ExposureWindow) -> dict[str, Any]:
    return {
        "pathogen": window.pathogen,
        "method": window.method.value,
        "start": _day(window.start),
        "end": _day(window.end),
        "inverted": window.is_inverted,
        "incubation_min": _days(window.incubation.min),
        "incubation_max": _days(window.incubation.max),
        "incubation_typical": _days(window.incubation.typical),
    }


def _attack_rate_context(result: AttackRateResult, confidence: float) -> dict[str, Any]:
    strata = list(result.strata)
    if result.stratify_key:
        strata.append(result.total)
    return {
        "case_key": result.case_key,
        "case_values": list(result.case_values),
        "confidence_pct": f"{confidence * 100:g}",
        "rows": [
            {
                "label": stratum.label,
                "cases": stratum.cases,
                "population": "-" if stratum.population is None else stratum.population,
                "rate": format_rate(stratum.rate),
                "ci": format_ci(stratum.ci_lower, stratum.ci_upper),
            }
            for stratum in strata
        ],
    }


def _crosstab_context(
    results: Sequence[CrossTabResult],
    row_labels: dict[str, str],
    col_label: str | None,
    threshold: int,
) -> list[dict[str, Any]]:
    return [
        {
            "row_variable": row_labels.get(result.row_variable, result.row_variable),
            "col_variable": col_label or result.col_variable,
            "grand_total": result.grand_total,
            "row_count": len(result.row_values),
            "col_count": len(result.col_values),
            "small_cells": len(result.small_cells(threshold)),
        }
        for result in results
    ]


def render_narrative(
    curve: EpiCurveData,
    milestones: CaseMilestones,
    *,
    granularity: Granularity | str = Granularity.daily,
    stratify_key: str | None = None,
    exposure: ExposureWindow | None = None,
    attack_rates: AttackRateResult | None = None,
    crosstabs: Sequence[CrossTabResult] = (),
    row_labels: dict[str, str] | None = None,
    col_label: str | None = None,
    confidence: float = DEFAULT_CONFIDENCE,
    small_cell_threshold: int = DEFAULT_SMALL_CELL_THRESHOLD,
    title: str = DEFAULT_TITLE,
    generated_at: datetime | None = None,
) -> str:
    """Render a plain-text summary of one analysis run."""
    resolved = resolve_granularity(granularity)
    tables = _crosstab_context(crosstabs, row_labels or {}, col_label, small_cell_threshold)
    template = _template_env().get_template(NARRATIVE_TEMPLATE)
    return template.render(
        title=title,
        generated_at=(generated_at or datetime.now()).strftime("%Y-%m-%d %H:%M"),
        curve=_curve_context(curve, resolved, stratify_key),
        milestones={
            "first_case": _day(milestones.first_case),
            "last_case": _day(milestones.last_case),
        },
        exposure=_exposure_context(exposure) if exposure is not None else None,
        attack_rates=(
            _attack_rate_context(attack_rates, confidence) if attack_rates is not None else None
        ),
        crosstabs=tables,
        small_cell_note=any(table["small_cells"] for table in tables),
        small_cell_threshold=small_cell_threshold,
    )
