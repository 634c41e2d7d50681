from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Mapping, Sequence

from outbreak_engine.attack_rates import (
    AttackRateResult,
    AttackRateStratum,
    CaseDefinitionGuess,
    attack_rate_table,
    compute_attack_rates,
    detect_case_definition,
    suggest_case_values,
)
from outbreak_engine.config import AppConfig
from outbreak_engine.crosstab.eligibility import high_cardinality_variables
from outbreak_engine.crosstab.export import crosstabs_to_csv
from outbreak_engine.crosstab.tabulate import (
    CrossTabResult,
    RowVariableConfig,
    build_crosstabs,
    crosstab_table,
    has_small_cells,
)
from outbreak_engine.epicurve.binning import EpiCurveData, build_epicurve, epicurve_table
from outbreak_engine.epicurve.dates import Granularity, resolve_granularity
from outbreak_engine.epicurve.milestones import (
    PATHOGEN_INCUBATION,
    CaseMilestones,
    ExposureMethod,
    ExposureWindow,
    detect_milestones,
    estimate_exposure_window,
)
from outbreak_engine.io.read import load_line_list, require_columns
from outbreak_engine.io.write import write_summary, write_table, write_text
from outbreak_engine.paths import build_output_paths
from outbreak_engine.records import CaseRecord, ColumnDescriptor, column_label
from outbreak_engine.report.narrative import DEFAULT_TITLE, render_narrative

LOGGER = logging.getLogger(__name__)

EXPORT_FILENAME = "two_way_tables.csv"
NARRATIVE_FILENAME = "narrative.txt"


@dataclass(frozen=True)
class EpiCurveRun:
    curve: EpiCurveData
    milestones: CaseMilestones
    exposure: ExposureWindow | None
    granularity: Granularity
    stratify_key: str | None


@dataclass(frozen=True)
class AttackRateRun:
    result: AttackRateResult
    guess: CaseDefinitionGuess | None


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def analyze_epicurve(
    records: Sequence[CaseRecord],
    config: AppConfig,
    *,
    date_key: str,
    granularity: Granularity | str | None = None,
    stratify_key: str | None = None,
    time_key: str | None = None,
    pathogen: str | None = None,
    exposure_method: ExposureMethod | str | None = None,
) -> EpiCurveRun:
    resolved = resolve_granularity(granularity or config.epicurve.granularity)
    exposure: ExposureWindow | None = None
    if pathogen:
        if exposure_method is None:
            raise ValueError("An exposure method is required when a pathogen is given")
        if pathogen not in PATHOGEN_INCUBATION:
            LOGGER.warning("No incubation period known for pathogen %r", pathogen)
        exposure = estimate_exposure_window(
            records,
            date_key,
            pathogen,
            method=exposure_method,
        )
    annotations = [exposure.as_annotation()] if exposure is not None else None
    curve = build_epicurve(
        records,
        date_key,
        resolved,
        stratify_key=stratify_key,
        annotations=annotations,
        time_key=time_key,
        padding_bins=config.epicurve.padding_bins,
    )
    if curve.excluded_count:
        LOGGER.info(
            "%d of %d records had no usable %r date",
            curve.excluded_count,
            len(records),
            date_key,
        )
    return EpiCurveRun(
        curve=curve,
        milestones=detect_milestones(records, date_key, curve),
        exposure=exposure,
        granularity=resolved,
        stratify_key=stratify_key,
    )


def epicurve_summary(run: EpiCurveRun) -> dict[str, Any]:
    curve = run.curve
    exposure = None
    if run.exposure is not None:
        exposure = {
            "pathogen": run.exposure.pathogen,
            "method": run.exposure.method.value,
            "start": _iso(run.exposure.start),
            "end": _iso(run.exposure.end),
            "is_inverted": run.exposure.is_inverted,
        }
    return {
        "granularity": run.granularity.value,
        "stratify_key": run.stratify_key,
        "bin_count": len(curve.bins),
        "max_count": curve.max_count,
        "valid_count": curve.valid_count,
        "excluded_count": curve.excluded_count,
        "strata_keys": list(curve.strata_keys),
        "date_range": {
            "start": _iso(curve.date_range.start) if curve.bins else None,
            "end": _iso(curve.date_range.end) if curve.bins else None,
        },
        "first_case": _iso(run.milestones.first_case),
        "last_case": _iso(run.milestones.last_case),
        "exposure_window": exposure,
    }


def run_epicurve(
    csv_path: Path,
    out_dir: Path,
    config: AppConfig,
    *,
    date_key: str,
    granularity: Granularity | str | None = None,
    stratify_key: str | None = None,
    time_key: str | None = None,
    pathogen: str | None = None,
    exposure_method: ExposureMethod | str | None = None,
) -> dict[str, Path]:
    records, columns = load_line_list(csv_path, config)
    require_columns(columns, [date_key, stratify_key, time_key])
    run = analyze_epicurve(
        records,
        config,
        date_key=date_key,
        granularity=granularity,
        stratify_key=stratify_key,
        time_key=time_key,
        pathogen=pathogen,
        exposure_method=exposure_method,
    )
    paths = build_output_paths(out_dir)
    fmt = config.outputs.tables_format
    return {
        "epicurve_table": write_table(
            epicurve_table(run.curve), paths.tables / f"epicurve.{fmt}", fmt=fmt
        ),
        "epicurve_summary": write_summary(epicurve_summary(run), paths.summary / "epicurve.json"),
    }


def analyze_crosstabs(
    records: Sequence[CaseRecord],
    config: AppConfig,
    *,
    row_keys: Sequence[str],
    col_key: str,
    denominator: str | None = None,
    condensed: Mapping[str, str] | None = None,
) -> list[CrossTabResult]:
    policy = denominator or config.crosstab.denominator
    noisy = high_cardinality_variables(
        records,
        [*row_keys, col_key],
        max_categories=config.crosstab.max_categories,
    )
    for key in noisy:
        LOGGER.warning(
            "%s has more than %d distinct values; the table may be hard to read",
            key,
            config.crosstab.max_categories,
        )
    configs = {
        key: RowVariableConfig(expanded=False, value_of_interest=value)
        for key, value in (condensed or {}).items()
    }
    results = build_crosstabs(
        records,
        row_keys,
        col_key,
        configs,
        policy,
        normalize_grand_total=config.crosstab.normalize_grand_total,
    )
    if has_small_cells(results, config.crosstab.small_cell_threshold):
        LOGGER.info(
            "Some cells have counts below %d; interpret their percentages with caution",
            config.crosstab.small_cell_threshold,
        )
    return results


def run_crosstab(
    csv_path: Path,
    out_dir: Path,
    config: AppConfig,
    *,
    row_keys: Sequence[str],
    col_key: str,
    denominator: str | None = None,
    condensed: Mapping[str, str] | None = None,
    timestamp: datetime | None = None,
) -> dict[str, Path]:
    records, columns = load_line_list(csv_path, config)
    require_columns(columns, [*row_keys, col_key, *(condensed or {})])
    results = analyze_crosstabs(
        records,
        config,
        row_keys=row_keys,
        col_key=col_key,
        denominator=denominator,
        condensed=condensed,
    )
    paths = build_output_paths(out_dir)
    fmt = config.outputs.tables_format
    settings = config.crosstab
    text = crosstabs_to_csv(
        results,
        column_label(columns, col_key),
        denominator or settings.denominator,
        row_labels={key: column_label(columns, key) for key in row_keys},
        show_row_percent=settings.show_row_percent,
        show_col_percent=settings.show_col_percent,
        show_total_percent=settings.show_total_percent,
        timestamp=timestamp,
    )
    outputs = {"two_way_tables": write_text(text, paths.exports / EXPORT_FILENAME)}
    for result in results:
        name = f"crosstab__{result.row_variable}"
        outputs[name] = write_table(
            crosstab_table(result, settings.small_cell_threshold),
            paths.tables / f"{name}.{fmt}",
            fmt=fmt,
        )
    return outputs


def analyze_attack_rates(
    records: Sequence[CaseRecord],
    columns: Sequence[ColumnDescriptor],
    config: AppConfig,
    *,
    case_key: str | None = None,
    case_values: Sequence[str] | None = None,
    stratify_key: str | None = None,
    populations: Mapping[str, int] | None = None,
    overall_population: int | None = None,
) -> AttackRateRun:
    settings = config.attack_rates
    guess: CaseDefinitionGuess | None = None
    if not case_key:
        guess = detect_case_definition(
            columns,
            records,
            column_keywords=settings.case_column_keywords,
            value_keywords=settings.case_value_keywords,
            max_categories=settings.max_categories,
        )
        if guess.best is None:
            raise ValueError("No case-definition column detected; pass a case column explicitly")
        case_key = guess.best.key
        LOGGER.info("Using %r as the case-definition column", case_key)
        if not case_values:
            case_values = guess.best.case_values
    if not case_values:
        case_values = suggest_case_values(records, case_key, settings.case_value_keywords)
    if not case_values:
        LOGGER.warning("No case values selected for %r; every rate will be zero", case_key)

    result = compute_attack_rates(
        records,
        case_key,
        case_values,
        stratify_key=stratify_key,
        populations=populations,
        overall_population=overall_population,
        confidence=settings.confidence,
        proxy_denominator=settings.proxy_denominator,
    )
    return AttackRateRun(result=result, guess=guess)


def _stratum_summary(stratum: AttackRateStratum) -> dict[str, Any]:
    return {
        "label": stratum.label,
        "cases": stratum.cases,
        "population": stratum.population,
        "rate": stratum.rate,
        "ci_lower": stratum.ci_lower,
        "ci_upper": stratum.ci_upper,
    }


def attack_rate_summary(run: AttackRateRun, confidence: float) -> dict[str, Any]:
    result = run.result
    summary: dict[str, Any] = {
        "case_key": result.case_key,
        "case_values": list(result.case_values),
        "stratify_key": result.stratify_key,
        "confidence": confidence,
        "strata_count": len(result.strata),
        "total": _stratum_summary(result.total),
        "auto_detected": run.guess is not None,
        "alternate_case_keys": [],
    }
    if run.guess is not None:
        summary["alternate_case_keys"] = [candidate.key for candidate in run.guess.alternates]
    return summary


def run_attack_rates(
    csv_path: Path,
    out_dir: Path,
    config: AppConfig,
    *,
    case_key: str | None = None,
    case_values: Sequence[str] | None = None,
    stratify_key: str | None = None,
    populations: Mapping[str, int] | None = None,
    overall_population: int | None = None,
) -> dict[str, Path]:
    records, columns = load_line_list(csv_path, config)
    require_columns(columns, [case_key, stratify_key])
    run = analyze_attack_rates(
        records,
        columns,
        config,
        case_key=case_key,
        case_values=case_values,
        stratify_key=stratify_key,
        populations=populations,
        overall_population=overall_population,
    )
    paths = build_output_paths(out_dir)
    fmt = config.outputs.tables_format
    confidence = config.attack_rates.confidence
    return {
        "attack_rates_table": write_table(
            attack_rate_table(run.result, confidence),
            paths.tables / f"attack_rates.{fmt}",
            fmt=fmt,
        ),
        "attack_rates_summary": write_summary(
            attack_rate_summary(run, confidence),
            paths.summary / "attack_rates.json",
        ),
    }


def run_narrative(
    csv_path: Path,
    out_dir: Path,
    config: AppConfig,
    *,
    date_key: str,
    granularity: Granularity | str | None = None,
    stratify_key: str | None = None,
    time_key: str | None = None,
    pathogen: str | None = None,
    exposure_method: ExposureMethod | str | None = None,
    case_key: str | None = None,
    case_values: Sequence[str] | None = None,
    row_keys: Sequence[str] = (),
    col_key: str | None = None,
    title: str | None = None,
    generated_at: datetime | None = None,
) -> Path:
    """Run the requested analyses and write a plain-text narrative of the results."""
    records, columns = load_line_list(csv_path, config)
    require_columns(columns, [date_key, stratify_key, time_key, case_key, *row_keys, col_key])
    epicurve = analyze_epicurve(
        records,
        config,
        date_key=date_key,
        granularity=granularity,
        stratify_key=stratify_key,
        time_key=time_key,
        pathogen=pathogen,
        exposure_method=exposure_method,
    )

    attack_rates: AttackRateResult | None = None
    try:
        attack_rates = analyze_attack_rates(
            records,
            columns,
            config,
            case_key=case_key,
            case_values=case_values,
            stratify_key=stratify_key,
        ).result
    except ValueError:
        if case_key:
            raise
        LOGGER.info("Skipping attack rates: no case-definition column detected")

    crosstabs: list[CrossTabResult] = []
    if row_keys and col_key:
        crosstabs = analyze_crosstabs(records, config, row_keys=row_keys, col_key=col_key)

    text = render_narrative(
        epicurve.curve,
        epicurve.milestones,
        granularity=epicurve.granularity,
        stratify_key=stratify_key,
        exposure=epicurve.exposure,
        attack_rates=attack_rates,
        crosstabs=crosstabs,
        row_labels={key: column_label(list(columns), key) for key in row_keys},
        col_label=column_label(list(columns), col_key) if col_key else None,
        confidence=config.attack_rates.confidence,
        small_cell_threshold=config.crosstab.small_cell_threshold,
        title=title or DEFAULT_TITLE,
        generated_at=generated_at,
    )
    paths = build_output_paths(out_dir)
    return write_text(text, paths.exports / NARRATIVE_FILENAME)
