from __future__ import annotations

from pathlib import Path

import typer

from outbreak_engine.config import DEFAULT_CONFIG_PATH, AppConfig, load_config
from outbreak_engine.crosstab.tabulate import DenominatorPolicy
from outbreak_engine.epicurve.dates import Granularity
from outbreak_engine.epicurve.milestones import ExposureMethod
from outbreak_engine.logging import configure_logging
from outbreak_engine.pipeline.analyses import (
    run_attack_rates,
    run_crosstab,
    run_epicurve,
    run_narrative,
)

app = typer.Typer(no_args_is_help=True, add_completion=False)


def _load_app_config(config_path: Path) -> AppConfig:
    return load_config(config_path)


def _require_exposure_method(
    pathogen: str | None,
    exposure_method: ExposureMethod | None,
) -> None:
    if pathogen and exposure_method is None:
        raise typer.BadParameter(
            "Missing --exposure-method. Required with --pathogen: use 'point-source' to anchor "
            "the window on the first case or 'case-span' to span first to last case."
        )


def _parse_pairs(values: list[str] | None, option: str) -> dict[str, str]:
    pairs: dict[str, str] = {}
    for value in values or []:
        key, sep, rest = value.partition("=")
        if not sep or not key.strip():
            raise typer.BadParameter(f"Expected KEY=VALUE for {option}, got {value!r}")
        pairs[key.strip()] = rest.strip()
    return pairs


def _parse_populations(values: list[str] | None) -> dict[str, int]:
    populations: dict[str, int] = {}
    for key, raw in _parse_pairs(values, "--population").items():
        try:
            count = int(raw)
        except ValueError:
            raise typer.BadParameter(f"Population for {key!r} must be an integer") from None
        if count < 0:
            raise typer.BadParameter(f"Population for {key!r} must not be negative")
        populations[key] = count
    return populations


@app.command()
def epicurve(
    csv: Path = typer.Option(..., exists=True, readable=True, resolve_path=True),
    date_key: str = typer.Option(..., help="Column holding the onset date."),
    granularity: Granularity | None = typer.Option(None, help="Bin width; defaults to config."),
    stratify_by: str | None = typer.Option(None, help="Column to stack bars by."),
    time_key: str | None = typer.Option(
        None,
        help="Optional time-of-day column for date-only onsets at sub-daily granularity.",
    ),
    pathogen: str | None = typer.Option(None, help="Pathogen for the exposure window."),
    exposure_method: ExposureMethod | None = typer.Option(None),
    out: Path = typer.Option(Path("out"), resolve_path=True),
    config: Path = typer.Option(DEFAULT_CONFIG_PATH, resolve_path=True),
) -> None:
    """Bin onset dates into an epidemic curve."""
    configure_logging()
    _require_exposure_method(pathogen, exposure_method)
    cfg = _load_app_config(config)
    try:
        outputs = run_epicurve(
            csv_path=csv,
            out_dir=out,
            config=cfg,
            date_key=date_key,
            granularity=granularity,
            stratify_key=stratify_by,
            time_key=time_key,
            pathogen=pathogen,
            exposure_method=exposure_method,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    typer.echo(f"Epidemic curve complete. Artifacts: {', '.join(sorted(outputs))}")


@app.command()
def crosstab(
    csv: Path = typer.Option(..., exists=True, readable=True, resolve_path=True),
    row: list[str] = typer.Option(..., help="Row variable; repeat for several tables."),
    col: str = typer.Option(..., help="Column variable shared by every table."),
    denominator: DenominatorPolicy | None = typer.Option(None),
    condensed: list[str] | None = typer.Option(
        None,
        help="ROW=VALUE shows only VALUE for that row variable.",
    ),
    out: Path = typer.Option(Path("out"), resolve_path=True),
    config: Path = typer.Option(DEFAULT_CONFIG_PATH, resolve_path=True),
) -> None:
    """Build two-way tables and export them as annotated CSV."""
    configure_logging()
    cfg = _load_app_config(config)
    condensed_rows = _parse_pairs(condensed, "--condensed")
    try:
        outputs = run_crosstab(
            csv_path=csv,
            out_dir=out,
            config=cfg,
            row_keys=row,
            col_key=col,
            denominator=denominator.value if denominator is not None else None,
            condensed=condensed_rows,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    typer.echo(f"Cross tabulation complete. Export: {outputs['two_way_tables']}")


@app.command("attack-rates")
def attack_rates(
    csv: Path = typer.Option(..., exists=True, readable=True, resolve_path=True),
    case_key: str | None = typer.Option(None, help="Case-definition column; detected if omitted."),
    case_value: list[str] | None = typer.Option(None, help="Value counted as a case."),
    stratify_by: str | None = typer.Option(None),
    population: list[str] | None = typer.Option(None, help="STRATUM=N population override."),
    overall_population: int | None = typer.Option(None, min=0),
    out: Path = typer.Option(Path("out"), resolve_path=True),
    config: Path = typer.Option(DEFAULT_CONFIG_PATH, resolve_path=True),
) -> None:
    """Compute attack rates with Wilson confidence intervals."""
    configure_logging()
    cfg = _load_app_config(config)
    populations = _parse_populations(population)
    try:
        outputs = run_attack_rates(
            csv_path=csv,
            out_dir=out,
            config=cfg,
            case_key=case_key,
            case_values=case_value or None,
            stratify_key=stratify_by,
            populations=populations,
            overall_population=overall_population,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    typer.echo(f"Attack rates complete. Artifacts: {', '.join(sorted(outputs))}")


@app.command()
def narrative(
    csv: Path = typer.Option(..., exists=True, readable=True, resolve_path=True),
    date_key: str = typer.Option(...),
    granularity: Granularity | None = typer.Option(None),
    stratify_by: str | None = typer.Option(None),
    time_key: str | None = typer.Option(None),
    pathogen: str | None = typer.Option(None),
    exposure_method: ExposureMethod | None = typer.Option(None),
    case_key: str | None = typer.Option(None),
    case_value: list[str] | None = typer.Option(None),
    row: list[str] | None = typer.Option(None),
    col: str | None = typer.Option(None),
    title: str | None = typer.Option(None),
    out: Path = typer.Option(Path("out"), resolve_path=True),
    config: Path = typer.Option(DEFAULT_CONFIG_PATH, resolve_path=True),
) -> None:
    """Write a plain-text narrative summary of the outbreak."""
    configure_logging()
    _require_exposure_method(pathogen, exposure_method)
    cfg = _load_app_config(config)
    try:
        path = run_narrative(
            csv_path=csv,
            out_dir=out,
            config=cfg,
            date_key=date_key,
            granularity=granularity,
            stratify_key=stratify_by,
            time_key=time_key,
            pathogen=pathogen,
            exposure_method=exposure_method,
            case_key=case_key,
            case_values=case_value or None,
            row_keys=row or [],
            col_key=col,
            title=title,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    typer.echo(f"Narrative written to: {path}")


if __name__ == "__main__":
    app()
