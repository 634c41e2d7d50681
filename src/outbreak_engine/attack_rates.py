from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Mapping, Sequence

import pandas as pd

from outbreak_engine.missing import UNKNOWN_LABEL, is_missing, label_or_unknown, value_key
from outbreak_engine.proportion_stats import (
    DEFAULT_CONFIDENCE,
    wilson_half_width,
    wilson_score_interval,
)
from outbreak_engine.records import CaseRecord, ColumnDescriptor

LOGGER = logging.getLogger(__name__)

OVERALL_LABEL = "Overall"
TOTAL_LABEL = "Total"
CASE_COLUMN_KEYWORDS = ("ill", "case_status", "case", "status", "outcome")
CASE_VALUE_KEYWORDS = ("yes", "confirmed", "probable", "suspected", "positive", "case")
IDENTIFIER_KEYS = frozenset({"id", "case_id", "participant_id"})
MAX_CASE_CATEGORIES = 20

_NUMERIC_PREFIX = re.compile(r"^\s*[-+]?(\d+(\.\d*)?|\.\d+)")


@dataclass(frozen=True)
class AttackRateStratum:
    label: str
    cases: int
    population: int | None
    rate: float | None
    ci_lower: float | None
    ci_upper: float | None


@dataclass(frozen=True)
class AttackRateResult:
    case_key: str
    case_values: tuple[str, ...]
    stratify_key: str | None
    strata: tuple[AttackRateStratum, ...]
    total: AttackRateStratum

    @property
    def has_rates(self) -> bool:
        return any(stratum.rate is not None for stratum in self.strata)


def _stratum(
    label: str,
    cases: int,
    population: int | None,
    confidence: float,
) -> AttackRateStratum:
    if population is None or population <= 0:
        return AttackRateStratum(label, cases, population, None, None, None)
    lower, upper = wilson_score_interval(cases, population, confidence=confidence)
    return AttackRateStratum(label, cases, population, cases / population, lower, upper)


def _numeric_prefix(text: str) -> float | None:
    match = _NUMERIC_PREFIX.match(text)
    return float(match.group(0)) if match else None


def stratum_sort_key(label: str) -> tuple[int, float, str]:
    """Numeric-looking labels ("5", "10-19") sort by number, the rest alphabetically."""
    number = _numeric_prefix(label)
    if number is not None:
        return (0, number, label.casefold())
    return (1, 0.0, label.casefold())


def is_case(record: CaseRecord, case_key: str, case_values: frozenset[str]) -> bool:
    if not case_key or not case_values:
        return False
    raw = record[case_key]
    return ("" if is_missing(raw) else value_key(raw)) in case_values


def compute_attack_rates(
    records: Sequence[CaseRecord],
    case_key: str,
    case_values: Iterable[str],
    stratify_key: str | None = None,
    populations: Mapping[str, int | None] | None = None,
    overall_population: int | None = None,
    *,
    confidence: float = DEFAULT_CONFIDENCE,
    proxy_denominator: bool = True,
) -> AttackRateResult:
    """Attack rates with Wilson intervals, overall or per stratum.

    A stratum's population is the caller's override when given, otherwise the
    number of records in the stratum. With ``proxy_denominator=False`` strata
    without an override have no population and therefore no rate.
    """
    selected = frozenset(str(value) for value in case_values)
    overrides = populations or {}

    if not stratify_key:
        cases = sum(1 for record in records if is_case(record, case_key, selected))
        population = overall_population
        if population is None and proxy_denominator:
            population = len(records)
        overall = _stratum(OVERALL_LABEL, cases, population, confidence)
        return AttackRateResult(
            case_key=case_key,
            case_values=tuple(sorted(selected)),
            stratify_key=None,
            strata=(overall,),
            total=overall,
        )

    counts: dict[str, list[int]] = {}
    for record in records:
        label = label_or_unknown(record[stratify_key], UNKNOWN_LABEL)
        tally = counts.setdefault(label, [0, 0])
        tally[1] += 1
        if is_case(record, case_key, selected):
            tally[0] += 1

    strata: list[AttackRateStratum] = []
    for label in sorted(counts, key=stratum_sort_key):
        cases, record_count = counts[label]
        population = overrides.get(label)
        if population is None and proxy_denominator:
            population = record_count
        strata.append(_stratum(label, cases, population, confidence))

    total_cases = sum(stratum.cases for stratum in strata)
    total_population: int | None = None
    if all(stratum.population is not None for stratum in strata):
        total_population = sum(int(stratum.population or 0) for stratum in strata)
    total = _stratum(TOTAL_LABEL, total_cases, total_population, confidence)
    return AttackRateResult(
        case_key=case_key,
        case_values=tuple(sorted(selected)),
        stratify_key=stratify_key,
        strata=tuple(strata),
        total=total,
    )


def attack_rate_table(
    result: AttackRateResult,
    confidence: float = DEFAULT_CONFIDENCE,
) -> pd.DataFrame:
    rows = list(result.strata)
    if result.stratify_key:
        rows.append(result.total)
    table = pd.DataFrame(
        [
            {
                "stratum": stratum.label,
                "cases": stratum.cases,
                "population": stratum.population,
                "attack_rate": stratum.rate,
                "ci_lower": stratum.ci_lower,
                "ci_upper": stratum.ci_upper,
            }
            for stratum in rows
        ],
        columns=["stratum", "cases", "population", "attack_rate", "ci_lower", "ci_upper"],
    )
    table["ci_half_width"] = wilson_half_width(
        successes=table["cases"],
        totals=table["population"],
        confidence=confidence,
    )
    table.loc[table["attack_rate"].isna(), "ci_half_width"] = float("nan")
    return table


def format_rate(value: float | None, decimals: int = 2) -> str:
    if value is None:
        return "-"
    return f"{value * 100:.{decimals}f}%"


def format_ci(lower: float | None, upper: float | None) -> str:
    if lower is None or upper is None:
        return "-"
    return f"{lower * 100:.2f}-{upper * 100:.2f}%"


def is_case_definition_column(
    column: ColumnDescriptor,
    records: Sequence[CaseRecord],
    *,
    max_categories: int = MAX_CASE_CATEGORIES,
) -> bool:
    """Categorical columns usable as a case definition or stratifier."""
    key = column.key.lower()
    if column.type == "number" and "age" not in key:
        return False
    if column.type == "date":
        return False
    if column.key in IDENTIFIER_KEYS:
        return False
    if "latitude" in column.key or "longitude" in column.key:
        return False
    distinct = len({repr(record[column.key]) for record in records})
    return 2 <= distinct <= max_categories


def case_definition_columns(
    columns: Sequence[ColumnDescriptor],
    records: Sequence[CaseRecord],
    *,
    max_categories: int = MAX_CASE_CATEGORIES,
) -> list[ColumnDescriptor]:
    return [
        column
        for column in columns
        if is_case_definition_column(column, records, max_categories=max_categories)
    ]


@dataclass(frozen=True)
class CaseDefinitionCandidate:
    key: str
    matched_keyword: str
    keyword_rank: int
    case_values: tuple[str, ...]


@dataclass(frozen=True)
class CaseDefinitionGuess:
    best: CaseDefinitionCandidate | None
    alternates: tuple[CaseDefinitionCandidate, ...]


def suggest_case_values(
    records: Sequence[CaseRecord],
    key: str,
    value_keywords: Sequence[str] = CASE_VALUE_KEYWORDS,
) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for record in records:
        raw = record[key]
        if is_missing(raw):
            continue
        text = value_key(raw)
        if any(keyword in text.lower() for keyword in value_keywords):
            seen.setdefault(text, None)
    return tuple(seen)


def detect_case_definition(
    columns: Sequence[ColumnDescriptor],
    records: Sequence[CaseRecord],
    *,
    column_keywords: Sequence[str] = CASE_COLUMN_KEYWORDS,
    value_keywords: Sequence[str] = CASE_VALUE_KEYWORDS,
    max_categories: int = MAX_CASE_CATEGORIES,
) -> CaseDefinitionGuess:
    """Rank plausible case-definition columns.

    Candidates whose values match a case keyword come first, then earlier
    column keywords, then column order.
    """
    candidates: list[CaseDefinitionCandidate] = []
    for column in case_definition_columns(columns, records, max_categories=max_categories):
        key = column.key.lower()
        rank = next(
            (index for index, keyword in enumerate(column_keywords) if keyword in key),
            None,
        )
        if rank is None:
            continue
        candidates.append(
            CaseDefinitionCandidate(
                key=column.key,
                matched_keyword=column_keywords[rank],
                keyword_rank=rank,
                case_values=suggest_case_values(records, column.key, value_keywords),
            )
        )

    ranked = sorted(
        candidates,
        key=lambda candidate: (not candidate.case_values, candidate.keyword_rank),
    )
    if not ranked:
        LOGGER.debug("No case-definition column matched keywords %s", ", ".join(column_keywords))
        return CaseDefinitionGuess(best=None, alternates=())
    return CaseDefinitionGuess(best=ranked[0], alternates=tuple(ranked[1:]))
