from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator

from outbreak_engine.attack_rates import (
    CASE_COLUMN_KEYWORDS,
    CASE_VALUE_KEYWORDS,
    MAX_CASE_CATEGORIES,
)
from outbreak_engine.crosstab.eligibility import MAX_CATEGORIES, MIN_CATEGORIES
from outbreak_engine.epicurve.binning import DEFAULT_PADDING_BINS
from outbreak_engine.proportion_stats import DEFAULT_CONFIDENCE, DEFAULT_SMALL_CELL_THRESHOLD


class InputConfig(BaseModel):
    id_column: str = "id"
    encoding: str = "utf-8-sig"


class EpiCurveConfig(BaseModel):
    granularity: Literal["hourly", "6hour", "12hour", "daily", "weekly-cdc", "weekly-iso"] = (
        "daily"
    )
    padding_bins: int = Field(default=DEFAULT_PADDING_BINS, ge=0, le=10)


class CrossTabConfig(BaseModel):
    denominator: Literal["total", "valid"] = "valid"
    show_row_percent: bool = True
    show_col_percent: bool = True
    show_total_percent: bool = False
    small_cell_threshold: int = Field(default=DEFAULT_SMALL_CELL_THRESHOLD, ge=1)
    min_categories: int = Field(default=MIN_CATEGORIES, ge=1)
    max_categories: int = Field(default=MAX_CATEGORIES, ge=2)
    normalize_grand_total: bool = False

    @model_validator(mode="after")
    def _check_category_bounds(self) -> "CrossTabConfig":
        if self.min_categories > self.max_categories:
            raise ValueError("crosstab.min_categories must not exceed crosstab.max_categories")
        return self


class AttackRatesConfig(BaseModel):
    confidence: float = Field(default=DEFAULT_CONFIDENCE, gt=0.0, lt=1.0)
    proxy_denominator: bool = True
    case_column_keywords: list[str] = Field(default_factory=lambda: list(CASE_COLUMN_KEYWORDS))
    case_value_keywords: list[str] = Field(default_factory=lambda: list(CASE_VALUE_KEYWORDS))
    max_categories: int = Field(default=MAX_CASE_CATEGORIES, ge=2)


class OutputsConfig(BaseModel):
    tables_format: Literal["csv", "parquet"] = "csv"


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    input: InputConfig = Field(default_factory=InputConfig)
    epicurve: EpiCurveConfig = Field(default_factory=EpiCurveConfig)
    crosstab: CrossTabConfig = Field(default_factory=CrossTabConfig)
    attack_rates: AttackRatesConfig = Field(default_factory=AttackRatesConfig)
    outputs: OutputsConfig = Field(default_factory=OutputsConfig)


DEFAULT_CONFIG_PATH = Path("configs/default.yaml")
TABLES_FORMAT_ENV = "OUTBREAK_ENGINE_TABLES_FORMAT"


def load_config(path: Path | None) -> AppConfig:
    """Load YAML config; a missing file yields defaults."""
    data: dict[str, object] = {}
    if path is not None and path.exists():
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}

    env_format = os.getenv(TABLES_FORMAT_ENV)
    if env_format:
        outputs = dict(data.get("outputs") or {})  # type: ignore[call-overload]
        outputs["tables_format"] = env_format.strip().lower()
        data["outputs"] = outputs
    return AppConfig.model_validate(data)
