from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
import pandas as pd

from outbreak_engine.config import AppConfig
from outbreak_engine.epicurve.dates import parse_date_value
from outbreak_engine.missing import is_missing, value_key
from outbreak_engine.records import CaseRecord, ColumnDescriptor, ColumnType, FieldValue

LOGGER = logging.getLogger(__name__)


def _scalar(value: object) -> FieldValue:
    if is_missing(value):
        return None
    if isinstance(value, np.generic):
        return value.item()  # type: ignore[no-any-return]
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    return value  # type: ignore[return-value]


def infer_column_type(series: pd.Series) -> ColumnType:
    present = series.dropna()
    if pd.api.types.is_bool_dtype(series):
        return "boolean"
    if pd.api.types.is_numeric_dtype(series):
        return "number"
    if pd.api.types.is_datetime64_any_dtype(series):
        return "date"
    values = [value for value in present if not is_missing(value)]
    if values and all(
        isinstance(value, str) and parse_date_value(value) is not None for value in values
    ):
        return "date"
    return "text"


def infer_columns(df: pd.DataFrame, id_column: str = "id") -> list[ColumnDescriptor]:
    return [
        ColumnDescriptor(key=str(column), label=str(column), type=infer_column_type(df[column]))
        for column in df.columns
        if str(column) != id_column
    ]


def frame_to_records(df: pd.DataFrame, id_column: str = "id") -> list[CaseRecord]:
    """Convert a frame to records; rows without an id get their 1-based position."""
    has_ids = id_column in df.columns
    records: list[CaseRecord] = []
    for position, row in enumerate(df.to_dict(orient="records"), start=1):
        raw_id = row.pop(id_column, None) if has_ids else None
        record_id = str(position) if is_missing(raw_id) else value_key(_scalar(raw_id))
        fields = {str(key): _scalar(value) for key, value in row.items()}
        records.append(CaseRecord(id=record_id, fields=fields))
    return records


def load_case_frame(csv_path: Path, config: AppConfig | None = None) -> pd.DataFrame:
    encoding = config.input.encoding if config is not None else "utf-8-sig"
    # utf-8-sig strips BOM-prefixed headers found in spreadsheet exports.
    df = pd.read_csv(csv_path, encoding=encoding)
    df.columns = [str(column).strip() for column in df.columns]
    LOGGER.debug("Loaded %d rows and %d columns from %s", len(df), len(df.columns), csv_path)
    return df


def load_line_list(
    csv_path: Path,
    config: AppConfig | None = None,
) -> tuple[list[CaseRecord], list[ColumnDescriptor]]:
    """Load a line-list CSV as records plus inferred column descriptors."""
    id_column = config.input.id_column if config is not None else "id"
    df = load_case_frame(csv_path, config)
    return frame_to_records(df, id_column=id_column), infer_columns(df, id_column=id_column)


def require_columns(columns: list[ColumnDescriptor], keys: list[str | None]) -> None:
    known = {column.key for column in columns}
    for key in keys:
        if key and key not in known:
            raise ValueError(f"Line list missing column: {key}")
