from __future__ import annotations

import pandas as pd

from outbreak_engine.records import FieldValue

MISSING_LABEL = "Missing/Unknown"
UNKNOWN_LABEL = "Unknown"


def is_missing(value: FieldValue | object) -> bool:
    """Return True for None, NaN/NA and strings that are empty after trimming."""
    if value is None:
        return True
    if pd.api.types.is_scalar(value) and pd.isna(value):
        return True
    return str(value).strip() == ""


def value_key(value: FieldValue | object) -> str:
    """Stable display string for a present value."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def label_or_unknown(value: FieldValue | object, unknown: str = UNKNOWN_LABEL) -> str:
    if is_missing(value):
        return unknown
    return value_key(value)
