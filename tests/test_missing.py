from __future__ import annotations

import math

import numpy as np
import pandas as pd
import pytest

from outbreak_engine.missing import MISSING_LABEL, is_missing, label_or_unknown, value_key
from outbreak_engine.records import CaseRecord, ColumnDescriptor, column_label, make_record


def test_is_missing_treats_blank_and_nan_values_as_missing() -> None:
    assert is_missing(None)
    assert is_missing("")
    assert is_missing("   ")
    assert is_missing(math.nan)
    assert is_missing(pd.NA)
    assert is_missing(pd.NaT)
    assert is_missing(np.float64("nan"))
    assert is_missing(np.datetime64("NaT"))


def test_is_missing_keeps_falsy_values_that_carry_information() -> None:
    assert not is_missing(0)
    assert not is_missing(False)
    assert not is_missing("No")


def test_value_key_formats_booleans_and_integral_floats() -> None:
    assert value_key(True) == "true"
    assert value_key(False) == "false"
    assert value_key(3.0) == "3"
    assert value_key(2.5) == "2.5"
    assert value_key("Yes") == "Yes"


def test_label_or_unknown_uses_placeholder_for_missing() -> None:
    assert label_or_unknown(None) == "Unknown"
    assert label_or_unknown("", MISSING_LABEL) == "Missing/Unknown"
    assert label_or_unknown("F") == "F"


def test_case_record_exposes_id_and_returns_none_for_absent_fields() -> None:
    record = make_record(7, ill="Yes")

    assert record.id == "7"
    assert record["id"] == "7"
    assert record["ill"] == "Yes"
    assert record["missing_field"] is None
    assert list(record.keys()) == ["id", "ill"]
    assert record == CaseRecord(id="7", fields={"ill": "Yes"})


def test_column_descriptor_rejects_unknown_types() -> None:
    with pytest.raises(ValueError, match="Unsupported column type"):
        ColumnDescriptor(key="x", label="X", type="json")  # type: ignore[arg-type]


def test_column_label_falls_back_to_key() -> None:
    columns = [ColumnDescriptor(key="ill", label="Ill?", type="text")]

    assert column_label(columns, "ill") == "Ill?"
    assert column_label(columns, "sex") == "sex"
