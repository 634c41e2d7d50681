from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from types import MappingProxyType
from typing import Iterator, Literal, Mapping, Union

FieldValue = Union[int, float, str, bool, date, datetime, None]
ColumnType = Literal["number", "text", "date", "boolean"]

ALLOWED_COLUMN_TYPES = frozenset({"number", "text", "date", "boolean"})


@dataclass(frozen=True)
class CaseRecord:
    """One line-list row: a stable id plus a read-only field map."""

    id: str
    fields: Mapping[str, FieldValue] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "id", str(self.id))
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))

    def __getitem__(self, key: str) -> FieldValue:
        if key == "id":
            return self.id
        return self.fields.get(key)

    def get(self, key: str, default: FieldValue = None) -> FieldValue:
        value = self[key]
        return default if value is None else value

    def keys(self) -> Iterator[str]:
        yield "id"
        yield from self.fields.keys()

    def __hash__(self) -> int:
        return hash(self.id)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CaseRecord):
            return NotImplemented
        return self.id == other.id and dict(self.fields) == dict(other.fields)


@dataclass(frozen=True)
class ColumnDescriptor:
    key: str
    label: str
    type: ColumnType = "text"

    def __post_init__(self) -> None:
        if self.type not in ALLOWED_COLUMN_TYPES:
            raise ValueError(f"Unsupported column type: {self.type}")


def make_record(record_id: object, **fields: FieldValue) -> CaseRecord:
    return CaseRecord(id=str(record_id), fields=fields)


def column_label(columns: list[ColumnDescriptor] | None, key: str) -> str:
    for column in columns or []:
        if column.key == key:
            return column.label
    return key
