from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Iterable, Literal, Protocol, Union

from outbreak_engine.epicurve.dates import parse_date_value

AnnotationSource = Literal["auto", "manual"]

ANNOTATION_CATEGORIES: dict[str, dict[str, Any]] = {
    "case": {
        "label": "Case Milestones",
        "types": (
            ("first-case", "First case"),
            ("last-case", "Last case"),
            ("index-case", "Index case"),
        ),
    },
    "exposure": {
        "label": "Exposure",
        "types": (
            ("exposure", "Exposure event"),
            ("incubation", "Incubation period"),
        ),
    },
    "response": {
        "label": "Response",
        "types": (
            ("detection", "Outbreak detected"),
            ("notification", "Public health notified"),
            ("intervention", "Intervention"),
            ("control-lifted", "Control measure lifted"),
        ),
    },
    "other": {
        "label": "Other",
        "types": (("other", "Other event"),),
    },
}

ANNOTATION_STORE_KEY = "annotations"


def annotation_category(annotation_type: str) -> str:
    for category_key, category in ANNOTATION_CATEGORIES.items():
        if any(value == annotation_type for value, _ in category["types"]):
            return category_key
    return "other"


def default_annotation_label(annotation_type: str) -> str:
    for category in ANNOTATION_CATEGORIES.values():
        for value, label in category["types"]:
            if value == annotation_type:
                return str(label)
    return annotation_type


@dataclass(frozen=True)
class Annotation:
    id: str
    type: str
    date: datetime
    label: str
    category: str = "other"
    end_date: datetime | None = None
    description: str | None = None
    source: AnnotationSource = "manual"

    def dates(self) -> tuple[datetime, ...]:
        if self.end_date is None:
            return (self.date,)
        return (self.date, self.end_date)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "type": self.type,
            "category": self.category,
            "date": self.date.isoformat(),
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "label": self.label,
            "description": self.description,
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "Annotation":
        start = parse_date_value(data.get("date"))
        if start is None:
            raise ValueError(f"Annotation {data.get('id')!r} has no valid date")
        annotation_type = str(data.get("type") or "other")
        return cls(
            id=str(data.get("id") or uuid.uuid4()),
            type=annotation_type,
            category=str(data.get("category") or annotation_category(annotation_type)),
            date=start,
            end_date=parse_date_value(data.get("end_date")),
            label=str(data.get("label") or default_annotation_label(annotation_type)),
            description=str(data["description"]) if data.get("description") else None,
            source="auto" if data.get("source") == "auto" else "manual",
        )


def new_annotation(
    annotation_type: str,
    date: object,
    *,
    label: str | None = None,
    end_date: object = None,
    description: str | None = None,
    incubation_days: tuple[float, float] | None = None,
    annotation_id: str | None = None,
    source: AnnotationSource = "manual",
) -> Annotation:
    """Build a validated annotation from form-style inputs.

    Incubation annotations carry ``(min_days, max_days)``; their end date is the
    start date plus the maximum incubation.
    """
    start = parse_date_value(date)
    if start is None:
        raise ValueError(f"Invalid annotation date: {date!r}")
    resolved_end = parse_date_value(end_date)
    resolved_label = label or default_annotation_label(annotation_type)
    if annotation_type == "incubation" and incubation_days is not None:
        min_days, max_days = incubation_days
        resolved_end = start + timedelta(days=float(max_days))
        resolved_label = label or f"Incubation period ({min_days:g}-{max_days:g} days)"
    return Annotation(
        id=annotation_id or str(uuid.uuid4()),
        type=annotation_type,
        category=annotation_category(annotation_type),
        date=start,
        end_date=resolved_end,
        label=resolved_label,
        description=description or None,
        source=source,
    )


@dataclass(frozen=True)
class AddAnnotation:
    annotation: Annotation


@dataclass(frozen=True)
class UpdateAnnotation:
    annotation: Annotation


@dataclass(frozen=True)
class RemoveAnnotation:
    annotation_id: str


AnnotationCommand = Union[AddAnnotation, UpdateAnnotation, RemoveAnnotation]


def apply_annotation_command(
    annotations: Iterable[Annotation],
    command: AnnotationCommand,
) -> tuple[Annotation, ...]:
    """Return a new annotation tuple with ``command`` applied; inputs are untouched."""
    current = tuple(annotations)
    if isinstance(command, AddAnnotation):
        if any(item.id == command.annotation.id for item in current):
            raise ValueError(f"Annotation already exists: {command.annotation.id}")
        return current + (command.annotation,)
    if isinstance(command, UpdateAnnotation):
        if not any(item.id == command.annotation.id for item in current):
            raise KeyError(command.annotation.id)
        return tuple(
            command.annotation if item.id == command.annotation.id else item for item in current
        )
    if isinstance(command, RemoveAnnotation):
        return tuple(item for item in current if item.id != command.annotation_id)
    raise TypeError(f"Unsupported annotation command: {type(command).__name__}")


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class InMemoryKeyValueStore:
    def __init__(self) -> None:
        self._items: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._items.get(key)

    def set(self, key: str, value: str) -> None:
        self._items[key] = value

    def delete(self, key: str) -> None:
        self._items.pop(key, None)


def _store_key(dataset_id: str) -> str:
    return f"{ANNOTATION_STORE_KEY}:{dataset_id}"


def save_annotations(
    store: KeyValueStore,
    dataset_id: str,
    annotations: Iterable[Annotation],
) -> None:
    manual = [item.to_dict() for item in annotations if item.source == "manual"]
    if not manual:
        store.delete(_store_key(dataset_id))
        return
    store.set(_store_key(dataset_id), json.dumps(manual, sort_keys=True))


def load_annotations(store: KeyValueStore, dataset_id: str) -> tuple[Annotation, ...]:
    payload = store.get(_store_key(dataset_id))
    if not payload:
        return ()
    return tuple(Annotation.from_dict(item) for item in json.loads(payload))
