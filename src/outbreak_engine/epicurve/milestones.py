from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Mapping, Sequence

from outbreak_engine.epicurve.annotations import Annotation, annotation_category
from outbreak_engine.epicurve.binning import EpiCurveData
from outbreak_engine.epicurve.dates import parse_date_value
from outbreak_engine.records import CaseRecord

LOGGER = logging.getLogger(__name__)

DETECTION_TARGET_DAYS = 7
NOTIFICATION_TARGET_DAYS = 1
RESPONSE_TARGET_DAYS = 7


@dataclass(frozen=True)
class IncubationPeriod:
    min: float
    max: float
    typical: float

    def __post_init__(self) -> None:
        if self.min < 0 or self.max < self.min:
            raise ValueError(f"Invalid incubation bounds: min={self.min}, max={self.max}")


# Days from exposure to symptom onset.
PATHOGEN_INCUBATION: dict[str, IncubationPeriod] = {
    "Salmonella": IncubationPeriod(0.5, 3, 1),
    "E. coli O157:H7": IncubationPeriod(1, 10, 3.5),
    "Norovirus": IncubationPeriod(0.5, 2, 1.25),
    "Campylobacter": IncubationPeriod(2, 5, 3),
    "Listeria": IncubationPeriod(3, 70, 21),
    "Hepatitis A": IncubationPeriod(15, 50, 28),
    "Shigella": IncubationPeriod(1, 3, 2),
    "Vibrio": IncubationPeriod(0.5, 5, 1),
    "Cryptosporidium": IncubationPeriod(2, 10, 7),
    "Giardia": IncubationPeriod(7, 14, 10),
    "Cyclospora": IncubationPeriod(7, 14, 7),
    "Staphylococcus aureus": IncubationPeriod(0.04, 0.25, 0.125),
    "Clostridium perfringens": IncubationPeriod(0.33, 0.75, 0.5),
    "Bacillus cereus (emetic)": IncubationPeriod(0.04, 0.25, 0.125),
    "Bacillus cereus (diarrheal)": IncubationPeriod(0.33, 0.67, 0.5),
    "Botulism": IncubationPeriod(0.5, 5, 1.5),
    "Cholera": IncubationPeriod(0.08, 5, 2),
    "Typhoid": IncubationPeriod(7, 21, 14),
    "Legionella": IncubationPeriod(2, 10, 5),
    "Influenza": IncubationPeriod(1, 4, 2),
    "COVID-19": IncubationPeriod(2, 14, 5),
    "Measles": IncubationPeriod(10, 14, 12),
    "Chickenpox": IncubationPeriod(14, 21, 16),
    "Mumps": IncubationPeriod(12, 25, 17),
}


class ExposureMethod(str, Enum):
    """How the exposure window is anchored to the case dates.

    ``point_source`` anchors both bounds to the first case. ``case_span`` runs
    from the last case minus the maximum incubation to the first case minus the
    minimum incubation, and can produce an inverted window for long outbreaks.
    """

    point_source = "point-source"
    case_span = "case-span"


@dataclass(frozen=True)
class ExposureWindow:
    start: datetime
    end: datetime
    pathogen: str
    incubation: IncubationPeriod
    method: ExposureMethod

    @property
    def is_inverted(self) -> bool:
        return self.start > self.end

    def as_annotation(self) -> Annotation:
        return Annotation(
            id="__exposure_window__",
            type="exposure",
            category=annotation_category("exposure"),
            date=self.start,
            end_date=self.end,
            label="Exposure Window",
            source="auto",
        )


@dataclass(frozen=True)
class CaseMilestones:
    first_case: datetime | None
    last_case: datetime | None

    def as_annotations(self) -> tuple[Annotation, ...]:
        items: list[Annotation] = []
        if self.first_case is not None:
            items.append(
                Annotation(
                    id="__first_case__",
                    type="first-case",
                    category=annotation_category("first-case"),
                    date=self.first_case,
                    label="First case",
                    source="auto",
                )
            )
        if self.last_case is not None:
            items.append(
                Annotation(
                    id="__last_case__",
                    type="last-case",
                    category=annotation_category("last-case"),
                    date=self.last_case,
                    label="Last case",
                    source="auto",
                )
            )
        return tuple(items)


def _valid_dates(records: Sequence[CaseRecord], date_key: str) -> list[datetime]:
    dates = (parse_date_value(record[date_key]) for record in records)
    return [value for value in dates if value is not None]


def find_first_case_date(records: Sequence[CaseRecord], date_key: str) -> datetime | None:
    dates = _valid_dates(records, date_key)
    return min(dates) if dates else None


def find_last_case_date(records: Sequence[CaseRecord], date_key: str) -> datetime | None:
    dates = _valid_dates(records, date_key)
    return max(dates) if dates else None


def detect_milestones(
    records: Sequence[CaseRecord],
    date_key: str,
    curve: EpiCurveData | None = None,
) -> CaseMilestones:
    """First/last case dates; an empty curve short-circuits to no milestones."""
    if curve is not None and not curve.bins:
        return CaseMilestones(first_case=None, last_case=None)
    dates = _valid_dates(records, date_key)
    if not dates:
        return CaseMilestones(first_case=None, last_case=None)
    return CaseMilestones(first_case=min(dates), last_case=max(dates))


def resolve_exposure_method(value: ExposureMethod | str) -> ExposureMethod:
    if isinstance(value, ExposureMethod):
        return value
    try:
        return ExposureMethod(str(value))
    except ValueError:
        allowed = ", ".join(item.value for item in ExposureMethod)
        raise ValueError(
            f"Unsupported exposure method: {value!r} (expected one of {allowed})"
        ) from None


def estimate_exposure_window(
    records: Sequence[CaseRecord],
    date_key: str,
    pathogen: str | None,
    *,
    method: ExposureMethod | str,
    incubation_table: Mapping[str, IncubationPeriod] | None = None,
) -> ExposureWindow | None:
    """Estimate the calendar window of exposure from incubation bounds.

    Returns None for an unknown pathogen or when no record has a valid date.
    """
    resolved_method = resolve_exposure_method(method)
    table = PATHOGEN_INCUBATION if incubation_table is None else incubation_table
    if not pathogen or pathogen not in table:
        return None
    milestones = detect_milestones(records, date_key)
    if milestones.first_case is None or milestones.last_case is None:
        return None

    incubation = table[pathogen]
    anchor = (
        milestones.last_case
        if resolved_method is ExposureMethod.case_span
        else milestones.first_case
    )
    window = ExposureWindow(
        start=anchor - timedelta(days=math.ceil(incubation.max)),
        end=milestones.first_case - timedelta(days=math.floor(incubation.min)),
        pathogen=pathogen,
        incubation=incubation,
        method=resolved_method,
    )
    if window.is_inverted:
        LOGGER.warning(
            "Exposure window for %s is inverted (%s > %s); case span exceeds incubation range",
            pathogen,
            window.start.date(),
            window.end.date(),
        )
    return window


@dataclass(frozen=True)
class SevenOneSevenResult:
    """Timeliness against the 7-1-7 targets: detect in 7, notify in 1, respond in 7."""

    days_to_detection: int | None
    days_to_notification: int | None
    days_to_response: int | None

    @property
    def detection_met(self) -> bool | None:
        return _within(self.days_to_detection, DETECTION_TARGET_DAYS)

    @property
    def notification_met(self) -> bool | None:
        return _within(self.days_to_notification, NOTIFICATION_TARGET_DAYS)

    @property
    def response_met(self) -> bool | None:
        return _within(self.days_to_response, RESPONSE_TARGET_DAYS)

    @property
    def all_met(self) -> bool | None:
        flags = (self.detection_met, self.notification_met, self.response_met)
        if any(flag is None for flag in flags):
            return None
        return all(flags)


def _within(days: int | None, target: int) -> bool | None:
    if days is None:
        return None
    return days <= target


def _as_day(value: object) -> date | None:
    parsed = parse_date_value(value)
    return parsed.date() if parsed is not None else None


def _delta_days(earlier: date | None, later: date | None) -> int | None:
    if earlier is None or later is None:
        return None
    return (later - earlier).days


def evaluate_seven_one_seven(
    outbreak_start: object,
    detection: object,
    notification: object,
    response_complete: object,
) -> SevenOneSevenResult:
    start_day = _as_day(outbreak_start)
    detection_day = _as_day(detection)
    notification_day = _as_day(notification)
    response_day = _as_day(response_complete)
    return SevenOneSevenResult(
        days_to_detection=_delta_days(start_day, detection_day),
        days_to_notification=_delta_days(detection_day, notification_day),
        days_to_response=_delta_days(notification_day, response_day),
    )
