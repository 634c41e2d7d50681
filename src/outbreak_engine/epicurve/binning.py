from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable, Mapping, Sequence, Union

import pandas as pd

from outbreak_engine.epicurve.annotations import Annotation
from outbreak_engine.epicurve.dates import (
    Granularity,
    bin_end,
    bin_start,
    format_bin_label,
    next_bin_start,
    parse_date_value,
    parse_record_timestamp,
    previous_bin_start,
    resolve_granularity,
)
from outbreak_engine.missing import label_or_unknown
from outbreak_engine.records import CaseRecord

LOGGER = logging.getLogger(__name__)

DEFAULT_PADDING_BINS = 2

ExternalEvent = Union[Annotation, datetime, date]


@dataclass(frozen=True)
class DateRange:
    start: datetime
    end: datetime


@dataclass(frozen=True)
class TimeBin:
    start: datetime
    end: datetime
    label: str
    records: tuple[CaseRecord, ...] = ()
    strata: Mapping[str, tuple[CaseRecord, ...]] = field(default_factory=dict)

    @property
    def total(self) -> int:
        if self.strata:
            return sum(len(items) for items in self.strata.values())
        return len(self.records)

    def count(self, stratum: str) -> int:
        return len(self.strata.get(stratum, ()))


@dataclass(frozen=True)
class EpiCurveData:
    bins: tuple[TimeBin, ...]
    max_count: int
    strata_keys: tuple[str, ...]
    date_range: DateRange
    excluded_count: int = 0

    @property
    def valid_count(self) -> int:
        return sum(item.total for item in self.bins)


@dataclass(frozen=True)
class DatedRecord:
    record: CaseRecord
    timestamp: datetime


def external_dates(events: Iterable[ExternalEvent] | None) -> list[datetime]:
    """Flatten events into naive local datetimes comparable with record timestamps."""
    raw: list[object] = []
    for event in events or ():
        if isinstance(event, Annotation):
            raw.extend(event.dates())
        else:
            raw.append(event)
    dates: list[datetime] = []
    for value in raw:
        parsed = parse_date_value(value)
        if parsed is None:
            LOGGER.debug("Ignoring unusable event date %r", value)
            continue
        dates.append(parsed)
    return dates


def extend_range(
    start: datetime,
    end: datetime,
    events: Iterable[ExternalEvent] | None,
) -> DateRange:
    """Widen ``[start, end]`` so every annotation/exposure date stays representable."""
    dates = external_dates(events)
    if not dates:
        return DateRange(start=start, end=end)
    extended = DateRange(start=min([start, *dates]), end=max([end, *dates]))
    if extended != DateRange(start=start, end=end):
        LOGGER.debug(
            "Extended epi curve range from %s..%s to %s..%s",
            start,
            end,
            extended.start,
            extended.end,
        )
    return extended


def date_records(
    records: Sequence[CaseRecord],
    date_key: str,
    *,
    time_key: str | None = None,
    granularity: Granularity = Granularity.daily,
) -> tuple[list[DatedRecord], int]:
    attach_time = bool(time_key) and granularity.is_sub_daily
    dated: list[DatedRecord] = []
    excluded = 0
    for record in records:
        timestamp = parse_record_timestamp(
            record[date_key],
            record[time_key] if time_key else None,
            attach_time=attach_time,
        )
        if timestamp is None:
            excluded += 1
            continue
        dated.append(DatedRecord(record=record, timestamp=timestamp))
    return dated, excluded


def _padded_range(
    data_range: DateRange,
    granularity: Granularity,
    events: Iterable[ExternalEvent] | None,
    padding_bins: int,
) -> DateRange:
    start = bin_start(data_range.start, granularity)
    end = bin_end(data_range.end, granularity)
    for _ in range(padding_bins):
        start = previous_bin_start(start, granularity)
        end = next_bin_start(end, granularity)

    dates = external_dates(events)
    if any(value < start for value in dates):
        start = previous_bin_start(start, granularity)
    if any(value >= end for value in dates):
        end = next_bin_start(end, granularity)
    return DateRange(start=start, end=end)


def build_epicurve(
    records: Sequence[CaseRecord],
    date_key: str,
    granularity: Granularity | str = Granularity.daily,
    stratify_key: str | None = None,
    annotations: Iterable[ExternalEvent] | None = None,
    time_key: str | None = None,
    *,
    padding_bins: int = DEFAULT_PADDING_BINS,
) -> EpiCurveData:
    """Bucket records into contiguous half-open time bins.

    Records without a parseable date are left out and counted in
    ``excluded_count``. The range covers the data, any annotation dates, and
    ``padding_bins`` empty bins on each side.
    """
    resolved = resolve_granularity(granularity)
    events = list(annotations or ())
    dated, excluded = date_records(records, date_key, time_key=time_key, granularity=resolved)
    if excluded:
        LOGGER.debug("Excluded %d records without a valid %r date", excluded, date_key)

    if not dated:
        now = datetime.now()
        return EpiCurveData(
            bins=(),
            max_count=1,
            strata_keys=(),
            date_range=DateRange(start=now, end=now),
            excluded_count=excluded,
        )

    timestamps = [item.timestamp for item in dated]
    data_range = extend_range(min(timestamps), max(timestamps), events)
    date_range = _padded_range(data_range, resolved, events, max(0, int(padding_bins)))

    starts: list[datetime] = []
    cursor = date_range.start
    while cursor < date_range.end:
        starts.append(cursor)
        cursor = next_bin_start(cursor, resolved)

    step = resolved.step
    members: list[list[CaseRecord]] = [[] for _ in starts]
    for item in dated:
        members[int((item.timestamp - date_range.start) // step)].append(item.record)

    bins: list[TimeBin] = []
    observed_strata: set[str] = set()
    for start, bin_records in zip(starts, members):
        strata: dict[str, tuple[CaseRecord, ...]] = {}
        if stratify_key:
            grouped: dict[str, list[CaseRecord]] = {}
            for record in bin_records:
                grouped.setdefault(label_or_unknown(record[stratify_key]), []).append(record)
            strata = {key: tuple(values) for key, values in grouped.items()}
            observed_strata.update(strata)
        bins.append(
            TimeBin(
                start=start,
                end=next_bin_start(start, resolved),
                label=format_bin_label(start, resolved),
                records=tuple(bin_records),
                strata=strata,
            )
        )

    return EpiCurveData(
        bins=tuple(bins),
        max_count=max([1, *(item.total for item in bins)]),
        strata_keys=tuple(sorted(observed_strata)),
        date_range=date_range,
        excluded_count=excluded,
    )


def epicurve_table(data: EpiCurveData) -> pd.DataFrame:
    rows = []
    for item in data.bins:
        row: dict[str, object] = {
            "bin_start": item.start,
            "bin_end": item.end,
            "label": item.label,
            "total": item.total,
        }
        for key in data.strata_keys:
            row[f"stratum__{key}"] = item.count(key)
        rows.append(row)
    columns = ["bin_start", "bin_end", "label", "total"]
    columns += [f"stratum__{key}" for key in data.strata_keys]
    return pd.DataFrame(rows, columns=columns)
