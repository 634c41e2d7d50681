from __future__ import annotations

import re
import warnings
from datetime import date, datetime, time, timedelta
from enum import Enum

import pandas as pd

from outbreak_engine.missing import is_missing

ISO_DATE_ONLY = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
TIME_OF_DAY = re.compile(
    r"^(?P<hour>\d{1,2}):(?P<minute>\d{2})(?::(?P<second>\d{2}))?\s*(?P<meridiem>[AaPp][Mm])?$"
)
MONTH_ABBREVIATIONS = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)


class Granularity(str, Enum):
    hourly = "hourly"
    six_hour = "6hour"
    twelve_hour = "12hour"
    daily = "daily"
    weekly_cdc = "weekly-cdc"
    weekly_iso = "weekly-iso"

    @property
    def is_sub_daily(self) -> bool:
        return self in SUB_DAILY

    @property
    def step(self) -> timedelta:
        return STEPS[self]


SUB_DAILY = frozenset({Granularity.hourly, Granularity.six_hour, Granularity.twelve_hour})
STEPS = {
    Granularity.hourly: timedelta(hours=1),
    Granularity.six_hour: timedelta(hours=6),
    Granularity.twelve_hour: timedelta(hours=12),
    Granularity.daily: timedelta(days=1),
    Granularity.weekly_cdc: timedelta(days=7),
    Granularity.weekly_iso: timedelta(days=7),
}


def resolve_granularity(value: Granularity | str) -> Granularity:
    if isinstance(value, Granularity):
        return value
    try:
        return Granularity(str(value))
    except ValueError:
        allowed = ", ".join(item.value for item in Granularity)
        raise ValueError(
            f"Unsupported granularity: {value!r} (expected one of {allowed})"
        ) from None


def _to_local_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def parse_date_value(value: object) -> datetime | None:
    """Parse a record date into a naive local datetime, or None when unusable.

    A bare ``YYYY-MM-DD`` string is read as local midnight so that no timezone
    conversion can shift it to a neighbouring day. Everything else goes through
    ``pandas.to_datetime``.
    """
    if is_missing(value) or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        if isinstance(value, pd.Timestamp):
            value = value.to_pydatetime()
        return _to_local_naive(value)
    if isinstance(value, date):
        return datetime.combine(value, time())
    if not isinstance(value, str):
        return None

    text = value.strip()
    match = ISO_DATE_ONLY.match(text)
    if match:
        try:
            return datetime(int(match.group(1)), int(match.group(2)), int(match.group(3)))
        except ValueError:
            return None

    with warnings.catch_warnings():
        warnings.simplefilter("ignore", UserWarning)
        parsed = pd.to_datetime(text, errors="coerce")
    if parsed is None or pd.isna(parsed):
        return None
    return _to_local_naive(parsed.to_pydatetime())


def is_date_only(value: object) -> bool:
    if isinstance(value, datetime):
        return False
    if isinstance(value, date):
        return True
    return isinstance(value, str) and bool(ISO_DATE_ONLY.match(value.strip()))


def parse_time_of_day(value: object) -> time | None:
    if is_missing(value):
        return None
    if isinstance(value, datetime):
        return value.time()
    if isinstance(value, time):
        return value
    match = TIME_OF_DAY.match(str(value).strip())
    if not match:
        return None
    hour = int(match.group("hour"))
    minute = int(match.group("minute"))
    second = int(match.group("second") or 0)
    meridiem = (match.group("meridiem") or "").lower()
    if meridiem:
        if not 1 <= hour <= 12:
            return None
        hour = hour % 12 + (12 if meridiem == "pm" else 0)
    if hour > 23 or minute > 59 or second > 59:
        return None
    return time(hour, minute, second)


def parse_record_timestamp(
    date_value: object,
    time_value: object = None,
    *,
    attach_time: bool = False,
) -> datetime | None:
    parsed = parse_date_value(date_value)
    if parsed is None or not attach_time or not is_date_only(date_value):
        return parsed
    time_of_day = parse_time_of_day(time_value)
    if time_of_day is None:
        return parsed
    return datetime.combine(parsed.date(), time_of_day)


def bin_start(moment: datetime, granularity: Granularity) -> datetime:
    midnight = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    if granularity is Granularity.hourly:
        return moment.replace(minute=0, second=0, microsecond=0)
    if granularity is Granularity.six_hour:
        return midnight.replace(hour=(moment.hour // 6) * 6)
    if granularity is Granularity.twelve_hour:
        return midnight.replace(hour=(moment.hour // 12) * 12)
    if granularity is Granularity.daily:
        return midnight
    if granularity is Granularity.weekly_cdc:
        # weekday(): Monday=0 .. Sunday=6; CDC weeks start on Sunday.
        return midnight - timedelta(days=(moment.weekday() + 1) % 7)
    return midnight - timedelta(days=moment.weekday())


def bin_end(moment: datetime, granularity: Granularity) -> datetime:
    return next_bin_start(bin_start(moment, granularity), granularity)


def next_bin_start(start: datetime, granularity: Granularity) -> datetime:
    return start + granularity.step


def previous_bin_start(start: datetime, granularity: Granularity) -> datetime:
    return start - granularity.step


def format_bin_label(start: datetime, granularity: Granularity) -> str:
    label = f"{MONTH_ABBREVIATIONS[start.month - 1]} {start.day}"
    if granularity.is_sub_daily:
        return f"{label} {start.hour}:00"
    return label
