from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import List, Optional, Sequence

ONE_DAY = timedelta(days=1)


class InvalidDateRange(ValueError):
    """Raised before any computation when a report's period is unusable."""


class PeriodType(str, Enum):
    SELECTED = "SELECTED"
    DAY = "DAY"
    WEEK = "WEEK"
    MONTH = "MONTH"
    QUARTER = "QUARTER"
    HALF_YEAR = "HALF_YEAR"
    YEAR = "YEAR"


class PeriodDivision(str, Enum):
    NONE = "NONE"
    DAY = "DAY"
    WEEK = "WEEK"
    MONTH = "MONTH"
    QUARTER = "QUARTER"
    HALF_YEAR = "HALF_YEAR"
    YEAR = "YEAR"


GRANULARITY = {
    "DAY": 1,
    "WEEK": 2,
    "MONTH": 3,
    "QUARTER": 4,
    "HALF_YEAR": 5,
    "YEAR": 6,
}


@dataclass(frozen=True)
class Period:
    start: date
    end: date

    def __contains__(self, value: object) -> bool:
        return isinstance(value, date) and self.start <= value <= self.end


def resolve_period_range(
    period_type: PeriodType,
    today: Optional[date] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> Period:
    """Calendar period of the given type containing `today`, or the explicit
    range for SELECTED."""
    period_type = PeriodType(period_type)
    today = today or date.today()
    if period_type is PeriodType.SELECTED:
        if start is None or end is None:
            raise InvalidDateRange("A selected period requires start and end dates.")
        return checked_period(start, end)
    division = PeriodDivision(period_type.value)
    period_start = bucket_start(today, division)
    return Period(period_start, next_bucket_start(period_start, division) - ONE_DAY)


def checked_period(start: date, end: date) -> Period:
    if end < start:
        raise InvalidDateRange("End date must be on or after start date.")
    return Period(start, end)


def check_division(period_type: PeriodType, division: PeriodDivision) -> None:
    period_type = PeriodType(period_type)
    division = PeriodDivision(division)
    if division is PeriodDivision.NONE or period_type is PeriodType.SELECTED:
        return
    if GRANULARITY[division.value] > GRANULARITY[period_type.value]:
        raise InvalidDateRange(
            f"Period division {division.value} is coarser than period type {period_type.value}."
        )


def month_start(value: date) -> date:
    return value.replace(day=1)


def shift_month(value: date, months: int) -> date:
    month_index = (value.year * 12 + value.month - 1) + months
    year = month_index // 12
    month = month_index % 12 + 1
    return date(year, month, 1)


def month_end(value: date) -> date:
    return shift_month(month_start(value), 1) - ONE_DAY


def bucket_start(value: date, division: PeriodDivision) -> date:
    if division is PeriodDivision.WEEK:
        return value - timedelta(days=value.weekday())
    if division is PeriodDivision.MONTH:
        return value.replace(day=1)
    if division is PeriodDivision.QUARTER:
        return date(value.year, 3 * ((value.month - 1) // 3) + 1, 1)
    if division is PeriodDivision.HALF_YEAR:
        return date(value.year, 1 if value.month <= 6 else 7, 1)
    if division is PeriodDivision.YEAR:
        return value.replace(month=1, day=1)
    return value


def next_bucket_start(value: date, division: PeriodDivision) -> date:
    if division is PeriodDivision.WEEK:
        return value + timedelta(days=7)
    if division is PeriodDivision.MONTH:
        return shift_month(value, 1)
    if division is PeriodDivision.QUARTER:
        return shift_month(value, 3)
    if division is PeriodDivision.HALF_YEAR:
        return shift_month(value, 6)
    if division is PeriodDivision.YEAR:
        return date(value.year + 1, 1, 1)
    return value + ONE_DAY


def split_period(start: date, end: date, division: PeriodDivision) -> List[Period]:
    """Contiguous buckets covering [start, end], the first and last clipped."""
    checked_period(start, end)
    division = PeriodDivision(division)
    if division is PeriodDivision.NONE:
        return [Period(start, end)]

    buckets: List[Period] = []
    cursor = bucket_start(start, division)
    while cursor <= end:
        following = next_bucket_start(cursor, division)
        buckets.append(Period(max(cursor, start), min(following - ONE_DAY, end)))
        cursor = following
    return buckets


def bucket_index(
    buckets: Sequence[Period],
    value: date,
    starts: Optional[Sequence[date]] = None,
) -> int | None:
    if not buckets or value < buckets[0].start or value > buckets[-1].end:
        return None
    if starts is None:
        starts = [bucket.start for bucket in buckets]
    return bisect_right(starts, value) - 1
