# Overview: Period resolution for reports; maps named period tokens to concrete date ranges.

"""
Period tokens
=============

    today         start..end of today
    yesterday     start..end of yesterday
    this-week     Sunday of the current week .. end of today
    this-month    first .. last day of the current month
    last-month    first .. last day of the previous month
    this-quarter  first day of the quarter .. end of today
                  (or end of the quarter when full_quarter=True)
    this-year     Jan 1 .. Dec 31
    last-year     Jan 1 .. Dec 31 of the previous year

Unknown tokens fall back to the caller's default token (this-month unless
stated otherwise). Explicit start/end dates win over any token when both are
given. Bounds are inclusive: start is 00:00:00 and end is 23:59:59.999999.

Pure module: no store access.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from webill.time_utils import (
    add_months,
    end_of_day,
    end_of_month,
    parse_iso_datetime,
    start_of_day,
    start_of_month,
    to_utc_z,
    utcnow,
)
from webill.validation import ValidationError


PERIOD_TOKENS = (
    "today",
    "yesterday",
    "this-week",
    "this-month",
    "last-month",
    "this-quarter",
    "this-year",
    "last-year",
)
DEFAULT_PERIOD = "this-month"


@dataclass(frozen=True)
class DateRange:
    start: datetime
    end: datetime

    @property
    def days(self) -> float:
        return (self.end - self.start) / timedelta(days=1)

    def previous(self) -> "DateRange":
        """Equal-length window immediately before this one (whole days)."""
        shift = timedelta(days=math.ceil(self.days))
        return DateRange(self.start - shift, self.end - shift)

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end

    def to_dict(self) -> dict:
        return {"from": to_utc_z(self.start), "to": to_utc_z(self.end)}


def _quarter_start(now: datetime) -> datetime:
    return datetime(now.year, (now.month - 1) // 3 * 3 + 1, 1)


def _parse_day(value: str | date | datetime, field: str) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, datetime.min.time())
    try:
        parsed = parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 date")
    if parsed is None:
        raise ValidationError(f"{field} must be an ISO-8601 date")
    return parsed


def resolve_period(
    period: str | None,
    start_date: str | date | datetime | None = None,
    end_date: str | date | datetime | None = None,
    *,
    now: datetime | None = None,
    default: str = DEFAULT_PERIOD,
    full_quarter: bool = False,
) -> DateRange:
    """Resolve a period token (or explicit start/end pair) to an inclusive range."""
    if start_date and end_date:
        start = start_of_day(_parse_day(start_date, "start_date"))
        end = end_of_day(_parse_day(end_date, "end_date"))
        if end < start:
            raise ValidationError("end_date must not be before start_date")
        return DateRange(start, end)

    now = now or utcnow()
    token = (period or default).strip().lower()
    if token not in PERIOD_TOKENS:
        token = default

    if token == "today":
        return DateRange(start_of_day(now), end_of_day(now))
    if token == "yesterday":
        day = now - timedelta(days=1)
        return DateRange(start_of_day(day), end_of_day(day))
    if token == "this-week":
        # isoweekday: Mon=1 .. Sun=7; weeks start on Sunday
        sunday = now - timedelta(days=now.isoweekday() % 7)
        return DateRange(start_of_day(sunday), end_of_day(now))
    if token == "this-month":
        return DateRange(start_of_month(now), end_of_month(now))
    if token == "last-month":
        prev = add_months(start_of_month(now), -1)
        return DateRange(prev, end_of_month(prev))
    if token == "this-quarter":
        start = _quarter_start(now)
        if full_quarter:
            return DateRange(start, end_of_month(add_months(start, 2)))
        return DateRange(start, end_of_day(now))
    if token == "this-year":
        return DateRange(datetime(now.year, 1, 1), end_of_day(date(now.year, 12, 31)))
    # last-year
    return DateRange(datetime(now.year - 1, 1, 1), end_of_day(date(now.year - 1, 12, 31)))
