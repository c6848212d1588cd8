"""
Calendar helpers for churn periods.

All functions are pure: they work on calendar dates already expressed in the
seller's timezone and never read the clock.
"""

import calendar
from collections import OrderedDict
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta

from core.config import CHURN_DEFAULT_WINDOW_DAYS, CHURN_LIVE_WINDOW_DAYS
from .models import Granularity

DateRange = Tuple[date, date]


def clamp(value: date, lower: date, upper: date) -> date:
    return max(lower, min(value, upper))


def clamp_range(start: date, end: date, earliest: date, today: date) -> Optional[DateRange]:
    """Clamp both ends into [earliest, today]. Returns None when nothing is left."""
    if earliest > today:
        return None
    start = clamp(start, earliest, today)
    end = clamp(end, earliest, today)
    if start > end:
        return None
    return start, end


def parse_requested_range(start_time: Optional[str], end_time: Optional[str], today: date) -> DateRange:
    """Parse browser supplied dates; anything unparseable falls back to the default window ending today."""
    try:
        start = date_parser.parse(start_time).date()
        end = date_parser.parse(end_time).date()
    except (TypeError, ValueError, OverflowError):
        end = today
        start = today - timedelta(days=CHURN_DEFAULT_WINDOW_DAYS - 1)
    return start, end


def date_range(start: date, end: date) -> List[date]:
    return [start + timedelta(days=offset) for offset in range((end - start).days + 1)]


def month_start(day: date) -> date:
    return day.replace(day=1)


def month_end(day: date) -> date:
    return day.replace(day=calendar.monthrange(day.year, day.month)[1])


def period_key(day: date, granularity: Granularity) -> str:
    if granularity == Granularity.MONTHLY:
        return day.strftime("%Y-%m")
    return day.strftime("%Y-%m-%d")


def period_bounds(day: date, granularity: Granularity) -> DateRange:
    """First and last calendar day of the period containing `day`."""
    if granularity == Granularity.MONTHLY:
        return month_start(day), month_end(day)
    return day, day


def next_period(day: date, granularity: Granularity) -> date:
    if granularity == Granularity.MONTHLY:
        return month_start(day) + relativedelta(months=1)
    return day + timedelta(days=1)


def period_dates(start: date, end: date, granularity: Granularity) -> "OrderedDict[str, date]":
    """
    Period key -> representative date for every period touched by [start, end].
    Monthly periods are represented by the last requested date inside the month.
    """
    periods: "OrderedDict[str, date]" = OrderedDict()
    for day in date_range(start, end):
        periods[period_key(day, granularity)] = day
    return periods


def cache_periods(start: date, end: date, granularity: Granularity) -> List[date]:
    """One date per cache entry covering [start, end]; months are represented by their first day."""
    if granularity == Granularity.MONTHLY:
        periods = []
        current = month_start(start)
        while current <= end:
            periods.append(current)
            current = next_period(current, granularity)
        return periods
    return date_range(start, end)


def find_missing_ranges(data_by_period: Dict[date, Optional[dict]], granularity: Granularity) -> List[DateRange]:
    """
    Group periods without data into maximal runs of calendar-adjacent periods.

    In:  {period_date: data or None} in ascending order
    Out: [(first_missing_period, last_missing_period), ...]
    """
    ranges: List[DateRange] = []
    run_start: Optional[date] = None
    run_end: Optional[date] = None
    for period, value in sorted(data_by_period.items()):
        if value is not None:
            continue
        if run_end is not None and next_period(run_end, granularity) == period:
            run_end = period
            continue
        if run_start is not None:
            ranges.append((run_start, run_end))
        run_start = run_end = period
    if run_start is not None:
        ranges.append((run_start, run_end))
    return ranges


def last_cacheable_date(today: date) -> date:
    return today - timedelta(days=CHURN_LIVE_WINDOW_DAYS)


def is_cacheable(day: date, granularity: Granularity, today: date) -> bool:
    """A period is cacheable once its last day falls outside the live window."""
    _, last_day = period_bounds(day, granularity)
    return last_day <= last_cacheable_date(today)


def previous_range(start: date, end: date) -> DateRange:
    """Range of the same day count ending the day before `start`."""
    length = (end - start).days + 1
    previous_end = start - timedelta(days=1)
    return previous_end - timedelta(days=length - 1), previous_end


def start_of_day(day: date, tz: ZoneInfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz)


def period_from_key(key: str, granularity: Granularity) -> date:
    """Inverse of period_key; monthly keys map to the first day of the month."""
    if granularity == Granularity.MONTHLY:
        return date.fromisoformat(f"{key}-01")
    return date.fromisoformat(key)
