"""Date manipulation utilities"""

import calendar
from datetime import date, datetime, timedelta
from typing import Iterable, List, Set, Tuple
from zoneinfo import ZoneInfo

WEEKDAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


def parse_weekdays(names: Iterable[str]) -> Set[int]:
    """
    Convert day names ("Monday".."Sunday", any case) to date.weekday() numbers.

    Raises:
        ValueError: If a name is not a weekday
    """
    lookup = {name.lower(): index for index, name in enumerate(WEEKDAY_NAMES)}
    weekdays = set()
    for name in names:
        key = str(name).strip().lower()
        if key not in lookup:
            raise ValueError(f"Unknown weekday: {name!r}")
        weekdays.add(lookup[key])
    return weekdays


def weekday_names(weekdays: Iterable[int]) -> List[str]:
    """Canonical day names in calendar order"""
    return [WEEKDAY_NAMES[i] for i in sorted(set(weekdays))]


def subtract_months(from_date: date, months: int) -> date:
    """Same day N months earlier, clamped to the end of shorter months"""
    month_index = from_date.year * 12 + (from_date.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(from_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def history_window(filter_type: str, today: date) -> Tuple[date, date]:
    """Inclusive (start, end) date window for a named history filter"""
    if filter_type == "24h":
        return today - timedelta(days=1), today
    if filter_type == "week":
        return today - timedelta(days=7), today
    if filter_type == "month":
        return subtract_months(today, 1), today
    raise ValueError(f"No fixed window for filter {filter_type!r}")


def local_date(moment: datetime, tz_name: str) -> date:
    """Business date of a timestamp; naive timestamps are taken as local already"""
    if moment.tzinfo is None:
        return moment.date()
    return moment.astimezone(ZoneInfo(tz_name)).date()
