"""Recurrence expansion.

Turns a schedule's date range and recurrence rule into the concrete dates
that qualify. Expansion is pure: it never looks at materialized instances,
which is the publisher's job.
"""

from datetime import date, datetime
from typing import Callable, Optional

from dateutil.rrule import DAILY, rrule

from routineplanner.domain.models import RepeatRule
from routineplanner.domain.policies import HolidayCalendar

HolidayPredicate = Callable[[date], bool]


def _days(start: date, end: date, weekdays=None) -> list[date]:
    """Dates in [start, end], optionally restricted to weekday numbers."""
    byweekday = tuple(sorted(int(d) for d in weekdays)) if weekdays is not None else None
    if byweekday == ():
        return []
    rule = rrule(
        DAILY,
        dtstart=datetime.combine(start, datetime.min.time()),
        until=datetime.combine(end, datetime.min.time()),
        byweekday=byweekday,
    )
    return [dt.date() for dt in rule]


def expand_dates(
    start: date,
    end: date,
    repeat: RepeatRule,
    is_holiday: Optional[HolidayPredicate] = None,
) -> list[date]:
    """Expand a recurrence rule over an inclusive date range.

    Args:
        start: First date of the range.
        end: Last date of the range.
        repeat: Recurrence rule.
        is_holiday: Holiday predicate. Required only for rules that include
            holidays; without one, no date counts as a holiday.

    Returns:
        Qualifying dates, ascending and without duplicates. May be empty.

    Raises:
        ValueError: If end is before start.
    """
    if end < start:
        raise ValueError(f"end date {end.isoformat()} is before start date {start.isoformat()}")

    selected = set(_days(start, end, repeat.weekdays))
    if repeat.include_holidays and is_holiday is not None:
        selected.update(d for d in _days(start, end) if is_holiday(d))
    return sorted(selected)


class RecurrenceExpander:
    """Expands recurrence rules against a holiday calendar.

    Example:
        >>> expander = RecurrenceExpander(calendar)
        >>> expander.expand(date(2026, 3, 2), date(2026, 3, 8), WeekdaysRepeat())
    """

    def __init__(self, holiday_calendar: Optional[HolidayCalendar] = None):
        self.holiday_calendar = holiday_calendar

    def expand(
        self,
        start: date,
        end: date,
        repeat: RepeatRule,
        locale: str = "default",
    ) -> list[date]:
        return expand_dates(start, end, repeat, self._predicate(locale))

    def holidays_in_range(self, start: date, end: date, locale: str = "default") -> set[date]:
        """All holiday dates in [start, end] for a locale."""
        predicate = self._predicate(locale)
        if predicate is None or end < start:
            return set()
        return {d for d in _days(start, end) if predicate(d)}

    def _predicate(self, locale: str) -> Optional[HolidayPredicate]:
        if self.holiday_calendar is None:
            return None
        calendar = self.holiday_calendar
        return lambda d: calendar.is_holiday(d, locale)
