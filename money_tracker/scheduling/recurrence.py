"""
Recurrence Date Arithmetic

Pure functions that turn a RecurrenceRule plus a start date into
occurrence dates. Nothing here reads a clock or touches storage.

DESIGN DECISION: Occurrence k of a series is always computed from the
series start (`start + k * step`) and never by chaining from the previous,
possibly weekend-shifted, date. A rule anchored on the 31st therefore
lands on the 31st again after passing through a 30-day month, and a
Monday shift never pushes later occurrences forward.
"""

import calendar
from datetime import datetime, timedelta
from typing import Iterator, Optional

from money_tracker.models.recurrence import RecurrenceRule, RecurrenceUnit

SATURDAY = 5
SUNDAY = 6


def clamp_day_to_month(year: int, month: int, day: int) -> int:
    """Clamp day to valid range for the given year/month."""
    max_day = calendar.monthrange(year, month)[1]
    return min(day, max_day)


def add_months(d: datetime, n: int) -> datetime:
    """Add n months to d, clamping the day to month end."""
    month = d.month - 1 + n
    year = d.year + month // 12
    month = month % 12 + 1
    day = clamp_day_to_month(year, month, d.day)
    return d.replace(year=year, month=month, day=day)


def shift_to_working_day(d: datetime) -> datetime:
    """Move a Saturday or Sunday forward to the following Monday."""
    weekday = d.weekday()
    if weekday == SATURDAY:
        return d + timedelta(days=2)
    if weekday == SUNDAY:
        return d + timedelta(days=1)
    return d


def day_span(rule: RecurrenceRule, include_start_day_in_count: bool) -> int:
    """
    Days added per step for a day-unit rule.

    When the start day counts as day 1, "every 15 days" lands 14 days
    later. A 1-day rule still advances by one day.
    """
    if include_start_day_in_count:
        return max(1, rule.interval - 1)
    return rule.interval


def advance(
    rule: RecurrenceRule,
    start: datetime,
    steps: int,
    include_start_day_in_count: bool = False,
) -> datetime:
    """`start` moved forward by `steps` repetitions of the rule, unadjusted."""
    if rule.unit == RecurrenceUnit.DAY:
        return start + timedelta(days=steps * day_span(rule, include_start_day_in_count))
    if rule.unit == RecurrenceUnit.WEEK:
        return start + timedelta(weeks=steps * rule.interval)
    if rule.unit == RecurrenceUnit.MONTH:
        return add_months(start, steps * rule.interval)
    if rule.unit == RecurrenceUnit.YEAR:
        return add_months(start, steps * rule.interval * 12)
    raise ValueError(f"Unknown recurrence unit: {rule.unit}")


def next_occurrence(
    rule: RecurrenceRule,
    from_date: datetime,
    include_start_day_in_count: bool = False,
    adjust_to_working_day: bool = False,
) -> Optional[datetime]:
    """
    The occurrence one rule-step after `from_date`.

    Returns None only for a structurally invalid rule. End dates are the
    caller's business.
    """
    if rule.interval < 1:
        return None
    candidate = advance(rule, from_date, 1, include_start_day_in_count)
    if adjust_to_working_day:
        candidate = shift_to_working_day(candidate)
    return candidate


def iter_occurrences(
    rule: RecurrenceRule,
    start: datetime,
    include_start_day_in_count: bool = False,
    adjust_to_working_day: bool = False,
    until: Optional[datetime] = None,
) -> Iterator[datetime]:
    """
    Lazily enumerate a series' dates, starting with `start` itself.

    The generator is infinite unless `until` (exclusive) is given; take what
    you need from it. Occurrences that a weekend shift collapses onto the
    same day are yielded once.
    """
    if rule.interval < 1:
        return

    previous: Optional[datetime] = None
    k = 0
    while True:
        occurrence = start if k == 0 else advance(rule, start, k, include_start_day_in_count)
        if k > 0 and adjust_to_working_day:
            occurrence = shift_to_working_day(occurrence)
        k += 1

        if until is not None and occurrence >= until:
            return
        if previous is not None and occurrence.date() == previous.date():
            continue
        previous = occurrence
        yield occurrence


def count_occurrences_between(
    rule: RecurrenceRule,
    start: datetime,
    period_start: datetime,
    period_end: datetime,
    end_date: Optional[datetime] = None,
    include_start_day_in_count: bool = False,
    adjust_to_working_day: bool = False,
) -> int:
    """
    Number of occurrences falling in [period_start, period_end].

    `end_date` is the series' exclusive end.
    """
    count = 0
    for occurrence in iter_occurrences(
        rule,
        start,
        include_start_day_in_count=include_start_day_in_count,
        adjust_to_working_day=adjust_to_working_day,
        until=end_date,
    ):
        if occurrence > period_end:
            break
        if occurrence >= period_start:
            count += 1
    return count
