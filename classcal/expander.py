"""
Recurrence expansion.

Turns a RecurrenceConfig into the ordered list of concrete (unsaved)
ClassInstance records it describes. Pure: no store access, no clock.

Rules shared by all recurrence types (the Bounds policy):
- stop once the number of emitted instances reaches the effective limit
  min(occurrences or hard_cap, hard_cap)
- stop once the next candidate date is after end_date (if set)
- every single slot is bound-checked, so a date with several slots can be
  cut off midway when the limit is reached there
- a date never gets two instances with the same start time, even when a
  day is listed twice in the pattern

Empty payloads produce nothing. Every loop below either emits instances or
moves towards end_date / date.max, so expansion always terminates.
"""

from __future__ import annotations

import calendar
import logging
from datetime import date, timedelta
from typing import Callable, Iterable, Optional

from classcal.model import (
    ClassInstance,
    CustomPattern,
    DailyPattern,
    MonthlyPattern,
    RecurrenceConfig,
    TimeSlot,
    WeeklyPattern,
    YearlyPattern,
)

logger = logging.getLogger(__name__)

DEFAULT_HARD_CAP = 365

ONE_DAY = timedelta(days=1)
ONE_WEEK = timedelta(days=7)


class Bounds:
    """Stop conditions for one expansion run."""

    def __init__(self, limit: int, end_date: Optional[date] = None) -> None:
        self.limit = limit
        self.end_date = end_date
        self.count = 0

    @classmethod
    def for_config(cls, recurrence: RecurrenceConfig, hard_cap: int = DEFAULT_HARD_CAP) -> Bounds:
        requested = recurrence.occurrences if recurrence.occurrences is not None else hard_cap
        return cls(limit=min(requested, hard_cap), end_date=recurrence.end_date)

    @property
    def exhausted(self) -> bool:
        return self.count >= self.limit

    def allows(self, day: date) -> bool:
        if self.exhausted:
            return False
        if self.end_date is not None and day > self.end_date:
            return False
        return True

    def record(self) -> None:
        self.count += 1


def _ordered(slots: Iterable[TimeSlot]) -> list[TimeSlot]:
    return sorted(slots, key=lambda s: s.start_minutes)


class _Run:
    """Accumulates instances for one expand() call."""

    def __init__(self, class_id: str, bounds: Bounds) -> None:
        self.class_id = class_id
        self.bounds = bounds
        self.instances: list[ClassInstance] = []

    def emit(self, day: date, slots: Iterable[TimeSlot]) -> None:
        """Emit one instance per distinct start time; the first slot listed wins."""
        started: set[int] = set()
        for slot in _ordered(slots):
            if slot.start_minutes in started:
                continue
            if not self.bounds.allows(day):
                break
            started.add(slot.start_minutes)
            self.instances.append(
                ClassInstance(
                    class_id=self.class_id,
                    scheduled_date=day,
                    start_time=slot.start_time,
                    end_time=slot.end_time,
                )
            )
            self.bounds.record()


def _add_days(day: date, delta: timedelta) -> Optional[date]:
    try:
        return day + delta
    except OverflowError:
        return None


def _expand_daily(run: _Run, start: date, pattern: DailyPattern) -> None:
    if not pattern.time_slots:
        return
    current: Optional[date] = start
    while current is not None and run.bounds.allows(current):
        run.emit(current, pattern.time_slots)
        current = _add_days(current, ONE_DAY)


def _expand_weekly(run: _Run, start: date, pattern: WeeklyPattern) -> None:
    by_weekday = {k: v for k, v in pattern.slots_by_weekday().items() if v}
    if not by_weekday:
        return
    current: Optional[date] = start
    while current is not None and run.bounds.allows(current):
        slots = by_weekday.get(current.weekday())
        if slots:
            run.emit(current, slots)
        current = _add_days(current, ONE_DAY)


def _next_month(day: date) -> Optional[date]:
    if day.month == 12:
        if day.year >= date.max.year:
            return None
        return date(day.year + 1, 1, 1)
    return date(day.year, day.month + 1, 1)


def _expand_monthly(run: _Run, start: date, pattern: MonthlyPattern) -> None:
    by_day = sorted((d, s) for d, s in pattern.slots_by_day().items() if s and 1 <= d <= 31)
    if not by_day:
        return
    month: Optional[date] = start.replace(day=1)
    while month is not None and run.bounds.allows(month):
        days_in_month = calendar.monthrange(month.year, month.month)[1]
        for day_number, slots in by_day:
            if day_number > days_in_month:
                continue
            target = month.replace(day=day_number)
            if target < start:
                continue
            if not run.bounds.allows(target):
                break
            run.emit(target, slots)
        month = _next_month(month)


def _yearly_date(year: int, pattern: YearlyPattern) -> Optional[date]:
    try:
        return date(year, pattern.month, pattern.day)
    except ValueError:
        # e.g. 29 February outside leap years
        return None


def _expand_yearly(run: _Run, start: date, pattern: YearlyPattern) -> None:
    if not pattern.time_slots:
        return
    # 2000 is a leap year: a date missing there exists in no year at all
    if _yearly_date(2000, pattern) is None:
        return
    year = start.year
    first = _yearly_date(year, pattern)
    if first is None or first < start:
        year += 1

    while year <= date.max.year:
        current = _yearly_date(year, pattern)
        year += 1
        if current is None:
            continue
        if not run.bounds.allows(current):
            break
        run.emit(current, pattern.time_slots)


def _expand_custom(run: _Run, start: date, pattern: CustomPattern) -> None:
    by_weekday = {k: v for k, v in pattern.slots_by_weekday().items() if v}
    if not by_weekday:
        return
    interval = max(int(pattern.interval or 1), 1)

    # weeks are Sunday-based buckets: date.weekday() is Monday=0 .. Sunday=6
    week_start: Optional[date] = start - timedelta(days=(start.weekday() + 1) % 7)
    current: Optional[date] = start
    week_count = 0

    while current is not None and week_start is not None and run.bounds.allows(current):
        if week_count % interval == 0:
            for i in range(7):
                check = _add_days(week_start, timedelta(days=i))
                if check is None:
                    break
                if check < start:
                    continue
                if not run.bounds.allows(check):
                    break
                slots = by_weekday.get(check.weekday())
                if slots:
                    run.emit(check, slots)

        week_start = _add_days(week_start, ONE_WEEK)
        current = week_start
        week_count += 1


_EXPANDERS: dict[str, Callable[..., None]] = {
    "daily": _expand_daily,
    "weekly": _expand_weekly,
    "monthly": _expand_monthly,
    "yearly": _expand_yearly,
    "custom": _expand_custom,
}


def expand(
    recurrence: RecurrenceConfig, class_id: str, hard_cap: int = DEFAULT_HARD_CAP
) -> list[ClassInstance]:
    """
    Expand a recurrence rule into its ordered, unsaved class instances.

    Output is sorted by (scheduled_date, start_time) and never longer than
    min(recurrence.occurrences or hard_cap, hard_cap).
    """
    run = _Run(class_id, Bounds.for_config(recurrence, hard_cap))
    pattern = recurrence.pattern
    if pattern is None:
        return []

    handler = _EXPANDERS.get(pattern.kind)
    if handler is None:
        return []

    handler(run, recurrence.start_date, pattern)
    logger.debug(
        "Expanded %s recurrence for class %s into %d instances", pattern.kind, class_id, len(run.instances)
    )
    return run.instances
