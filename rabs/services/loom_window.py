"""
Loom Window Calculator.

Pure date logic, no database access:
    - compute_window:  today-anchored [start, end) range for a window size in weeks
    - iter_dates:      lazy day-by-day iteration over a half-open range
    - expand_rule:     a program's repeat rule → the concrete dates it runs on

Each repeat pattern is a predicate factory; ``expand_rule`` filters
``iter_dates`` through the predicate for the program's pattern.  Every call
returns a fresh generator, so expansion can be restarted freely.

Weekday numbers are 0=Sunday … 6=Saturday.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Callable, Iterator

from rabs.core.exceptions import ValidationError
from rabs.models.roster import RepeatPattern

DatePredicate = Callable[[date], bool]


def rabs_weekday(on_date: date) -> int:
    """Weekday number with Sunday as 0 (``date.weekday()`` has Monday as 0)."""
    return (on_date.weekday() + 1) % 7


@dataclass(frozen=True)
class LoomWindow:
    """Half-open date range ``[start_date, end_date)``."""

    start_date: date
    end_date: date

    def __contains__(self, on_date: date) -> bool:
        return self.start_date <= on_date < self.end_date

    def to_dict(self) -> dict:
        return {
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
        }


def compute_window(week_count: int, today: date | None = None) -> LoomWindow:
    """Window of *week_count* weeks starting today at midnight."""
    start = today or date.today()
    return LoomWindow(start_date=start, end_date=start + timedelta(days=week_count * 7))


def iter_dates(range_start: date, range_end: date) -> Iterator[date]:
    current = range_start
    while current < range_end:
        yield current
        current += timedelta(days=1)


# ── Repeat-pattern predicates ────────────────────────────────────────────────


def _weekly(program) -> DatePredicate:
    days = {int(d) for d in (program.days_of_week or [])}
    return lambda d: rabs_weekday(d) in days


def _fortnightly(program) -> DatePredicate:
    on_weekday = _weekly(program)
    anchor = program.start_date

    def predicate(d: date) -> bool:
        return on_weekday(d) and ((d - anchor).days // 7) % 2 == 0

    return predicate


def _monthly(program) -> DatePredicate:
    on_weekday = _weekly(program)
    day_of_month = program.start_date.day
    return lambda d: on_weekday(d) and d.day == day_of_month


def _one_off(program) -> DatePredicate:
    return lambda d: d == program.start_date


PATTERN_PREDICATES: dict[str, Callable[..., DatePredicate]] = {
    RepeatPattern.NONE.value: _one_off,
    RepeatPattern.WEEKLY.value: _weekly,
    RepeatPattern.FORTNIGHTLY.value: _fortnightly,
    RepeatPattern.MONTHLY.value: _monthly,
}


def expand_rule(program, range_start: date, range_end: date) -> Iterator[date]:
    """Yield the dates in ``[range_start, range_end)`` the program runs on.

    The range is clipped to the program's own start/end dates, so nothing is
    produced before a program starts or after it finishes.
    """
    factory = PATTERN_PREDICATES.get(program.repeat_pattern)
    if factory is None:
        raise ValidationError(
            f"Unknown repeat pattern {program.repeat_pattern!r}",
            details={"repeat_pattern": sorted(PATTERN_PREDICATES)},
        )
    predicate = factory(program)

    lower = max(range_start, program.start_date)
    upper = range_end
    if program.end_date is not None:
        upper = min(upper, program.end_date + timedelta(days=1))

    return (d for d in iter_dates(lower, upper) if predicate(d))
