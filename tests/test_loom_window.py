"""Tests for the Loom window calculator and staffing rules.

Coverage:
  1. rabs_weekday numbers Sunday as 0
  2. compute_window returns a half-open [today, today + 7*weeks) range
  3. expand_rule for weekly / fortnightly / monthly / one-off programs
  4. expansion is clipped to the program's own start and end dates
  5. expansion restarts cleanly and rejects unknown patterns
  6. staffing ratio law and role lists

These are pure functions: programs are transient model objects, never flushed.
"""

from datetime import date, time

import pytest

from rabs.core.exceptions import ValidationError
from rabs.models.roster import Program
from rabs.services import staffing
from rabs.services.loom_window import compute_window, expand_rule, iter_dates, rabs_weekday


def _program(**overrides) -> Program:
    fields = {
        "name": "Transient",
        "start_date": date(2025, 1, 6),
        "end_date": None,
        "repeat_pattern": "weekly",
        "days_of_week": [2],
        "start_time": time(9, 0),
        "end_time": time(15, 0),
    }
    fields.update(overrides)
    return Program(**fields)


class TestWeekdays:
    def test_sunday_is_zero(self):
        assert rabs_weekday(date(2025, 1, 5)) == 0

    def test_monday_is_one_saturday_is_six(self):
        assert rabs_weekday(date(2025, 1, 6)) == 1
        assert rabs_weekday(date(2025, 1, 11)) == 6


class TestComputeWindow:
    def test_four_weeks(self):
        window = compute_window(4, today=date(2025, 1, 6))
        assert window.start_date == date(2025, 1, 6)
        assert window.end_date == date(2025, 2, 3)

    def test_end_is_exclusive(self):
        window = compute_window(1, today=date(2025, 1, 6))
        assert date(2025, 1, 12) in window
        assert date(2025, 1, 13) not in window
        assert date(2025, 1, 5) not in window

    def test_iter_dates_is_half_open(self):
        days = list(iter_dates(date(2025, 1, 6), date(2025, 1, 9)))
        assert days == [date(2025, 1, 6), date(2025, 1, 7), date(2025, 1, 8)]


class TestExpandRule:
    def test_weekly_tuesdays_over_eight_weeks(self):
        window = compute_window(8, today=date(2025, 1, 6))
        dates = list(expand_rule(_program(), window.start_date, window.end_date))
        assert len(dates) == 8
        assert dates[0] == date(2025, 1, 7)
        assert dates[-1] == date(2025, 2, 25)
        assert all(rabs_weekday(d) == 2 for d in dates)
        assert len(set(dates)) == 8

    def test_weekly_multiple_days(self):
        program = _program(days_of_week=[1, 3, 5])
        dates = list(expand_rule(program, date(2025, 1, 6), date(2025, 1, 13)))
        assert dates == [date(2025, 1, 6), date(2025, 1, 8), date(2025, 1, 10)]

    def test_fortnightly_mondays(self):
        program = _program(repeat_pattern="fortnightly", days_of_week=[1])
        dates = list(expand_rule(program, date(2025, 1, 6), date(2025, 2, 10)))
        assert dates == [date(2025, 1, 6), date(2025, 1, 20), date(2025, 2, 3)]

    def test_fortnightly_parity_anchored_to_program_start(self):
        program = _program(repeat_pattern="fortnightly", days_of_week=[1])
        dates = list(expand_rule(program, date(2025, 1, 13), date(2025, 2, 10)))
        assert dates == [date(2025, 1, 20), date(2025, 2, 3)]

    def test_monthly_needs_matching_weekday_and_day_of_month(self):
        program = _program(repeat_pattern="monthly", days_of_week=[1])
        dates = list(expand_rule(program, date(2025, 1, 1), date(2025, 12, 31)))
        assert dates == [date(2025, 1, 6), date(2025, 10, 6)]

    def test_one_off_yields_start_date_only(self):
        program = _program(repeat_pattern="none", days_of_week=[], start_date=date(2025, 1, 9))
        assert list(expand_rule(program, date(2025, 1, 6), date(2025, 2, 3))) == [date(2025, 1, 9)]

    def test_one_off_outside_range_yields_nothing(self):
        program = _program(repeat_pattern="none", days_of_week=[], start_date=date(2025, 3, 1))
        assert list(expand_rule(program, date(2025, 1, 6), date(2025, 2, 3))) == []

    def test_nothing_before_program_start(self):
        program = _program(start_date=date(2025, 1, 20))
        dates = list(expand_rule(program, date(2025, 1, 6), date(2025, 2, 3)))
        assert dates == [date(2025, 1, 21), date(2025, 1, 28)]

    def test_end_date_is_inclusive(self):
        program = _program(end_date=date(2025, 1, 14))
        dates = list(expand_rule(program, date(2025, 1, 6), date(2025, 2, 3)))
        assert dates == [date(2025, 1, 7), date(2025, 1, 14)]

    def test_empty_days_yield_nothing(self):
        program = _program(days_of_week=[])
        assert list(expand_rule(program, date(2025, 1, 6), date(2025, 2, 3))) == []

    def test_each_call_is_a_fresh_sequence(self):
        program = _program()
        first = expand_rule(program, date(2025, 1, 6), date(2025, 2, 3))
        assert list(first) == list(expand_rule(program, date(2025, 1, 6), date(2025, 2, 3)))
        assert list(first) == []  # the first generator is exhausted, the rule is not

    def test_unknown_pattern_rejected(self):
        with pytest.raises(ValidationError):
            expand_rule(_program(repeat_pattern="yearly"), date(2025, 1, 6), date(2025, 2, 3))


class TestStaffingRatio:
    @pytest.mark.parametrize("participants, expected", [
        (0, 1), (1, 2), (4, 2), (5, 2), (6, 3), (9, 3), (10, 3), (11, 4), (20, 5),
    ])
    def test_required_staff(self, participants, expected):
        assert staffing.required_staff(participants) == expected

    def test_custom_ratio(self):
        assert staffing.required_staff(8, ratio=4) == 3

    def test_additional_staff_are_support(self):
        assert staffing.required_staff(5, additional=2) == 4

    def test_roles_for_bus_program_end_with_driver(self):
        roles = staffing.required_roles(7, centre_based=False)
        assert roles == ["lead", "support", "support", "driver"]

    def test_roles_for_centre_based_program(self):
        assert staffing.required_roles(0, centre_based=True) == ["lead"]
