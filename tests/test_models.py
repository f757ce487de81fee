"""Tests for weekwise.data.models — weekday normalization and plan states."""

import pytest
from datetime import date, time

from conftest import make_gym_task, make_task
from weekwise.data.models import (
    Holiday,
    PlanStatus,
    Weekday,
    parse_weekdays,
)


class TestWeekdayParse:
    @pytest.mark.parametrize("value", ["monday", "Monday", " MON ", "mon", Weekday.MONDAY])
    def test_names_and_abbreviations(self, value):
        assert Weekday.parse(value) is Weekday.MONDAY

    def test_numbers_are_sunday_first(self):
        assert Weekday.parse(0) is Weekday.SUNDAY
        assert Weekday.parse(1) is Weekday.MONDAY
        assert Weekday.parse(6) is Weekday.SATURDAY

    @pytest.mark.parametrize("value", [7, -1, "funday", True])
    def test_rejects_garbage(self, value):
        with pytest.raises(ValueError):
            Weekday.parse(value)

    def test_of_date(self):
        assert Weekday.of(date(2026, 3, 2)) is Weekday.MONDAY
        assert Weekday.of(date(2026, 3, 8)) is Weekday.SUNDAY

    def test_parse_weekdays_mixed(self):
        assert parse_weekdays(["mon", 3, "Friday"]) == {Weekday.MONDAY, Weekday.WEDNESDAY, Weekday.FRIDAY}
        assert parse_weekdays(None) == frozenset()

    def test_label(self):
        assert Weekday.WEDNESDAY.label == "Wednesday"


class TestPlanStatus:
    def test_terminal_states(self):
        assert {s for s in PlanStatus if s.is_terminal} == {
            PlanStatus.APPROVED, PlanStatus.REJECTED, PlanStatus.EXPIRED,
        }

    def test_editable_states(self):
        assert {s for s in PlanStatus if s.is_editable} == {
            PlanStatus.DRAFT, PlanStatus.PENDING_APPROVAL,
        }


class TestTask:
    def test_fixed_task_allowed_days(self):
        gym = make_gym_task()
        assert gym.is_fixed
        assert gym.allowed_days == {Weekday.MONDAY, Weekday.WEDNESDAY, Weekday.FRIDAY}

    def test_flexible_task_uses_required_days(self):
        chore = make_task(required_days=frozenset({Weekday.SATURDAY}), fixed_time=time(9, 0))
        assert not chore.is_fixed
        assert chore.allowed_days == {Weekday.SATURDAY}

    def test_defaults(self):
        chore = make_task()
        assert chore.active is True
        assert chore.family_id is None
        assert chore.allowed_days == frozenset()


def test_holiday_effective_date():
    assert Holiday(date(2027, 12, 25), "Christmas Day", observed=date(2027, 12, 27)).effective_date == date(2027, 12, 27)
    assert Holiday(date(2026, 12, 25), "Christmas Day").effective_date == date(2026, 12, 25)
