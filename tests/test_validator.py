"""Tests for weekwise.core.validator — hard-constraint checks on placements."""

import pytest
from datetime import date, time

from pydantic import ValidationError

from conftest import make_gym_task, make_task
from weekwise.core.errors import ValidationRejected
from weekwise.core.validator import (
    ProposedPlacement,
    RejectionReason,
    check_placement,
    validate_placements,
)
from weekwise.data.models import TaskKind, Weekday


def _placement(task_id="gym", assignee="amit", day="2026-03-02", start="07:00", end="07:45"):
    return ProposedPlacement(
        task_id=task_id, assignee_id=assignee, date=day, start_time=start, end_time=end,
    )


class TestProposedPlacement:
    def test_accepts_date_alias_and_clock_strings(self):
        p = _placement()
        assert p.scheduled_date == date(2026, 3, 2)
        assert p.start_time == time(7, 0)
        assert p.weekday is Weekday.MONDAY

    def test_accepts_iso_datetime_clock(self):
        p = _placement(start="2026-03-02T07:00:00", end="2026-03-02T07:45:00")
        assert p.end_time == time(7, 45)

    def test_numeric_ids_coerced(self):
        p = ProposedPlacement(task_id=7, assignee_id=12, scheduled_date="2026-03-02",
                              start_time="07:00", end_time="08:00")
        assert p.task_id == "7"
        assert p.assignee_id == "12"

    def test_end_before_start_rejected(self):
        with pytest.raises(ValidationError):
            _placement(start="08:00", end="07:00")


class TestCheckPlacement:
    def test_valid_fixed_placement(self):
        tasks = {"gym": make_gym_task()}
        assert check_placement(_placement(), tasks, "amit").id == "gym"

    def test_unknown_task(self):
        with pytest.raises(ValidationRejected) as exc_info:
            check_placement(_placement(task_id="nope"), {}, "amit")
        assert exc_info.value.reason == RejectionReason.TASK_NOT_FOUND.value

    def test_inactive_task_treated_as_missing(self):
        tasks = {"gym": make_gym_task(active=False)}
        with pytest.raises(ValidationRejected) as exc_info:
            check_placement(_placement(), tasks, "amit")
        assert exc_info.value.reason == RejectionReason.TASK_NOT_FOUND.value

    def test_other_users_task_rejected_as_not_owned(self):
        # Owned by u2, proposed by u1 with no family relation
        tasks = {"gym": make_gym_task(owner_id="u2")}
        with pytest.raises(ValidationRejected) as exc_info:
            check_placement(_placement(assignee="u2"), tasks, "u1")
        assert exc_info.value.reason == RejectionReason.NOT_OWNED.value

    def test_family_member_may_schedule_relatives_task(self):
        tasks = {"t1": make_task(owner_id="dana")}
        p = _placement(task_id="t1", assignee="amit", start="18:00", end="18:30")
        assert check_placement(p, tasks, "amit", ["amit", "dana"]).owner_id == "dana"

    def test_relatives_task_needs_member_list(self):
        tasks = {"t1": make_task(owner_id="dana")}
        p = _placement(task_id="t1", assignee="amit", start="18:00", end="18:30")
        with pytest.raises(ValidationRejected) as exc_info:
            check_placement(p, tasks, "amit")
        assert exc_info.value.reason == RejectionReason.NOT_OWNED.value

    def test_personal_goal_cannot_be_reassigned(self):
        tasks = {"gym": make_gym_task()}
        with pytest.raises(ValidationRejected) as exc_info:
            check_placement(_placement(assignee="dana"), tasks, "amit", ["amit", "dana"])
        assert exc_info.value.reason == RejectionReason.NOT_OWNED.value

    def test_chore_assignee_must_be_member(self):
        tasks = {"t1": make_task()}
        p = _placement(task_id="t1", assignee="stranger", start="18:00", end="18:30")
        with pytest.raises(ValidationRejected) as exc_info:
            check_placement(p, tasks, "amit", ["amit", "dana"])
        assert exc_info.value.reason == RejectionReason.NOT_OWNED.value

    def test_wrong_weekday(self):
        tasks = {"gym": make_gym_task()}
        with pytest.raises(ValidationRejected) as exc_info:
            check_placement(_placement(day="2026-03-03"), tasks, "amit")
        assert exc_info.value.reason == RejectionReason.WRONG_WEEKDAY.value
        assert "Tuesday" in exc_info.value.detail

    def test_required_days_enforced_for_flexible_tasks(self):
        tasks = {"t1": make_task(required_days=frozenset({Weekday.SATURDAY}))}
        with pytest.raises(ValidationRejected) as exc_info:
            check_placement(_placement(task_id="t1", start="18:00", end="18:30"), tasks, "amit")
        assert exc_info.value.reason == RejectionReason.WRONG_WEEKDAY.value

    @pytest.mark.parametrize("start,end", [("06:45", "07:30"), ("07:15", "08:00"), ("07:15:00", "08:00:00")])
    def test_fixed_time_within_tolerance(self, start, end):
        tasks = {"gym": make_gym_task()}
        check_placement(_placement(start=start, end=end), tasks, "amit", tolerance_minutes=15)

    @pytest.mark.parametrize("start,end", [
        ("06:44", "07:29"), ("07:16", "08:01"), ("07:15:59", "08:00:59"), ("06:44:30", "07:29:30"),
    ])
    def test_fixed_time_outside_tolerance(self, start, end):
        tasks = {"gym": make_gym_task()}
        with pytest.raises(ValidationRejected) as exc_info:
            check_placement(_placement(start=start, end=end), tasks, "amit", tolerance_minutes=15)
        assert exc_info.value.reason == RejectionReason.WRONG_TIME_OF_DAY.value


class TestValidatePlacements:
    def test_splits_batch_with_reasons(self):
        tasks = {"gym": make_gym_task(), "t1": make_task(kind=TaskKind.HOUSEHOLD_CHORE)}
        batch = [
            _placement(),
            _placement(day="2026-03-03"),
            _placement(task_id="t1", start="18:00", end="18:30"),
            _placement(task_id="missing"),
        ]
        result = validate_placements(batch, tasks, "amit")
        assert [p.task_id for p in result.accepted] == ["gym", "t1"]
        assert [r.reason for r in result.rejected] == [
            RejectionReason.WRONG_WEEKDAY, RejectionReason.TASK_NOT_FOUND,
        ]
        assert not result.all_accepted

    def test_empty_batch(self):
        result = validate_placements([], {}, "amit")
        assert result.accepted == []
        assert result.all_accepted
