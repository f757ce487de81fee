"""Tests for weekwise.data.db — the SQLite stores."""

import sqlite3
import pytest
from datetime import date, datetime, time

from conftest import make_gym_task, make_task
from weekwise.core.errors import PlanNotFound, PlanStateError
from weekwise.data.models import (
    ApprovalStatus,
    InstanceStatus,
    PlanItemEdit,
    PlanStatus,
    UserProfile,
    WeeklyPlan,
    WeeklyPlanItem,
    Weekday,
    WorkScheduleDay,
)


# ---------------------------------------------------------------------------
# TaskDB
# ---------------------------------------------------------------------------

class TestTaskDB:
    def test_add_and_get_roundtrip(self, task_db):
        task_db.add_task(make_gym_task())
        task = task_db.get_task("gym")
        assert task.fixed_days == {Weekday.MONDAY, Weekday.WEDNESDAY, Weekday.FRIDAY}
        assert task.fixed_time == time(7, 0)
        assert task.is_fixed

    def test_generated_id(self, task_db):
        task = task_db.add_task(make_task(id=""))
        assert task.id
        assert task_db.get_task(task.id).name == "Vacuum"

    def test_invalid_priority_rejected(self, task_db):
        with pytest.raises(ValueError, match="Priority"):
            task_db.add_task(make_task(priority=5))

    def test_non_positive_duration_rejected(self, task_db):
        with pytest.raises(ValueError):
            task_db.add_task(make_task(duration_minutes=0))

    def test_list_scopes_owner_and_family(self, task_db):
        task_db.add_task(make_task(id="mine"))
        task_db.add_task(make_task(id="shared", owner_id="dana", family_id="fam1"))
        task_db.add_task(make_task(id="other", owner_id="dana"))
        ids = {t.id for t in task_db.list_tasks(owner_id="amit", family_id="fam1")}
        assert ids == {"mine", "shared"}

    def test_list_orders_by_priority(self, task_db):
        task_db.add_task(make_task(id="low", name="A", priority=4))
        task_db.add_task(make_task(id="high", name="B", priority=1))
        assert [t.id for t in task_db.list_tasks(owner_id="amit")] == ["high", "low"]

    def test_get_tasks_skips_unknown(self, task_db):
        task_db.add_task(make_task())
        assert list(task_db.get_tasks(["t1", "nope"])) == ["t1"]

    def test_deactivate(self, task_db):
        task_db.add_task(make_task())
        assert task_db.deactivate_task("t1") is True
        assert task_db.deactivate_task("t1") is False
        assert task_db.list_tasks(owner_id="amit") == []
        assert len(task_db.list_tasks(owner_id="amit", active_only=False)) == 1

    def test_update_missing_task(self, task_db):
        with pytest.raises(ValueError, match="not found"):
            task_db.update_task(make_task(id="ghost"))

    def test_legacy_numeric_weekdays_load(self, task_db, tmp_db_path):
        task_db.add_task(make_gym_task())
        with sqlite3.connect(tmp_db_path) as conn:
            # 0 = Sunday in the old numbering
            conn.execute("UPDATE tasks SET fixed_days = '[0, 2]' WHERE id = 'gym'")
        assert task_db.get_task("gym").fixed_days == {Weekday.SUNDAY, Weekday.TUESDAY}


# ---------------------------------------------------------------------------
# AvailabilityDB
# ---------------------------------------------------------------------------

class TestAvailabilityDB:
    def test_profile_defaults_from_settings(self, availability_db):
        profile = availability_db.get_profile("amit")
        assert profile.country == "UK"
        assert (profile.available_start, profile.available_end) == (time(6, 0), time(22, 0))

    def test_profile_upsert(self, availability_db):
        availability_db.upsert_profile(UserProfile("amit", "Amit", "us", time(7, 0), time(21, 0)))
        profile = availability_db.get_profile("amit")
        assert profile.country == "US"
        assert profile.available_start == time(7, 0)

    def test_inverted_window_rejected(self, availability_db):
        with pytest.raises(ValueError):
            availability_db.upsert_profile(UserProfile("amit", available_start=time(22, 0), available_end=time(6, 0)))

    def test_work_day_upsert(self, availability_db):
        availability_db.set_work_day("amit", WorkScheduleDay(Weekday.MONDAY, True, time(9, 0), time(17, 0)))
        availability_db.set_work_day("amit", WorkScheduleDay(Weekday.MONDAY, True, time(8, 0), time(16, 0)))
        schedule = availability_db.get_work_schedule("amit")
        assert list(schedule) == [Weekday.MONDAY]
        assert schedule[Weekday.MONDAY].start_time == time(8, 0)

    def test_working_day_needs_times(self, availability_db):
        with pytest.raises(ValueError):
            availability_db.set_work_day("amit", WorkScheduleDay(Weekday.MONDAY, True))

    def test_vacation_overlap_filter(self, availability_db):
        availability_db.add_vacation("amit", date(2026, 2, 27), date(2026, 3, 3))
        availability_db.add_vacation("amit", date(2026, 4, 1), date(2026, 4, 5))
        found = availability_db.list_vacations("amit", date(2026, 3, 2), date(2026, 3, 8))
        assert [v.start_date for v in found] == [date(2026, 2, 27)]

    def test_vacation_end_before_start(self, availability_db):
        with pytest.raises(ValueError):
            availability_db.add_vacation("amit", date(2026, 3, 5), date(2026, 3, 1))


# ---------------------------------------------------------------------------
# FamilyDB
# ---------------------------------------------------------------------------

class TestFamilyDB:
    def test_members_and_lookup(self, family_db, family):
        assert set(family_db.member_ids(family)) == {"amit", "dana"}
        assert family_db.family_of("dana") == "fam1"
        assert family_db.family_of("stranger") is None

    def test_add_member_is_idempotent(self, family_db, family):
        family_db.add_member(family, "dana")
        assert len(family_db.member_ids(family)) == 2

    def test_remove_member(self, family_db, family):
        assert family_db.remove_member(family, "dana") is True
        assert family_db.member_ids(family) == ["amit"]


# ---------------------------------------------------------------------------
# ScheduleDB
# ---------------------------------------------------------------------------

def _add(schedule_db, day=3, assignee="amit", task_id="t1"):
    return schedule_db.add_instance(
        task_id, assignee, datetime(2026, 3, day, 18), datetime(2026, 3, day, 18, 30),
    )


class TestScheduleDB:
    def test_start_must_precede_end(self, schedule_db):
        with pytest.raises(ValueError):
            schedule_db.add_instance("t1", "amit", datetime(2026, 3, 3, 18), datetime(2026, 3, 3, 18))

    def test_status_transitions(self, schedule_db):
        instance = _add(schedule_db)
        done = schedule_db.set_status(instance.id, InstanceStatus.COMPLETED)
        assert done.status is InstanceStatus.COMPLETED
        with pytest.raises(ValueError, match="already completed"):
            schedule_db.set_status(instance.id, InstanceStatus.SKIPPED)

    def test_cannot_reset_to_pending(self, schedule_db):
        instance = _add(schedule_db)
        with pytest.raises(ValueError):
            schedule_db.set_status(instance.id, InstanceStatus.PENDING)

    def test_unknown_instance(self, schedule_db):
        with pytest.raises(ValueError, match="not found"):
            schedule_db.set_status(999, InstanceStatus.COMPLETED)

    def test_skipped_excluded_from_counts(self, schedule_db):
        skipped = _add(schedule_db, day=3)
        _add(schedule_db, day=4)
        schedule_db.set_status(skipped.id, InstanceStatus.SKIPPED)
        assert schedule_db.scheduled_dates("t1", date(2026, 3, 2), date(2026, 3, 8)) == [date(2026, 3, 4)]
        assert len(schedule_db.list_for_task("t1", date(2026, 3, 2), date(2026, 3, 8), include_skipped=True)) == 2

    def test_clear_pending_keeps_completed_and_other_members(self, schedule_db):
        pending = _add(schedule_db, day=3)
        completed = _add(schedule_db, day=4)
        schedule_db.set_status(completed.id, InstanceStatus.COMPLETED)
        dana = _add(schedule_db, day=3, assignee="dana")
        outside = _add(schedule_db, day=10)

        cleared = schedule_db.clear_pending("amit", date(2026, 3, 2), date(2026, 3, 8))
        assert [i.id for i in cleared] == [pending.id]
        for kept in (completed, dana, outside):
            assert schedule_db.get_instance(kept.id) is not None

    def test_find_by_plan_item(self, schedule_db):
        instance = schedule_db.add_instance(
            "t1", "amit", datetime(2026, 3, 3, 18), datetime(2026, 3, 3, 18, 30), plan_item_id="item-1",
        )
        assert schedule_db.find_by_plan_item("item-1").id == instance.id
        assert schedule_db.find_by_plan_item("item-2") is None


# ---------------------------------------------------------------------------
# WeeklyPlanDB
# ---------------------------------------------------------------------------

def _plan(plan_id="p1", status=PlanStatus.DRAFT, expires=datetime(2026, 3, 9, 23, 59, 59), family_id="fam1"):
    item = WeeklyPlanItem(
        id=f"{plan_id}-i1", plan_id=plan_id, task_id="t1", assignee_id="amit",
        scheduled_date=date(2026, 3, 3), start=datetime(2026, 3, 3, 18),
        end=datetime(2026, 3, 3, 18, 30), reasoning="Evening slot",
    )
    return WeeklyPlan(
        id=plan_id, family_id=family_id, week_start=date(2026, 3, 2), week_end=date(2026, 3, 8),
        status=status, created_by="amit", created_at=datetime(2026, 3, 1, 12),
        expires_at=expires, items=[item],
    )


def _decide(votes, members):
    if any(v is ApprovalStatus.REJECTED for v in votes.values()):
        return PlanStatus.REJECTED
    if all(votes.get(m) is ApprovalStatus.APPROVED for m in members):
        return PlanStatus.APPROVED
    return PlanStatus.PENDING_APPROVAL


def _edit(editor="dana"):
    return PlanItemEdit(editor, datetime(2026, 3, 1, 14), {"start": ("a", "b")})


class TestWeeklyPlanDB:
    def test_replace_plan_creates_pending_votes(self, plan_db):
        stored = plan_db.replace_plan(_plan(), ["amit", "dana"])
        assert [a.user_id for a in stored.approvals] == ["amit", "dana"]
        assert all(a.status is ApprovalStatus.PENDING for a in stored.approvals)
        assert stored.items[0].version == 1

    def test_replace_keeps_approved_plan(self, plan_db):
        plan_db.replace_plan(_plan("old"), ["amit"])
        plan_db.record_vote("old", "amit", ApprovalStatus.APPROVED, datetime(2026, 3, 1, 13), None, ["amit"], _decide)
        plan_db.replace_plan(_plan("new"), ["amit"])
        assert plan_db.get_plan("old").status is PlanStatus.APPROVED
        assert plan_db.get_plan_for_week("fam1", date(2026, 3, 2)) is not None

    def test_record_vote_sets_timestamps(self, plan_db):
        plan_db.replace_plan(_plan(), ["amit", "dana"])
        previous, plan = plan_db.record_vote(
            "p1", "dana", ApprovalStatus.REJECTED, datetime(2026, 3, 1, 13), "Too busy",
            ["amit", "dana"], _decide,
        )
        assert previous is PlanStatus.DRAFT
        assert plan.status is PlanStatus.REJECTED
        assert plan.rejected_at == datetime(2026, 3, 1, 13)
        vote = next(a for a in plan.approvals if a.user_id == "dana")
        assert vote.comment == "Too busy"

    def test_record_vote_on_missing_or_closed_plan(self, plan_db):
        with pytest.raises(PlanNotFound):
            plan_db.record_vote("nope", "amit", ApprovalStatus.APPROVED, datetime.now(), None, ["amit"], _decide)
        plan_db.replace_plan(_plan(), ["amit"])
        plan_db.record_vote("p1", "amit", ApprovalStatus.APPROVED, datetime.now(), None, ["amit"], _decide)
        with pytest.raises(PlanStateError):
            plan_db.record_vote("p1", "amit", ApprovalStatus.REJECTED, datetime.now(), None, ["amit"], _decide)

    def test_update_item_if_version(self, plan_db):
        stored = plan_db.replace_plan(_plan(), ["amit", "dana"])
        item = stored.items[0]
        item.start, item.end = datetime(2026, 3, 3, 19), datetime(2026, 3, 3, 19, 30)
        assert plan_db.update_item_if_version(item, 1, _edit(), reset_approvals=False) is True
        assert plan_db.update_item_if_version(item, 1, _edit("amit"), reset_approvals=False) is False

        reloaded = plan_db.get_item(item.id)
        assert reloaded.version == 2
        assert reloaded.last_edited_by == "dana"
        assert reloaded.history[0].changes == {"start": ("a", "b")}

    def test_update_refused_once_plan_closed(self, plan_db):
        stored = plan_db.replace_plan(_plan(), ["amit"])
        plan_db.transition("p1", PlanStatus.EXPIRED, [PlanStatus.DRAFT])
        assert plan_db.update_item_if_version(stored.items[0], 1, _edit(), reset_approvals=False) is False

    def test_delete_item_if_version(self, plan_db):
        stored = plan_db.replace_plan(_plan(), ["amit"])
        item = stored.items[0]
        assert plan_db.delete_item_if_version(item.id, "p1", 2, reset_approvals=False) is False
        assert plan_db.delete_item_if_version(item.id, "p1", 1, reset_approvals=False) is True
        assert plan_db.get_item(item.id) is None

    def test_expire_stale_only_open_plans(self, plan_db):
        plan_db.replace_plan(_plan("open"), ["amit"])
        plan_db.replace_plan(_plan("later", expires=datetime(2026, 3, 20), family_id="fam2"), ["amit"])
        assert plan_db.expire_stale(datetime(2026, 3, 10)) == ["open"]
        assert plan_db.list_plans("fam1", PlanStatus.EXPIRED)[0].id == "open"

    def test_record_materialization(self, plan_db):
        stored = plan_db.replace_plan(_plan(), ["amit"])
        plan_db.record_materialization(stored.items[0].id, error="Task inactive")
        assert plan_db.get_item(stored.items[0].id).materialization_error == "Task inactive"
        plan_db.record_materialization(stored.items[0].id, instance_id=7)
        item = plan_db.get_item(stored.items[0].id)
        assert (item.instance_id, item.materialization_error) == (7, None)
