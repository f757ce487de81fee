"""
WeekWise — Plan item editing.

Any family member may move, reassign or remove an item of an open weekly
plan. Writes are optimistic: the caller names the version it read, and the
store applies the change only if that is still the current version.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date, datetime, time

from weekwise.core.errors import (
    NotFamilyMember,
    PlanNotFound,
    PlanStateError,
    ValidationRejected,
    VersionConflict,
)
from weekwise.core.validator import ProposedPlacement, RejectionReason, check_placement
from weekwise.data.models import PlanItemEdit, WeeklyPlan, WeeklyPlanItem

logger = logging.getLogger(__name__)

_TRACKED = ("assignee_id", "scheduled_date", "start", "end", "reasoning")


def _load(plan_store, family_store, item_id: str, editor_id: str) -> tuple[WeeklyPlanItem, WeeklyPlan, list[str]]:
    item = plan_store.get_item(item_id)
    if item is None:
        raise PlanNotFound(f"Plan item {item_id} not found")
    plan = plan_store.get_plan(item.plan_id)
    if plan is None:
        raise PlanNotFound(f"Weekly plan {item.plan_id} not found")
    members = family_store.member_ids(plan.family_id)
    if editor_id not in members:
        raise NotFamilyMember(f"{editor_id} is not a member of family {plan.family_id}")
    if not plan.status.is_editable:
        raise PlanStateError(f"Plan {plan.id} is {plan.status.value} and can no longer be edited")
    return item, plan, members


def _conflict(plan_store, item_id: str, expected_version: int) -> Exception:
    """Explain why a conditional write matched nothing."""
    current = plan_store.get_item(item_id)
    if current is None:
        return PlanNotFound(f"Plan item {item_id} was removed")
    if current.version != expected_version:
        return VersionConflict(
            item_id, expected_version, current.version,
            current.last_edited_by, current.last_edited_at,
        )
    plan = plan_store.get_plan(current.plan_id)
    status = plan.status.value if plan else "gone"
    return PlanStateError(f"Plan {current.plan_id} is {status} and can no longer be edited")


def _as_text(value) -> str | None:
    if value is None:
        return None
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def _diff(old: WeeklyPlanItem, new: WeeklyPlanItem) -> dict[str, tuple[str | None, str | None]]:
    return {
        name: (_as_text(getattr(old, name)), _as_text(getattr(new, name)))
        for name in _TRACKED
        if getattr(old, name) != getattr(new, name)
    }


def edit_plan_item(
    item_id: str,
    editor_id: str,
    expected_version: int,
    *,
    plan_store,
    family_store,
    task_store,
    now: datetime,
    assignee_id: str | None = None,
    scheduled_date: date | None = None,
    start_time: time | None = None,
    end_time: time | None = None,
    reasoning: str | None = None,
) -> WeeklyPlanItem:
    """Apply an edit to one plan item and return the stored result.

    Moving the start without giving an end keeps the item's duration. The
    edited placement must stay within one day and pass the same checks as a
    planner proposal, or ValidationRejected is raised. Raises VersionConflict
    when `expected_version` is stale.
    """
    from weekwise.config import settings

    item, plan, members = _load(plan_store, family_store, item_id, editor_id)
    if item.version != expected_version:
        raise VersionConflict(
            item_id, expected_version, item.version, item.last_edited_by, item.last_edited_at
        )

    day = scheduled_date or item.scheduled_date
    start_clock = start_time or item.start.time()
    if end_time is None:
        end_at = datetime.combine(day, start_clock) + (item.end - item.start)
        if end_at.date() != day:
            raise ValidationRejected(
                RejectionReason.WRONG_TIME_OF_DAY.value,
                f"Starting at {start_clock:%H:%M} would run past midnight",
            )
        end_clock = end_at.time()
    else:
        end_clock = end_time
    if end_clock <= start_clock:
        raise ValidationRejected(
            RejectionReason.WRONG_TIME_OF_DAY.value,
            f"End {end_clock:%H:%M} must be after start {start_clock:%H:%M}",
        )

    placement = ProposedPlacement(
        task_id=item.task_id,
        assignee_id=assignee_id or item.assignee_id,
        scheduled_date=day,
        start_time=start_clock,
        end_time=end_clock,
        reasoning=item.reasoning if reasoning is None else reasoning,
    )
    if not plan.week_start <= placement.scheduled_date <= plan.week_end:
        raise PlanStateError(
            f"{placement.scheduled_date} is outside the week of {plan.week_start}"
        )
    check_placement(placement, task_store.get_tasks([item.task_id]), editor_id, members)

    edited = replace(
        item,
        assignee_id=placement.assignee_id,
        scheduled_date=placement.scheduled_date,
        start=placement.start,
        end=placement.end,
        reasoning=placement.reasoning,
    )
    changes = _diff(item, edited)
    if not changes:
        return item

    edit = PlanItemEdit(editor_id=editor_id, edited_at=now, changes=changes)
    if not plan_store.update_item_if_version(
        edited, expected_version, edit, reset_approvals=settings.RESET_APPROVALS_ON_EDIT
    ):
        raise _conflict(plan_store, item_id, expected_version)

    logger.info(
        "Plan item %s edited by %s (v%d -> v%d): %s",
        item_id, editor_id, expected_version, expected_version + 1, ", ".join(changes),
    )
    return plan_store.get_item(item_id)


def remove_plan_item(
    item_id: str,
    editor_id: str,
    expected_version: int,
    *,
    plan_store,
    family_store,
) -> None:
    """Delete one item from an open plan, subject to the same version check."""
    from weekwise.config import settings

    item, plan, _ = _load(plan_store, family_store, item_id, editor_id)
    if item.version != expected_version:
        raise VersionConflict(
            item_id, expected_version, item.version, item.last_edited_by, item.last_edited_at
        )
    if not plan_store.delete_item_if_version(
        item_id, plan.id, expected_version, reset_approvals=settings.RESET_APPROVALS_ON_EDIT
    ):
        raise _conflict(plan_store, item_id, expected_version)
    logger.info("Plan item %s removed from plan %s by %s", item_id, plan.id, editor_id)
