"""
WeekWise — Weekly Plan Consensus.

Lifecycle of a family's shared weekly plan:

    draft -> pending_approval -> approved | rejected
    draft | pending_approval -> expired   (external sweep)

Any single rejection rejects the plan. Unanimous approval commits every
item as a ScheduledTaskInstance; items that fail to commit keep their error
and can be retried later, so one bad item never undoes the family's decision.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Mapping, Sequence

from weekwise.core.commit import persist_placement
from weekwise.core.errors import NotFamilyMember, PlanNotFound, PlanStateError
from weekwise.core.planner import PlannerResult, propose_week
from weekwise.core.validator import ProposedPlacement, check_placement
from weekwise.data.models import (
    ApprovalStatus,
    PlanStatus,
    Task,
    WeeklyPlan,
    WeeklyPlanItem,
)
from weekwise.ports.calendar_port import CalendarPort

logger = logging.getLogger(__name__)


@dataclass
class MaterializationReport:
    plan_id: str
    succeeded: dict[str, int] = field(default_factory=dict)    # item id -> instance id
    failed: dict[str, str] = field(default_factory=dict)       # item id -> error
    calendar_errors: dict[str, str] = field(default_factory=dict)

    @property
    def complete(self) -> bool:
        return not self.failed


@dataclass
class VoteOutcome:
    plan: WeeklyPlan
    previous_status: PlanStatus
    materialization: MaterializationReport | None = None


@dataclass
class GeneratedPlan:
    plan: WeeklyPlan
    planner: PlannerResult


def decide_plan_status(
    votes: Mapping[str, ApprovalStatus],
    member_ids: Sequence[str],
    submitted: bool = False,
) -> PlanStatus:
    """Plan status implied by the members' votes.

    First rejection wins. Approval needs every member to approve.
    """
    if any(v is ApprovalStatus.REJECTED for v in votes.values()):
        return PlanStatus.REJECTED
    members = list(member_ids) or list(votes)
    if members and all(votes.get(m) is ApprovalStatus.APPROVED for m in members):
        return PlanStatus.APPROVED
    if submitted or any(v is ApprovalStatus.APPROVED for v in votes.values()):
        return PlanStatus.PENDING_APPROVAL
    return PlanStatus.DRAFT


def week_bounds(day: date) -> tuple[date, date]:
    """Monday and Sunday of the week containing `day`."""
    monday = day - timedelta(days=day.weekday())
    return monday, monday + timedelta(days=6)


def _members_or_raise(family_store, family_id: str, user_id: str) -> list[str]:
    members = family_store.member_ids(family_id)
    if user_id not in members:
        raise NotFamilyMember(f"{user_id} is not a member of family {family_id}")
    return members


def _load_plan(plan_store, plan_id: str) -> WeeklyPlan:
    plan = plan_store.get_plan(plan_id)
    if plan is None:
        raise PlanNotFound(f"Weekly plan {plan_id} not found")
    return plan


def approval_summary(plan: WeeklyPlan, member_ids: Sequence[str]) -> dict:
    """Who approved, rejected or has yet to vote."""
    votes = {a.user_id: a.status for a in plan.approvals}
    summary: dict = {"status": plan.status.value, "approved": [], "rejected": [], "pending": []}
    for member in member_ids:
        summary[votes.get(member, ApprovalStatus.PENDING).value].append(member)
    return summary


# ---------------------------------------------------------------------------
# Generation and submission
# ---------------------------------------------------------------------------

async def generate_weekly_plan(
    family_id: str,
    created_by: str,
    week_of: date,
    *,
    task_store,
    family_store,
    plan_store,
    availability_store,
    schedule_store,
    calendar: CalendarPort | None,
    now: datetime,
) -> GeneratedPlan:
    """Create a draft plan for the week containing `week_of`.

    Any unapproved plan for the same week is replaced.
    """
    from weekwise.config import settings

    members = _members_or_raise(family_store, family_id, created_by)
    week_start, week_end = week_bounds(week_of)
    if week_end < now.date():
        raise PlanStateError(f"Week of {week_start} is already over")

    tasks: dict[str, Task] = {t.id: t for t in task_store.list_tasks(family_id=family_id)}
    for member in members:
        tasks.update({t.id: t for t in task_store.list_tasks(owner_id=member)})

    proposal = await propose_week(
        list(tasks.values()), members,
        current_user_id=created_by,
        availability_store=availability_store,
        schedule_store=schedule_store,
        calendar=calendar,
        start=max(week_start, now.date()),
        end=week_end,
        now=now,
    )

    plan_id = uuid.uuid4().hex
    plan = WeeklyPlan(
        id=plan_id,
        family_id=family_id,
        week_start=week_start,
        week_end=week_end,
        status=PlanStatus.DRAFT,
        created_by=created_by,
        created_at=now,
        expires_at=datetime.combine(
            week_end + timedelta(days=settings.PLAN_EXPIRY_DAYS), time(23, 59, 59)
        ),
        reasoning=proposal.summary,
        items=[
            WeeklyPlanItem(
                id=uuid.uuid4().hex,
                plan_id=plan_id,
                task_id=p.task_id,
                assignee_id=p.assignee_id,
                scheduled_date=p.scheduled_date,
                start=p.start,
                end=p.end,
                reasoning=p.reasoning,
                position=i,
            )
            for i, p in enumerate(proposal.placements)
        ],
    )
    stored = plan_store.replace_plan(plan, members)
    return GeneratedPlan(stored, proposal)


def submit_plan(plan_id: str, user_id: str, *, plan_store, family_store) -> WeeklyPlan:
    """Ask the family to vote on a draft plan."""
    plan = _load_plan(plan_store, plan_id)
    _members_or_raise(family_store, plan.family_id, user_id)
    if plan.status is PlanStatus.PENDING_APPROVAL:
        return plan
    if not plan_store.transition(plan_id, PlanStatus.PENDING_APPROVAL, [PlanStatus.DRAFT]):
        current = _load_plan(plan_store, plan_id)
        raise PlanStateError(f"Plan {plan_id} is {current.status.value} and cannot be submitted")
    logger.info("Plan %s submitted for approval by %s", plan_id, user_id)
    return _load_plan(plan_store, plan_id)


# ---------------------------------------------------------------------------
# Voting and materialization
# ---------------------------------------------------------------------------

async def record_vote(
    plan_id: str,
    user_id: str,
    decision: ApprovalStatus,
    *,
    plan_store,
    family_store,
    task_store,
    schedule_store,
    calendar: CalendarPort | None,
    now: datetime,
    comment: str | None = None,
) -> VoteOutcome:
    """Record one member's approve/reject and apply the consensus rule.

    Recording and evaluating happen in one transaction, so of two
    simultaneous final approvals exactly one sees the plan become approved
    and runs materialization.
    """
    if decision is ApprovalStatus.PENDING:
        raise ValueError("A vote must approve or reject")

    plan = _load_plan(plan_store, plan_id)
    members = _members_or_raise(family_store, plan.family_id, user_id)
    if plan.status.is_terminal:
        raise PlanStateError(f"Plan {plan_id} is already {plan.status.value}")

    previous, plan = plan_store.record_vote(
        plan_id, user_id, decision, now, comment, members, decide_plan_status,
    )
    outcome = VoteOutcome(plan, previous)

    if plan.status is PlanStatus.APPROVED and previous is not PlanStatus.APPROVED:
        logger.info("Plan %s approved by all %d member(s), materializing", plan_id, len(members))
        outcome.materialization = await materialize_plan(
            plan, members,
            task_store=task_store, plan_store=plan_store,
            schedule_store=schedule_store, calendar=calendar,
        )
        outcome.plan = _load_plan(plan_store, plan_id)
    return outcome


async def materialize_plan(
    plan: WeeklyPlan,
    member_ids: Sequence[str],
    *,
    task_store,
    plan_store,
    schedule_store,
    calendar: CalendarPort | None,
) -> MaterializationReport:
    """Commit every not-yet-committed item of an approved plan.

    Each item's outcome is stored on the item itself. Items that already
    have a scheduled instance are left alone, so this is safe to re-run.
    """
    report = MaterializationReport(plan.id)
    tasks = task_store.get_tasks(item.task_id for item in plan.items)

    for item in plan.items:
        if item.instance_id is not None:
            report.succeeded[item.id] = item.instance_id
            continue
        existing = schedule_store.find_by_plan_item(item.id)
        if existing is not None:
            plan_store.record_materialization(item.id, instance_id=existing.id)
            report.succeeded[item.id] = existing.id
            continue

        try:
            placement = ProposedPlacement(
                task_id=item.task_id,
                assignee_id=item.assignee_id,
                scheduled_date=item.scheduled_date,
                start_time=item.start.time(),
                end_time=item.end.time(),
                reasoning=item.reasoning,
            )
            task = check_placement(placement, tasks, plan.created_by, member_ids)
            outcome = await persist_placement(
                placement, task,
                schedule_store=schedule_store, calendar=calendar, plan_item_id=item.id,
            )
        except Exception as exc:
            logger.error("Failed to materialize plan item %s: %s", item.id, exc)
            plan_store.record_materialization(item.id, error=str(exc))
            report.failed[item.id] = str(exc)
            continue

        plan_store.record_materialization(item.id, instance_id=outcome.instance.id)
        report.succeeded[item.id] = outcome.instance.id
        if outcome.calendar_error:
            report.calendar_errors[item.id] = outcome.calendar_error

    logger.info(
        "Plan %s materialized: %d succeeded, %d failed",
        plan.id, len(report.succeeded), len(report.failed),
    )
    return report


async def retry_materialization(
    plan_id: str,
    *,
    task_store,
    family_store,
    plan_store,
    schedule_store,
    calendar: CalendarPort | None,
) -> MaterializationReport:
    """Retry the items of an approved plan that failed to commit."""
    plan = _load_plan(plan_store, plan_id)
    if plan.status is not PlanStatus.APPROVED:
        raise PlanStateError(f"Plan {plan_id} is {plan.status.value}, not approved")
    return await materialize_plan(
        plan, family_store.member_ids(plan.family_id),
        task_store=task_store, plan_store=plan_store,
        schedule_store=schedule_store, calendar=calendar,
    )


def expire_stale_plans(plan_store, now: datetime) -> list[str]:
    """Expire open plans past their expiry time. Meant for a scheduled job."""
    expired = plan_store.expire_stale(now)
    if expired:
        logger.info("Expired %d weekly plan(s): %s", len(expired), ", ".join(expired))
    return expired
