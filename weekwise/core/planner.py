"""
WeekWise — Planner.

Asks the configured LLM to lay out a family's week, then treats the answer
as untrusted: every proposed placement is re-validated, capped at what is
still achievable and checked against the blocked intervals. When no model is
configured, or the model fails, the deterministic week scheduler is used.
"""

from __future__ import annotations

import json
import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from weekwise.core import llm
from weekwise.core.achievable import AchievableInstances, calculate_achievable_instances
from weekwise.core.availability import (
    AvailabilityResult,
    blocked_for_day,
    format_blocked_for_prompt,
    resolve_availability,
)
from weekwise.core.intervals import BlockedInterval, BlockKind, Interval, overlaps
from weekwise.core.validator import ProposedPlacement, RejectedPlacement, validate_placements
from weekwise.core.week_scheduler import SchedulingConflict, plan_week
from weekwise.data.models import InstanceStatus, Task, Weekday
from weekwise.ports.calendar_port import CalendarPort

logger = logging.getLogger(__name__)

SOURCE_LLM = "llm"
SOURCE_DETERMINISTIC = "deterministic"


@dataclass
class PlannerResult:
    placements: list[ProposedPlacement] = field(default_factory=list)
    rejected: list[RejectedPlacement] = field(default_factory=list)
    conflicts: list[SchedulingConflict] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    summary: str = ""
    source: str = SOURCE_DETERMINISTIC


# ---------------------------------------------------------------------------
# Planner JSON contract
# ---------------------------------------------------------------------------

class PlannerItem(BaseModel):
    """One entry of the planner's "schedule" array.

    JSON example:
    {
        "taskId": "t1",
        "assignedToUserId": "u1",
        "date": "2026-03-02",
        "startTime": "07:00",
        "endTime": "07:45",
        "reasoning": "Fixed morning slot"
    }
    """
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    task_id: str = Field(alias="taskId")
    assignee_id: str = Field(alias="assignedToUserId")
    date: str
    start_time: str = Field(alias="startTime")
    end_time: str = Field(alias="endTime")
    reasoning: str = ""


class PlannerConflict(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    task_id: str = Field(default="", alias="taskId")
    reason: str = ""


class PlannerResponse(BaseModel):
    schedule: list[dict] = []
    conflicts: list[PlannerConflict] = []
    summary: str = ""


_SYSTEM_PROMPT = """\
You are a family scheduling assistant. You place recurring tasks into free
time for one calendar week.

Rules:
- Never place a task over a blocked interval of the person it is assigned to.
- Only place tasks inside each person's available window.
- Tasks with mode "fixed" go on their fixed days at exactly their fixed time.
- Tasks with required days may only go on those days.
- Schedule exactly "instances_needed" entries per task and no more.
- Personal goals go to their owner. Shared chores should be split fairly.
- Explain each placement briefly in "reasoning".

Return ONLY a valid JSON object with this structure:
{
  "schedule": [
    {"taskId": "...", "assignedToUserId": "...", "date": "YYYY-MM-DD",
     "startTime": "HH:MM", "endTime": "HH:MM", "reasoning": "..."}
  ],
  "conflicts": [{"taskId": "...", "reason": "..."}],
  "summary": "One or two encouraging sentences."
}
"""


def _clean_llm_response(raw_text: str) -> str:
    """Remove markdown code block delimiters from the raw response."""
    cleaned_text = raw_text.strip()
    if cleaned_text.startswith("```json"):
        cleaned_text = cleaned_text.removeprefix("```json")
    elif cleaned_text.startswith("```"):
        cleaned_text = cleaned_text.removeprefix("```")
    if cleaned_text.endswith("```"):
        cleaned_text = cleaned_text.removesuffix("```")
    return cleaned_text.strip()


def _days(days) -> list[str] | None:
    order = list(Weekday)
    return [d.label for d in sorted(days, key=order.index)] or None


def _task_summary(task: Task, instances_needed: int) -> dict:
    return {
        "id": task.id,
        "name": task.name,
        "type": task.kind.value,
        "owner": task.owner_id,
        "default_assignee": task.default_assignee_id,
        "duration_minutes": task.duration_minutes,
        "priority": task.priority,
        "mode": task.mode.value,
        "fixed_days": _days(task.fixed_days),
        "fixed_time": task.fixed_time.strftime("%H:%M") if task.fixed_time else None,
        "required_days": _days(task.required_days),
        "frequency": task.frequency,
        "frequency_period": task.frequency_period.value,
        "preferred_window": (
            f"{task.preferred_time_start:%H:%M}-{task.preferred_time_end:%H:%M}"
            if task.preferred_time_start and task.preferred_time_end else None
        ),
        "instances_needed": instances_needed,
    }


def build_prompt(
    tasks: Sequence[Task],
    needed: dict[str, int],
    availability: dict[str, AvailabilityResult],
    start: date,
    end: date,
    now: datetime,
) -> str:
    members = []
    for user_id, avail in availability.items():
        members.append(
            f"### Member {user_id}\n"
            f"Available window: {avail.window[0]:%H:%M}-{avail.window[1]:%H:%M}\n"
            f"Blocked intervals:\n{format_blocked_for_prompt(avail.blocked)}"
        )
    task_json = json.dumps(
        [_task_summary(t, needed[t.id]) for t in tasks if needed.get(t.id)], indent=2
    )
    return (
        f"Current time: {now:%A %Y-%m-%d %H:%M}\n"
        f"Week to schedule: {start:%A %Y-%m-%d} to {end:%A %Y-%m-%d}\n\n"
        "## Family members\n\n" + "\n\n".join(members) + "\n\n"
        f"## Tasks\n{task_json}\n"
    )


def _parse_response(raw_text: str) -> tuple[list[ProposedPlacement], PlannerResponse, list[str]]:
    """Parse the planner JSON; malformed entries are dropped with a warning."""
    data = json.loads(_clean_llm_response(raw_text))
    if not isinstance(data, dict):
        raise ValueError(f"Planner returned {type(data).__name__}, expected an object")
    response = PlannerResponse.model_validate(data)

    placements: list[ProposedPlacement] = []
    warnings: list[str] = []
    for entry in response.schedule:
        try:
            item = PlannerItem.model_validate(entry)
            placements.append(ProposedPlacement(
                task_id=item.task_id,
                assignee_id=item.assignee_id,
                scheduled_date=item.date,
                start_time=item.start_time,
                end_time=item.end_time,
                reasoning=item.reasoning,
            ))
        except ValidationError as exc:
            logger.warning("Skipping malformed planner entry %s: %s", entry, exc)
            warnings.append(f"Ignored a malformed planner entry: {entry}")
    return placements, response, warnings


def _screen(
    placements: list[ProposedPlacement],
    tasks: dict[str, Task],
    achievable: dict[str, AchievableInstances],
    availability: dict[str, AvailabilityResult],
    start: date,
    end: date,
    now: datetime,
) -> tuple[list[ProposedPlacement], list[SchedulingConflict]]:
    """Drop placements that are out of range, in the past, over a block or
    double-booked, and any beyond the task's achievable count for the week
    or for that day."""
    kept: list[ProposedPlacement] = []
    dropped: list[SchedulingConflict] = []
    taken: dict[str, list[Interval]] = defaultdict(list)
    used: dict[str, int] = defaultdict(int)
    used_on_day: Counter = Counter()

    for p in sorted(placements, key=lambda p: (p.scheduled_date, p.start_time)):
        task = tasks[p.task_id]
        reason = None
        avail = availability.get(p.assignee_id)
        slot = Interval(p.start, p.end)
        if not start <= p.scheduled_date <= end:
            reason = f"{p.scheduled_date} is outside the planned week"
        elif p.start <= now:
            reason = "Start time is in the past"
        elif p.task_id not in achievable or used[p.task_id] >= achievable[p.task_id].count:
            reason = "More instances than can still be achieved this week"
        elif used_on_day[(p.task_id, p.scheduled_date)] >= achievable[p.task_id].day_limits.get(p.scheduled_date, 0):
            reason = "No more instances of this task fit on that day"
        elif avail is None:
            reason = f"No availability known for {p.assignee_id}"
        elif not (avail.window[0] <= p.start_time and p.end_time <= avail.window[1]):
            reason = "Outside the assignee's available window"
        else:
            hits = [b for b in blocked_for_day(avail.blocked, p.scheduled_date) if overlaps(b, slot)]
            if hits:
                reason = "Overlaps " + ", ".join(sorted({b.kind.value for b in hits}))
            elif any(overlaps(slot, t) for t in taken[p.assignee_id]):
                reason = "Overlaps another placement"

        if reason:
            logger.info("Dropping planner placement of %s on %s: %s", task.name, p.scheduled_date, reason)
            dropped.append(SchedulingConflict(task.id, task.name, p.scheduled_date, reason))
            continue
        kept.append(p)
        taken[p.assignee_id].append(slot)
        used[p.task_id] += 1
        used_on_day[(p.task_id, p.scheduled_date)] += 1
    return kept, dropped


async def propose_week(
    tasks: Sequence[Task],
    member_ids: Sequence[str],
    *,
    current_user_id: str,
    availability_store,
    schedule_store,
    calendar: CalendarPort | None,
    start: date,
    end: date,
    now: datetime,
) -> PlannerResult:
    """Propose placements for [start, end], validated before they are returned."""
    from weekwise.config import settings

    async def _fallback(warnings: list[str]) -> PlannerResult:
        week = await plan_week(
            tasks, member_ids,
            availability_store=availability_store, schedule_store=schedule_store,
            calendar=calendar, start=start, end=end, now=now,
        )
        checked = validate_placements(week.placements, {t.id: t for t in tasks}, current_user_id, member_ids or None)
        return PlannerResult(
            placements=checked.accepted,
            rejected=checked.rejected,
            conflicts=week.conflicts,
            warnings=warnings + week.warnings,
            summary=week.summary,
            source=SOURCE_DETERMINISTIC,
        )

    if not llm.is_configured():
        return await _fallback([])

    users = list(dict.fromkeys([*member_ids, *(t.owner_id for t in tasks)]))
    availability: dict[str, AvailabilityResult] = {}
    warnings: list[str] = []
    for user in users:
        availability[user] = await resolve_availability(availability_store, calendar, user, start, end)
        warnings.extend(availability[user].warnings)
        # Already committed work counts as blocked for the planner too
        for instance in schedule_store.list_for_assignee(user, start, end):
            if instance.status is InstanceStatus.SKIPPED:
                continue
            availability[user].blocked.append(BlockedInterval(
                instance.start, instance.end, BlockKind.THIRD_PARTY_EVENT, "Already scheduled task",
            ))
        availability[user].blocked.sort(key=lambda b: (b.start, b.end))

    achievable = {
        t.id: calculate_achievable_instances(
            t, start, end, schedule_store.scheduled_dates(t.id, start, end), now
        )
        for t in tasks
    }
    needed = {task_id: a.count for task_id, a in achievable.items()}
    if not any(needed.values()):
        return PlannerResult(summary="Everything achievable this week is already scheduled.", warnings=warnings)

    prompt = build_prompt(tasks, needed, availability, start, end, now)
    try:
        raw = await llm.complete(_SYSTEM_PROMPT, prompt, max_tokens=settings.LLM_MAX_TOKENS)
        proposed, response, parse_warnings = _parse_response(raw)
    except llm.PlannerError as exc:
        logger.warning("Planner unavailable, using deterministic scheduler: %s", exc)
        return await _fallback(warnings + [f"Planner unavailable: {exc}"])
    except ValueError as exc:
        logger.error("Failed to parse planner response as JSON: %s", exc)
        return await _fallback(warnings + ["Planner answer was unusable"])

    task_map = {t.id: t for t in tasks}
    checked = validate_placements(proposed, task_map, current_user_id, member_ids or None)
    kept, dropped = _screen(checked.accepted, task_map, achievable, availability, start, end, now)

    conflicts = [
        SchedulingConflict(c.task_id, task_map[c.task_id].name if c.task_id in task_map else c.task_id, None, c.reason)
        for c in response.conflicts
    ] + dropped
    return PlannerResult(
        placements=kept,
        rejected=checked.rejected,
        conflicts=conflicts,
        warnings=warnings + parse_warnings,
        summary=response.summary or f"Scheduled {len(kept)} task(s).",
        source=SOURCE_LLM,
    )
