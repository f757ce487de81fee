"""
WeekWise — Deterministic week scheduler ("optimize my week").

Three phases:
1. Expand each task into the instances still achievable this week.
2. Spread flexible instances evenly over their achievable days.
3. Place instances in priority order with the Slot Finder, treating
   everything placed so far as busy. Instances with no slot become conflicts.

Shared household chores without a default assignee go to whichever family
member has fewer assignments so far and has room that day.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable, Mapping, Sequence

from weekwise.core.achievable import calculate_achievable_instances
from weekwise.core.availability import AvailabilityResult, blocked_for_day, resolve_availability
from weekwise.core.intervals import Interval
from weekwise.core.slot_finder import CandidateSlot, candidate_slots
from weekwise.core.validator import ProposedPlacement
from weekwise.data.models import InstanceStatus, Task, TaskKind, Weekday
from weekwise.ports.calendar_port import CalendarPort

logger = logging.getLogger(__name__)


@dataclass
class TaskInstance:
    task: Task
    day: date
    number: int
    total: int


@dataclass
class SchedulingConflict:
    task_id: str
    task_name: str
    day: date | None
    reason: str
    blocking_kinds: tuple[str, ...] = ()


@dataclass
class WeekPlanResult:
    placements: list[ProposedPlacement] = field(default_factory=list)
    conflicts: list[SchedulingConflict] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def summary(self) -> str:
        text = f"Scheduled {len(self.placements)} task(s)"
        if self.conflicts:
            text += f", {len(self.conflicts)} could not be placed"
        return text + "."


# ---------------------------------------------------------------------------
# Phase 1 + 2: instances and days
# ---------------------------------------------------------------------------

def spread_days(
    days: Sequence[date], count: int, limits: Mapping[date, int] | None = None
) -> list[date]:
    """Pick `count` days out of `days`, spaced as evenly as possible.

    When more instances than days are needed, days repeat round-robin, each
    at most `limits[day]` times when limits are given.
    """
    if count <= 0 or not days:
        return []
    if count >= len(days):
        taken: Counter = Counter()
        picked: list[date] = []
        while len(picked) < count:
            before = len(picked)
            for d in days:
                if len(picked) >= count:
                    break
                if limits is not None and taken[d] >= limits.get(d, 0):
                    continue
                taken[d] += 1
                picked.append(d)
            if len(picked) == before:
                break
        return sorted(picked)

    spacing = len(days) / count
    picked = []
    for i in range(count):
        candidate = days[min(math.floor(i * spacing), len(days) - 1)]
        if candidate in picked:
            candidate = next(d for d in days if d not in picked)
        picked.append(candidate)
    return sorted(picked)


def expand_instances(
    tasks: Iterable[Task],
    start: date,
    end: date,
    already_scheduled: Mapping[str, Sequence[date]],
    now: datetime,
) -> list[TaskInstance]:
    """Expand tasks into dated instances, sorted by priority then day."""
    instances: list[TaskInstance] = []
    for task in tasks:
        if not task.active:
            continue
        existing = already_scheduled.get(task.id, ())
        achievable = calculate_achievable_instances(task, start, end, existing, now)
        if not achievable:
            logger.debug("Skipping %s: nothing achievable this week", task.name)
            continue

        if task.is_fixed:
            days = list(achievable.days)
        else:
            days = spread_days(achievable.days, achievable.count, achievable.day_limits)

        done = len([d for d in existing if start <= d <= end])
        total = done + len(days)
        for i, day in enumerate(days):
            instances.append(TaskInstance(task, day, done + i + 1, total))

    instances.sort(key=lambda inst: (inst.task.priority, inst.day, not inst.task.is_fixed))
    return instances


# ---------------------------------------------------------------------------
# Phase 3: placement
# ---------------------------------------------------------------------------

def _reasoning(instance: TaskInstance, slot: CandidateSlot, assignee: str, shared: bool) -> str:
    task = instance.task
    if task.is_fixed and task.fixed_time is not None:
        parts = [f"Scheduled at your fixed time of {task.fixed_time:%H:%M}"]
    elif task.preferred_time_start and task.preferred_time_end:
        parts = [
            "Scheduled within your preferred time window "
            f"({task.preferred_time_start:%H:%M}-{task.preferred_time_end:%H:%M})"
        ]
    else:
        parts = [f"Scheduled at the best free slot ({slot.start:%H:%M})"]
    if instance.total > 1:
        parts.append(f"This is session {instance.number} of {instance.total} for the week")
    if shared:
        parts.append(f"Assigned to {assignee} based on availability")
    return ". ".join(parts) + "."


def _eligible(task: Task, members: Sequence[str], counts: Counter) -> list[str]:
    if task.kind is TaskKind.PERSONAL_GOAL:
        return [task.owner_id]
    if task.default_assignee_id:
        return [task.default_assignee_id]
    pool = list(members) or [task.owner_id]
    return sorted(pool, key=lambda m: (counts[m], pool.index(m)))


def schedule_instances(
    instances: Iterable[TaskInstance],
    availability: Mapping[str, AvailabilityResult],
    now: datetime,
    members: Sequence[str] = (),
    busy: Mapping[str, Sequence[Interval]] | None = None,
) -> tuple[list[ProposedPlacement], list[SchedulingConflict]]:
    """Greedy placement of instances, in the order given."""
    placed: dict[str, list[Interval]] = {
        user: list((busy or {}).get(user, ())) for user in availability
    }
    counts: Counter = Counter()
    placements: list[ProposedPlacement] = []
    conflicts: list[SchedulingConflict] = []

    for instance in instances:
        task = instance.task
        candidates = _eligible(task, members, counts)
        shared = task.kind is TaskKind.HOUSEHOLD_CHORE and len(candidates) > 1

        chosen = None
        for user in candidates:
            avail = availability.get(user)
            if avail is None:
                continue
            day_blocks = blocked_for_day(avail.blocked, instance.day)
            slots = candidate_slots(task, instance.day, day_blocks, now, avail.window, placed[user])
            if slots:
                chosen = (user, slots[0])
                break

        if chosen is None:
            label = Weekday.of(instance.day).label
            if task.is_fixed and task.fixed_time is not None:
                reason = f"No available slot at {task.fixed_time:%H:%M} on {label}"
            else:
                reason = f"No {task.duration_minutes}-minute slot available on {label}"
            kinds: set[str] = set()
            for user in candidates:
                if user in availability:
                    kinds.update(b.kind.value for b in blocked_for_day(availability[user].blocked, instance.day))
            conflicts.append(SchedulingConflict(task.id, task.name, instance.day, reason, tuple(sorted(kinds))))
            logger.info("Conflict for '%s' on %s: %s", task.name, instance.day, reason)
            continue

        user, slot = chosen
        placed[user].append(slot.interval)
        counts[user] += 1
        placements.append(ProposedPlacement(
            task_id=task.id,
            assignee_id=user,
            scheduled_date=instance.day,
            start_time=slot.start.time(),
            end_time=slot.end.time(),
            reasoning=_reasoning(instance, slot, user, shared),
        ))

    placements.sort(key=lambda p: (p.scheduled_date, p.start_time))
    return placements, conflicts


async def plan_week(
    tasks: Sequence[Task],
    member_ids: Sequence[str],
    *,
    availability_store,
    schedule_store,
    calendar: CalendarPort | None,
    start: date,
    end: date,
    now: datetime,
) -> WeekPlanResult:
    """Deterministically plan [start, end] for a user or a family."""
    users = list(dict.fromkeys([*member_ids, *(t.owner_id for t in tasks)]))
    result = WeekPlanResult()

    availability: dict[str, AvailabilityResult] = {}
    busy: dict[str, list[Interval]] = {}
    for user in users:
        avail = await resolve_availability(availability_store, calendar, user, start, end)
        availability[user] = avail
        result.warnings.extend(avail.warnings)
        busy[user] = [
            Interval(i.start, i.end)
            for i in schedule_store.list_for_assignee(user, start, end)
            if i.status is not InstanceStatus.SKIPPED
        ]

    already = {t.id: schedule_store.scheduled_dates(t.id, start, end) for t in tasks}
    instances = expand_instances(tasks, start, end, already, now)
    result.placements, result.conflicts = schedule_instances(
        instances, availability, now, members=member_ids, busy=busy,
    )
    logger.info(
        "Week %s..%s planned: %d placement(s), %d conflict(s)",
        start, end, len(result.placements), len(result.conflicts),
    )
    return result
