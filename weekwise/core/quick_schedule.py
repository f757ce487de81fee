"""
WeekWise — Quick scheduling for a single task.

Finds the best slots for one task over the rest of the current week. Uses the
same achievable calculation as whole-week planning, so it never offers more
slots than the task can still take.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Mapping

from weekwise.core.achievable import AchievableInstances, calculate_achievable_instances
from weekwise.core.availability import blocked_for_day, resolve_availability
from weekwise.core.intervals import Interval, overlaps
from weekwise.core.slot_finder import CandidateSlot, candidate_slots
from weekwise.data.models import FrequencyPeriod, InstanceStatus, Task, TaskKind
from weekwise.ports.calendar_port import CalendarPort

logger = logging.getLogger(__name__)


@dataclass
class QuickScheduleResult:
    task_id: str
    assignee_id: str
    achievable: AchievableInstances
    slots: list[CandidateSlot] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    message: str = ""


def end_of_week(day: date) -> date:
    """The Sunday closing the Monday-based week that contains `day`."""
    return day + timedelta(days=6 - day.weekday())


def select_slots(
    task: Task,
    per_day: dict[date, list[CandidateSlot]],
    count: int,
    limits: Mapping[date, int] | None = None,
) -> list[CandidateSlot]:
    """Pick up to `count` non-overlapping slots.

    Fixed tasks take their best-scoring days. Flexible tasks take the best
    slot of each day first and double up on a day only when allowed. With
    `limits`, no day gets more slots than its remaining capacity.
    """
    if count <= 0:
        return []

    def room(day: date) -> int:
        return limits.get(day, 0) if limits is not None else count

    best_each_day = sorted(
        (slots[0] for day, slots in per_day.items() if slots and room(day) > 0),
        key=lambda s: (-s.score, s.start),
    )
    chosen = best_each_day[:count]
    taken = Counter(s.start.date() for s in chosen)

    doubles = task.allow_multiple_per_day or task.frequency_period is FrequencyPeriod.PER_DAY
    if not task.is_fixed and len(chosen) < count and doubles:
        rest = sorted(
            (s for slots in per_day.values() for s in slots[1:]),
            key=lambda s: (-s.score, s.start),
        )
        for slot in rest:
            if len(chosen) >= count:
                break
            day = slot.start.date()
            if taken[day] >= room(day):
                continue
            if any(overlaps(slot.interval, c.interval) for c in chosen):
                continue
            chosen.append(slot)
            taken[day] += 1

    return sorted(chosen, key=lambda s: s.start)


async def find_task_slots(
    task: Task,
    *,
    availability_store,
    schedule_store,
    calendar: CalendarPort | None,
    now: datetime,
    assignee_id: str | None = None,
    until: date | None = None,
) -> QuickScheduleResult:
    """Best slots for `task` from `now` until the end of the week (or `until`)."""
    if assignee_id is None:
        if task.kind is TaskKind.PERSONAL_GOAL:
            assignee_id = task.owner_id
        else:
            assignee_id = task.default_assignee_id or task.owner_id

    start = now.date()
    end = until or end_of_week(start)
    already = schedule_store.scheduled_dates(task.id, start, end)
    achievable = calculate_achievable_instances(task, start, end, already, now)
    result = QuickScheduleResult(task.id, assignee_id, achievable)

    if not achievable:
        result.message = (
            f"'{task.name}' is already fully scheduled or has no remaining days before {end}."
        )
        logger.info("Quick schedule for %s: nothing achievable", task.name)
        return result

    availability = await resolve_availability(
        availability_store, calendar, assignee_id, start, end
    )
    result.warnings = availability.warnings

    placed = [
        Interval(i.start, i.end)
        for i in schedule_store.list_for_assignee(assignee_id, start, end)
        if i.status is not InstanceStatus.SKIPPED
    ]

    per_day: dict[date, list[CandidateSlot]] = {}
    for day in dict.fromkeys(achievable.days):
        per_day[day] = candidate_slots(
            task, day, blocked_for_day(availability.blocked, day), now,
            availability.window, placed,
        )

    result.slots = select_slots(task, per_day, achievable.count, achievable.day_limits)
    if len(result.slots) < achievable.count:
        result.message = (
            f"Found {len(result.slots)} of {achievable.count} slot(s) for '{task.name}'."
        )
    else:
        result.message = f"Found {len(result.slots)} slot(s) for '{task.name}'."
    logger.info("Quick schedule for %s: %s", task.name, result.message)
    return result
