"""
WeekWise — Slot Finder.

Turns a day's blocked intervals into free windows inside the user's
personal time window, then proposes scored start times for a task.
The search is a greedy heuristic: best-scoring candidate first, no global
optimization.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable

from weekwise.core.intervals import Interval, subtract
from weekwise.data.models import Task, TaskKind, Weekday

logger = logging.getLogger(__name__)

BASE_SCORE = 100
FIXED_SCORE = 200
DAY_PENALTY = 3
PREFERRED_WINDOW_BONUS = 25
SLOT_GRANULARITY_MINUTES = 15

# (start hour, end hour, bonus) per task kind
_KIND_BONUSES: dict[TaskKind, list[tuple[int, int, int]]] = {
    TaskKind.PERSONAL_GOAL: [(8, 12, 20), (14, 17, 10)],
    TaskKind.HOUSEHOLD_CHORE: [(14, 19, 15)],
}


@dataclass(frozen=True)
class CandidateSlot:
    start: datetime
    end: datetime
    score: int
    reason: str = ""

    @property
    def interval(self) -> Interval:
        return Interval(self.start, self.end)


def free_windows(
    day: date,
    blocked: Iterable[Interval],
    window: tuple[time, time],
    min_duration: int,
) -> list[Interval]:
    """Free sub-intervals of the personal window lasting at least `min_duration` minutes."""
    free = Interval(datetime.combine(day, window[0]), datetime.combine(day, window[1]))
    return [w for w in subtract(free, blocked) if w.minutes >= min_duration]


def _round_up(moment: datetime, minutes: int = SLOT_GRANULARITY_MINUTES) -> datetime:
    """Next slot boundary strictly after `moment`."""
    base = moment.replace(second=0, microsecond=0)
    step = minutes - base.minute % minutes
    return base + timedelta(minutes=step)


def _kind_bonus(kind: TaskKind, start: datetime) -> int:
    for lo, hi, bonus in _KIND_BONUSES.get(kind, []):
        if lo <= start.hour < hi:
            return bonus
    return 0


def _in_preferred_window(task: Task, start: datetime, end: datetime) -> bool:
    if task.preferred_time_start is None or task.preferred_time_end is None:
        return False
    return (
        start.time() >= task.preferred_time_start
        and end.date() == start.date()
        and end.time() <= task.preferred_time_end
    )


def score_start(task: Task, start: datetime, now: datetime) -> int:
    days_from_now = (start.date() - now.date()).days
    end = start + timedelta(minutes=task.duration_minutes)
    score = BASE_SCORE + _kind_bonus(task.kind, start)
    if _in_preferred_window(task, start, end):
        score += PREFERRED_WINDOW_BONUS
    return score - DAY_PENALTY * days_from_now


def candidate_slots(
    task: Task,
    day: date,
    blocked: Iterable[Interval],
    now: datetime,
    window: tuple[time, time],
    placed: Iterable[Interval] = (),
) -> list[CandidateSlot]:
    """Scored candidate placements of `task` on `day`, best first.

    `placed` holds intervals already taken in this planning pass and is
    treated exactly like `blocked`. Candidates starting at or before `now`
    are never returned.
    """
    busy = list(blocked) + list(placed)
    duration = timedelta(minutes=task.duration_minutes)
    weekday = Weekday.of(day)
    days_from_now = (day - now.date()).days

    if task.allowed_days and weekday not in task.allowed_days:
        return []

    if task.is_fixed:
        if task.fixed_time is None:
            return []
        start = datetime.combine(day, task.fixed_time)
        end = start + duration
        if start <= now:
            return []
        for w in free_windows(day, busy, window, task.duration_minutes):
            if w.start <= start and end <= w.end:
                return [CandidateSlot(start, end, FIXED_SCORE - DAY_PENALTY * days_from_now, "fixed time")]
        return []

    earliest = _round_up(now) if day == now.date() else None
    points: set[datetime] = set()
    for w in free_windows(day, busy, window, task.duration_minutes):
        lo = max(w.start, earliest) if earliest is not None else w.start
        # Each free window opens where a blocked or placed interval ends
        local = {lo}
        anchors = [time(h) for h, _, _ in _KIND_BONUSES.get(task.kind, [])]
        if task.preferred_time_start is not None:
            anchors.append(task.preferred_time_start)
        for anchor in anchors:
            preferred = datetime.combine(day, anchor)
            if lo <= preferred < w.end:
                local.add(preferred)
        points.update(p for p in local if p + duration <= w.end)

    slots = []
    for start in sorted(points):
        if start <= now:
            continue
        slots.append(CandidateSlot(start, start + duration, score_start(task, start, now), "free slot"))

    slots.sort(key=lambda s: (-s.score, s.start))
    return slots
