"""
WeekWise — Achievable-Instance Calculator.

How many more instances of a recurring task are both still required and
still placeable in a date range, and on which dates. Quick scheduling and
whole-week scheduling both call this one function, so they can never
disagree about how much is achievable.

Pure: the only notion of time is the `now` argument.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable

from weekwise.data.models import FrequencyPeriod, Task, Weekday


@dataclass(frozen=True)
class AchievableInstances:
    """Instances still achievable, with the remaining capacity of each open day.

    `per_day` pairs each open date with how many more instances it can take;
    the capacities sum to at least `count`.
    """

    count: int
    days: tuple[date, ...]
    per_day: tuple[tuple[date, int], ...] = ()

    def __bool__(self) -> bool:
        return self.count > 0

    @property
    def day_limits(self) -> dict[date, int]:
        return dict(self.per_day)


def _remaining_days(task: Task, start: date, end: date, now: datetime) -> list[date]:
    """Dates in [start, end] not in the past and on an allowed weekday."""
    first = max(start, now.date())
    allowed = task.allowed_days
    days = []
    d = first
    while d <= end:
        if not allowed or Weekday.of(d) in allowed:
            days.append(d)
        d += timedelta(days=1)
    return days


def calculate_achievable_instances(
    task: Task,
    start: date,
    end: date,
    already_scheduled: Iterable[date],
    now: datetime,
) -> AchievableInstances:
    """Additional instances of `task` still required and placeable in [start, end].

    `already_scheduled` lists one date per existing non-skipped placement;
    a date may repeat. Dates outside the range are ignored.
    """
    placed = Counter(d for d in already_scheduled if start <= d <= end)
    days = _remaining_days(task, start, end, now)

    if task.is_fixed:
        achievable = []
        for d in days:
            if placed[d]:
                continue
            if task.fixed_time is not None and datetime.combine(d, task.fixed_time) <= now:
                continue
            achievable.append(d)
        return AchievableInstances(
            len(achievable), tuple(achievable), tuple((d, 1) for d in achievable)
        )

    if task.frequency_period is FrequencyPeriod.PER_DAY:
        per_day = tuple(
            (d, n) for d, n in ((d, max(0, task.frequency - placed[d])) for d in days) if n > 0
        )
        return AchievableInstances(
            sum(n for _, n in per_day), tuple(d for d, _ in per_day), per_day
        )

    remaining = max(0, task.frequency - sum(placed.values()))
    if task.allow_multiple_per_day:
        open_days = tuple(days)
        count = remaining if open_days else 0
        per_day = tuple((d, count) for d in open_days)
    else:
        open_days = tuple(d for d in days if not placed[d])
        count = min(remaining, len(open_days))
        per_day = tuple((d, 1) for d in open_days)
    if not count:
        return AchievableInstances(0, ())
    return AchievableInstances(count, open_days, per_day)
