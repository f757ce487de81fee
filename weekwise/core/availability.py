"""
WeekWise — Availability Resolver.

Collects every interval during which a user cannot take a task: work hours,
office commutes, vacations, public holidays and third-party calendar events.
Blocks from different sources are concatenated, never merged, so conflict
reports can name the kind of block that got in the way.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Iterable

from weekwise.core.holidays import holidays_in_range
from weekwise.core.intervals import BlockedInterval, BlockKind, Interval, overlaps
from weekwise.data.models import Weekday, WorkLocation
from weekwise.ports.calendar_port import CalendarPort

logger = logging.getLogger(__name__)


@dataclass
class AvailabilityResult:
    """Blocked intervals for one user over a date range."""

    user_id: str
    start: date
    end: date
    blocked: list[BlockedInterval]
    window: tuple[time, time]
    country: str = "UK"
    warnings: list[str] = field(default_factory=list)

    @property
    def calendar_known(self) -> bool:
        """False when third-party events could not be fetched."""
        return not self.warnings


def _days(start: date, end: date) -> Iterable[date]:
    d = start
    while d <= end:
        yield d
        d += timedelta(days=1)


def _midnight(day: date) -> datetime:
    return datetime.combine(day, time.min)


def _whole_day(day: date, kind: BlockKind, reason: str) -> BlockedInterval:
    return BlockedInterval(_midnight(day), _midnight(day + timedelta(days=1)), kind, reason)


def _work_blocks(schedule, day: date) -> list[BlockedInterval]:
    entry = schedule.get(Weekday.of(day))
    if entry is None or not entry.is_working:
        return []
    if entry.start_time is None or entry.end_time is None or entry.start_time >= entry.end_time:
        logger.warning("Ignoring malformed work hours for %s", Weekday.of(day).label)
        return []

    work_start = datetime.combine(day, entry.start_time)
    work_end = datetime.combine(day, entry.end_time)
    blocks = [BlockedInterval(work_start, work_end, BlockKind.WORK_HOURS, "Work")]

    if entry.location is WorkLocation.OFFICE:
        if entry.commute_to_minutes and entry.commute_to_minutes > 0:
            blocks.append(BlockedInterval(
                work_start - timedelta(minutes=entry.commute_to_minutes),
                work_start,
                BlockKind.COMMUTE,
                "Commute to office",
            ))
        if entry.commute_from_minutes and entry.commute_from_minutes > 0:
            blocks.append(BlockedInterval(
                work_end,
                work_end + timedelta(minutes=entry.commute_from_minutes),
                BlockKind.COMMUTE,
                "Commute home",
            ))
    return blocks


async def resolve_availability(
    store,
    calendar: CalendarPort | None,
    user_id: str,
    start: date,
    end: date,
) -> AvailabilityResult:
    """Resolve every blocked interval for `user_id` over [start, end].

    `store` is an AvailabilityDB. A calendar failure never aborts resolution:
    third-party events are then unknown and the failure is reported in
    `warnings`.
    """
    if end < start:
        raise ValueError(f"Range end {end} is before start {start}")

    profile = store.get_profile(user_id)
    schedule = store.get_work_schedule(user_id)
    vacations = store.list_vacations(user_id, start, end)
    holidays = holidays_in_range(profile.country, start, end)

    blocked: list[BlockedInterval] = []
    for day in _days(start, end):
        blocked.extend(_work_blocks(schedule, day))
        for vacation in vacations:
            if vacation.start_date <= day <= vacation.end_date:
                blocked.append(_whole_day(day, BlockKind.VACATION, vacation.note or "Vacation"))

    for holiday in holidays:
        blocked.append(_whole_day(holiday.effective_date, BlockKind.PUBLIC_HOLIDAY, holiday.name))

    warnings: list[str] = []
    if calendar is not None:
        try:
            events = await calendar.get_events(
                user_id, _midnight(start), _midnight(end + timedelta(days=1))
            )
        except Exception as exc:
            logger.warning(
                "Calendar unavailable for %s, continuing without third-party events: %s",
                user_id, exc,
            )
            warnings.append(f"Calendar events unavailable: {exc}")
        else:
            for event in events:
                if event.end <= event.start:
                    continue
                blocked.append(BlockedInterval(
                    event.start, event.end, BlockKind.THIRD_PARTY_EVENT, event.summary,
                ))

    blocked.sort(key=lambda b: (b.start, b.end))
    logger.debug(
        "Resolved %d blocked interval(s) for %s between %s and %s",
        len(blocked), user_id, start, end,
    )
    return AvailabilityResult(
        user_id=user_id,
        start=start,
        end=end,
        blocked=blocked,
        window=(profile.available_start, profile.available_end),
        country=profile.country,
        warnings=warnings,
    )


def blocked_for_day(blocked: Iterable[BlockedInterval], day: date) -> list[BlockedInterval]:
    """Blocks that touch any part of `day`."""
    span = Interval(_midnight(day), _midnight(day + timedelta(days=1)))
    return [b for b in blocked if overlaps(b, span)]


def format_blocked_for_prompt(blocked: Iterable[BlockedInterval]) -> str:
    """Render blocked intervals one per line for the planner prompt."""
    lines = []
    for b in blocked:
        if b.start.time() == time.min and b.end - b.start == timedelta(days=1):
            when = f"{b.start:%a %Y-%m-%d} all day"
        else:
            when = f"{b.start:%a %Y-%m-%d %H:%M}-{b.end:%H:%M}"
        lines.append(f"- {when}: {b.kind.value} ({b.reason})" if b.reason else f"- {when}: {b.kind.value}")
    return "\n".join(lines) if lines else "(none)"
