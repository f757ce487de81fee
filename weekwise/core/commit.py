"""
WeekWise — Commit path.

Turns accepted placements into ScheduledTaskInstance rows and mirrors each
one to the calendar provider. The database row is the scheduling decision;
the calendar event is a best-effort copy. Calendar failures are retried a
few times, recorded per item and never undo the commit.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Awaitable, Callable, Collection, Iterable, Mapping, TypeVar

from weekwise.core.validator import ProposedPlacement, RejectedPlacement, validate_placements
from weekwise.data.models import ScheduledTaskInstance, Task, TaskKind
from weekwise.ports.calendar_port import CalendarPort

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CommitOutcome:
    placement: ProposedPlacement
    instance: ScheduledTaskInstance
    calendar_event_id: str | None = None
    calendar_error: str | None = None


@dataclass
class CommitReport:
    committed: list[CommitOutcome] = field(default_factory=list)
    rejected: list[RejectedPlacement] = field(default_factory=list)
    cleared: list[ScheduledTaskInstance] = field(default_factory=list)

    @property
    def calendar_failures(self) -> list[CommitOutcome]:
        return [c for c in self.committed if c.calendar_error]


async def with_retries(
    op: Callable[[], Awaitable[T]],
    what: str,
    attempts: int | None = None,
    backoff: float | None = None,
) -> T:
    """Run `op` up to `attempts` times with exponential backoff; re-raise the last error."""
    from weekwise.config import settings

    attempts = max(1, attempts if attempts is not None else settings.CALENDAR_RETRY_ATTEMPTS)
    backoff = backoff if backoff is not None else settings.CALENDAR_RETRY_BACKOFF_SECONDS

    for attempt in range(attempts - 1):
        try:
            return await op()
        except Exception as exc:
            delay = backoff * (2 ** attempt)
            logger.warning(
                "%s failed (%s), retrying in %.1fs (attempt %d/%d)",
                what, exc, delay, attempt + 1, attempts,
            )
            await asyncio.sleep(delay)
    return await op()


def event_title(task: Task) -> str:
    tag = "Goal" if task.kind is TaskKind.PERSONAL_GOAL else "Chore"
    return f"[{tag}] {task.name}"


def event_body(reasoning: str | None) -> str:
    body = reasoning or ""
    return (body + "\n\n" if body else "") + "Scheduled by WeekWise"


async def persist_placement(
    placement: ProposedPlacement,
    task: Task,
    *,
    schedule_store,
    calendar: CalendarPort | None,
    plan_item_id: str | None = None,
) -> CommitOutcome:
    """Store one placement and mirror it to the calendar (best effort).

    Store errors propagate; calendar errors are captured on the outcome.
    """
    instance = schedule_store.add_instance(
        task_id=task.id,
        assignee_id=placement.assignee_id,
        start=placement.start,
        end=placement.end,
        reasoning=placement.reasoning or None,
        plan_item_id=plan_item_id,
    )
    outcome = CommitOutcome(placement, instance)
    if calendar is None:
        return outcome

    try:
        event_id = await with_retries(
            lambda: calendar.create_event(
                placement.assignee_id, event_title(task), event_body(placement.reasoning),
                placement.start, placement.end,
            ),
            f"Calendar event for '{task.name}'",
        )
    except Exception as exc:
        logger.error("Calendar mirroring failed for scheduled task #%d: %s", instance.id, exc)
        outcome.calendar_error = str(exc)
        return outcome

    if event_id:
        schedule_store.set_calendar_event_id(instance.id, event_id)
        instance.calendar_event_id = event_id
        outcome.calendar_event_id = event_id
    return outcome


async def remove_instance(instance: ScheduledTaskInstance, *, schedule_store, calendar: CalendarPort | None) -> None:
    """Delete a committed placement and, best effort, its calendar event."""
    schedule_store.delete_instance(instance.id)
    await _delete_event(instance, calendar)


async def _delete_event(instance: ScheduledTaskInstance, calendar: CalendarPort | None) -> None:
    if calendar is None or not instance.calendar_event_id:
        return
    try:
        await with_retries(
            lambda: calendar.delete_event(instance.assignee_id, instance.calendar_event_id),
            f"Deleting calendar event {instance.calendar_event_id}",
        )
    except Exception as exc:
        logger.warning("Could not delete calendar event %s: %s", instance.calendar_event_id, exc)


async def commit_placements(
    placements: Iterable[ProposedPlacement],
    *,
    tasks: Mapping[str, Task],
    current_user_id: str,
    schedule_store,
    calendar: CalendarPort | None,
    family_member_ids: Collection[str] | None = None,
    replace_range: tuple[date, date] | None = None,
) -> CommitReport:
    """Validate and commit a batch of placements.

    Validation always runs, whoever produced the batch. With
    `replace_range`, each assignee's pending placements in that range are
    cleared first, so re-approving a week replaces it instead of doubling it.
    """
    checked = validate_placements(placements, tasks, current_user_id, family_member_ids)
    report = CommitReport(rejected=checked.rejected)

    if replace_range is not None:
        for assignee in dict.fromkeys(p.assignee_id for p in checked.accepted):
            cleared = schedule_store.clear_pending(assignee, *replace_range)
            for instance in cleared:
                await _delete_event(instance, calendar)
            report.cleared.extend(cleared)

    for placement in checked.accepted:
        report.committed.append(await persist_placement(
            placement, tasks[placement.task_id],
            schedule_store=schedule_store, calendar=calendar,
        ))

    logger.info(
        "Committed %d placement(s), %d rejected, %d calendar failure(s)",
        len(report.committed), len(report.rejected), len(report.calendar_failures),
    )
    return report
