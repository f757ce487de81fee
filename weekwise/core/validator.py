"""
WeekWise — Recommendation Validator.

Every batch of proposed placements goes through here before it is committed,
whether a planner model or a person produced it. Constraints the planner was
told about in its prompt are re-checked here, not trusted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Collection, Iterable, Mapping

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator

from weekwise.core.errors import ValidationRejected
from weekwise.data.models import Task, TaskKind, Weekday

logger = logging.getLogger(__name__)


class RejectionReason(str, Enum):
    TASK_NOT_FOUND = "task-not-found"
    NOT_OWNED = "not-owned"
    WRONG_WEEKDAY = "wrong-weekday"
    WRONG_TIME_OF_DAY = "wrong-time-of-day"


class ProposedPlacement(BaseModel):
    """One proposed placement: task, assignee, date and clock times."""

    task_id: str
    assignee_id: str
    scheduled_date: date = Field(validation_alias=AliasChoices("scheduled_date", "date"))
    start_time: time
    end_time: time
    reasoning: str = ""

    @field_validator("task_id", "assignee_id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return str(v) if isinstance(v, int) else v

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def parse_clock(cls, v):
        """Accept HH:MM, HH:MM:SS or a full ISO datetime."""
        if isinstance(v, datetime):
            return v.time().replace(tzinfo=None)
        if isinstance(v, str):
            v = v.strip()
            if "T" in v:
                return datetime.fromisoformat(v.replace("Z", "+00:00")).time().replace(tzinfo=None)
            return time.fromisoformat(v)
        return v

    @model_validator(mode="after")
    def check_order(self) -> ProposedPlacement:
        if self.start_time >= self.end_time:
            raise ValueError("end_time must be after start_time")
        return self

    @property
    def start(self) -> datetime:
        return datetime.combine(self.scheduled_date, self.start_time)

    @property
    def end(self) -> datetime:
        return datetime.combine(self.scheduled_date, self.end_time)

    @property
    def weekday(self) -> Weekday:
        return Weekday.of(self.scheduled_date)


@dataclass
class RejectedPlacement:
    placement: ProposedPlacement
    reason: RejectionReason
    detail: str = ""


@dataclass
class ValidationResult:
    accepted: list[ProposedPlacement] = field(default_factory=list)
    rejected: list[RejectedPlacement] = field(default_factory=list)

    @property
    def all_accepted(self) -> bool:
        return not self.rejected


def _days_label(days: Iterable[Weekday]) -> str:
    order = list(Weekday)
    return ", ".join(d.label for d in sorted(days, key=order.index))


def check_placement(
    placement: ProposedPlacement,
    tasks: Mapping[str, Task],
    current_user_id: str,
    family_member_ids: Collection[str] | None = None,
    tolerance_minutes: int | None = None,
) -> Task:
    """Check one placement against hard constraints; return its task.

    Raises ValidationRejected with a RejectionReason value on failure.
    `family_member_ids`, when given, limits who may schedule and who may be
    assigned shared tasks.

    Only the owner may schedule a task unless `family_member_ids` names both
    the owner and `current_user_id`. Without a member list, a placement of
    someone else's task is rejected as not-owned, so callers scheduling
    shared chores must pass the family's member ids.
    """
    if tolerance_minutes is None:
        from weekwise.config import settings
        tolerance_minutes = settings.FIXED_TIME_TOLERANCE_MINUTES

    task = tasks.get(placement.task_id)
    if task is None or not task.active:
        raise ValidationRejected(
            RejectionReason.TASK_NOT_FOUND.value, f"Task {placement.task_id} does not exist"
        )

    if task.kind is TaskKind.PERSONAL_GOAL:
        if placement.assignee_id != task.owner_id:
            raise ValidationRejected(
                RejectionReason.NOT_OWNED.value,
                f"'{task.name}' is a personal goal of {task.owner_id} and cannot be "
                f"assigned to {placement.assignee_id}",
            )
    elif family_member_ids is not None and placement.assignee_id not in family_member_ids:
        raise ValidationRejected(
            RejectionReason.NOT_OWNED.value,
            f"{placement.assignee_id} is not a member of this family",
        )

    if current_user_id != task.owner_id:
        # Family members may plan each other's tasks
        same_family = (
            family_member_ids is not None
            and current_user_id in family_member_ids
            and task.owner_id in family_member_ids
        )
        if not same_family:
            raise ValidationRejected(
                RejectionReason.NOT_OWNED.value,
                f"{current_user_id} cannot schedule '{task.name}'",
            )

    if task.allowed_days and placement.weekday not in task.allowed_days:
        raise ValidationRejected(
            RejectionReason.WRONG_WEEKDAY.value,
            f"'{task.name}' is only allowed on {_days_label(task.allowed_days)}, "
            f"not {placement.weekday.label}",
        )

    if task.is_fixed and task.fixed_time is not None:
        drift = abs(placement.start - datetime.combine(placement.scheduled_date, task.fixed_time))
        if drift > timedelta(minutes=tolerance_minutes):
            raise ValidationRejected(
                RejectionReason.WRONG_TIME_OF_DAY.value,
                f"'{task.name}' is fixed at {task.fixed_time:%H:%M}, "
                f"proposed {placement.start_time:%H:%M}",
            )

    return task


def validate_placements(
    placements: Iterable[ProposedPlacement],
    tasks: Mapping[str, Task],
    current_user_id: str,
    family_member_ids: Collection[str] | None = None,
    tolerance_minutes: int | None = None,
) -> ValidationResult:
    """Split a batch into accepted placements and rejected ones with reasons."""
    result = ValidationResult()
    for placement in placements:
        try:
            check_placement(
                placement, tasks, current_user_id, family_member_ids, tolerance_minutes
            )
        except ValidationRejected as exc:
            logger.warning(
                "Rejected placement of task %s on %s: %s",
                placement.task_id, placement.scheduled_date, exc,
            )
            result.rejected.append(
                RejectedPlacement(placement, RejectionReason(exc.reason), exc.detail)
            )
        else:
            result.accepted.append(placement)

    logger.info(
        "Validated %d placement(s): %d accepted, %d rejected",
        len(result.accepted) + len(result.rejected), len(result.accepted), len(result.rejected),
    )
    return result
