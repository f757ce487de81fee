"""
WeekWise — Data Models.

Tasks, committed schedule entries and shared weekly plans. Weekday values
are normalized into `Weekday` exactly once, when records enter the model;
nothing downstream compares raw day names or numbers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum


class Weekday(str, Enum):
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @classmethod
    def parse(cls, value: str | int | Weekday) -> Weekday:
        """Normalize a stored weekday into the enum.

        Accepts full names and three-letter abbreviations in any case, and
        integers in the legacy 0 = Sunday .. 6 = Saturday convention.
        """
        if isinstance(value, Weekday):
            return value
        if isinstance(value, bool):
            raise ValueError(f"Not a weekday: {value!r}")
        if isinstance(value, int):
            if not 0 <= value <= 6:
                raise ValueError(f"Weekday number out of range: {value}")
            return _SUNDAY_FIRST[value]
        key = str(value).strip().lower()
        if key in _BY_NAME:
            return _BY_NAME[key]
        raise ValueError(f"Not a weekday: {value!r}")

    @classmethod
    def of(cls, day: date) -> Weekday:
        return _MONDAY_FIRST[day.weekday()]

    @property
    def label(self) -> str:
        return self.value.capitalize()


_MONDAY_FIRST = list(Weekday)
_SUNDAY_FIRST = [Weekday.SUNDAY] + _MONDAY_FIRST[:6]
_BY_NAME = {w.value: w for w in Weekday} | {w.value[:3]: w for w in Weekday}


def parse_weekdays(values) -> frozenset[Weekday]:
    """Normalize an iterable of stored weekday values (None → empty)."""
    if not values:
        return frozenset()
    return frozenset(Weekday.parse(v) for v in values)


class TaskKind(str, Enum):
    PERSONAL_GOAL = "personal-goal"
    HOUSEHOLD_CHORE = "household-chore"


class SchedulingMode(str, Enum):
    FIXED = "fixed"
    FLEXIBLE = "flexible"


class FrequencyPeriod(str, Enum):
    PER_DAY = "per-day"
    PER_WEEK = "per-week"


class WorkLocation(str, Enum):
    HOME = "home"
    OFFICE = "office"


class InstanceStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    SKIPPED = "skipped"


class PlanStatus(str, Enum):
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in (PlanStatus.APPROVED, PlanStatus.REJECTED, PlanStatus.EXPIRED)

    @property
    def is_editable(self) -> bool:
        return self in (PlanStatus.DRAFT, PlanStatus.PENDING_APPROVAL)


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass
class Task:
    """A recurring unit of work owned by one user.

    Fixed tasks recur on `fixed_days` at `fixed_time`. Flexible tasks carry a
    count target (`frequency` per `frequency_period`) and get their start
    times from the slot search.
    """

    id: str
    owner_id: str
    name: str
    kind: TaskKind
    duration_minutes: int
    priority: int = 2                       # 1 highest .. 4 lowest
    mode: SchedulingMode = SchedulingMode.FLEXIBLE
    fixed_days: frozenset[Weekday] = field(default_factory=frozenset)
    fixed_time: time | None = None
    frequency: int = 1
    frequency_period: FrequencyPeriod = FrequencyPeriod.PER_WEEK
    preferred_time_start: time | None = None
    preferred_time_end: time | None = None
    required_days: frozenset[Weekday] = field(default_factory=frozenset)
    allow_multiple_per_day: bool = False
    family_id: str | None = None
    default_assignee_id: str | None = None
    category: str | None = None
    active: bool = True

    @property
    def is_fixed(self) -> bool:
        return self.mode is SchedulingMode.FIXED

    @property
    def allowed_days(self) -> frozenset[Weekday]:
        """Weekdays the task may land on; empty means any day."""
        return self.fixed_days if self.is_fixed else self.required_days


@dataclass
class WorkScheduleDay:
    """One weekday of a user's work schedule."""

    weekday: Weekday
    is_working: bool
    start_time: time | None = None
    end_time: time | None = None
    location: WorkLocation = WorkLocation.HOME
    commute_to_minutes: int | None = None
    commute_from_minutes: int | None = None


@dataclass
class Vacation:
    id: int
    user_id: str
    start_date: date
    end_date: date               # inclusive
    note: str | None = None


@dataclass
class Holiday:
    date: date
    name: str
    observed: date | None = None  # substitute day when the holiday falls on a weekend

    @property
    def effective_date(self) -> date:
        return self.observed or self.date


@dataclass
class UserProfile:
    """Per-user availability settings."""

    user_id: str
    display_name: str = ""
    country: str = "UK"
    available_start: time = time(6, 0)
    available_end: time = time(22, 0)


@dataclass
class ScheduledTaskInstance:
    """A committed placement of a task on a concrete date and time range."""

    id: int
    task_id: str
    assignee_id: str
    scheduled_date: date
    start: datetime
    end: datetime
    status: InstanceStatus = InstanceStatus.PENDING
    calendar_event_id: str | None = None
    reasoning: str | None = None
    plan_item_id: str | None = None


@dataclass
class PlanItemEdit:
    """One entry of a plan item's edit history."""

    editor_id: str
    edited_at: datetime
    changes: dict[str, tuple[str | None, str | None]]


@dataclass
class WeeklyPlanItem:
    """A not-yet-committed placement inside a weekly plan."""

    id: str
    plan_id: str
    task_id: str
    assignee_id: str
    scheduled_date: date
    start: datetime
    end: datetime
    reasoning: str = ""
    position: int = 0
    version: int = 1
    last_edited_by: str | None = None
    last_edited_at: datetime | None = None
    history: list[PlanItemEdit] = field(default_factory=list)
    instance_id: int | None = None          # set once materialized
    materialization_error: str | None = None


@dataclass
class WeeklyPlanApproval:
    plan_id: str
    user_id: str
    status: ApprovalStatus = ApprovalStatus.PENDING
    decided_at: datetime | None = None
    comment: str | None = None


@dataclass
class WeeklyPlan:
    """A family-scoped batch of proposed placements for one calendar week."""

    id: str
    family_id: str
    week_start: date
    week_end: date
    status: PlanStatus
    created_by: str
    created_at: datetime
    expires_at: datetime
    reasoning: str = ""
    approved_at: datetime | None = None
    rejected_at: datetime | None = None
    items: list[WeeklyPlanItem] = field(default_factory=list)
    approvals: list[WeeklyPlanApproval] = field(default_factory=list)
