"""Shared test fixtures and configuration.

Sets up fake environment variables before weekwise.config is imported, and
provides temp-file stores plus a small two-member family.
"""

import os

# Patch env vars BEFORE any weekwise imports
os.environ["LLM_API_KEY"] = ""
os.environ.setdefault("LLM_PROVIDER", "anthropic")
os.environ["CALENDAR_PROVIDER"] = "none"
os.environ.setdefault("TIMEZONE", "Europe/London")
os.environ.setdefault("DATABASE_PATH", "data/test-weekwise.db")
os.environ["RESET_APPROVALS_ON_EDIT"] = "true"
os.environ["CALENDAR_RETRY_BACKOFF_SECONDS"] = "0"

from datetime import time
from unittest.mock import AsyncMock

import pytest

from weekwise.data.models import (
    FrequencyPeriod,
    SchedulingMode,
    Task,
    TaskKind,
    Weekday,
)


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_weekwise.db")


@pytest.fixture
def task_db(tmp_db_path):
    from weekwise.data.db import TaskDB
    return TaskDB(db_path=tmp_db_path)


@pytest.fixture
def availability_db(tmp_db_path):
    from weekwise.data.db import AvailabilityDB
    return AvailabilityDB(db_path=tmp_db_path)


@pytest.fixture
def family_db(tmp_db_path):
    from weekwise.data.db import FamilyDB
    return FamilyDB(db_path=tmp_db_path)


@pytest.fixture
def schedule_db(tmp_db_path):
    from weekwise.data.db import ScheduleDB
    return ScheduleDB(db_path=tmp_db_path)


@pytest.fixture
def plan_db(tmp_db_path):
    from weekwise.data.db import WeeklyPlanDB
    return WeeklyPlanDB(db_path=tmp_db_path)


@pytest.fixture
def family(family_db):
    """A family with two members, 'amit' (owner) and 'dana'."""
    family_id = family_db.create_family("Home", "amit", family_id="fam1")
    family_db.add_member(family_id, "dana")
    return family_id


@pytest.fixture
def calendar():
    """A calendar double with no events that accepts every write."""
    cal = AsyncMock()
    cal.get_events.return_value = []
    cal.create_event.return_value = "evt-1"
    cal.delete_event.return_value = None
    return cal


def make_task(**overrides) -> Task:
    """A flexible 30-minute household chore unless overridden."""
    fields = dict(
        id="t1",
        owner_id="amit",
        name="Vacuum",
        kind=TaskKind.HOUSEHOLD_CHORE,
        duration_minutes=30,
        priority=2,
        mode=SchedulingMode.FLEXIBLE,
        frequency=1,
        frequency_period=FrequencyPeriod.PER_WEEK,
    )
    fields.update(overrides)
    return Task(**fields)


def make_gym_task(**overrides) -> Task:
    """Fixed 45-minute personal goal, Mon/Wed/Fri at 07:00."""
    fields = dict(
        id="gym",
        owner_id="amit",
        name="Gym",
        kind=TaskKind.PERSONAL_GOAL,
        duration_minutes=45,
        priority=1,
        mode=SchedulingMode.FIXED,
        fixed_days=frozenset({Weekday.MONDAY, Weekday.WEDNESDAY, Weekday.FRIDAY}),
        fixed_time=time(7, 0),
        frequency=3,
    )
    fields.update(overrides)
    return make_task(**fields)
