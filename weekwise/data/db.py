"""
WeekWise — SQLite stores.

One store class per aggregate: tasks, availability facts (work schedule,
vacations, profile), family membership, committed schedule entries, and
shared weekly plans. Weekday values are normalized into `Weekday` when rows
are read, so legacy rows holding day numbers load the same as named ones.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import date, datetime, time
from pathlib import Path
from typing import Callable, Iterable, Iterator

from weekwise.core.errors import PlanNotFound, PlanStateError
from weekwise.data.models import (
    ApprovalStatus,
    FrequencyPeriod,
    InstanceStatus,
    PlanItemEdit,
    PlanStatus,
    ScheduledTaskInstance,
    SchedulingMode,
    Task,
    TaskKind,
    UserProfile,
    Vacation,
    WeeklyPlan,
    WeeklyPlanApproval,
    WeeklyPlanItem,
    Weekday,
    WorkLocation,
    WorkScheduleDay,
    parse_weekdays,
)

logger = logging.getLogger(__name__)

_EDITABLE = (PlanStatus.DRAFT.value, PlanStatus.PENDING_APPROVAL.value)


# ---------------------------------------------------------------------------
# Column codecs
# ---------------------------------------------------------------------------

def _fmt_time(value: time | None) -> str | None:
    return value.strftime("%H:%M") if value else None


def _parse_time(value: str | None) -> time | None:
    return time.fromisoformat(value) if value else None


def _fmt_days(days: Iterable[Weekday]) -> str:
    order = list(Weekday)
    return json.dumps([d.value for d in sorted(days, key=order.index)])


def _parse_days(value: str | None) -> frozenset[Weekday]:
    return parse_weekdays(json.loads(value)) if value else frozenset()


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class _Store:
    """Shared connection handling for the SQLite-backed stores."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from weekwise.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _immediate(self) -> Iterator[sqlite3.Connection]:
        """Run a block inside BEGIN IMMEDIATE, taking the write lock up front."""
        conn = sqlite3.connect(self._db_path, timeout=30, isolation_level=None)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    @staticmethod
    def _migrate(conn: sqlite3.Connection, table: str, columns: dict[str, str]) -> None:
        """Add any missing columns to an existing table."""
        existing = {row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}
        for name, ddl in columns.items():
            if name not in existing:
                conn.execute(f"ALTER TABLE {table} ADD COLUMN {name} {ddl}")

    def _init_db(self) -> None:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------

class TaskDB(_Store):
    """SQLite-backed storage for recurring tasks."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    id                     TEXT    PRIMARY KEY,
                    owner_id               TEXT    NOT NULL,
                    name                   TEXT    NOT NULL,
                    kind                   TEXT    NOT NULL,
                    duration_minutes       INTEGER NOT NULL,
                    priority               INTEGER NOT NULL DEFAULT 2,
                    mode                   TEXT    NOT NULL DEFAULT 'flexible',
                    fixed_days             TEXT,
                    fixed_time             TEXT,
                    frequency              INTEGER NOT NULL DEFAULT 1,
                    frequency_period       TEXT    NOT NULL DEFAULT 'per-week',
                    preferred_time_start   TEXT,
                    preferred_time_end     TEXT,
                    family_id              TEXT,
                    default_assignee_id    TEXT,
                    active                 INTEGER NOT NULL DEFAULT 1
                )
            """)
            self._migrate(conn, "tasks", {
                "required_days": "TEXT",
                "allow_multiple_per_day": "INTEGER NOT NULL DEFAULT 0",
                "category": "TEXT",
            })
        logger.debug("Tasks table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        return Task(
            id=row["id"],
            owner_id=row["owner_id"],
            name=row["name"],
            kind=TaskKind(row["kind"]),
            duration_minutes=row["duration_minutes"],
            priority=row["priority"],
            mode=SchedulingMode(row["mode"]),
            fixed_days=_parse_days(row["fixed_days"]),
            fixed_time=_parse_time(row["fixed_time"]),
            frequency=row["frequency"],
            frequency_period=FrequencyPeriod(row["frequency_period"]),
            preferred_time_start=_parse_time(row["preferred_time_start"]),
            preferred_time_end=_parse_time(row["preferred_time_end"]),
            required_days=_parse_days(row["required_days"]),
            allow_multiple_per_day=bool(row["allow_multiple_per_day"]),
            family_id=row["family_id"],
            default_assignee_id=row["default_assignee_id"],
            category=row["category"],
            active=bool(row["active"]),
        )

    @staticmethod
    def _task_params(task: Task) -> tuple:
        return (
            task.owner_id, task.name, task.kind.value, task.duration_minutes,
            task.priority, task.mode.value, _fmt_days(task.fixed_days),
            _fmt_time(task.fixed_time), task.frequency, task.frequency_period.value,
            _fmt_time(task.preferred_time_start), _fmt_time(task.preferred_time_end),
            _fmt_days(task.required_days), int(task.allow_multiple_per_day),
            task.family_id, task.default_assignee_id, task.category, int(task.active),
        )

    def add_task(self, task: Task) -> Task:
        """Insert a task. An empty id is replaced by a generated one."""
        if not task.id:
            task.id = uuid.uuid4().hex
        if task.priority not in (1, 2, 3, 4):
            raise ValueError(f"Priority must be 1..4, got {task.priority}")
        if task.duration_minutes <= 0:
            raise ValueError("Task duration must be positive")

        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO tasks
                    (owner_id, name, kind, duration_minutes, priority, mode,
                     fixed_days, fixed_time, frequency, frequency_period,
                     preferred_time_start, preferred_time_end, required_days,
                     allow_multiple_per_day, family_id, default_assignee_id,
                     category, active, id)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                self._task_params(task) + (task.id,),
            )
        logger.info("Task added: %s '%s' (%s, %s)", task.id, task.name, task.kind.value, task.mode.value)
        return task

    def update_task(self, task: Task) -> None:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE tasks SET
                    owner_id = ?, name = ?, kind = ?, duration_minutes = ?,
                    priority = ?, mode = ?, fixed_days = ?, fixed_time = ?,
                    frequency = ?, frequency_period = ?, preferred_time_start = ?,
                    preferred_time_end = ?, required_days = ?,
                    allow_multiple_per_day = ?, family_id = ?,
                    default_assignee_id = ?, category = ?, active = ?
                WHERE id = ?
                """,
                self._task_params(task) + (task.id,),
            )
        if cursor.rowcount == 0:
            raise ValueError(f"Task {task.id} not found")

    def get_task(self, task_id: str) -> Task | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        return self._row_to_task(row) if row else None

    def get_tasks(self, task_ids: Iterable[str]) -> dict[str, Task]:
        ids = list(set(task_ids))
        if not ids:
            return {}
        marks = ", ".join("?" for _ in ids)
        with self._connect() as conn:
            rows = conn.execute(f"SELECT * FROM tasks WHERE id IN ({marks})", ids).fetchall()
        return {row["id"]: self._row_to_task(row) for row in rows}

    def list_tasks(
        self,
        owner_id: str | None = None,
        family_id: str | None = None,
        active_only: bool = True,
    ) -> list[Task]:
        """List tasks owned by a user and/or shared with a family."""
        conditions: list[str] = []
        params: list = []
        if active_only:
            conditions.append("active = 1")
        scope: list[str] = []
        if owner_id is not None:
            scope.append("owner_id = ?")
            params.append(owner_id)
        if family_id is not None:
            scope.append("family_id = ?")
            params.append(family_id)
        if scope:
            conditions.append("(" + " OR ".join(scope) + ")")

        query = "SELECT * FROM tasks"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY priority, name"

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_task(r) for r in rows]

    def deactivate_task(self, task_id: str) -> bool:
        """Soft-delete a task (set active = False)."""
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE tasks SET active = 0 WHERE id = ? AND active = 1", (task_id,)
            )
        deactivated = cursor.rowcount > 0
        if deactivated:
            logger.info("Task %s deactivated", task_id)
        return deactivated


# ---------------------------------------------------------------------------
# Availability facts
# ---------------------------------------------------------------------------

class AvailabilityDB(_Store):
    """Work schedule, vacations and per-user availability profile."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS work_schedule (
                    user_id              TEXT    NOT NULL,
                    weekday              TEXT    NOT NULL,
                    is_working           INTEGER NOT NULL DEFAULT 0,
                    start_time           TEXT,
                    end_time             TEXT,
                    location             TEXT    NOT NULL DEFAULT 'home',
                    commute_to_minutes   INTEGER,
                    commute_from_minutes INTEGER,
                    PRIMARY KEY (user_id, weekday)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS vacations (
                    id         INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id    TEXT NOT NULL,
                    start_date TEXT NOT NULL,
                    end_date   TEXT NOT NULL,
                    note       TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS user_profiles (
                    user_id         TEXT PRIMARY KEY,
                    display_name    TEXT NOT NULL DEFAULT '',
                    country         TEXT NOT NULL DEFAULT 'UK',
                    available_start TEXT,
                    available_end   TEXT
                )
            """)
        logger.debug("Availability tables initialized at %s", self._db_path)

    # -- work schedule ---------------------------------------------------

    def set_work_day(self, user_id: str, day: WorkScheduleDay) -> None:
        if day.is_working and (day.start_time is None or day.end_time is None):
            raise ValueError("A working day needs start and end times")
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO work_schedule
                    (user_id, weekday, is_working, start_time, end_time, location,
                     commute_to_minutes, commute_from_minutes)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id, weekday) DO UPDATE SET
                    is_working = excluded.is_working,
                    start_time = excluded.start_time,
                    end_time = excluded.end_time,
                    location = excluded.location,
                    commute_to_minutes = excluded.commute_to_minutes,
                    commute_from_minutes = excluded.commute_from_minutes
                """,
                (
                    user_id, day.weekday.value, int(day.is_working),
                    _fmt_time(day.start_time), _fmt_time(day.end_time),
                    day.location.value, day.commute_to_minutes, day.commute_from_minutes,
                ),
            )

    def get_work_schedule(self, user_id: str) -> dict[Weekday, WorkScheduleDay]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM work_schedule WHERE user_id = ?", (user_id,)
            ).fetchall()
        schedule: dict[Weekday, WorkScheduleDay] = {}
        for row in rows:
            weekday = Weekday.parse(row["weekday"])
            schedule[weekday] = WorkScheduleDay(
                weekday=weekday,
                is_working=bool(row["is_working"]),
                start_time=_parse_time(row["start_time"]),
                end_time=_parse_time(row["end_time"]),
                location=WorkLocation(row["location"]),
                commute_to_minutes=row["commute_to_minutes"],
                commute_from_minutes=row["commute_from_minutes"],
            )
        return schedule

    # -- vacations -------------------------------------------------------

    def add_vacation(
        self, user_id: str, start_date: date, end_date: date, note: str | None = None
    ) -> Vacation:
        if end_date < start_date:
            raise ValueError("Vacation end date is before its start date")
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO vacations (user_id, start_date, end_date, note) VALUES (?, ?, ?, ?)",
                (user_id, start_date.isoformat(), end_date.isoformat(), note),
            )
        logger.info("Vacation added for %s: %s to %s", user_id, start_date, end_date)
        return Vacation(cursor.lastrowid, user_id, start_date, end_date, note)

    def list_vacations(
        self, user_id: str, start: date | None = None, end: date | None = None
    ) -> list[Vacation]:
        """Vacations of a user, optionally only those overlapping [start, end]."""
        query = "SELECT * FROM vacations WHERE user_id = ?"
        params: list = [user_id]
        if end is not None:
            query += " AND start_date <= ?"
            params.append(end.isoformat())
        if start is not None:
            query += " AND end_date >= ?"
            params.append(start.isoformat())
        query += " ORDER BY start_date"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [
            Vacation(
                id=r["id"],
                user_id=r["user_id"],
                start_date=date.fromisoformat(r["start_date"]),
                end_date=date.fromisoformat(r["end_date"]),
                note=r["note"],
            )
            for r in rows
        ]

    def delete_vacation(self, vacation_id: int) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM vacations WHERE id = ?", (vacation_id,))
        return cursor.rowcount > 0

    # -- profile ---------------------------------------------------------

    def upsert_profile(self, profile: UserProfile) -> None:
        if profile.available_start >= profile.available_end:
            raise ValueError("Available window must start before it ends")
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO user_profiles
                    (user_id, display_name, country, available_start, available_end)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    display_name = excluded.display_name,
                    country = excluded.country,
                    available_start = excluded.available_start,
                    available_end = excluded.available_end
                """,
                (
                    profile.user_id, profile.display_name, profile.country.upper(),
                    _fmt_time(profile.available_start), _fmt_time(profile.available_end),
                ),
            )

    def get_profile(self, user_id: str) -> UserProfile:
        """Return the user's profile, falling back to configured defaults."""
        from weekwise.config import settings

        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM user_profiles WHERE user_id = ?", (user_id,)
            ).fetchone()
        if row is None:
            return UserProfile(
                user_id=user_id,
                country=settings.DEFAULT_COUNTRY,
                available_start=settings.DEFAULT_AVAILABLE_START,
                available_end=settings.DEFAULT_AVAILABLE_END,
            )
        return UserProfile(
            user_id=row["user_id"],
            display_name=row["display_name"],
            country=row["country"] or settings.DEFAULT_COUNTRY,
            available_start=_parse_time(row["available_start"]) or settings.DEFAULT_AVAILABLE_START,
            available_end=_parse_time(row["available_end"]) or settings.DEFAULT_AVAILABLE_END,
        )


# ---------------------------------------------------------------------------
# Family membership
# ---------------------------------------------------------------------------

class FamilyDB(_Store):
    """Family units and their members."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS families (
                    id         TEXT PRIMARY KEY,
                    name       TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS family_members (
                    family_id TEXT NOT NULL,
                    user_id   TEXT NOT NULL,
                    role      TEXT NOT NULL DEFAULT 'member',
                    joined_at TEXT NOT NULL,
                    PRIMARY KEY (family_id, user_id)
                )
            """)

    def create_family(self, name: str, owner_id: str, family_id: str | None = None) -> str:
        family_id = family_id or uuid.uuid4().hex
        now = datetime.now().isoformat()
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO families (id, name, created_at) VALUES (?, ?, ?)",
                (family_id, name, now),
            )
            conn.execute(
                "INSERT INTO family_members (family_id, user_id, role, joined_at) VALUES (?, ?, 'owner', ?)",
                (family_id, owner_id, now),
            )
        logger.info("Family %s '%s' created by %s", family_id, name, owner_id)
        return family_id

    def add_member(self, family_id: str, user_id: str, role: str = "member") -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO family_members (family_id, user_id, role, joined_at)
                VALUES (?, ?, ?, ?)
                """,
                (family_id, user_id, role, datetime.now().isoformat()),
            )

    def remove_member(self, family_id: str, user_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM family_members WHERE family_id = ? AND user_id = ?",
                (family_id, user_id),
            )
        return cursor.rowcount > 0

    def member_ids(self, family_id: str) -> list[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT user_id FROM family_members WHERE family_id = ? ORDER BY joined_at, user_id",
                (family_id,),
            ).fetchall()
        return [r["user_id"] for r in rows]

    def family_of(self, user_id: str) -> str | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT family_id FROM family_members WHERE user_id = ? ORDER BY joined_at LIMIT 1",
                (user_id,),
            ).fetchone()
        return row["family_id"] if row else None


# ---------------------------------------------------------------------------
# Committed schedule
# ---------------------------------------------------------------------------

class ScheduleDB(_Store):
    """Committed task placements (ScheduledTaskInstance)."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS scheduled_tasks (
                    id                INTEGER PRIMARY KEY AUTOINCREMENT,
                    task_id           TEXT NOT NULL,
                    assignee_id       TEXT NOT NULL,
                    scheduled_date    TEXT NOT NULL,
                    start_at          TEXT NOT NULL,
                    end_at            TEXT NOT NULL,
                    status            TEXT NOT NULL DEFAULT 'pending',
                    calendar_event_id TEXT,
                    reasoning         TEXT,
                    created_at        TEXT NOT NULL
                )
            """)
            self._migrate(conn, "scheduled_tasks", {"plan_item_id": "TEXT"})
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_scheduled_task_date "
                "ON scheduled_tasks (task_id, scheduled_date)"
            )

    @staticmethod
    def _row_to_instance(row: sqlite3.Row) -> ScheduledTaskInstance:
        return ScheduledTaskInstance(
            id=row["id"],
            task_id=row["task_id"],
            assignee_id=row["assignee_id"],
            scheduled_date=date.fromisoformat(row["scheduled_date"]),
            start=datetime.fromisoformat(row["start_at"]),
            end=datetime.fromisoformat(row["end_at"]),
            status=InstanceStatus(row["status"]),
            calendar_event_id=row["calendar_event_id"],
            reasoning=row["reasoning"],
            plan_item_id=row["plan_item_id"],
        )

    def add_instance(
        self,
        task_id: str,
        assignee_id: str,
        start: datetime,
        end: datetime,
        reasoning: str | None = None,
        plan_item_id: str | None = None,
    ) -> ScheduledTaskInstance:
        if start >= end:
            raise ValueError("Scheduled task must start before it ends")
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO scheduled_tasks
                    (task_id, assignee_id, scheduled_date, start_at, end_at,
                     status, reasoning, plan_item_id, created_at)
                VALUES (?, ?, ?, ?, ?, 'pending', ?, ?, ?)
                """,
                (
                    task_id, assignee_id, start.date().isoformat(), start.isoformat(),
                    end.isoformat(), reasoning, plan_item_id, datetime.now().isoformat(),
                ),
            )
        instance = ScheduledTaskInstance(
            id=cursor.lastrowid,
            task_id=task_id,
            assignee_id=assignee_id,
            scheduled_date=start.date(),
            start=start,
            end=end,
            reasoning=reasoning,
            plan_item_id=plan_item_id,
        )
        logger.info("Scheduled task %s for %s at %s (#%d)", task_id, assignee_id, start, instance.id)
        return instance

    def get_instance(self, instance_id: int) -> ScheduledTaskInstance | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM scheduled_tasks WHERE id = ?", (instance_id,)
            ).fetchone()
        return self._row_to_instance(row) if row else None

    def find_by_plan_item(self, plan_item_id: str) -> ScheduledTaskInstance | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM scheduled_tasks WHERE plan_item_id = ? ORDER BY id LIMIT 1",
                (plan_item_id,),
            ).fetchone()
        return self._row_to_instance(row) if row else None

    def set_calendar_event_id(self, instance_id: int, event_id: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE scheduled_tasks SET calendar_event_id = ? WHERE id = ?",
                (event_id, instance_id),
            )

    def set_status(self, instance_id: int, status: InstanceStatus) -> ScheduledTaskInstance:
        """Move a pending instance to completed or skipped."""
        if status is InstanceStatus.PENDING:
            raise ValueError("Cannot move a scheduled task back to pending")
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE scheduled_tasks SET status = ? WHERE id = ? AND status = 'pending'",
                (status.value, instance_id),
            )
            row = conn.execute(
                "SELECT * FROM scheduled_tasks WHERE id = ?", (instance_id,)
            ).fetchone()
        if row is None:
            raise ValueError(f"Scheduled task {instance_id} not found")
        if cursor.rowcount == 0:
            raise ValueError(
                f"Scheduled task {instance_id} is already {row['status']}"
            )
        logger.info("Scheduled task #%d marked %s", instance_id, status.value)
        return self._row_to_instance(row)

    def list_for_task(
        self,
        task_id: str,
        start_date: date,
        end_date: date,
        include_skipped: bool = False,
    ) -> list[ScheduledTaskInstance]:
        query = (
            "SELECT * FROM scheduled_tasks WHERE task_id = ? "
            "AND scheduled_date >= ? AND scheduled_date <= ?"
        )
        if not include_skipped:
            query += " AND status != 'skipped'"
        query += " ORDER BY start_at"
        with self._connect() as conn:
            rows = conn.execute(
                query, (task_id, start_date.isoformat(), end_date.isoformat())
            ).fetchall()
        return [self._row_to_instance(r) for r in rows]

    def scheduled_dates(self, task_id: str, start_date: date, end_date: date) -> list[date]:
        """Dates (one entry per placement) on which the task has a non-skipped placement."""
        return [i.scheduled_date for i in self.list_for_task(task_id, start_date, end_date)]

    def list_for_assignee(
        self, assignee_id: str, start_date: date, end_date: date
    ) -> list[ScheduledTaskInstance]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM scheduled_tasks
                WHERE assignee_id = ? AND scheduled_date >= ? AND scheduled_date <= ?
                ORDER BY start_at
                """,
                (assignee_id, start_date.isoformat(), end_date.isoformat()),
            ).fetchall()
        return [self._row_to_instance(r) for r in rows]

    def delete_instance(self, instance_id: int) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM scheduled_tasks WHERE id = ?", (instance_id,))
        return cursor.rowcount > 0

    def clear_pending(
        self, assignee_id: str, start_date: date, end_date: date
    ) -> list[ScheduledTaskInstance]:
        """Delete the assignee's pending placements in range and return them."""
        with self._immediate() as conn:
            rows = conn.execute(
                """
                SELECT * FROM scheduled_tasks
                WHERE assignee_id = ? AND status = 'pending'
                  AND scheduled_date >= ? AND scheduled_date <= ?
                """,
                (assignee_id, start_date.isoformat(), end_date.isoformat()),
            ).fetchall()
            conn.executemany(
                "DELETE FROM scheduled_tasks WHERE id = ?", [(r["id"],) for r in rows]
            )
        if rows:
            logger.info(
                "Cleared %d pending task(s) for %s between %s and %s",
                len(rows), assignee_id, start_date, end_date,
            )
        return [self._row_to_instance(r) for r in rows]


# ---------------------------------------------------------------------------
# Weekly plans
# ---------------------------------------------------------------------------

class WeeklyPlanDB(_Store):
    """Shared weekly plans, their items and per-member approvals."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS weekly_plans (
                    id          TEXT PRIMARY KEY,
                    family_id   TEXT NOT NULL,
                    week_start  TEXT NOT NULL,
                    week_end    TEXT NOT NULL,
                    status      TEXT NOT NULL DEFAULT 'draft',
                    created_by  TEXT NOT NULL,
                    created_at  TEXT NOT NULL,
                    expires_at  TEXT NOT NULL,
                    reasoning   TEXT NOT NULL DEFAULT '',
                    approved_at TEXT,
                    rejected_at TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS weekly_plan_items (
                    id                    TEXT    PRIMARY KEY,
                    plan_id               TEXT    NOT NULL,
                    task_id               TEXT    NOT NULL,
                    assignee_id           TEXT    NOT NULL,
                    scheduled_date        TEXT    NOT NULL,
                    start_at              TEXT    NOT NULL,
                    end_at                TEXT    NOT NULL,
                    reasoning             TEXT    NOT NULL DEFAULT '',
                    position              INTEGER NOT NULL DEFAULT 0,
                    version               INTEGER NOT NULL DEFAULT 1,
                    last_edited_by        TEXT,
                    last_edited_at        TEXT
                )
            """)
            self._migrate(conn, "weekly_plan_items", {
                "history": "TEXT NOT NULL DEFAULT '[]'",
                "instance_id": "INTEGER",
                "materialization_error": "TEXT",
            })
            conn.execute("""
                CREATE TABLE IF NOT EXISTS weekly_plan_approvals (
                    plan_id    TEXT NOT NULL,
                    user_id    TEXT NOT NULL,
                    status     TEXT NOT NULL DEFAULT 'pending',
                    decided_at TEXT,
                    comment    TEXT,
                    PRIMARY KEY (plan_id, user_id)
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_plan_family_week "
                "ON weekly_plans (family_id, week_start)"
            )
        logger.debug("Weekly plan tables initialized at %s", self._db_path)

    # -- row mapping -----------------------------------------------------

    @staticmethod
    def _row_to_plan(row: sqlite3.Row) -> WeeklyPlan:
        return WeeklyPlan(
            id=row["id"],
            family_id=row["family_id"],
            week_start=date.fromisoformat(row["week_start"]),
            week_end=date.fromisoformat(row["week_end"]),
            status=PlanStatus(row["status"]),
            created_by=row["created_by"],
            created_at=datetime.fromisoformat(row["created_at"]),
            expires_at=datetime.fromisoformat(row["expires_at"]),
            reasoning=row["reasoning"],
            approved_at=_parse_dt(row["approved_at"]),
            rejected_at=_parse_dt(row["rejected_at"]),
        )

    @staticmethod
    def _row_to_item(row: sqlite3.Row) -> WeeklyPlanItem:
        history = [
            PlanItemEdit(
                editor_id=h["editor_id"],
                edited_at=datetime.fromisoformat(h["edited_at"]),
                changes={k: tuple(v) for k, v in h["changes"].items()},
            )
            for h in json.loads(row["history"] or "[]")
        ]
        return WeeklyPlanItem(
            id=row["id"],
            plan_id=row["plan_id"],
            task_id=row["task_id"],
            assignee_id=row["assignee_id"],
            scheduled_date=date.fromisoformat(row["scheduled_date"]),
            start=datetime.fromisoformat(row["start_at"]),
            end=datetime.fromisoformat(row["end_at"]),
            reasoning=row["reasoning"],
            position=row["position"],
            version=row["version"],
            last_edited_by=row["last_edited_by"],
            last_edited_at=_parse_dt(row["last_edited_at"]),
            history=history,
            instance_id=row["instance_id"],
            materialization_error=row["materialization_error"],
        )

    @staticmethod
    def _row_to_approval(row: sqlite3.Row) -> WeeklyPlanApproval:
        return WeeklyPlanApproval(
            plan_id=row["plan_id"],
            user_id=row["user_id"],
            status=ApprovalStatus(row["status"]),
            decided_at=_parse_dt(row["decided_at"]),
            comment=row["comment"],
        )

    @staticmethod
    def _history_json(history: list[PlanItemEdit]) -> str:
        return json.dumps([
            {
                "editor_id": h.editor_id,
                "edited_at": h.edited_at.isoformat(),
                "changes": {k: list(v) for k, v in h.changes.items()},
            }
            for h in history
        ])

    def _load_children(self, conn: sqlite3.Connection, plan: WeeklyPlan) -> WeeklyPlan:
        items = conn.execute(
            "SELECT * FROM weekly_plan_items WHERE plan_id = ? ORDER BY position, start_at",
            (plan.id,),
        ).fetchall()
        approvals = conn.execute(
            "SELECT * FROM weekly_plan_approvals WHERE plan_id = ? ORDER BY user_id",
            (plan.id,),
        ).fetchall()
        plan.items = [self._row_to_item(r) for r in items]
        plan.approvals = [self._row_to_approval(r) for r in approvals]
        return plan

    @staticmethod
    def _delete_plan_rows(conn: sqlite3.Connection, plan_id: str) -> None:
        conn.execute("DELETE FROM weekly_plan_items WHERE plan_id = ?", (plan_id,))
        conn.execute("DELETE FROM weekly_plan_approvals WHERE plan_id = ?", (plan_id,))
        conn.execute("DELETE FROM weekly_plans WHERE id = ?", (plan_id,))

    # -- plans -----------------------------------------------------------

    def replace_plan(self, plan: WeeklyPlan, member_ids: Iterable[str]) -> WeeklyPlan:
        """Store a new draft plan, dropping non-approved plans for the same week.

        Approvals start as pending for every member.
        """
        members = list(dict.fromkeys(member_ids))
        with self._immediate() as conn:
            stale = conn.execute(
                """
                SELECT id FROM weekly_plans
                WHERE family_id = ? AND week_start = ? AND status != 'approved'
                """,
                (plan.family_id, plan.week_start.isoformat()),
            ).fetchall()
            for row in stale:
                self._delete_plan_rows(conn, row["id"])

            conn.execute(
                """
                INSERT INTO weekly_plans
                    (id, family_id, week_start, week_end, status, created_by,
                     created_at, expires_at, reasoning)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    plan.id, plan.family_id, plan.week_start.isoformat(),
                    plan.week_end.isoformat(), plan.status.value, plan.created_by,
                    plan.created_at.isoformat(), plan.expires_at.isoformat(), plan.reasoning,
                ),
            )
            conn.executemany(
                """
                INSERT INTO weekly_plan_items
                    (id, plan_id, task_id, assignee_id, scheduled_date, start_at,
                     end_at, reasoning, position, version, history)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 1, '[]')
                """,
                [
                    (
                        item.id, plan.id, item.task_id, item.assignee_id,
                        item.scheduled_date.isoformat(), item.start.isoformat(),
                        item.end.isoformat(), item.reasoning, item.position,
                    )
                    for item in plan.items
                ],
            )
            conn.executemany(
                "INSERT INTO weekly_plan_approvals (plan_id, user_id, status) VALUES (?, ?, 'pending')",
                [(plan.id, m) for m in members],
            )
            stored = self._load_children(conn, plan)
        if stale:
            logger.info("Replaced %d unapproved plan(s) for week %s", len(stale), plan.week_start)
        logger.info(
            "Weekly plan %s created for family %s, week %s (%d items)",
            plan.id, plan.family_id, plan.week_start, len(plan.items),
        )
        return stored

    def get_plan(self, plan_id: str) -> WeeklyPlan | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM weekly_plans WHERE id = ?", (plan_id,)).fetchone()
            if row is None:
                return None
            return self._load_children(conn, self._row_to_plan(row))

    def get_plan_for_week(self, family_id: str, week_start: date) -> WeeklyPlan | None:
        """Most recent plan for a family's week."""
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT * FROM weekly_plans WHERE family_id = ? AND week_start = ?
                ORDER BY created_at DESC LIMIT 1
                """,
                (family_id, week_start.isoformat()),
            ).fetchone()
            if row is None:
                return None
            return self._load_children(conn, self._row_to_plan(row))

    def list_plans(self, family_id: str, status: PlanStatus | None = None) -> list[WeeklyPlan]:
        query = "SELECT * FROM weekly_plans WHERE family_id = ?"
        params: list = [family_id]
        if status is not None:
            query += " AND status = ?"
            params.append(status.value)
        query += " ORDER BY week_start DESC, created_at DESC"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_plan(r) for r in rows]

    def transition(
        self, plan_id: str, to_status: PlanStatus, from_statuses: Iterable[PlanStatus]
    ) -> bool:
        """Conditionally move a plan between statuses."""
        allowed = [s.value for s in from_statuses]
        marks = ", ".join("?" for _ in allowed)
        with self._connect() as conn:
            cursor = conn.execute(
                f"UPDATE weekly_plans SET status = ? WHERE id = ? AND status IN ({marks})",
                [to_status.value, plan_id, *allowed],
            )
        return cursor.rowcount > 0

    def record_vote(
        self,
        plan_id: str,
        user_id: str,
        status: ApprovalStatus,
        decided_at: datetime,
        comment: str | None,
        member_ids: Iterable[str],
        decide: Callable[[dict[str, ApprovalStatus], list[str]], PlanStatus],
    ) -> tuple[PlanStatus, WeeklyPlan]:
        """Upsert one member's vote and re-evaluate the plan in one transaction.

        Returns (previous status, updated plan). `decide` maps the member
        votes to the plan status.
        """
        members = list(member_ids)
        with self._immediate() as conn:
            row = conn.execute("SELECT * FROM weekly_plans WHERE id = ?", (plan_id,)).fetchone()
            if row is None:
                raise PlanNotFound(f"Weekly plan {plan_id} not found")
            previous = PlanStatus(row["status"])
            if previous.is_terminal:
                raise PlanStateError(f"Plan {plan_id} is already {previous.value}")

            conn.execute(
                """
                INSERT INTO weekly_plan_approvals (plan_id, user_id, status, decided_at, comment)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(plan_id, user_id) DO UPDATE SET
                    status = excluded.status,
                    decided_at = excluded.decided_at,
                    comment = excluded.comment
                """,
                (plan_id, user_id, status.value, decided_at.isoformat(), comment),
            )
            votes = {
                r["user_id"]: ApprovalStatus(r["status"])
                for r in conn.execute(
                    "SELECT user_id, status FROM weekly_plan_approvals WHERE plan_id = ?",
                    (plan_id,),
                ).fetchall()
            }
            new_status = decide(votes, members)
            conn.execute(
                """
                UPDATE weekly_plans SET
                    status = ?,
                    approved_at = CASE WHEN ? = 'approved' THEN ? ELSE approved_at END,
                    rejected_at = CASE WHEN ? = 'rejected' THEN ? ELSE rejected_at END
                WHERE id = ?
                """,
                (
                    new_status.value,
                    new_status.value, decided_at.isoformat(),
                    new_status.value, decided_at.isoformat(),
                    plan_id,
                ),
            )
            updated = conn.execute("SELECT * FROM weekly_plans WHERE id = ?", (plan_id,)).fetchone()
            plan = self._load_children(conn, self._row_to_plan(updated))
        logger.info(
            "Plan %s: %s voted %s, status %s -> %s",
            plan_id, user_id, status.value, previous.value, new_status.value,
        )
        return previous, plan

    def expire_stale(self, now: datetime) -> list[str]:
        """Expire every open plan whose expiry has passed. Returns their ids."""
        with self._immediate() as conn:
            rows = conn.execute(
                f"""
                SELECT id FROM weekly_plans
                WHERE status IN ({", ".join("?" for _ in _EDITABLE)}) AND expires_at < ?
                """,
                [*_EDITABLE, now.isoformat()],
            ).fetchall()
            conn.executemany(
                "UPDATE weekly_plans SET status = 'expired' WHERE id = ?",
                [(r["id"],) for r in rows],
            )
        return [r["id"] for r in rows]

    # -- items -----------------------------------------------------------

    def get_item(self, item_id: str) -> WeeklyPlanItem | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM weekly_plan_items WHERE id = ?", (item_id,)
            ).fetchone()
        return self._row_to_item(row) if row else None

    def update_item_if_version(
        self,
        item: WeeklyPlanItem,
        expected_version: int,
        edit: PlanItemEdit,
        reset_approvals: bool,
    ) -> bool:
        """Write an edited item only if its stored version still matches.

        The version bump, provenance and field changes land in one
        conditional UPDATE; it also fails when the plan is no longer
        editable. With `reset_approvals`, standing votes return to pending
        and the plan to draft in the same transaction.
        """
        history = item.history + [edit]
        with self._immediate() as conn:
            cursor = conn.execute(
                f"""
                UPDATE weekly_plan_items SET
                    assignee_id = ?, scheduled_date = ?, start_at = ?, end_at = ?,
                    reasoning = ?, version = version + 1,
                    last_edited_by = ?, last_edited_at = ?, history = ?
                WHERE id = ? AND version = ?
                  AND plan_id IN (
                      SELECT id FROM weekly_plans
                      WHERE status IN ({", ".join("?" for _ in _EDITABLE)})
                  )
                """,
                [
                    item.assignee_id, item.scheduled_date.isoformat(),
                    item.start.isoformat(), item.end.isoformat(), item.reasoning,
                    edit.editor_id, edit.edited_at.isoformat(), self._history_json(history),
                    item.id, expected_version, *_EDITABLE,
                ],
            )
            if cursor.rowcount != 1:
                return False
            if reset_approvals:
                self._reset_votes(conn, item.plan_id)
        return True

    def delete_item_if_version(
        self, item_id: str, plan_id: str, expected_version: int, reset_approvals: bool
    ) -> bool:
        with self._immediate() as conn:
            cursor = conn.execute(
                f"""
                DELETE FROM weekly_plan_items
                WHERE id = ? AND version = ?
                  AND plan_id IN (
                      SELECT id FROM weekly_plans
                      WHERE status IN ({", ".join("?" for _ in _EDITABLE)})
                  )
                """,
                [item_id, expected_version, *_EDITABLE],
            )
            if cursor.rowcount != 1:
                return False
            if reset_approvals:
                self._reset_votes(conn, plan_id)
        return True

    @staticmethod
    def _reset_votes(conn: sqlite3.Connection, plan_id: str) -> None:
        conn.execute(
            """
            UPDATE weekly_plan_approvals SET status = 'pending', decided_at = NULL
            WHERE plan_id = ? AND status != 'pending'
            """,
            (plan_id,),
        )
        conn.execute(
            "UPDATE weekly_plans SET status = 'draft' WHERE id = ? AND status = 'pending_approval'",
            (plan_id,),
        )

    def record_materialization(
        self, item_id: str, instance_id: int | None = None, error: str | None = None
    ) -> None:
        """Record the outcome of turning an item into a scheduled task."""
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE weekly_plan_items SET instance_id = ?, materialization_error = ?
                WHERE id = ?
                """,
                (instance_id, error, item_id),
            )
