"""Tests for weekwise.core.availability — the availability resolver."""

import pytest
from datetime import date, datetime, time
from unittest.mock import AsyncMock

from weekwise.core.availability import (
    blocked_for_day,
    format_blocked_for_prompt,
    resolve_availability,
)
from weekwise.core.intervals import BlockedInterval, BlockKind
from weekwise.data.models import UserProfile, Weekday, WorkLocation, WorkScheduleDay
from weekwise.ports.calendar_port import CalendarError, CalendarEvent

MONDAY = date(2026, 3, 2)
SUNDAY = date(2026, 3, 8)


def _kinds(result):
    return [b.kind for b in result.blocked]


class TestWorkAndCommute:
    @pytest.mark.asyncio
    async def test_home_day_blocks_only_work_hours(self, availability_db):
        availability_db.set_work_day("amit", WorkScheduleDay(
            Weekday.MONDAY, True, time(9, 0), time(17, 30), WorkLocation.HOME, 30, 30,
        ))
        result = await resolve_availability(availability_db, None, "amit", MONDAY, MONDAY)
        assert _kinds(result) == [BlockKind.WORK_HOURS]
        assert result.blocked[0].start == datetime(2026, 3, 2, 9, 0)
        assert result.blocked[0].end == datetime(2026, 3, 2, 17, 30)

    @pytest.mark.asyncio
    async def test_office_day_adds_commute_blocks(self, availability_db):
        availability_db.set_work_day("amit", WorkScheduleDay(
            Weekday.MONDAY, True, time(9, 0), time(17, 0), WorkLocation.OFFICE, 45, 30,
        ))
        result = await resolve_availability(availability_db, None, "amit", MONDAY, MONDAY)
        commute = [b for b in result.blocked if b.kind is BlockKind.COMMUTE]
        assert [(b.start.time(), b.end.time()) for b in commute] == [
            (time(8, 15), time(9, 0)),
            (time(17, 0), time(17, 30)),
        ]

    @pytest.mark.asyncio
    async def test_zero_commute_adds_nothing(self, availability_db):
        availability_db.set_work_day("amit", WorkScheduleDay(
            Weekday.MONDAY, True, time(9, 0), time(17, 0), WorkLocation.OFFICE, 0, None,
        ))
        result = await resolve_availability(availability_db, None, "amit", MONDAY, MONDAY)
        assert _kinds(result) == [BlockKind.WORK_HOURS]

    @pytest.mark.asyncio
    async def test_non_working_day_is_free(self, availability_db):
        availability_db.set_work_day("amit", WorkScheduleDay(Weekday.MONDAY, False))
        result = await resolve_availability(availability_db, None, "amit", MONDAY, MONDAY)
        assert result.blocked == []


class TestWholeDayBlocks:
    @pytest.mark.asyncio
    async def test_vacation_blocks_each_day(self, availability_db):
        availability_db.add_vacation("amit", date(2026, 3, 3), date(2026, 3, 4), "Skiing")
        result = await resolve_availability(availability_db, None, "amit", MONDAY, SUNDAY)
        vacation = [b for b in result.blocked if b.kind is BlockKind.VACATION]
        assert [b.start.date() for b in vacation] == [date(2026, 3, 3), date(2026, 3, 4)]
        assert all(b.reason == "Skiing" for b in vacation)

    @pytest.mark.asyncio
    async def test_holiday_blocks_observed_day(self, availability_db):
        # Boxing Day 2026 is a Saturday, observed Monday 28th
        result = await resolve_availability(
            availability_db, None, "amit", date(2026, 12, 26), date(2026, 12, 28)
        )
        holidays = [b for b in result.blocked if b.kind is BlockKind.PUBLIC_HOLIDAY]
        assert [(b.start.date(), b.reason) for b in holidays] == [
            (date(2026, 12, 28), "Boxing Day"),
        ]

    @pytest.mark.asyncio
    async def test_profile_country_selects_calendar(self, availability_db):
        availability_db.upsert_profile(UserProfile("amit", country="US"))
        result = await resolve_availability(
            availability_db, None, "amit", date(2026, 7, 4), date(2026, 7, 4)
        )
        assert result.country == "US"
        assert _kinds(result) == [BlockKind.PUBLIC_HOLIDAY]


class TestCalendarEvents:
    @pytest.mark.asyncio
    async def test_events_become_third_party_blocks(self, availability_db):
        calendar = AsyncMock()
        calendar.get_events.return_value = [
            CalendarEvent("e1", "Dentist", datetime(2026, 3, 2, 18), datetime(2026, 3, 2, 19)),
        ]
        result = await resolve_availability(availability_db, calendar, "amit", MONDAY, SUNDAY)
        assert result.blocked == [BlockedInterval(
            datetime(2026, 3, 2, 18), datetime(2026, 3, 2, 19),
            BlockKind.THIRD_PARTY_EVENT, "Dentist",
        )]
        assert result.calendar_known

    @pytest.mark.asyncio
    async def test_calendar_failure_degrades_with_warning(self, availability_db):
        availability_db.set_work_day("amit", WorkScheduleDay(
            Weekday.MONDAY, True, time(9, 0), time(17, 0),
        ))
        calendar = AsyncMock()
        calendar.get_events.side_effect = CalendarError("token expired")
        result = await resolve_availability(availability_db, calendar, "amit", MONDAY, MONDAY)
        assert _kinds(result) == [BlockKind.WORK_HOURS]
        assert not result.calendar_known
        assert "token expired" in result.warnings[0]

    @pytest.mark.asyncio
    async def test_inverted_range_rejected(self, availability_db):
        with pytest.raises(ValueError):
            await resolve_availability(availability_db, None, "amit", SUNDAY, MONDAY)


class TestHelpers:
    def test_blocked_for_day(self):
        blocks = [
            BlockedInterval(datetime(2026, 3, 2, 9), datetime(2026, 3, 2, 17), BlockKind.WORK_HOURS),
            BlockedInterval(datetime(2026, 3, 3, 9), datetime(2026, 3, 3, 17), BlockKind.WORK_HOURS),
        ]
        assert blocked_for_day(blocks, MONDAY) == blocks[:1]

    def test_format_for_prompt(self):
        blocks = [
            BlockedInterval(datetime(2026, 3, 2, 9), datetime(2026, 3, 2, 17, 30), BlockKind.WORK_HOURS, "Work"),
            BlockedInterval(datetime(2026, 3, 3), datetime(2026, 3, 4), BlockKind.VACATION),
        ]
        assert format_blocked_for_prompt(blocks) == (
            "- Mon 2026-03-02 09:00-17:30: work-hours (Work)\n"
            "- Tue 2026-03-03 all day: vacation"
        )

    def test_format_empty(self):
        assert format_blocked_for_prompt([]) == "(none)"
