"""CalDAV calendar adapter — implements CalendarPort for CalDAV servers.

Supports iCloud, Nextcloud, Fastmail, and any CalDAV-compliant server.
Uses the caldav library (sync) wrapped with asyncio.to_thread for async
compatibility.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from datetime import date, datetime
from zoneinfo import ZoneInfo

import caldav
from icalendar import Calendar as iCalendar
from icalendar import Event as iEvent

from weekwise.config import settings
from weekwise.ports.calendar_port import CalendarError, CalendarEvent

logger = logging.getLogger(__name__)


def _credentials(cred_json: str | None) -> dict:
    """Per-user CalDAV credentials, falling back to the global settings."""
    creds = {
        "url": settings.CALDAV_URL,
        "username": settings.CALDAV_USERNAME,
        "password": settings.CALDAV_PASSWORD,
        "calendar_name": settings.CALDAV_CALENDAR_NAME,
    }
    if cred_json:
        creds.update({k: v for k, v in json.loads(cred_json).items() if v})
    return creds


def _get_calendar(creds: dict) -> caldav.Calendar:
    """Connect to the CalDAV server and return the configured calendar."""
    client = caldav.DAVClient(
        url=creds["url"],
        username=creds["username"],
        password=creds["password"],
    )
    principal = client.principal()
    calendars = principal.calendars()

    if not calendars:
        raise CalendarError("No calendars found on the CalDAV server.")

    name = creds.get("calendar_name")
    if name:
        for cal in calendars:
            if cal.name == name:
                return cal
        raise CalendarError(
            f"Calendar '{name}' not found. "
            f"Available: {[c.name for c in calendars]}"
        )

    return calendars[0]


def _build_vevent(
    summary: str,
    description: str,
    start_dt: datetime,
    end_dt: datetime,
    uid: str | None = None,
) -> str:
    """Build an iCalendar VEVENT string."""
    cal = iCalendar()
    cal.add("prodid", "-//WeekWise//EN")
    cal.add("version", "2.0")

    event = iEvent()
    event.add("uid", uid or str(uuid.uuid4()))
    event.add("summary", summary)
    event.add("description", description)
    event.add("dtstart", start_dt)
    event.add("dtend", end_dt)

    cal.add_component(event)
    return cal.to_ical().decode("utf-8")


def _as_local(value: date | datetime) -> datetime:
    if not isinstance(value, datetime):
        return datetime.combine(value, datetime.min.time())
    if value.tzinfo is not None:
        return value.astimezone(ZoneInfo(settings.TIMEZONE)).replace(tzinfo=None)
    return value


def _parse_vevent(event_data: caldav.Event) -> CalendarEvent | None:
    """Parse a CalDAV event into a CalendarEvent (None when unusable)."""
    try:
        cal = iCalendar.from_ical(event_data.data)
    except ValueError as exc:
        logger.warning("Skipping unparseable CalDAV event: %s", exc)
        return None

    for component in cal.walk():
        if component.name != "VEVENT":
            continue
        dtstart = component.get("dtstart")
        if dtstart is None:
            return None
        dtend = component.get("dtend")

        is_all_day = not isinstance(dtstart.dt, datetime)
        start = _as_local(dtstart.dt)
        if dtend is not None:
            end = _as_local(dtend.dt)
        elif component.get("duration") is not None:
            end = start + component.get("duration").dt
        else:
            return None
        if end <= start:
            return None

        return CalendarEvent(
            id=str(component.get("uid", "")),
            summary=str(component.get("summary", "(no title)")),
            start=start,
            end=end,
            is_all_day=is_all_day,
        )
    return None


class CalDAVCalendarAdapter:
    """CalDAV implementation of CalendarPort."""

    def __init__(self, cred_json: str | None = None) -> None:
        self._creds = _credentials(cred_json)

    async def get_events(
        self, user_id: str, start: datetime, end: datetime
    ) -> list[CalendarEvent]:
        try:
            cal = await asyncio.to_thread(_get_calendar, self._creds)
            results = await asyncio.to_thread(
                cal.search, start=start, end=end, event=True, expand=True
            )
        except CalendarError:
            raise
        except Exception as exc:
            logger.error("CalDAV error (get_events): %s", exc)
            raise CalendarError(f"Failed to list events: {exc}") from exc

        events = [e for e in (_parse_vevent(ev) for ev in results) if e is not None]
        logger.info(
            "Found %d CalDAV event(s) for user %s between %s and %s",
            len(events), user_id, start.date(), end.date(),
        )
        return events

    async def create_event(
        self, user_id: str, title: str, body: str, start: datetime, end: datetime
    ) -> str:
        uid = str(uuid.uuid4())
        vcal = _build_vevent(title, body, start, end, uid=uid)
        try:
            cal = await asyncio.to_thread(_get_calendar, self._creds)
            await asyncio.to_thread(cal.save_event, vcal)
        except CalendarError:
            raise
        except Exception as exc:
            logger.error("CalDAV error (create_event): %s", exc)
            raise CalendarError(f"Failed to create event: {exc}") from exc

        logger.info("CalDAV event created: '%s' at %s", title, start)
        return uid

    async def delete_event(self, user_id: str, event_id: str) -> None:
        try:
            cal = await asyncio.to_thread(_get_calendar, self._creds)
            event = await asyncio.to_thread(cal.event_by_uid, event_id)
            await asyncio.to_thread(event.delete)
        except CalendarError:
            raise
        except Exception as exc:
            logger.error("CalDAV error (delete_event): %s", exc)
            raise CalendarError(f"Failed to delete event: {exc}") from exc
        logger.info("CalDAV event %s deleted.", event_id)
