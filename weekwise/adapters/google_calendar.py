"""Google Calendar adapter — implements CalendarPort for the Google Calendar API.

All Google-specific logic lives here. Core modules never import this directly;
they depend on the CalendarPort protocol.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime
from typing import Callable
from zoneinfo import ZoneInfo

from weekwise.config import settings
from weekwise.integrations.google_auth import get_calendar_service_for_user
from weekwise.ports.calendar_port import CalendarError, CalendarEvent

logger = logging.getLogger(__name__)

TokenLookup = Callable[[str], "str | None"]


def _to_rfc3339(dt: datetime) -> str:
    """Attach the configured zone to a naive local datetime."""
    return dt.replace(tzinfo=ZoneInfo(settings.TIMEZONE)).isoformat()


def _to_local(value: str) -> datetime:
    """Parse a Google dateTime into a naive local datetime."""
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is not None:
        dt = dt.astimezone(ZoneInfo(settings.TIMEZONE)).replace(tzinfo=None)
    return dt


def _parse_item(item: dict) -> CalendarEvent | None:
    start = item.get("start", {})
    end = item.get("end", {})
    summary = item.get("summary", "(no title)")

    if "date" in start:
        # All-day: end date is exclusive
        start_day = date.fromisoformat(start["date"])
        end_day = date.fromisoformat(end.get("date", start["date"]))
        start_dt = datetime.combine(start_day, datetime.min.time())
        end_dt = datetime.combine(end_day, datetime.min.time())
        if end_dt <= start_dt:
            return None
        return CalendarEvent(item.get("id", ""), summary, start_dt, end_dt, is_all_day=True)

    if "dateTime" not in start or "dateTime" not in end:
        return None
    start_dt = _to_local(start["dateTime"])
    end_dt = _to_local(end["dateTime"])
    if end_dt <= start_dt:
        return None
    return CalendarEvent(item.get("id", ""), summary, start_dt, end_dt)


class GoogleCalendarAdapter:
    """Google Calendar implementation of CalendarPort.

    Credentials are resolved per user: `token_lookup(user_id)` when given,
    otherwise the single `token_json` the adapter was built with.
    """

    def __init__(
        self,
        token_json: str | None = None,
        token_lookup: TokenLookup | None = None,
    ) -> None:
        self._token_json = token_json
        self._token_lookup = token_lookup

    def _service(self, user_id: str):
        token = self._token_lookup(user_id) if self._token_lookup else None
        token = token or self._token_json
        if not token:
            raise CalendarError(f"No Google Calendar credentials for user {user_id}")
        return get_calendar_service_for_user(token)

    def _list_items(self, user_id: str, start: datetime, end: datetime) -> list[dict]:
        service = self._service(user_id)
        items: list[dict] = []
        page_token = None
        while True:
            result = (
                service.events()
                .list(
                    calendarId="primary",
                    timeMin=_to_rfc3339(start),
                    timeMax=_to_rfc3339(end),
                    singleEvents=True,
                    orderBy="startTime",
                    pageToken=page_token,
                )
                .execute()
            )
            items.extend(result.get("items", []))
            page_token = result.get("nextPageToken")
            if not page_token:
                return items

    async def get_events(
        self, user_id: str, start: datetime, end: datetime
    ) -> list[CalendarEvent]:
        try:
            items = await asyncio.to_thread(self._list_items, user_id, start, end)
        except CalendarError:
            raise
        except Exception as exc:
            logger.error("Google Calendar API error (get_events): %s", exc)
            raise CalendarError(f"Failed to list events: {exc}") from exc

        events = []
        for item in items:
            if item.get("status") == "cancelled":
                continue
            event = _parse_item(item)
            if event is not None:
                events.append(event)
        logger.info(
            "Found %d Google event(s) for user %s between %s and %s",
            len(events), user_id, start.date(), end.date(),
        )
        return events

    async def create_event(
        self, user_id: str, title: str, body: str, start: datetime, end: datetime
    ) -> str:
        event_body = {
            "summary": title,
            "description": body,
            "start": {"dateTime": start.isoformat(), "timeZone": settings.TIMEZONE},
            "end": {"dateTime": end.isoformat(), "timeZone": settings.TIMEZONE},
        }
        try:
            service = self._service(user_id)
            created = await asyncio.to_thread(
                service.events().insert(calendarId="primary", body=event_body).execute
            )
        except CalendarError:
            raise
        except Exception as exc:
            logger.error("Google Calendar API error (create_event): %s", exc)
            raise CalendarError(f"Failed to create event: {exc}") from exc

        logger.info("Event created: '%s' at %s (%s)", title, start, created.get("htmlLink", ""))
        return created["id"]

    async def delete_event(self, user_id: str, event_id: str) -> None:
        try:
            service = self._service(user_id)
            await asyncio.to_thread(
                service.events().delete(calendarId="primary", eventId=event_id).execute
            )
        except CalendarError:
            raise
        except Exception as exc:
            logger.error("Failed to delete event with ID %s: %s", event_id, exc)
            raise CalendarError(f"Failed to delete event: {exc}") from exc
        logger.info("Event with ID %s deleted successfully.", event_id)
