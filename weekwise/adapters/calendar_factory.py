"""Calendar adapter factory — creates the right adapter based on config."""

from __future__ import annotations

import logging
from datetime import datetime

from weekwise.config import settings
from weekwise.ports.calendar_port import CalendarEvent, CalendarPort

logger = logging.getLogger(__name__)


class NullCalendarAdapter:
    """CalendarPort for deployments without a calendar provider.

    Reports no third-party events and accepts writes without mirroring them.
    """

    async def get_events(
        self, user_id: str, start: datetime, end: datetime
    ) -> list[CalendarEvent]:
        return []

    async def create_event(
        self, user_id: str, title: str, body: str, start: datetime, end: datetime
    ) -> str:
        return ""

    async def delete_event(self, user_id: str, event_id: str) -> None:
        return None


def create_calendar_adapter(token_json: str | None = None, token_lookup=None) -> CalendarPort:
    """Return the calendar adapter matching the CALENDAR_PROVIDER setting.

    This is where a host application composes WeekWise: build the adapter
    here and pass it as `calendar` to the scheduling and commit functions.
    The library never constructs an adapter on its own.

    Args:
        token_json: Per-user credentials. Passed to adapter constructors.
        token_lookup: Optional user_id -> token JSON callable (Google only).
    """
    provider = settings.CALENDAR_PROVIDER.lower()

    if provider == "google":
        from weekwise.adapters.google_calendar import GoogleCalendarAdapter

        return GoogleCalendarAdapter(token_json=token_json, token_lookup=token_lookup)

    if provider == "caldav":
        from weekwise.adapters.caldav_calendar import CalDAVCalendarAdapter

        return CalDAVCalendarAdapter(cred_json=token_json)

    if provider == "none":
        logger.debug("CALENDAR_PROVIDER=none, calendar mirroring disabled")
        return NullCalendarAdapter()

    raise ValueError(f"Unknown CALENDAR_PROVIDER: {provider!r}")
