"""Calendar port — abstract interface for the third-party calendar.

Core modules depend on this protocol, never on a specific provider. All
datetimes crossing the port are naive local times in settings.TIMEZONE.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from weekwise.core.errors import UpstreamUnavailable


class CalendarError(UpstreamUnavailable):
    """Raised when any calendar provider operation fails."""


@dataclass
class CalendarEvent:
    id: str
    summary: str
    start: datetime
    end: datetime
    is_all_day: bool = False


class CalendarPort(Protocol):
    """Abstract calendar interface used by core modules."""

    async def get_events(
        self, user_id: str, start: datetime, end: datetime
    ) -> list[CalendarEvent]: ...

    async def create_event(
        self, user_id: str, title: str, body: str, start: datetime, end: datetime
    ) -> str: ...

    async def delete_event(self, user_id: str, event_id: str) -> None: ...
