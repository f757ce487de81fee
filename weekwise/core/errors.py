"""Error taxonomy shared by the scheduling core.

InvalidInterval is always a caller bug. VersionConflict is expected and
retryable. ValidationRejected describes one rejected placement.
UpstreamUnavailable covers calendar-provider and planner failures, which
callers degrade around rather than abort on.
"""

from __future__ import annotations

from datetime import datetime


class InvalidInterval(ValueError):
    """Raised when an interval is zero-length or inverted."""


class VersionConflict(Exception):
    """Raised when a plan item was changed since the caller read it."""

    def __init__(
        self,
        item_id: str,
        expected_version: int,
        current_version: int,
        last_edited_by: str | None = None,
        last_edited_at: datetime | None = None,
    ) -> None:
        self.item_id = item_id
        self.expected_version = expected_version
        self.current_version = current_version
        self.last_edited_by = last_edited_by
        self.last_edited_at = last_edited_at
        who = last_edited_by or "another user"
        super().__init__(
            f"Plan item {item_id} was edited by {who} "
            f"(version {current_version}, you had {expected_version}). "
            "Refresh and try again."
        )


class ValidationRejected(Exception):
    """Raised when a proposed placement fails a hard scheduling constraint."""

    def __init__(self, reason: str, detail: str = "") -> None:
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason}: {detail}" if detail else reason)


class UpstreamUnavailable(Exception):
    """Raised when an external collaborator (calendar, planner) fails."""


class PlanNotFound(LookupError):
    """Raised when a weekly plan or plan item does not exist."""


class PlanStateError(Exception):
    """Raised when an action is not allowed in the plan's current status."""


class NotFamilyMember(PermissionError):
    """Raised when a user acts on a plan outside their family."""
