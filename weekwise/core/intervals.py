"""Interval algebra — pure operations on half-open time ranges.

Intervals are validated when they are built, so the operations below never
see a zero-length or inverted range.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable, TypeVar

from weekwise.core.errors import InvalidInterval


class BlockKind(str, Enum):
    WORK_HOURS = "work-hours"
    COMMUTE = "commute"
    VACATION = "vacation"
    PUBLIC_HOLIDAY = "public-holiday"
    THIRD_PARTY_EVENT = "third-party-event"


@dataclass(frozen=True)
class Interval:
    """A half-open range [start, end)."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise InvalidInterval(
                f"Interval must have start < end, got {self.start.isoformat()} "
                f"– {self.end.isoformat()}"
            )

    @property
    def minutes(self) -> int:
        return int((self.end - self.start) / timedelta(minutes=1))

    def with_bounds(self, start: datetime, end: datetime) -> Interval:
        return Interval(start, end)


@dataclass(frozen=True)
class BlockedInterval(Interval):
    """A range during which a person is unavailable, tagged with its source."""

    kind: BlockKind = BlockKind.THIRD_PARTY_EVENT
    reason: str = ""

    def with_bounds(self, start: datetime, end: datetime) -> BlockedInterval:
        return BlockedInterval(start, end, self.kind, self.reason)


_I = TypeVar("_I", bound=Interval)


def overlaps(a: Interval, b: Interval) -> bool:
    """Strict overlap: touching ranges do not overlap."""
    return a.start < b.end and a.end > b.start


def subtract(free: Interval, blocked: Iterable[Interval]) -> list[Interval]:
    """Remove every blocked range from `free`, returning the remaining pieces.

    Each blocked range that intersects splits the free range into zero, one
    or two parts. Result is ordered by start.
    """
    pieces: list[Interval] = [free]
    for block in sorted(blocked, key=lambda b: b.start):
        next_pieces: list[Interval] = []
        for piece in pieces:
            if not overlaps(piece, block):
                next_pieces.append(piece)
                continue
            if piece.start < block.start:
                next_pieces.append(Interval(piece.start, block.start))
            if block.end < piece.end:
                next_pieces.append(Interval(block.end, piece.end))
        pieces = next_pieces
        if not pieces:
            break
    return pieces


def merge(intervals: Iterable[_I]) -> list[_I]:
    """Coalesce overlapping or adjacent intervals of the same kind.

    Plain intervals are all treated as one kind. Blocked intervals keep the
    reason of the earliest member of each merged run.
    """
    result: list[_I] = []
    groups: dict[object, list[_I]] = {}
    for interval in intervals:
        groups.setdefault(getattr(interval, "kind", None), []).append(interval)

    for members in groups.values():
        members.sort(key=lambda i: (i.start, i.end))
        current = members[0]
        for interval in members[1:]:
            if interval.start <= current.end:
                if interval.end > current.end:
                    current = current.with_bounds(current.start, interval.end)
            else:
                result.append(current)
                current = interval
        result.append(current)

    result.sort(key=lambda i: (i.start, i.end))
    return result


def clip(interval: _I, bounds: Interval) -> _I | None:
    """Return the part of `interval` inside `bounds`, or None if disjoint."""
    if not overlaps(interval, bounds):
        return None
    return interval.with_bounds(max(interval.start, bounds.start), min(interval.end, bounds.end))


def duration_minutes(interval: Interval) -> int:
    return interval.minutes
