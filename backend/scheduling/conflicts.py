"""Conflict detection between time intervals.

Callers scope ``existing`` to one doctor before calling; nothing here knows
which resource an interval belongs to.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from backend.scheduling.availability import DayAvailability, TimeWindow
from backend.scheduling.calendar_utils import intervals_overlap


class SlotUnavailableError(Exception):
    """Raised when a booking collides with an interval committed meanwhile."""

    def __init__(self, start: datetime, end: datetime, conflicts: list['BookedInterval'] | None = None):
        self.start = start
        self.end = end
        self.conflicts = conflicts or []
        super().__init__(f'Slot {start.isoformat()} - {end.isoformat()} is no longer available.')


@dataclass(frozen=True)
class BookedInterval:
    start: datetime
    end: datetime


def overlaps(first: Any, second: Any) -> bool:
    return intervals_overlap(first.start, first.end, second.start, second.end)


def has_conflict(candidate: Any, existing: Iterable[Any]) -> bool:
    return any(overlaps(candidate, interval) for interval in existing)


def find_conflicts(candidate: Any, existing: Iterable[Any]) -> list[Any]:
    return [interval for interval in existing if overlaps(candidate, interval)]


def find_window_overlaps(day_availability: DayAvailability) -> list[tuple[TimeWindow, TimeWindow]]:
    """Pairs of active windows that overlap while sharing a service type."""
    windows = [window for window in day_availability.windows if window.is_active]
    overlapping: list[tuple[TimeWindow, TimeWindow]] = []

    for index, first in enumerate(windows):
        for second in windows[index + 1:]:
            if not first.accepted_service_type_ids & second.accepted_service_type_ids:
                continue
            if intervals_overlap(first.start_time, first.end_time, second.start_time, second.end_time):
                overlapping.append((first, second))

    return overlapping
