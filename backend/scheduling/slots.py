"""
Slot generation.

Turns one resolved day of availability into concrete bookable start times
for a service type. Candidates are laid on a fixed grid starting at each
window's opening time, so services of different durations share the same
start times.

Algorithm:
    1. Keep the active windows that accept the service type
    2. Step through each window every ``slot_step_minutes``
    3. Drop candidates whose consultation plus rest buffer spills past the window
    4. Flag candidates that collide with a booked interval or lie in the past
    5. Pool all windows, de-duplicate by start time and sort
"""

from collections.abc import Hashable, Iterable
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any

from backend.scheduling.availability import DayAvailability
from backend.scheduling.calendar_utils import combine
from backend.scheduling.conflicts import BookedInterval, has_conflict

DEFAULT_SLOT_STEP_MINUTES = 15


@dataclass(frozen=True)
class ServiceType:
    id: Hashable
    duration_minutes: int
    rest_after_minutes: int = 0
    enabled: bool = True

    @property
    def occupied_minutes(self) -> int:
        return self.duration_minutes + max(self.rest_after_minutes, 0)


@dataclass(frozen=True)
class Slot:
    start: datetime
    end: datetime


@dataclass(frozen=True)
class SlotOption:
    start: datetime
    end: datetime
    is_available: bool

    def as_slot(self) -> Slot:
        return Slot(start=self.start, end=self.end)


def slot_options(
    target_date: date,
    service_type: ServiceType,
    day_availability: DayAvailability,
    booked_intervals: Iterable[Any],
    slot_step_minutes: int = DEFAULT_SLOT_STEP_MINUTES,
    not_before: datetime | None = None,
) -> list[SlotOption]:
    """Every grid start that fits a window, flagged available or not.

    An inactive day, a disabled service type, or a non-positive step or
    duration yields an empty list.
    """
    if not day_availability.is_active or not service_type.enabled:
        return []
    if slot_step_minutes <= 0 or service_type.duration_minutes <= 0:
        return []

    booked = list(booked_intervals)
    step = timedelta(minutes=slot_step_minutes)
    duration = timedelta(minutes=service_type.duration_minutes)
    occupied = timedelta(minutes=service_type.occupied_minutes)

    options: dict[datetime, SlotOption] = {}

    for window in day_availability.windows_for(service_type.id):
        window_start = combine(target_date, window.start_time)
        window_end = combine(target_date, window.end_time)

        candidate_start = window_start
        while candidate_start + occupied <= window_end:
            if candidate_start not in options:
                footprint = BookedInterval(start=candidate_start, end=candidate_start + occupied)
                is_past = not_before is not None and candidate_start <= not_before
                options[candidate_start] = SlotOption(
                    start=candidate_start,
                    end=candidate_start + duration,
                    is_available=not is_past and not has_conflict(footprint, booked),
                )

            candidate_start += step

    return [options[start] for start in sorted(options)]


def generate_available_slots(
    target_date: date,
    service_type: ServiceType,
    day_availability: DayAvailability,
    booked_intervals: Iterable[Any],
    slot_step_minutes: int = DEFAULT_SLOT_STEP_MINUTES,
    not_before: datetime | None = None,
) -> list[Slot]:
    return [
        option.as_slot()
        for option in slot_options(
            target_date,
            service_type,
            day_availability,
            booked_intervals,
            slot_step_minutes=slot_step_minutes,
            not_before=not_before,
        )
        if option.is_available
    ]
