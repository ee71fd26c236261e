"""Working-hours configuration and per-date availability resolution.

A doctor's week is described by recurring records, one per weekday, and by
date-specific records that replace the recurring record for a single
calendar date. Resolution order for a date:

    1. a date-specific record for that date (and its weekday)
    2. the recurring record for the weekday
    3. no availability at all
"""

import logging
from collections.abc import Hashable, Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum

from backend.scheduling.calendar_utils import as_date

logger = logging.getLogger(__name__)


class DayOfWeek(str, Enum):
    MONDAY = 'MONDAY'
    TUESDAY = 'TUESDAY'
    WEDNESDAY = 'WEDNESDAY'
    THURSDAY = 'THURSDAY'
    FRIDAY = 'FRIDAY'
    SATURDAY = 'SATURDAY'
    SUNDAY = 'SUNDAY'

    @classmethod
    def from_date(cls, value: date | datetime) -> 'DayOfWeek':
        return list(cls)[as_date(value).weekday()]


@dataclass(frozen=True)
class TimeWindow:
    """One contiguous span of a day open to a subset of service types."""
    start_time: time
    end_time: time
    accepted_service_type_ids: frozenset[Hashable] = field(default_factory=frozenset)
    is_active: bool = True

    @property
    def is_well_formed(self) -> bool:
        return self.start_time < self.end_time

    def accepts(self, service_type_id: Hashable) -> bool:
        return self.is_active and service_type_id in self.accepted_service_type_ids


@dataclass(frozen=True)
class DayAvailability:
    day_of_week: DayOfWeek
    specific_date: date | None = None
    is_active: bool = True
    windows: tuple[TimeWindow, ...] = ()

    @property
    def is_override(self) -> bool:
        return self.specific_date is not None

    @classmethod
    def unavailable(cls, target_date: date | datetime) -> 'DayAvailability':
        return cls(
            day_of_week=DayOfWeek.from_date(target_date),
            specific_date=as_date(target_date),
            is_active=False,
            windows=(),
        )

    def windows_for(self, service_type_id: Hashable) -> list[TimeWindow]:
        if not self.is_active:
            return []
        return [window for window in self.windows if window.accepts(service_type_id)]


def resolve_availability(
    target_date: date | datetime,
    weekly_defaults: Iterable[DayAvailability],
    date_overrides: Iterable[DayAvailability] = (),
) -> DayAvailability:
    day = as_date(target_date)
    day_of_week = DayOfWeek.from_date(day)

    for record in date_overrides:
        if record.specific_date is None or as_date(record.specific_date) != day:
            continue
        if record.day_of_week != day_of_week:
            logger.warning(
                'Ignoring override for %s recorded as %s; the date falls on a %s.',
                day.isoformat(),
                record.day_of_week.value,
                day_of_week.value,
            )
            continue
        return record

    for record in weekly_defaults:
        if record.specific_date is None and record.day_of_week == day_of_week:
            return record

    return DayAvailability.unavailable(day)
