"""Date and time helpers shared by the scheduling engine."""

import calendar
import math
from collections.abc import Iterable, Iterator
from datetime import date, datetime, time, timedelta
from typing import Any

WEEK_LENGTH_DAYS = 7


def as_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def get_week_start(value: date | datetime) -> date:
    day = as_date(value)
    return day - timedelta(days=day.weekday())


def get_week_end(value: date | datetime) -> date:
    return get_week_start(value) + timedelta(days=WEEK_LENGTH_DAYS - 1)


def each_day(start: date | datetime, end: date | datetime) -> Iterator[date]:
    """Yield every calendar date from start to end, both inclusive."""
    current = as_date(start)
    last = as_date(end)
    while current <= last:
        yield current
        current += timedelta(days=1)


def get_week_days(value: date | datetime) -> list[date]:
    return list(each_day(get_week_start(value), get_week_end(value)))


def get_month_start(value: date | datetime) -> date:
    return as_date(value).replace(day=1)


def get_month_end(value: date | datetime) -> date:
    day = as_date(value)
    return day.replace(day=calendar.monthrange(day.year, day.month)[1])


def get_month_days(value: date | datetime) -> list[date]:
    return list(each_day(get_month_start(value), get_month_end(value)))


def get_calendar_days(value: date | datetime) -> list[date]:
    """Days of the month grid, padded with neighbouring days to whole weeks."""
    grid_start = get_week_start(get_month_start(value))
    grid_end = get_week_end(get_month_end(value))
    return list(each_day(grid_start, grid_end))


def add_months(value: date, months: int) -> date:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return value.replace(year=year, month=month, day=min(value.day, last_day))


def is_same_day(first: date | datetime, second: date | datetime) -> bool:
    return as_date(first) == as_date(second)


def is_same_month(first: date | datetime, second: date | datetime) -> bool:
    first_day = as_date(first)
    second_day = as_date(second)
    return (first_day.year, first_day.month) == (second_day.year, second_day.month)


class TimeSlotSequence:
    """Lazy, restartable run of HH:MM labels between two whole hours.

    Iterating twice yields the same labels. Invalid bounds or a non-positive
    interval produce an empty sequence instead of an error.
    """

    def __init__(self, start_hour: int, end_hour: int, interval_minutes: int):
        self.start_hour = start_hour
        self.end_hour = end_hour
        self.interval_minutes = interval_minutes

    def _is_empty(self) -> bool:
        return self.interval_minutes <= 0 or self.start_hour >= self.end_hour

    def __iter__(self) -> Iterator[str]:
        if self._is_empty():
            return
        minute = self.start_hour * 60
        last_minute = self.end_hour * 60
        while minute < last_minute:
            yield f'{minute // 60:02d}:{minute % 60:02d}'
            minute += self.interval_minutes

    def __len__(self) -> int:
        if self._is_empty():
            return 0
        span = (self.end_hour - self.start_hour) * 60
        return -(-span // self.interval_minutes)

    def __repr__(self) -> str:
        return (
            f'TimeSlotSequence(start_hour={self.start_hour}, '
            f'end_hour={self.end_hour}, interval_minutes={self.interval_minutes})'
        )


def generate_time_slots(start_hour: int = 8, end_hour: int = 20, interval_minutes: int = 15) -> TimeSlotSequence:
    return TimeSlotSequence(start_hour, end_hour, interval_minutes)


def duration_minutes(start: datetime, end: datetime) -> int:
    """Whole minutes between start and end, half a minute rounding up; 0 when end precedes start."""
    seconds = (end - start).total_seconds()
    if seconds < 0:
        return 0
    return math.floor(seconds / 60 + 0.5)


def intervals_overlap(a_start: Any, a_end: Any, b_start: Any, b_end: Any) -> bool:
    """Half-open overlap test used for every conflict check.

    Touching endpoints do not overlap, and an interval whose end is not after
    its start is empty and overlaps nothing.
    """
    if a_end <= a_start or b_end <= b_start:
        return False
    return a_start < b_end and a_end > b_start


def parse_wall_clock(value: str | time) -> time:
    if isinstance(value, time):
        return value
    hours, minutes = value.strip().split(':')[:2]
    return time(int(hours), int(minutes))


def format_wall_clock(value: time | datetime) -> str:
    return value.strftime('%H:%M')


def combine(day: date | datetime, wall_clock: str | time) -> datetime:
    return datetime.combine(as_date(day), parse_wall_clock(wall_clock))


def create_time_range(day: date | datetime, start: str | time, end: str | time) -> tuple[datetime, datetime]:
    return combine(day, start), combine(day, end)


def get_appointments_for_day(appointments: Iterable[Any], day: date | datetime) -> list[Any]:
    """Items with a ``start`` on the given day, ordered by start."""
    return sorted(
        (appointment for appointment in appointments if is_same_day(appointment.start, day)),
        key=lambda appointment: appointment.start,
    )
