"""Side-by-side column layout for overlapping appointments.

Greedy first-fit packing in start order. The result is not guaranteed to use
the minimum number of columns, only to keep overlapping appointments apart.
"""

from collections.abc import Hashable, Iterable
from dataclasses import dataclass
from datetime import date, datetime
from typing import NamedTuple

from backend.scheduling.calendar_utils import as_date, get_week_days
from backend.scheduling.conflicts import overlaps


class ScheduledItem(NamedTuple):
    id: Hashable
    start: datetime
    end: datetime


@dataclass(frozen=True)
class ColumnAssignment:
    appointment_id: Hashable
    column: int
    total_columns: int


def layout_day(appointments: Iterable[ScheduledItem]) -> dict[Hashable, ColumnAssignment]:
    ordered = sorted(
        enumerate(appointments),
        key=lambda indexed: (indexed[1].start, indexed[0]),
    )

    columns: list[list[ScheduledItem]] = []
    placement: dict[Hashable, int] = {}

    for _, appointment in ordered:
        for index, members in enumerate(columns):
            if not any(overlaps(appointment, member) for member in members):
                members.append(appointment)
                placement[appointment.id] = index
                break
        else:
            columns.append([appointment])
            placement[appointment.id] = len(columns) - 1

    total_columns = len(columns)
    return {
        appointment_id: ColumnAssignment(
            appointment_id=appointment_id,
            column=column,
            total_columns=total_columns,
        )
        for appointment_id, column in placement.items()
    }


def layout_week(
    appointments: Iterable[ScheduledItem],
    week_of: date | datetime,
) -> dict[date, dict[Hashable, ColumnAssignment]]:
    """Lay out each day of the Monday-based week containing ``week_of``.

    Days are laid out independently; items starting outside the week are
    ignored.
    """
    by_day: dict[date, list[ScheduledItem]] = {day: [] for day in get_week_days(week_of)}

    for appointment in appointments:
        day = as_date(appointment.start)
        if day in by_day:
            by_day[day].append(appointment)

    return {day: layout_day(items) for day, items in by_day.items()}
