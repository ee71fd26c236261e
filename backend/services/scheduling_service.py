"""Scheduling service.

Reads a doctor's timeplans, consultation types, appointments and blocked
periods, reduces them to the engine's value types and runs the engine.
Booking writes re-check conflicts while holding a lock on the doctor row so
that two requests racing for the same slot cannot both commit.
"""

import logging
from collections.abc import Hashable
from datetime import date, datetime, timedelta

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session, selectinload

from backend.core import config
from backend.models.appointment import STATUS_BOOKED, STATUS_CANCELLED, Appointment
from backend.models.availability import Timeplan, TimeplanWindow
from backend.models.blocked_period import BlockedPeriod
from backend.models.consultation_type import ConsultationType
from backend.models.doctor import Doctor
from backend.scheduling.availability import DayAvailability, DayOfWeek, TimeWindow, resolve_availability
from backend.scheduling.calendar_utils import each_day, get_week_end, get_week_start
from backend.scheduling.conflicts import BookedInterval, SlotUnavailableError, find_conflicts, find_window_overlaps
from backend.scheduling.layout import ColumnAssignment, ScheduledItem, layout_week
from backend.scheduling.slots import ServiceType, Slot, SlotOption, generate_available_slots, slot_options

logger = logging.getLogger(__name__)


class DoctorNotFoundError(LookupError):
    pass


class ConsultationTypeNotFoundError(LookupError):
    pass


class AppointmentNotFoundError(LookupError):
    pass


class TimeplanNotFoundError(LookupError):
    pass


class BlockedPeriodNotFoundError(LookupError):
    pass


class InvalidTimeRangeError(ValueError):
    pass


class InvalidTimeplanError(ValueError):
    pass


def _day_bounds(target_date: date) -> tuple[datetime, datetime]:
    start = datetime.combine(target_date, datetime.min.time())
    return start, start + timedelta(days=1)


def get_doctor(db: Session, doctor_id: int) -> Doctor:
    doctor = db.query(Doctor).filter(Doctor.id == doctor_id).first()
    if doctor is None:
        raise DoctorNotFoundError(f'Doctor {doctor_id} not found.')
    return doctor


def _lock_doctor(db: Session, doctor_id: int) -> Doctor:
    doctor = db.query(Doctor).filter(Doctor.id == doctor_id).with_for_update().first()
    if doctor is None:
        raise DoctorNotFoundError(f'Doctor {doctor_id} not found.')
    return doctor


def to_service_type(consultation_type: ConsultationType) -> ServiceType:
    return ServiceType(
        id=consultation_type.id,
        duration_minutes=consultation_type.duration_minutes,
        rest_after_minutes=consultation_type.rest_after_minutes or 0,
        enabled=bool(consultation_type.enabled),
    )


def get_service_type(db: Session, doctor_id: int, consultation_type_id: int) -> ServiceType:
    consultation_type = db.query(ConsultationType).filter(
        ConsultationType.id == consultation_type_id,
        ConsultationType.doctor_id == doctor_id,
    ).first()
    if consultation_type is None:
        raise ConsultationTypeNotFoundError(f'Consultation type {consultation_type_id} not found.')
    return to_service_type(consultation_type)


def to_day_availability(timeplan: Timeplan) -> DayAvailability:
    return DayAvailability(
        day_of_week=timeplan.day_of_week,
        specific_date=timeplan.specific_date,
        is_active=bool(timeplan.is_active),
        windows=tuple(
            TimeWindow(
                start_time=window.start_time,
                end_time=window.end_time,
                accepted_service_type_ids=frozenset(
                    consultation_type.id for consultation_type in window.consultation_types
                ),
                is_active=bool(window.is_active),
            )
            for window in timeplan.windows
        ),
    )


def _timeplan_query(db: Session, doctor_id: int):
    return db.query(Timeplan).options(
        selectinload(Timeplan.windows).selectinload(TimeplanWindow.consultation_types)
    ).filter(Timeplan.doctor_id == doctor_id)


def load_day_availability(db: Session, doctor_id: int, target_date: date) -> DayAvailability:
    day_of_week = DayOfWeek.from_date(target_date)
    timeplans = _timeplan_query(db, doctor_id).filter(
        or_(
            Timeplan.specific_date == target_date,
            and_(Timeplan.specific_date.is_(None), Timeplan.day_of_week == day_of_week),
        )
    ).all()

    records = [to_day_availability(timeplan) for timeplan in timeplans]
    return resolve_availability(
        target_date,
        weekly_defaults=[record for record in records if not record.is_override],
        date_overrides=[record for record in records if record.is_override],
    )


def _load_intervals_between(
    db: Session,
    doctor_id: int,
    range_start: datetime,
    range_end: datetime,
    exclude_appointment_id: int | None = None,
) -> list[BookedInterval]:
    appointment_query = db.query(Appointment.id, Appointment.start_time, Appointment.end_time).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.status != STATUS_CANCELLED,
        Appointment.start_time < range_end,
        Appointment.end_time > range_start,
    )
    if exclude_appointment_id is not None:
        appointment_query = appointment_query.filter(Appointment.id != exclude_appointment_id)

    blocked_periods = db.query(BlockedPeriod.id, BlockedPeriod.start_time, BlockedPeriod.end_time).filter(
        BlockedPeriod.doctor_id == doctor_id,
        BlockedPeriod.start_time < range_end,
        BlockedPeriod.end_time > range_start,
    ).all()

    intervals: list[BookedInterval] = []
    for source, rows in (('appointment', appointment_query.all()), ('blocked period', blocked_periods)):
        for record_id, start_time, end_time in rows:
            if end_time <= start_time:
                logger.warning('Skipping %s %s with end %s not after start %s.', source, record_id, end_time, start_time)
                continue
            intervals.append(BookedInterval(start=start_time, end=end_time))

    return intervals


def load_booked_intervals(
    db: Session,
    doctor_id: int,
    target_date: date,
    exclude_appointment_id: int | None = None,
) -> list[BookedInterval]:
    day_start, day_end = _day_bounds(target_date)
    return _load_intervals_between(db, doctor_id, day_start, day_end, exclude_appointment_id)


def list_slot_options(
    db: Session,
    doctor_id: int,
    target_date: date,
    consultation_type_id: int,
    now: datetime | None = None,
) -> list[SlotOption]:
    get_doctor(db, doctor_id)
    service_type = get_service_type(db, doctor_id, consultation_type_id)
    return slot_options(
        target_date,
        service_type,
        load_day_availability(db, doctor_id, target_date),
        load_booked_intervals(db, doctor_id, target_date),
        slot_step_minutes=config.SLOT_STEP_MINUTES,
        not_before=now or datetime.now(),
    )


def list_available_slots(
    db: Session,
    doctor_id: int,
    target_date: date,
    consultation_type_id: int,
    now: datetime | None = None,
) -> list[Slot]:
    get_doctor(db, doctor_id)
    service_type = get_service_type(db, doctor_id, consultation_type_id)
    return generate_available_slots(
        target_date,
        service_type,
        load_day_availability(db, doctor_id, target_date),
        load_booked_intervals(db, doctor_id, target_date),
        slot_step_minutes=config.SLOT_STEP_MINUTES,
        not_before=now or datetime.now(),
    )


def list_available_days(
    db: Session,
    doctor_id: int,
    start_date: date,
    end_date: date,
    consultation_type_id: int,
    now: datetime | None = None,
) -> dict[date, list[Slot]]:
    """Available slots per date for an inclusive range, omitting empty dates."""
    get_doctor(db, doctor_id)
    service_type = get_service_type(db, doctor_id, consultation_type_id)
    not_before = now or datetime.now()

    result: dict[date, list[Slot]] = {}
    for target_date in each_day(start_date, end_date):
        slots = generate_available_slots(
            target_date,
            service_type,
            load_day_availability(db, doctor_id, target_date),
            load_booked_intervals(db, doctor_id, target_date),
            slot_step_minutes=config.SLOT_STEP_MINUTES,
            not_before=not_before,
        )
        if slots:
            result[target_date] = slots

    return result


def get_week_layout(
    db: Session,
    doctor_id: int,
    week_of: date,
) -> dict[date, list[tuple[Appointment, ColumnAssignment]]]:
    get_doctor(db, doctor_id)
    week_start = datetime.combine(get_week_start(week_of), datetime.min.time())
    week_end = datetime.combine(get_week_end(week_of), datetime.min.time()) + timedelta(days=1)

    appointments = db.query(Appointment).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.status != STATUS_CANCELLED,
        Appointment.start_time >= week_start,
        Appointment.start_time < week_end,
    ).order_by(Appointment.start_time.asc(), Appointment.id.asc()).all()

    by_id = {appointment.id: appointment for appointment in appointments}
    layout = layout_week(
        [ScheduledItem(appointment.id, appointment.start_time, appointment.end_time) for appointment in appointments],
        week_of,
    )

    return {
        day: [
            (by_id[appointment_id], assignment)
            for appointment_id, assignment in sorted(
                assignments.items(),
                key=lambda item: (by_id[item[0]].start_time, item[0]),
            )
        ]
        for day, assignments in layout.items()
    }


def validate_appointment_times(start_time: datetime, end_time: datetime, now: datetime | None = None) -> None:
    if start_time >= end_time:
        raise InvalidTimeRangeError('Start time must be before end time.')

    if start_time < (now or datetime.now()):
        raise InvalidTimeRangeError('Cannot schedule an appointment in the past.')

    if end_time - start_time > timedelta(minutes=config.MAX_APPOINTMENT_DURATION_MINUTES):
        raise InvalidTimeRangeError(
            f'Appointment duration cannot exceed {config.MAX_APPOINTMENT_DURATION_MINUTES} minutes.'
        )


def _reject_if_conflicting(
    db: Session,
    doctor_id: int,
    start_time: datetime,
    end_time: datetime,
    rest_after_minutes: int = 0,
    exclude_appointment_id: int | None = None,
) -> None:
    """Reject the write if the live agenda already holds the requested time.

    Must run after the doctor row is locked, inside the same transaction as
    the write.
    """
    footprint = BookedInterval(start=start_time, end=end_time + timedelta(minutes=max(rest_after_minutes, 0)))
    existing = _load_intervals_between(db, doctor_id, footprint.start, footprint.end, exclude_appointment_id)
    conflicts = find_conflicts(footprint, existing)
    if conflicts:
        db.rollback()
        logger.info(
            'Rejected booking for doctor %s at %s - %s: %d conflicting interval(s).',
            doctor_id,
            start_time.isoformat(),
            end_time.isoformat(),
            len(conflicts),
        )
        raise SlotUnavailableError(start_time, end_time, conflicts)


def book_appointment(
    db: Session,
    doctor_id: int,
    start_time: datetime,
    end_time: datetime | None = None,
    consultation_type_id: int | None = None,
    patient_name: str | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> Appointment:
    service_type = None
    if consultation_type_id is not None:
        service_type = get_service_type(db, doctor_id, consultation_type_id)
        if not service_type.enabled:
            raise ConsultationTypeNotFoundError(f'Consultation type {consultation_type_id} is not available.')

    start_time = start_time.replace(second=0, microsecond=0)
    if end_time is None:
        if service_type is None:
            raise InvalidTimeRangeError('An end time or a consultation type is required.')
        end_time = start_time + timedelta(minutes=service_type.duration_minutes)
    end_time = end_time.replace(second=0, microsecond=0)

    validate_appointment_times(start_time, end_time, now)

    _lock_doctor(db, doctor_id)
    _reject_if_conflicting(
        db,
        doctor_id,
        start_time,
        end_time,
        rest_after_minutes=service_type.rest_after_minutes if service_type else 0,
    )

    appointment = Appointment(
        doctor_id=doctor_id,
        consultation_type_id=consultation_type_id,
        patient_name=patient_name,
        notes=notes,
        start_time=start_time,
        end_time=end_time,
        status=STATUS_BOOKED,
    )
    db.add(appointment)
    db.commit()
    db.refresh(appointment)

    return appointment


def get_appointment(db: Session, doctor_id: int, appointment_id: int) -> Appointment:
    appointment = db.query(Appointment).filter(
        Appointment.id == appointment_id,
        Appointment.doctor_id == doctor_id,
    ).first()
    if appointment is None:
        raise AppointmentNotFoundError(f'Appointment {appointment_id} not found.')
    return appointment


def reschedule_appointment(
    db: Session,
    doctor_id: int,
    appointment_id: int,
    start_time: datetime,
    end_time: datetime | None = None,
    now: datetime | None = None,
) -> Appointment:
    _lock_doctor(db, doctor_id)
    appointment = get_appointment(db, doctor_id, appointment_id)
    if appointment.status == STATUS_CANCELLED:
        raise AppointmentNotFoundError(f'Appointment {appointment_id} is cancelled.')

    rest_after_minutes = 0
    if appointment.consultation_type_id is not None:
        consultation_type = db.query(ConsultationType).filter(
            ConsultationType.id == appointment.consultation_type_id,
        ).first()
        if consultation_type is not None:
            rest_after_minutes = consultation_type.rest_after_minutes or 0

    start_time = start_time.replace(second=0, microsecond=0)
    if end_time is None:
        end_time = start_time + (appointment.end_time - appointment.start_time)
    end_time = end_time.replace(second=0, microsecond=0)

    validate_appointment_times(start_time, end_time, now)
    _reject_if_conflicting(
        db,
        doctor_id,
        start_time,
        end_time,
        rest_after_minutes=rest_after_minutes,
        exclude_appointment_id=appointment.id,
    )

    appointment.start_time = start_time
    appointment.end_time = end_time
    db.commit()
    db.refresh(appointment)

    return appointment


def cancel_appointment(db: Session, doctor_id: int, appointment_id: int) -> Appointment:
    appointment = get_appointment(db, doctor_id, appointment_id)
    appointment.status = STATUS_CANCELLED
    db.commit()
    db.refresh(appointment)
    return appointment


def list_timeplans(db: Session, doctor_id: int) -> list[Timeplan]:
    get_doctor(db, doctor_id)
    weekdays = list(DayOfWeek)
    return sorted(
        _timeplan_query(db, doctor_id).all(),
        key=lambda timeplan: (
            timeplan.specific_date is not None,
            timeplan.specific_date or date.min,
            weekdays.index(timeplan.day_of_week),
        ),
    )


def _find_timeplan(db: Session, doctor_id: int, day_of_week: DayOfWeek, specific_date: date | None) -> Timeplan | None:
    query = _timeplan_query(db, doctor_id).filter(Timeplan.day_of_week == day_of_week)
    if specific_date is None:
        query = query.filter(Timeplan.specific_date.is_(None))
    else:
        query = query.filter(Timeplan.specific_date == specific_date)
    return query.first()


def save_timeplan(db: Session, doctor_id: int, availability: DayAvailability) -> Timeplan:
    """Create or replace the timeplan for a weekday or a specific date."""
    get_doctor(db, doctor_id)

    if availability.specific_date is not None and DayOfWeek.from_date(availability.specific_date) != availability.day_of_week:
        raise InvalidTimeplanError(
            f'{availability.specific_date.isoformat()} is not a {availability.day_of_week.value.title()}.'
        )

    for window in availability.windows:
        if not window.is_well_formed:
            raise InvalidTimeplanError('Window start time must be before its end time.')

    requested_ids: set[Hashable] = set()
    for window in availability.windows:
        requested_ids.update(window.accepted_service_type_ids)

    consultation_types = {}
    if requested_ids:
        consultation_types = {
            consultation_type.id: consultation_type
            for consultation_type in db.query(ConsultationType).filter(
                ConsultationType.doctor_id == doctor_id,
                ConsultationType.id.in_(requested_ids),
            ).all()
        }
        if len(consultation_types) != len(requested_ids):
            raise InvalidTimeplanError('One or more consultation types are invalid or do not belong to this doctor.')

    for first, second in find_window_overlaps(availability):
        logger.warning(
            'Doctor %s %s: windows %s-%s and %s-%s overlap for the same consultation type.',
            doctor_id,
            availability.specific_date or availability.day_of_week.value,
            first.start_time,
            first.end_time,
            second.start_time,
            second.end_time,
        )

    timeplan = _find_timeplan(db, doctor_id, availability.day_of_week, availability.specific_date)
    if timeplan is None:
        timeplan = Timeplan(
            doctor_id=doctor_id,
            day_of_week=availability.day_of_week,
            specific_date=availability.specific_date,
        )
        db.add(timeplan)

    timeplan.is_active = availability.is_active
    timeplan.windows = [
        TimeplanWindow(
            start_time=window.start_time,
            end_time=window.end_time,
            is_active=window.is_active,
            consultation_types=[consultation_types[type_id] for type_id in sorted(window.accepted_service_type_ids)],
        )
        for window in availability.windows
    ]

    db.commit()
    db.refresh(timeplan)

    return timeplan


def delete_timeplan(db: Session, doctor_id: int, day_of_week: DayOfWeek, specific_date: date | None = None) -> None:
    timeplan = _find_timeplan(db, doctor_id, day_of_week, specific_date)
    if timeplan is None:
        raise TimeplanNotFoundError('Timeplan not found for this day.')

    db.delete(timeplan)
    db.commit()


def list_blocked_periods(db: Session, doctor_id: int, now: datetime | None = None) -> list[BlockedPeriod]:
    get_doctor(db, doctor_id)
    return db.query(BlockedPeriod).filter(
        BlockedPeriod.doctor_id == doctor_id,
        BlockedPeriod.end_time > (now or datetime.now()),
    ).order_by(BlockedPeriod.start_time.asc()).all()


def create_blocked_period(
    db: Session,
    doctor_id: int,
    start_time: datetime,
    end_time: datetime,
    reason: str | None = None,
) -> BlockedPeriod:
    if start_time >= end_time:
        raise InvalidTimeRangeError('Start time must be before end time.')

    get_doctor(db, doctor_id)
    blocked_period = BlockedPeriod(
        doctor_id=doctor_id,
        start_time=start_time,
        end_time=end_time,
        reason=reason,
    )
    db.add(blocked_period)
    db.commit()
    db.refresh(blocked_period)

    return blocked_period


def delete_blocked_period(db: Session, doctor_id: int, blocked_period_id: int) -> None:
    blocked_period = db.query(BlockedPeriod).filter(
        BlockedPeriod.id == blocked_period_id,
        BlockedPeriod.doctor_id == doctor_id,
    ).first()
    if blocked_period is None:
        raise BlockedPeriodNotFoundError('Blocked period not found.')

    db.delete(blocked_period)
    db.commit()
