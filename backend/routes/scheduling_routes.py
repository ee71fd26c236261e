from datetime import date, datetime, time, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ValidationInfo, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.database import SessionLocal, ensure_scheduling_schema
from backend.models.appointment import Appointment
from backend.models.availability import Timeplan
from backend.scheduling.availability import DayAvailability, DayOfWeek, TimeWindow
from backend.scheduling.calendar_utils import duration_minutes, format_wall_clock
from backend.scheduling.conflicts import SlotUnavailableError
from backend.services import scheduling_service
from backend.services.scheduling_service import (
    AppointmentNotFoundError,
    BlockedPeriodNotFoundError,
    ConsultationTypeNotFoundError,
    DoctorNotFoundError,
    InvalidTimeplanError,
    InvalidTimeRangeError,
    TimeplanNotFoundError,
)

router = APIRouter(tags=['scheduling'])

MAX_APPOINTMENT_NOTES_LENGTH = 600
MAX_RANGE_DAYS = 31
SLOT_TAKEN_DETAIL = 'This slot was just taken.'
DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and Postgres credentials.'
NOT_FOUND_ERRORS = (
    AppointmentNotFoundError,
    BlockedPeriodNotFoundError,
    ConsultationTypeNotFoundError,
    DoctorNotFoundError,
    TimeplanNotFoundError,
)
BAD_REQUEST_ERRORS = (InvalidTimeplanError, InvalidTimeRangeError)


class TimeWindowPayload(BaseModel):
    start_time: time
    end_time: time
    consultation_type_ids: list[int]
    is_active: bool = True

    @field_validator('end_time')
    @classmethod
    def validate_end_time(cls, value: time, info: ValidationInfo) -> time:
        start_time = info.data.get('start_time')
        if start_time is not None and value <= start_time:
            raise ValueError('Window start time must be before its end time.')
        return value


class SaveTimeplanRequest(BaseModel):
    day_of_week: DayOfWeek
    specific_date: date | None = None
    is_active: bool = True
    windows: list[TimeWindowPayload] = []

    def to_day_availability(self) -> DayAvailability:
        return DayAvailability(
            day_of_week=self.day_of_week,
            specific_date=self.specific_date,
            is_active=self.is_active,
            windows=tuple(
                TimeWindow(
                    start_time=window.start_time,
                    end_time=window.end_time,
                    accepted_service_type_ids=frozenset(window.consultation_type_ids),
                    is_active=window.is_active,
                )
                for window in self.windows
            ),
        )


class TimeWindowResponse(BaseModel):
    id: int
    start_time: time
    end_time: time
    is_active: bool
    consultation_type_ids: list[int]


class TimeplanResponse(BaseModel):
    id: int
    day_of_week: DayOfWeek
    specific_date: date | None = None
    is_active: bool
    windows: list[TimeWindowResponse]


class SlotResponse(BaseModel):
    time: str
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    is_available: bool


class AvailableDayResponse(BaseModel):
    date: date
    slots: list[SlotResponse]


class CreateAppointmentRequest(BaseModel):
    start_time: datetime
    end_time: datetime | None = None
    consultation_type_id: int | None = None
    patient_name: str | None = None
    notes: str | None = None

    @field_validator('patient_name')
    @classmethod
    def validate_patient_name(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = ' '.join(value.split())
        return normalized or None

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_APPOINTMENT_NOTES_LENGTH:
            raise ValueError(f'Notes must be {MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.')

        return normalized


class RescheduleAppointmentRequest(BaseModel):
    start_time: datetime
    end_time: datetime | None = None


class AppointmentResponse(BaseModel):
    id: int
    doctor_id: int
    consultation_type_id: int | None = None
    patient_name: str | None = None
    notes: str | None = None
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    status: str


class CalendarAppointmentResponse(AppointmentResponse):
    column: int
    total_columns: int


class CalendarDayResponse(BaseModel):
    date: date
    appointments: list[CalendarAppointmentResponse]


class CreateBlockedPeriodRequest(BaseModel):
    start_time: datetime
    end_time: datetime
    reason: str | None = None

    @field_validator('end_time')
    @classmethod
    def validate_end_time(cls, value: datetime, info: ValidationInfo) -> datetime:
        start_time = info.data.get('start_time')
        if start_time is not None and value <= start_time:
            raise ValueError('Start time must be before end time.')
        return value


class BlockedPeriodResponse(BaseModel):
    id: int
    start_time: datetime
    end_time: datetime
    reason: str | None = None

    class Config:
        from_attributes = True


def ensure_database_ready() -> None:
    try:
        ensure_scheduling_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def to_http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, SlotUnavailableError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=SLOT_TAKEN_DETAIL)
    if isinstance(exc, NOT_FOUND_ERRORS):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, BAD_REQUEST_ERRORS):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=DATABASE_UNAVAILABLE_DETAIL)


def to_timeplan_response(timeplan: Timeplan) -> TimeplanResponse:
    return TimeplanResponse(
        id=timeplan.id,
        day_of_week=timeplan.day_of_week,
        specific_date=timeplan.specific_date,
        is_active=bool(timeplan.is_active),
        windows=[
            TimeWindowResponse(
                id=window.id,
                start_time=window.start_time,
                end_time=window.end_time,
                is_active=bool(window.is_active),
                consultation_type_ids=sorted(
                    consultation_type.id for consultation_type in window.consultation_types
                ),
            )
            for window in timeplan.windows
        ],
    )


def to_slot_response(start_time: datetime, end_time: datetime, is_available: bool = True) -> SlotResponse:
    return SlotResponse(
        time=format_wall_clock(start_time),
        start_time=start_time,
        end_time=end_time,
        duration_minutes=duration_minutes(start_time, end_time),
        is_available=is_available,
    )


def to_appointment_fields(appointment: Appointment) -> dict:
    return {
        'id': appointment.id,
        'doctor_id': appointment.doctor_id,
        'consultation_type_id': appointment.consultation_type_id,
        'patient_name': appointment.patient_name,
        'notes': appointment.notes,
        'start_time': appointment.start_time,
        'end_time': appointment.end_time,
        'duration_minutes': duration_minutes(appointment.start_time, appointment.end_time),
        'status': appointment.status,
    }


@router.get('/doctors/{doctor_id}/timeplans', response_model=list[TimeplanResponse])
def list_timeplans(doctor_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return [to_timeplan_response(timeplan) for timeplan in scheduling_service.list_timeplans(db, doctor_id)]
    except (*NOT_FOUND_ERRORS, SQLAlchemyError) as exc:
        raise to_http_error(exc) from exc


@router.put('/doctors/{doctor_id}/timeplans', response_model=TimeplanResponse)
def save_timeplan(doctor_id: int, data: SaveTimeplanRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        timeplan = scheduling_service.save_timeplan(db, doctor_id, data.to_day_availability())
        return to_timeplan_response(timeplan)
    except (*NOT_FOUND_ERRORS, *BAD_REQUEST_ERRORS, SQLAlchemyError) as exc:
        db.rollback()
        raise to_http_error(exc) from exc


@router.delete('/doctors/{doctor_id}/timeplans', status_code=status.HTTP_204_NO_CONTENT)
def delete_timeplan(
    doctor_id: int,
    day_of_week: DayOfWeek = Query(...),
    specific_date: date | None = Query(default=None),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        scheduling_service.delete_timeplan(db, doctor_id, day_of_week, specific_date)
    except (*NOT_FOUND_ERRORS, SQLAlchemyError) as exc:
        db.rollback()
        raise to_http_error(exc) from exc


@router.get('/doctors/{doctor_id}/available-slots', response_model=list[SlotResponse])
def list_available_slots(
    doctor_id: int,
    target_date: date = Query(..., alias='date'),
    consultation_type_id: int = Query(...),
    include_unavailable: bool = Query(default=False),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        if include_unavailable:
            options = scheduling_service.list_slot_options(db, doctor_id, target_date, consultation_type_id)
            return [to_slot_response(option.start, option.end, option.is_available) for option in options]

        slots = scheduling_service.list_available_slots(db, doctor_id, target_date, consultation_type_id)
        return [to_slot_response(slot.start, slot.end) for slot in slots]
    except (*NOT_FOUND_ERRORS, SQLAlchemyError) as exc:
        raise to_http_error(exc) from exc


@router.get('/doctors/{doctor_id}/available-days', response_model=list[AvailableDayResponse])
def list_available_days(
    doctor_id: int,
    start_date: date = Query(...),
    days: int = Query(default=14, ge=1, le=MAX_RANGE_DAYS),
    consultation_type_id: int = Query(...),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        slots_by_day = scheduling_service.list_available_days(
            db,
            doctor_id,
            start_date,
            start_date + timedelta(days=days - 1),
            consultation_type_id,
        )
        return [
            AvailableDayResponse(
                date=day,
                slots=[to_slot_response(slot.start, slot.end) for slot in slots],
            )
            for day, slots in slots_by_day.items()
        ]
    except (*NOT_FOUND_ERRORS, SQLAlchemyError) as exc:
        raise to_http_error(exc) from exc


@router.get('/doctors/{doctor_id}/calendar', response_model=list[CalendarDayResponse])
def get_calendar_week(
    doctor_id: int,
    week_of: date = Query(...),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        week = scheduling_service.get_week_layout(db, doctor_id, week_of)
        return [
            CalendarDayResponse(
                date=day,
                appointments=[
                    CalendarAppointmentResponse(
                        **to_appointment_fields(appointment),
                        column=assignment.column,
                        total_columns=assignment.total_columns,
                    )
                    for appointment, assignment in entries
                ],
            )
            for day, entries in week.items()
        ]
    except (*NOT_FOUND_ERRORS, SQLAlchemyError) as exc:
        raise to_http_error(exc) from exc


@router.post(
    '/doctors/{doctor_id}/appointments',
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_appointment(doctor_id: int, data: CreateAppointmentRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        appointment = scheduling_service.book_appointment(
            db,
            doctor_id,
            start_time=data.start_time,
            end_time=data.end_time,
            consultation_type_id=data.consultation_type_id,
            patient_name=data.patient_name,
            notes=data.notes,
        )
        return AppointmentResponse(**to_appointment_fields(appointment))
    except (SlotUnavailableError, *NOT_FOUND_ERRORS, *BAD_REQUEST_ERRORS, SQLAlchemyError) as exc:
        db.rollback()
        raise to_http_error(exc) from exc


@router.patch('/doctors/{doctor_id}/appointments/{appointment_id}', response_model=AppointmentResponse)
def reschedule_appointment(
    doctor_id: int,
    appointment_id: int,
    data: RescheduleAppointmentRequest,
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointment = scheduling_service.reschedule_appointment(
            db,
            doctor_id,
            appointment_id,
            start_time=data.start_time,
            end_time=data.end_time,
        )
        return AppointmentResponse(**to_appointment_fields(appointment))
    except (SlotUnavailableError, *NOT_FOUND_ERRORS, *BAD_REQUEST_ERRORS, SQLAlchemyError) as exc:
        db.rollback()
        raise to_http_error(exc) from exc


@router.post('/doctors/{doctor_id}/appointments/{appointment_id}/cancel', response_model=AppointmentResponse)
def cancel_appointment(doctor_id: int, appointment_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        appointment = scheduling_service.cancel_appointment(db, doctor_id, appointment_id)
        return AppointmentResponse(**to_appointment_fields(appointment))
    except (*NOT_FOUND_ERRORS, SQLAlchemyError) as exc:
        db.rollback()
        raise to_http_error(exc) from exc


@router.get('/doctors/{doctor_id}/blocked-periods', response_model=list[BlockedPeriodResponse])
def list_blocked_periods(doctor_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return scheduling_service.list_blocked_periods(db, doctor_id)
    except (*NOT_FOUND_ERRORS, SQLAlchemyError) as exc:
        raise to_http_error(exc) from exc


@router.post(
    '/doctors/{doctor_id}/blocked-periods',
    response_model=BlockedPeriodResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_blocked_period(doctor_id: int, data: CreateBlockedPeriodRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return scheduling_service.create_blocked_period(
            db,
            doctor_id,
            start_time=data.start_time,
            end_time=data.end_time,
            reason=data.reason,
        )
    except (*NOT_FOUND_ERRORS, *BAD_REQUEST_ERRORS, SQLAlchemyError) as exc:
        db.rollback()
        raise to_http_error(exc) from exc


@router.delete('/doctors/{doctor_id}/blocked-periods/{blocked_period_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_blocked_period(doctor_id: int, blocked_period_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        scheduling_service.delete_blocked_period(db, doctor_id, blocked_period_id)
    except (*NOT_FOUND_ERRORS, SQLAlchemyError) as exc:
        db.rollback()
        raise to_http_error(exc) from exc
