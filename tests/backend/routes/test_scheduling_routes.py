from datetime import date, datetime, time

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from backend.models.appointment import STATUS_BOOKED, Appointment
from backend.routes.scheduling_routes import (
    CreateAppointmentRequest,
    CreateBlockedPeriodRequest,
    RescheduleAppointmentRequest,
    SaveTimeplanRequest,
    TimeWindowPayload,
    cancel_appointment,
    create_appointment,
    create_blocked_period,
    delete_blocked_period,
    delete_timeplan,
    get_calendar_week,
    list_available_days,
    list_available_slots,
    list_blocked_periods,
    list_timeplans,
    reschedule_appointment,
    save_timeplan,
)
from backend.scheduling.availability import DayOfWeek

FUTURE_MONDAY = date(2099, 1, 5)


@pytest.fixture(autouse=True)
def skip_schema_check(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr('backend.routes.scheduling_routes.ensure_database_ready', lambda: None)


def _at(hour: int, minute: int = 0, day: date = FUTURE_MONDAY) -> datetime:
    return datetime.combine(day, time(hour, minute))


def _slots(db, clinic, include_unavailable: bool = False):
    return list_available_slots(
        doctor_id=clinic['doctor_id'],
        target_date=FUTURE_MONDAY,
        consultation_type_id=clinic['consultation_type_id'],
        include_unavailable=include_unavailable,
        db=db,
    )


def _book(db, clinic, start: datetime, **fields):
    return create_appointment(
        doctor_id=clinic['doctor_id'],
        data=CreateAppointmentRequest(
            start_time=start,
            consultation_type_id=clinic['consultation_type_id'],
            **fields,
        ),
        db=db,
    )


def test_create_appointment_request_normalizes_fields() -> None:
    request = CreateAppointmentRequest(
        start_time=datetime(2099, 1, 5, 9, 0),
        patient_name='  Jane   Doe ',
        notes='   ',
    )

    assert request.patient_name == 'Jane Doe'
    assert request.notes is None


def test_create_appointment_request_rejects_long_notes() -> None:
    with pytest.raises(ValidationError):
        CreateAppointmentRequest(start_time=datetime(2099, 1, 5, 9, 0), notes='x' * 601)


def test_time_window_payload_rejects_reversed_window() -> None:
    with pytest.raises(ValidationError):
        TimeWindowPayload(start_time=time(12, 0), end_time=time(9, 0), consultation_type_ids=[1])


def test_create_blocked_period_request_rejects_reversed_range() -> None:
    with pytest.raises(ValidationError):
        CreateBlockedPeriodRequest(start_time=_at(12, 0), end_time=_at(11, 0))


def test_list_available_slots_returns_quarter_hour_grid(scheduling_db, clinic) -> None:
    slots = _slots(scheduling_db, clinic)

    assert [slot.time for slot in slots][:3] == ['09:00', '09:15', '09:30']
    assert slots[-1].time == '11:30'
    assert all(slot.duration_minutes == 30 and slot.is_available for slot in slots)


def test_list_available_slots_unknown_consultation_type(scheduling_db, clinic) -> None:
    with pytest.raises(HTTPException) as exception_info:
        list_available_slots(
            doctor_id=clinic['doctor_id'],
            target_date=FUTURE_MONDAY,
            consultation_type_id=999,
            include_unavailable=False,
            db=scheduling_db,
        )

    assert exception_info.value.status_code == 404


def test_include_unavailable_flags_booked_slots(scheduling_db, clinic) -> None:
    _book(scheduling_db, clinic, _at(10, 0))

    slots = _slots(scheduling_db, clinic, include_unavailable=True)
    flags = {slot.time: slot.is_available for slot in slots}

    assert flags['10:00'] is False
    assert flags['09:45'] is False
    assert flags['10:30'] is True


def test_create_appointment_returns_booking(scheduling_db, clinic) -> None:
    response = _book(scheduling_db, clinic, _at(9, 15), patient_name='Jane Doe')

    assert response.start_time == _at(9, 15)
    assert response.end_time == _at(9, 45)
    assert response.duration_minutes == 30
    assert response.status == 'booked'
    assert '09:15' not in [slot.time for slot in _slots(scheduling_db, clinic)]


def test_create_appointment_for_taken_slot_returns_conflict(scheduling_db, clinic) -> None:
    _book(scheduling_db, clinic, _at(9, 0))

    with pytest.raises(HTTPException) as exception_info:
        _book(scheduling_db, clinic, _at(9, 15))

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail == 'This slot was just taken.'


def test_create_appointment_in_past_is_bad_request(scheduling_db, clinic) -> None:
    with pytest.raises(HTTPException) as exception_info:
        _book(scheduling_db, clinic, datetime(2020, 1, 6, 9, 0))

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'Cannot schedule an appointment in the past.'


def test_create_appointment_for_unknown_doctor_is_not_found(scheduling_db, clinic) -> None:
    with pytest.raises(HTTPException) as exception_info:
        create_appointment(
            doctor_id=999,
            data=CreateAppointmentRequest(start_time=_at(9, 0), end_time=_at(9, 30)),
            db=scheduling_db,
        )

    assert exception_info.value.status_code == 404


def test_reschedule_and_cancel_appointment(scheduling_db, clinic) -> None:
    booked = _book(scheduling_db, clinic, _at(9, 0))

    moved = reschedule_appointment(
        doctor_id=clinic['doctor_id'],
        appointment_id=booked.id,
        data=RescheduleAppointmentRequest(start_time=_at(11, 0)),
        db=scheduling_db,
    )
    cancelled = cancel_appointment(doctor_id=clinic['doctor_id'], appointment_id=booked.id, db=scheduling_db)

    assert moved.start_time == _at(11, 0)
    assert moved.end_time == _at(11, 30)
    assert cancelled.status == 'cancelled'
    assert '11:00' in [slot.time for slot in _slots(scheduling_db, clinic)]


def test_reschedule_onto_booked_slot_returns_conflict(scheduling_db, clinic) -> None:
    first = _book(scheduling_db, clinic, _at(9, 0))
    _book(scheduling_db, clinic, _at(10, 0))

    with pytest.raises(HTTPException) as exception_info:
        reschedule_appointment(
            doctor_id=clinic['doctor_id'],
            appointment_id=first.id,
            data=RescheduleAppointmentRequest(start_time=_at(9, 45)),
            db=scheduling_db,
        )

    assert exception_info.value.status_code == 409


def test_cancel_unknown_appointment_is_not_found(scheduling_db, clinic) -> None:
    with pytest.raises(HTTPException) as exception_info:
        cancel_appointment(doctor_id=clinic['doctor_id'], appointment_id=999, db=scheduling_db)

    assert exception_info.value.status_code == 404


def test_calendar_week_lays_out_overlapping_appointments(scheduling_db, clinic) -> None:
    for start, end in [(_at(9, 0), _at(9, 30)), (_at(9, 15), _at(10, 0))]:
        scheduling_db.add(Appointment(doctor_id=clinic['doctor_id'], start_time=start, end_time=end, status=STATUS_BOOKED))
    scheduling_db.commit()

    week = get_calendar_week(doctor_id=clinic['doctor_id'], week_of=date(2099, 1, 7), db=scheduling_db)
    monday = week[0]

    assert [day.date for day in week] == [date(2099, 1, day) for day in range(5, 12)]
    assert [(entry.column, entry.total_columns) for entry in monday.appointments] == [(0, 2), (1, 2)]
    assert week[1].appointments == []


def test_list_available_days_skips_closed_days(scheduling_db, clinic) -> None:
    days = list_available_days(
        doctor_id=clinic['doctor_id'],
        start_date=FUTURE_MONDAY,
        days=14,
        consultation_type_id=clinic['consultation_type_id'],
        db=scheduling_db,
    )

    assert [day.date for day in days] == [date(2099, 1, 5), date(2099, 1, 12)]
    assert len(days[0].slots) == 11


def test_save_timeplan_override_closes_a_date(scheduling_db, clinic) -> None:
    response = save_timeplan(
        doctor_id=clinic['doctor_id'],
        data=SaveTimeplanRequest(day_of_week=DayOfWeek.MONDAY, specific_date=FUTURE_MONDAY, is_active=False),
        db=scheduling_db,
    )

    assert response.specific_date == FUTURE_MONDAY
    assert response.windows == []
    assert _slots(scheduling_db, clinic) == []
    assert len(list_timeplans(doctor_id=clinic['doctor_id'], db=scheduling_db)) == 2


def test_save_timeplan_with_weekday_mismatch_is_bad_request(scheduling_db, clinic) -> None:
    with pytest.raises(HTTPException) as exception_info:
        save_timeplan(
            doctor_id=clinic['doctor_id'],
            data=SaveTimeplanRequest(day_of_week=DayOfWeek.TUESDAY, specific_date=FUTURE_MONDAY),
            db=scheduling_db,
        )

    assert exception_info.value.status_code == 400


def test_save_timeplan_replaces_windows(scheduling_db, clinic) -> None:
    response = save_timeplan(
        doctor_id=clinic['doctor_id'],
        data=SaveTimeplanRequest(
            day_of_week=DayOfWeek.MONDAY,
            windows=[
                TimeWindowPayload(
                    start_time=time(14, 0),
                    end_time=time(15, 0),
                    consultation_type_ids=[clinic['consultation_type_id']],
                )
            ],
        ),
        db=scheduling_db,
    )

    assert [(window.start_time, window.consultation_type_ids) for window in response.windows] == [
        (time(14, 0), [clinic['consultation_type_id']])
    ]
    assert [slot.time for slot in _slots(scheduling_db, clinic)] == ['14:00', '14:15', '14:30']


def test_delete_missing_timeplan_is_not_found(scheduling_db, clinic) -> None:
    with pytest.raises(HTTPException) as exception_info:
        delete_timeplan(
            doctor_id=clinic['doctor_id'],
            day_of_week=DayOfWeek.FRIDAY,
            specific_date=None,
            db=scheduling_db,
        )

    assert exception_info.value.status_code == 404
    assert exception_info.value.detail == 'Timeplan not found for this day.'


def test_blocked_period_lifecycle(scheduling_db, clinic) -> None:
    created = create_blocked_period(
        doctor_id=clinic['doctor_id'],
        data=CreateBlockedPeriodRequest(start_time=_at(9, 0), end_time=_at(10, 0), reason='Staff meeting'),
        db=scheduling_db,
    )

    listed = list_blocked_periods(doctor_id=clinic['doctor_id'], db=scheduling_db)
    slots_while_blocked = [slot.time for slot in _slots(scheduling_db, clinic)]
    delete_blocked_period(doctor_id=clinic['doctor_id'], blocked_period_id=created.id, db=scheduling_db)

    assert [period.id for period in listed] == [created.id]
    assert slots_while_blocked[0] == '10:00'
    assert list_blocked_periods(doctor_id=clinic['doctor_id'], db=scheduling_db) == []


def test_delete_unknown_blocked_period_is_not_found(scheduling_db, clinic) -> None:
    with pytest.raises(HTTPException) as exception_info:
        delete_blocked_period(doctor_id=clinic['doctor_id'], blocked_period_id=999, db=scheduling_db)

    assert exception_info.value.status_code == 404
