import os
from datetime import time

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from backend.database import Base  # noqa: E402
from backend.models.appointment import Appointment  # noqa: E402
from backend.models.availability import Timeplan, TimeplanWindow, timeplan_window_consultation_types  # noqa: E402
from backend.models.blocked_period import BlockedPeriod  # noqa: E402
from backend.models.consultation_type import ConsultationType  # noqa: E402
from backend.models.doctor import Doctor  # noqa: E402
from backend.scheduling.availability import DayOfWeek  # noqa: E402

SCHEDULING_TABLES = [
    Doctor.__table__,
    ConsultationType.__table__,
    Timeplan.__table__,
    TimeplanWindow.__table__,
    timeplan_window_consultation_types,
    Appointment.__table__,
    BlockedPeriod.__table__,
]


@pytest.fixture
def scheduling_db():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine, tables=SCHEDULING_TABLES)

    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine, tables=list(reversed(SCHEDULING_TABLES)))


@pytest.fixture
def clinic(scheduling_db):
    """A doctor open Monday 09:00-12:00 for a 30 minute consultation."""
    doctor = Doctor(name='Dr. Martin', email='martin@clinic.test')
    scheduling_db.add(doctor)
    scheduling_db.flush()

    consultation = ConsultationType(
        doctor_id=doctor.id,
        name='Consultation',
        duration_minutes=30,
        rest_after_minutes=0,
        enabled=True,
    )
    scheduling_db.add(consultation)
    scheduling_db.flush()

    monday = Timeplan(doctor_id=doctor.id, day_of_week=DayOfWeek.MONDAY, specific_date=None, is_active=True)
    monday.windows = [
        TimeplanWindow(
            start_time=time(9, 0),
            end_time=time(12, 0),
            is_active=True,
            consultation_types=[consultation],
        )
    ]
    scheduling_db.add(monday)
    scheduling_db.commit()

    return {'doctor_id': doctor.id, 'consultation_type_id': consultation.id, 'consultation': consultation}
