from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from backend.core import config


engine = create_engine(config.DATABASE_URL, echo=config.DATABASE_ECHO)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_scheduling_schema_checked = False

SCHEDULING_INDEXES = {
    'appointments': [
        'CREATE INDEX IF NOT EXISTS idx_appointments_doctor_start ON appointments(doctor_id, start_time)',
        'CREATE INDEX IF NOT EXISTS idx_appointments_doctor_status ON appointments(doctor_id, status)',
    ],
    'blocked_periods': [
        'CREATE INDEX IF NOT EXISTS idx_blocked_periods_doctor_range ON blocked_periods(doctor_id, start_time, end_time)',
    ],
    'timeplans': [
        'CREATE INDEX IF NOT EXISTS idx_timeplans_doctor_day ON timeplans(doctor_id, day_of_week, specific_date)',
    ],
}


def ensure_scheduling_schema() -> None:
    global _scheduling_schema_checked

    if _scheduling_schema_checked:
        return

    with _schema_lock:
        if _scheduling_schema_checked:
            return

        existing_tables = set(inspect(engine).get_table_names())

        with engine.begin() as connection:
            for table_name, statements in SCHEDULING_INDEXES.items():
                if table_name not in existing_tables:
                    continue
                for statement in statements:
                    connection.execute(text(statement))

        # Retry on a later call until every indexed table exists.
        _scheduling_schema_checked = existing_tables.issuperset(SCHEDULING_INDEXES)
