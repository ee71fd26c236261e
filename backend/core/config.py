import os

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value)


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if value is None:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


APP_ENV = os.getenv("APP_ENV", "development")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./clinic.db")
DATABASE_ECHO = _get_bool(os.getenv("DATABASE_ECHO"), default=False)

CORS_ALLOWED_ORIGINS = _get_list(os.getenv("CORS_ALLOWED_ORIGINS"), default=["http://localhost:5173"])

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

SLOT_STEP_MINUTES = _get_int(os.getenv("SLOT_STEP_MINUTES"), default=15)
MAX_APPOINTMENT_DURATION_MINUTES = _get_int(os.getenv("MAX_APPOINTMENT_DURATION_MINUTES"), default=240)


def validate_runtime_config() -> None:
    if SLOT_STEP_MINUTES <= 0:
        raise RuntimeError("SLOT_STEP_MINUTES must be a positive number of minutes.")
    if MAX_APPOINTMENT_DURATION_MINUTES <= 0:
        raise RuntimeError("MAX_APPOINTMENT_DURATION_MINUTES must be a positive number of minutes.")
    if APP_ENV.lower() == "production" and DATABASE_URL.startswith("sqlite"):
        raise RuntimeError("DATABASE_URL must point to Postgres in production.")
