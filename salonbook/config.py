import os

from dotenv import load_dotenv

load_dotenv()


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name, str(default)).strip()
    try:
        return int(raw)
    except Exception:
        return int(default)


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name, str(default)).strip()
    try:
        return float(raw)
    except Exception:
        return float(default)


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "1" if default else "0").strip().lower()
    if raw in {"1", "true", "yes", "on"}:
        return True
    if raw in {"0", "false", "no", "off"}:
        return False
    return bool(default)


class Settings:
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./salonbook.db")
    DB_SQLITE_BUSY_TIMEOUT_MS = _get_int("DB_SQLITE_BUSY_TIMEOUT_MS", 5000)
    REDIS_URL = os.getenv("REDIS_URL", "").strip()
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    LOG_FORMAT = os.getenv("LOG_FORMAT", "json").strip().lower()

    DEFAULT_SALON_TIMEZONE = os.getenv("DEFAULT_SALON_TIMEZONE", "America/Sao_Paulo").strip()

    SLOT_GRANULARITY_FLOOR_MIN = _get_int("SLOT_GRANULARITY_FLOOR_MIN", 15)
    SLOT_DEFAULT_GRANULARITY_MIN = _get_int("SLOT_DEFAULT_GRANULARITY_MIN", 15)
    SLOT_DERIVE_FROM_SINGLE_SERVICE = _get_bool("SLOT_DERIVE_FROM_SINGLE_SERVICE", True)
    SLOT_EXCLUDE_PAST = _get_bool("SLOT_EXCLUDE_PAST", True)
    SLOT_MIN_ADVANCE_MIN = _get_int("SLOT_MIN_ADVANCE_MIN", 0)

    BOOKING_HORIZON_PAST_DAYS = _get_int("BOOKING_HORIZON_PAST_DAYS", 0)
    BOOKING_HORIZON_FUTURE_DAYS = _get_int("BOOKING_HORIZON_FUTURE_DAYS", 90)
    CALENDAR_MAX_DAYS = _get_int("CALENDAR_MAX_DAYS", 62)

    RESERVATION_LOCK_TIMEOUT_SECONDS = _get_float("RESERVATION_LOCK_TIMEOUT_SECONDS", 5.0)
    RESERVATION_LOCK_TTL_SECONDS = _get_int("RESERVATION_LOCK_TTL_SECONDS", 30)
    RESERVATION_DEFAULT_STATUS = os.getenv("RESERVATION_DEFAULT_STATUS", "PENDING").strip().upper()
    RESERVATION_CHECK_CLIENT_OVERLAP = _get_bool("RESERVATION_CHECK_CLIENT_OVERLAP", True)

    SECURITY_HEADERS_ENABLED = _get_bool("SECURITY_HEADERS_ENABLED", True)


settings = Settings()
