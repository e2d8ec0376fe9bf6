import logging
import sys

import structlog

from ..config import settings

QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "redis")


def _renderer():
    if (settings.LOG_FORMAT or "json").strip().lower() == "console":
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer()


def setup_logging():
    level = getattr(logging, (settings.LOG_LEVEL or "INFO").strip().upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            _renderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.get_logger("salonbook").info(
        "logging_initialized",
        level=logging.getLevelName(level),
        format=(settings.LOG_FORMAT or "json").strip().lower(),
        default_timezone=settings.DEFAULT_SALON_TIMEZONE,
    )
