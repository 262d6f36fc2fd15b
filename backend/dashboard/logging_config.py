import logging
import os
from logging.config import dictConfig

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
VERBOSE_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s:%(lineno)d] %(message)s"

_NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def configure_logging() -> None:
    """Configure dashboard logging from DASHBOARD_* environment flags."""
    level = os.getenv("DASHBOARD_LOG_LEVEL", "INFO").upper()
    telemetry_level = os.getenv("DASHBOARD_TELEMETRY_LOG_LEVEL", level).upper()
    fmt = VERBOSE_LOG_FORMAT if os.getenv("DASHBOARD_LOG_VERBOSE", "0") == "1" else DEFAULT_LOG_FORMAT

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {"format": fmt},
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                },
            },
            "loggers": {
                "dashboard.telemetry": {"level": telemetry_level},
            },
            "root": {
                "handlers": ["default"],
                "level": level,
            },
        }
    )

    http_level = logging.DEBUG if os.getenv("DASHBOARD_DEBUG_HTTP", "0") == "1" else logging.WARNING
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(http_level)
    if os.getenv("DASHBOARD_DEBUG_SQL", "0") == "1":
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)
