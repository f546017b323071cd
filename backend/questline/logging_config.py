import logging
import os
from logging.config import dictConfig

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _level(variable: str, default: str) -> str:
    return os.getenv(variable, default).upper()


def configure_logging() -> None:
    """Configure process-wide logging from ``QUESTLINE_*`` environment flags.

    ``QUESTLINE_LOG_LEVEL`` sets the root level. Telemetry lines (one JSON
    document per event) go through ``questline.telemetry`` and can be tuned
    separately with ``QUESTLINE_TELEMETRY_LOG_LEVEL``.
    """
    level = _level("QUESTLINE_LOG_LEVEL", "INFO")

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {"format": DEFAULT_LOG_FORMAT},
                "telemetry": {"format": "%(asctime)s %(message)s"},
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                },
                "telemetry": {
                    "class": "logging.StreamHandler",
                    "formatter": "telemetry",
                },
            },
            "loggers": {
                "questline.telemetry": {
                    "handlers": ["telemetry"],
                    "level": _level("QUESTLINE_TELEMETRY_LOG_LEVEL", level),
                    "propagate": False,
                },
            },
            "root": {
                "handlers": ["default"],
                "level": level,
            },
        }
    )

    if os.getenv("QUESTLINE_DEBUG_SQL", "0") == "1":
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)
    if os.getenv("QUESTLINE_DEBUG_HTTP", "0") == "1":
        logging.getLogger("uvicorn.access").setLevel(logging.DEBUG)
