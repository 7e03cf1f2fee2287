import logging
import os
from logging.config import dictConfig

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
TELEMETRY_LOGGER = "study_planner.telemetry"


def configure_logging() -> None:
    """Configure process logging from ``STUDY_PLANNER_*`` environment flags.

    Telemetry events are logged one line per event, so they get their own
    level and can be silenced without hiding planner or cache warnings.
    """
    level = os.getenv("STUDY_PLANNER_LOG_LEVEL", "INFO").upper()
    telemetry_level = os.getenv("STUDY_PLANNER_TELEMETRY_LOG_LEVEL", level).upper()

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {"format": DEFAULT_LOG_FORMAT},
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                },
            },
            "loggers": {
                TELEMETRY_LOGGER: {"level": telemetry_level},
            },
            "root": {
                "handlers": ["default"],
                "level": level,
            },
        }
    )

    if os.getenv("STUDY_PLANNER_DEBUG_SQL", "0") == "1":
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)
    if os.getenv("STUDY_PLANNER_DEBUG_HTTP", "0") == "1":
        logging.getLogger("uvicorn.access").setLevel(logging.DEBUG)
