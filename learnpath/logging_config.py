"""Stderr logging setup shared by the three command-line tools."""

import logging
import os
from logging.config import dictConfig
from typing import Optional

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """Configure stderr logging for the CLI tools based on flags and environment."""
    resolved = (level or os.getenv("LEARNPATH_LOG_LEVEL", "WARNING")).upper()

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": DEFAULT_LOG_FORMAT,
                },
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "stream": "ext://sys.stderr",
                },
            },
            "root": {
                "handlers": ["default"],
                "level": resolved,
            },
        }
    )

    if os.getenv("LEARNPATH_DEBUG_TELEMETRY", "0") == "1":
        logging.getLogger("learnpath.telemetry").setLevel(logging.DEBUG)
