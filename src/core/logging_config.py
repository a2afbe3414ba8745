"""Logging configuration for the ledger service."""

import logging.config

from src.core.config import settings


def build_logging_config(level: str) -> dict:
    """dictConfig for console logging; SQL echo stays on the sqlalchemy logger."""
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": "ext://sys.stderr",
            },
        },
        "loggers": {
            "src": {
                "level": level.upper(),
            },
        },
        "root": {
            "handlers": ["console"],
            "level": "WARNING",
        },
    }


def setup_logging() -> None:
    """Apply logging config from settings. Safe to call more than once."""
    logging.config.dictConfig(build_logging_config(settings.log_level))
