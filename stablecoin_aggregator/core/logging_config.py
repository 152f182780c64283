"""
Logging configuration for Stablecoin Aggregator Service.
Supports both JSON and text logging formats.
"""

import logging
import logging.config
import sys
from typing import Dict, Any
from pythonjsonlogger import jsonlogger

from .config import settings

ROOT_LOGGER_NAME = "stablecoin_aggregator"


def setup_logging() -> None:
    """Setup structured logging for the application."""

    if settings.log_format == "json":
        logging_config = get_json_logging_config()
    else:
        logging_config = get_text_logging_config()

    logging.config.dictConfig(logging_config)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level))

    # Reduce noise from external libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def _console_handler(formatter: str) -> Dict[str, Any]:
    return {
        "class": "logging.StreamHandler",
        "level": settings.log_level,
        "formatter": formatter,
        "stream": sys.stdout
    }


def _loggers() -> Dict[str, Any]:
    return {
        "": {
            "handlers": ["console"],
            "level": settings.log_level,
            "propagate": False
        },
        ROOT_LOGGER_NAME: {
            "handlers": ["console"],
            "level": settings.log_level,
            "propagate": False
        }
    }


def get_json_logging_config() -> Dict[str, Any]:
    """Get JSON logging configuration."""
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "()": jsonlogger.JsonFormatter,
                "format": "%(asctime)s %(name)s %(levelname)s %(message)s %(module)s %(funcName)s %(lineno)d",
                "datefmt": "%Y-%m-%d %H:%M:%S"
            }
        },
        "handlers": {
            "console": _console_handler("json")
        },
        "loggers": _loggers()
    }


def get_text_logging_config() -> Dict[str, Any]:
    """Get text logging configuration."""
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s (%(filename)s:%(lineno)d)",
                "datefmt": "%Y-%m-%d %H:%M:%S"
            },
            "detailed": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s [in %(pathname)s:%(lineno)d]",
                "datefmt": "%Y-%m-%d %H:%M:%S"
            }
        },
        "handlers": {
            "console": _console_handler("standard" if settings.log_level == "INFO" else "detailed")
        },
        "loggers": _loggers()
    }


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name, nested under the service logger."""
    if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


# Convenience function for getting loggers
def create_logger(module_name: str) -> logging.Logger:
    """Create a logger for a specific module."""
    return get_logger(module_name)
