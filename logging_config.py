import logging
import logging.config
from typing import Any

from pythonjsonlogger.json import JsonFormatter

from app.environment import EnvironmentName
from settings import settings

JSON_FORMAT = (
    "%(module)s %(asctime)s %(levelname)s %(thread)d %(processName)s %(taskName)s %(name)s "
    "%(funcName)s %(filename)s %(lineno)d %(message)s"
)
LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "jsonFormat": {
            "format": JSON_FORMAT,
            "class": "logging_config.CustomJsonFormatter",
        },
    },
    "handlers": {
        "jsonStreamHandler": {
            "formatter": "jsonFormat",
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stdout",  # Default is stderr
        },
    },
    "loggers": {
        "": {"handlers": ["jsonStreamHandler"], "level": settings.logging.level, "propagate": False},
        # uvicorn access logs go through the root handler once
        "uvicorn.access": {
            "handlers": ["jsonStreamHandler"],
            "propagate": False,
        },
    },
}
LOCAL_LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {"format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s"},
    },
    "handlers": {
        "default": {
            "formatter": "standard",
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stdout",  # Default is stderr
        },
    },
    "loggers": {
        "": {
            "handlers": ["default"],
            "level": settings.logging.level,
            "propagate": False,
        },
        # uvicorn access logs go through the root handler once
        "uvicorn.access": {"handlers": ["default"], "propagate": False},
        "aiohttp.access": {"handlers": ["default"], "level": logging.WARNING, "propagate": False},
        "asyncio": {"handlers": ["default"], "level": logging.WARNING, "propagate": False},
        "python_multipart": {"handlers": ["default"], "level": logging.WARNING, "propagate": False},
        "sqlalchemy.engine": {"handlers": ["default"], "level": logging.WARNING, "propagate": False},
    },
}


class CustomJsonFormatter(JsonFormatter):
    """JSON records tagged with the environment; indented for reading in local development."""

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._app_env = settings.environment
        self._pretty_format = self._app_env == EnvironmentName.DEVELOPMENT and settings.logging.use_pretty_json
        if self._pretty_format:
            self.json_indent = 2

    def add_fields(self, log_record: dict[str, Any], record: logging.LogRecord, message_dict: dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["environment"] = self._app_env.value

    def format(self, record: logging.LogRecord) -> str:
        result = super().format(record)
        if self._pretty_format:
            result = result.replace("\\n", "\n\t\t")
        return result


def setup_logging() -> None:
    """Configure the root logger; JSON to stdout unless LOGGING_USE_CONFIG is off."""
    if settings.logging.use_config is True:
        logging.config.dictConfig(LOGGING_CONFIG)
    else:
        logging.config.dictConfig(LOCAL_LOGGING_CONFIG)
    logging.captureWarnings(True)
    logging.disable(logging.NOTSET)
