"""
Structured logging configuration

Every logger in the library hangs off the ``context_recall`` package
logger. ``setup_logging`` attaches the JSON handler there, at
``settings.LOG_LEVEL`` unless told otherwise, so applications embedding
the engine keep control of the root logger.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import IO, Optional

from .config import settings


PACKAGE_LOGGER = "context_recall"

# Context fields copied from ``extra`` into the JSON payload
CONTEXT_FIELDS = (
    "query_length",
    "turn_index",
    "turn_count",
    "corpus",
    "stage",
    "error",
    "error_type",
    "result_count",
)


class StructuredFormatter(logging.Formatter):
    """JSON structured logging formatter"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
        }

        context = {name: getattr(record, name) for name in CONTEXT_FIELDS if hasattr(record, name)}
        if context:
            log_data["context"] = context

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: Optional[str] = None, stream: Optional[IO[str]] = None) -> logging.Logger:
    """
    Send the library's logs to ``stream`` (stdout by default) as JSON lines.

    Calling it again replaces the previous JSON handler instead of adding
    a second one.
    """
    level_name = (level or settings.LOG_LEVEL).upper()

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(StructuredFormatter())

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    for existing in list(package_logger.handlers):
        if isinstance(existing.formatter, StructuredFormatter):
            package_logger.removeHandler(existing)
    package_logger.setLevel(getattr(logging, level_name))
    package_logger.addHandler(handler)
    return package_logger


def get_logger(name: str) -> logging.Logger:
    """Logger under the package namespace"""
    if name == PACKAGE_LOGGER or name.startswith(PACKAGE_LOGGER + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{PACKAGE_LOGGER}.{name}")


class LoggerMixin:
    """Mixin to add logging capabilities to classes"""

    @property
    def logger(self) -> logging.Logger:
        return get_logger(self.__class__.__name__)

    def log_info(self, message: str, **kwargs):
        """Log info message with context"""
        self.logger.info(message, extra=kwargs)

    def log_error(self, message: str, **kwargs):
        """Log error message with context"""
        self.logger.error(message, extra=kwargs)

    def log_warning(self, message: str, **kwargs):
        """Log warning message with context"""
        self.logger.warning(message, extra=kwargs)
