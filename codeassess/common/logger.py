"""
Application Logger

Every module logs through a child of the ``codeassess`` logger. Records can
carry structured context as ``extra={"data": {...}}``; the JSON formatter
lifts it into the emitted object so assessment, candidate and quiz ids stay
searchable.
"""

import os
import sys
import json
import time
import logging
import datetime
import functools
import asyncio
from typing import Any, Callable, List, Optional, TypeVar

from codeassess.common.exceptions import ValidationError
from codeassess.config import Settings, settings as default_settings

TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-32s | %(message)s"
TEXT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
ROOT_LOGGER_NAME = "codeassess"

F = TypeVar('F', bound=Callable[..., Any])

__all__ = [
    'configure_logger',
    'get_logger',
    'JsonFormatter',
    'app_logger',
    'log_execution_time'
]


class JsonFormatter(logging.Formatter):
    """
    One JSON object per record.

    The ``data`` mapping attached to a record is merged into the object;
    its keys never replace the base fields.
    """

    BASE_FIELDS = ("timestamp", "level", "logger", "message")

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.datetime.fromtimestamp(record.created, datetime.timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.lineno}",
        }

        data = getattr(record, "data", None)
        if isinstance(data, dict):
            for key, value in data.items():
                if key not in self.BASE_FIELDS:
                    entry[key] = value

        if record.exc_info and record.exc_info[0] is not None:
            entry["error"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }

        return json.dumps(entry, default=str, ensure_ascii=False)


def _handlers(settings: Settings, formatter: logging.Formatter) -> List[logging.Handler]:
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if settings.LOG_FILE:
        try:
            os.makedirs(os.path.dirname(settings.LOG_FILE) or ".", exist_ok=True)
            handlers.append(logging.FileHandler(settings.LOG_FILE))
        except OSError as e:
            sys.stderr.write(f"Could not open log file {settings.LOG_FILE}: {e}\n")
    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def configure_logger(settings: Optional[Settings] = None, name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """
    (Re)configure the application logger from settings.

    ``LOG_LEVEL`` sets the threshold, ``LOG_JSON`` switches to JsonFormatter
    and ``LOG_FILE`` adds a file handler next to stdout. Existing handlers
    are replaced, so calling it twice does not duplicate output.

    Args:
        settings: Settings to read; the global settings by default
        name: Logger to configure

    Returns:
        The configured logger
    """
    settings = settings or default_settings
    formatter = JsonFormatter() if settings.LOG_JSON else logging.Formatter(TEXT_FORMAT, TEXT_DATE_FORMAT)

    logger = logging.getLogger(name)
    logger.setLevel(settings.LOG_LEVEL.upper())
    logger.handlers = _handlers(settings, formatter)
    return logger


def get_logger(area: str) -> logging.Logger:
    """Child of the application logger for one area of the code."""
    return app_logger.getChild(area)


app_logger = logging.getLogger(ROOT_LOGGER_NAME)
if not app_logger.handlers:
    configure_logger()


def log_execution_time(logger: Optional[logging.Logger] = None) -> Callable[[F], F]:
    """
    Decorator that reports how long an operation took.

    Successful calls are logged at DEBUG. Failures are logged at WARNING with
    the error type and re-raised, except input validation failures, which
    stay at DEBUG.

    Args:
        logger: Logger to report to; the application logger by default

    Returns:
        Decorator for sync or async callables
    """
    def report(func: Callable, started: float, error: Optional[Exception] = None) -> None:
        target = logger or app_logger
        elapsed = time.perf_counter() - started
        if error is None:
            target.debug(f"{func.__qualname__} took {elapsed:.3f}s")
        elif isinstance(error, ValidationError):
            target.debug(f"{func.__qualname__} rejected its input after {elapsed:.3f}s: {error}")
        else:
            target.warning(
                f"{func.__qualname__} failed after {elapsed:.3f}s: {type(error).__name__}: {error}"
            )

    def decorator(func: F) -> F:
        if asyncio.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                started = time.perf_counter()
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    report(func, started, e)
                    raise
                report(func, started)
                return result
            return async_wrapper  # type: ignore[return-value]

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            started = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                report(func, started, e)
                raise
            report(func, started)
            return result
        return wrapper  # type: ignore[return-value]

    return decorator
