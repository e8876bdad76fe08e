"""
Application Logger

Logging setup for examprep: one ``examprep`` logger writing plain or JSON
lines to stdout and optionally a file, an adapter that tags records with
submission and test ids, and a timing decorator for repository calls.
"""

import os
import sys
import json
import time
import logging
import datetime
import functools
from typing import Dict, Any, Optional, Union, Callable, TypeVar

DEFAULT_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-30s | %(message)s"

F = TypeVar('F', bound=Callable[..., Any])

__all__ = [
    'configure_logger',
    'get_logger',
    'LoggerAdapter',
    'JsonFormatter',
    'app_logger',
    'log_execution_time'
]


class JsonFormatter(logging.Formatter):
    """
    One JSON object per record, with the adapter's ``data`` merged in.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_object = {
            "timestamp": datetime.datetime.fromtimestamp(record.created).isoformat(),
            "name": record.name,
            "level": record.levelname,
            "message": record.getMessage()
        }
        if record.exc_info:
            log_object["exception"] = self.formatException(record.exc_info)
        log_object.update(getattr(record, "data", None) or {})
        return json.dumps(log_object, default=str)


def configure_logger(
    name: str = "examprep",
    level: Union[str, int] = logging.INFO,
    use_json: bool = False,
    log_file: Optional[str] = None
) -> logging.Logger:
    """
    Replace the handlers of ``name`` with a stdout handler and, when
    ``log_file`` is set, a file handler.
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper())

    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.handlers = []

    formatter = JsonFormatter() if use_json else logging.Formatter(DEFAULT_LOG_FORMAT)
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class LoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that adds contextual information to log records.

    Used by the services to tag every message with the submission, test or
    caller it concerns.
    """

    def __init__(self, logger: logging.Logger, context: Optional[Dict[str, Any]] = None):
        super().__init__(logger, context or {})

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        kwargs = kwargs.copy()
        extra = dict(kwargs.get('extra') or {})
        data = dict(extra.get('data') or {})
        data.update(self.extra)
        extra['data'] = data
        kwargs['extra'] = extra
        return msg, kwargs

    def with_context(self, **context) -> 'LoggerAdapter':
        """Create a new adapter with additional context."""
        return LoggerAdapter(self.logger, {**self.extra, **context})


def get_app_logger() -> logging.Logger:
    """The ``examprep`` logger, configured from the environment on first use."""
    logger = logging.getLogger("examprep")
    if not logger.handlers:
        return configure_logger(
            level=os.environ.get("LOG_LEVEL", "INFO"),
            use_json=os.environ.get("LOG_JSON", "false").lower() == "true"
        )
    return logger


app_logger = get_app_logger()


def log_execution_time(logger: Optional[logging.Logger] = None) -> Callable[[F], F]:
    """
    Decorator logging how long a coroutine took, at debug level.

    Failures are logged with their duration and re-raised unchanged.
    """
    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            start_time = time.time()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                (logger or app_logger).debug(
                    f"{func.__name__} failed after {time.time() - start_time:.3f} seconds: {e}"
                )
                raise
            (logger or app_logger).debug(
                f"{func.__name__} executed in {time.time() - start_time:.3f} seconds"
            )
            return result

        return wrapper
    return decorator
