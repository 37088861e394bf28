"""
Application Logger

This module provides the logging interface for the assessment core, with
configurable levels, plain or JSON formatting, and context-carrying adapters
so that session and question identifiers travel with every record.
"""

import os
import sys
import json
import time
import logging
import datetime
import functools
import asyncio
from typing import Dict, Any, Optional, Union, Callable, TypeVar

from linguaiq.common.config import LoggingConfig, get_config

DEFAULT_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-30s | %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

APP_LOGGER_NAME = "linguaiq"

F = TypeVar('F', bound=Callable[..., Any])

__all__ = [
    'configure_logger',
    'get_logger',
    'LoggerAdapter',
    'JsonFormatter',
    'setup_logging',
    'app_logger',
    'log_execution_time'
]


class JsonFormatter(logging.Formatter):
    """
    Formatter that renders log records as JSON objects.

    Structured context attached through ``extra={"data": {...}}`` (which is
    what ``LoggerAdapter`` does) is merged into the top-level object.
    """

    def __init__(
        self,
        fmt: Optional[str] = None,
        datefmt: Optional[str] = None,
        *,
        indent: Optional[int] = None
    ):
        super().__init__(fmt, datefmt)
        self.indent = indent

    def format(self, record: logging.LogRecord) -> str:
        log_object = {
            "timestamp": datetime.datetime.fromtimestamp(record.created).isoformat(),
            "name": record.name,
            "level": record.levelname,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno
        }

        if record.exc_info:
            log_object["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info)
            }

        data = getattr(record, "data", None)
        if isinstance(data, dict):
            log_object.update(data)

        return json.dumps(log_object, indent=self.indent, default=str)


def configure_logger(
    name: str = APP_LOGGER_NAME,
    level: Union[str, int] = logging.INFO,
    format_string: str = DEFAULT_LOG_FORMAT,
    date_format: str = DEFAULT_DATE_FORMAT,
    use_json: bool = False,
    log_file: Optional[str] = None,
    console_output: bool = True
) -> logging.Logger:
    """
    Configure a logger with console and/or file handlers.

    Args:
        name: Logger name
        level: Log level (name or numeric value)
        format_string: Log format string for plain output
        date_format: Date format string
        use_json: Whether to emit JSON records
        log_file: Path to a log file (no file handler when None)
        console_output: Whether to log to stdout

    Returns:
        Configured logger
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper())

    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.handlers = []

    if use_json:
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(format_string, date_format)

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    if log_file:
        try:
            directory = os.path.dirname(log_file)
            if directory:
                os.makedirs(directory, exist_ok=True)
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except (FileNotFoundError, PermissionError) as e:
            logging.getLogger("fallback").warning(f"Could not create log file {log_file}: {e}")

    return logger


def get_logger(name: str, parent: Optional[logging.Logger] = None) -> logging.Logger:
    """
    Get a logger, optionally as a child of ``parent``.
    """
    if parent:
        return parent.getChild(name)
    return logging.getLogger(name)


class LoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that adds contextual information to log records.

    The context is stored under ``record.data`` so ``JsonFormatter`` can
    merge it, and is appended to plain-text messages as ``key=value`` pairs.
    """

    def __init__(self, logger: logging.Logger, context: Optional[Dict[str, Any]] = None):
        super().__init__(logger, context or {})

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        kwargs = kwargs.copy()
        extra = dict(kwargs.get('extra') or {})
        data = dict(extra.get('data') or {})
        if self.extra:
            data.update(self.extra)
        extra['data'] = data
        kwargs['extra'] = extra

        if data:
            rendered = " ".join(f"{key}={value}" for key, value in data.items())
            msg = f"{msg} [{rendered}]"

        return msg, kwargs

    def with_context(self, **context) -> 'LoggerAdapter':
        """
        Create a new adapter with additional context.
        """
        new_context = dict(self.extra)
        new_context.update(context)
        return LoggerAdapter(self.logger, new_context)


def setup_logging(logging_config: Optional[LoggingConfig] = None) -> logging.Logger:
    """
    Configure the application logger from the ``logging`` section of the config.

    Call again after ``reload_config`` to apply a new logging section.

    Args:
        logging_config: Settings to apply (defaults to ``get_config().logging``)

    Returns:
        The configured application logger
    """
    logging_config = logging_config or get_config().logging
    return configure_logger(
        name=APP_LOGGER_NAME,
        level=logging_config.level,
        use_json=logging_config.json_format,
        log_file=logging_config.file_path,
        console_output=True
    )


def get_app_logger() -> logging.Logger:
    """
    Get the application logger, configuring it on first use.
    """
    logger = logging.getLogger(APP_LOGGER_NAME)

    if not logger.handlers:
        return setup_logging()

    return logger


app_logger = get_app_logger()


def log_execution_time(logger: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None) -> Callable[[F], F]:
    """
    Decorator to log the execution time of a function.

    Works for both plain and coroutine functions. Successful calls are logged
    at debug level, failures at error level before the exception propagates.
    """
    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            start_time = time.perf_counter()
            try:
                result = func(*args, **kwargs)
                execution_time = time.perf_counter() - start_time
                (logger or get_app_logger()).debug(
                    f"{func.__qualname__} executed in {execution_time:.3f} seconds"
                )
                return result
            except Exception as e:
                execution_time = time.perf_counter() - start_time
                (logger or get_app_logger()).error(
                    f"{func.__qualname__} failed after {execution_time:.3f} seconds: {str(e)}"
                )
                raise

        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            start_time = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
                execution_time = time.perf_counter() - start_time
                (logger or get_app_logger()).debug(
                    f"{func.__qualname__} executed in {execution_time:.3f} seconds"
                )
                return result
            except Exception as e:
                execution_time = time.perf_counter() - start_time
                (logger or get_app_logger()).error(
                    f"{func.__qualname__} failed after {execution_time:.3f} seconds: {str(e)}"
                )
                raise

        return async_wrapper if asyncio.iscoroutinefunction(func) else wrapper
    return decorator
