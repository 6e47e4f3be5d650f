"""
Application Logger

This module provides a consistent logging interface for the cache package,
with configurable log levels, formatters, and handlers, plus helpers that
emit structured cache events (hit, miss, write, eviction, expiry).
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

# Default log format
DEFAULT_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-30s | %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

APP_LOGGER_NAME = "reader_cache"
CACHE_EVENT_LOGGER_NAME = f"{APP_LOGGER_NAME}.events"

# Type variable for the decorator
F = TypeVar('F', bound=Callable[..., Any])

# Export public interface
__all__ = [
    'configure_logger',
    'get_logger',
    'LoggerAdapter',
    'JsonFormatter',
    'with_context',
    'app_logger',
    'log_execution_time',
    'set_cache_event_logging',
    'log_cache_hit',
    'log_cache_miss',
    'log_cache_write',
    'log_cache_eviction',
    'log_cache_expired',
]


class JsonFormatter(logging.Formatter):
    """
    Formatter that outputs JSON strings after parsing the log record.

    Extra fields passed as ``extra={"data": {...}}`` are merged into the
    top-level object, which is how cache events carry key and namespace.
    """

    def __init__(
        self,
        fmt: Optional[str] = None,
        datefmt: Optional[str] = None,
        style: str = '%',
        validate: bool = True,
        *,
        indent: Optional[int] = None
    ):
        """
        Initialize the formatter with specified format strings.

        Args:
            fmt: Format string
            datefmt: Date format string
            style: Style of format string
            validate: Whether to validate the format string
            indent: Indentation level for pretty printing JSON
        """
        super().__init__(fmt, datefmt, style, validate)
        self.indent = indent

    def format(self, record: logging.LogRecord) -> str:
        """
        Format the specified record as JSON.

        Args:
            record: Log record to format

        Returns:
            Formatted JSON string
        """
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

        if hasattr(record, 'data') and isinstance(record.data, dict):
            log_object.update(record.data)

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
    Configure a logger with appropriate handlers and formatters.

    Args:
        name: Logger name
        level: Log level
        format_string: Log format string
        date_format: Date format string
        use_json: Whether to use JSON formatting
        log_file: Path to log file (if None, no file handler is created)
        console_output: Whether to output logs to console

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
            log_dir = os.path.dirname(log_file)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except (FileNotFoundError, PermissionError) as e:
            fallback_logger = logging.getLogger("fallback")
            fallback_logger.warning(f"Could not create log file {log_file}: {e}")

    return logger


def get_logger(
    name: str,
    parent: Optional[logging.Logger] = None
) -> logging.Logger:
    """
    Get a logger with the specified name.

    Args:
        name: Logger name
        parent: Optional parent logger

    Returns:
        Logger instance
    """
    if parent:
        return parent.getChild(name)
    return logging.getLogger(name)


class LoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that adds contextual information to log records.

    Used by components that want every record tagged with the same fields,
    such as the namespace a manager works on.
    """

    def __init__(
        self,
        logger: logging.Logger,
        context: Dict[str, Any] = None
    ):
        super().__init__(logger, context or {})

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        """
        Merge the adapter context into ``extra["data"]``.

        Args:
            msg: Log message
            kwargs: Keyword arguments for logging call

        Returns:
            Tuple of (message, kwargs)
        """
        kwargs = kwargs.copy()
        extra = dict(kwargs.get('extra') or {})
        data = dict(extra.get('data') or {})
        if self.extra:
            data.update(self.extra)
        extra['data'] = data
        kwargs['extra'] = extra
        return msg, kwargs

    def with_context(self, **context) -> 'LoggerAdapter':
        """
        Create a new adapter with additional context.

        Args:
            **context: Context to add

        Returns:
            New logger adapter with combined context
        """
        new_context = dict(self.extra)
        new_context.update(context)
        return LoggerAdapter(self.logger, new_context)


def with_context(name: str = None, **context) -> LoggerAdapter:
    """
    Create a logger adapter with context.

    Args:
        name: Logger name (defaults to the application logger)
        **context: Context to attach to every record

    Returns:
        Logger adapter with context
    """
    logger = get_logger(name) if name else app_logger
    return LoggerAdapter(logger, context)


def get_app_logger() -> logging.Logger:
    """
    Get or create the application logger.

    Returns:
        The configured application logger
    """
    logger = logging.getLogger(APP_LOGGER_NAME)

    if not logger.handlers:
        return configure_logger(
            name=APP_LOGGER_NAME,
            level=os.environ.get("READER_CACHE_LOG_LEVEL", "INFO"),
            use_json=os.environ.get("READER_CACHE_LOG_JSON", "false").lower() == "true",
            log_file=os.environ.get("READER_CACHE_LOG_FILE"),
            console_output=True
        )

    return logger

# Initialize the app logger
app_logger = get_app_logger()

_cache_event_logger = logging.getLogger(CACHE_EVENT_LOGGER_NAME)
_cache_events_enabled = True


def set_cache_event_logging(enabled: bool) -> None:
    """Turn the per-operation cache event records on or off."""
    global _cache_events_enabled
    _cache_events_enabled = enabled


def _log_cache_event(event: str, key: str, namespace: str, **fields: Any) -> None:
    if not _cache_events_enabled or not _cache_event_logger.isEnabledFor(logging.DEBUG):
        return
    data = {"event": event, "key": key, "namespace": namespace}
    data.update({k: v for k, v in fields.items() if v is not None})
    details = " ".join(f"{k}={v}" for k, v in fields.items() if v is not None)
    _cache_event_logger.debug(
        f"cache {event}: {namespace}/{key}{' ' + details if details else ''}",
        extra={"data": data}
    )


def log_cache_hit(key: str, namespace: str, source: Optional[str] = None) -> None:
    _log_cache_event("hit", key, namespace, source=source)


def log_cache_miss(key: str, namespace: str, reason: Optional[str] = None) -> None:
    _log_cache_event("miss", key, namespace, reason=reason)


def log_cache_write(key: str, namespace: str, size_bytes: Optional[int] = None) -> None:
    _log_cache_event("write", key, namespace, size_bytes=size_bytes)


def log_cache_eviction(key: str, namespace: str, reason: Optional[str] = None) -> None:
    _log_cache_event("eviction", key, namespace, reason=reason)


def log_cache_expired(key: str, namespace: str, age_millis: Optional[int] = None) -> None:
    _log_cache_event("expired", key, namespace, age_millis=age_millis)


def log_execution_time(logger: Optional[logging.Logger] = None) -> Callable[[F], F]:
    """
    Decorator to log the execution time of a function.

    Args:
        logger: Optional logger to use. If not provided, uses app_logger.

    Returns:
        Decorated function that logs its execution time
    """
    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            start_time = time.time()
            try:
                result = func(*args, **kwargs)
                execution_time = time.time() - start_time
                (logger or get_app_logger()).debug(
                    f"{func.__name__} executed in {execution_time:.3f} seconds"
                )
                return result
            except Exception as e:
                execution_time = time.time() - start_time
                (logger or get_app_logger()).error(
                    f"{func.__name__} failed after {execution_time:.3f} seconds: {str(e)}"
                )
                raise

        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            start_time = time.time()
            try:
                result = await func(*args, **kwargs)
                execution_time = time.time() - start_time
                (logger or get_app_logger()).debug(
                    f"{func.__name__} executed in {execution_time:.3f} seconds"
                )
                return result
            except Exception as e:
                execution_time = time.time() - start_time
                (logger or get_app_logger()).error(
                    f"{func.__name__} failed after {execution_time:.3f} seconds: {str(e)}"
                )
                raise

        return async_wrapper if asyncio.iscoroutinefunction(func) else wrapper
    return decorator
